"""Client commands against a running magdash server."""

from __future__ import annotations

from typing import TYPE_CHECKING

import click

from magdash._internal.async_utils import run_async
from magdash.cli._client import call, emit
from magdash.cli._options import global_options

if TYPE_CHECKING:
    from magdash.cli.main import AppContext


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


@click.command("status")
@global_options
def status_cmd(app_ctx: AppContext) -> None:
    """Show the live detector snapshot, counter and enable flag."""
    data = run_async(call(app_ctx, lambda c: c.get_status()))
    if app_ctx.formatter.format == "rich":
        app_ctx.formatter.rich.status(data)
    else:
        app_ctx.formatter.output(data, command="status")


@click.command("logs")
@click.option("--limit", type=click.IntRange(1, 500), default=None, help="Max events (<= 500)")
@global_options
def logs_cmd(app_ctx: AppContext, limit: int | None) -> None:
    """List detection events, newest first."""
    events = run_async(call(app_ctx, lambda c: c.get_logs(limit)))
    if app_ctx.formatter.format == "rich":
        app_ctx.formatter.rich.detection_log(events)
    else:
        app_ctx.formatter.output(events, command="logs")


@click.command("chart")
@click.option(
    "--bucket",
    "bucket_seconds",
    type=click.FloatRange(min=1),
    default=None,
    help="Bucket width in seconds (default: server setting)",
)
@global_options
def chart_cmd(app_ctx: AppContext, bucket_seconds: float | None) -> None:
    """Show bucket averages over the retention window."""
    points = run_async(call(app_ctx, lambda c: c.get_chart(bucket_seconds)))
    if app_ctx.formatter.format == "rich":
        app_ctx.formatter.rich.chart(points)
    else:
        app_ctx.formatter.output(points, command="chart")


@click.command("histogram")
@click.option("--bins", type=click.IntRange(1, 256), default=None, help="Number of bins")
@global_options
def histogram_cmd(app_ctx: AppContext, bins: int | None) -> None:
    """Show the distribution of buffered sensor values."""
    result = run_async(call(app_ctx, lambda c: c.get_histogram(bins)))
    if app_ctx.formatter.format == "rich":
        app_ctx.formatter.rich.histogram(result)
    else:
        app_ctx.formatter.output(result, command="histogram")


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@click.command("reset")
@global_options
def reset_cmd(app_ctx: AppContext) -> None:
    """Zero the detection counter."""
    run_async(call(app_ctx, lambda c: c.reset()))
    emit(app_ctx, {"detection_count": 0}, "reset", "Counter reset")


@click.command("enable")
@global_options
def enable_cmd(app_ctx: AppContext) -> None:
    """Enable detection counting and notifications."""
    enabled = run_async(call(app_ctx, lambda c: c.set_enabled(True)))
    emit(app_ctx, {"enabled": enabled}, "enable", "System enabled")


@click.command("disable")
@global_options
def disable_cmd(app_ctx: AppContext) -> None:
    """Disable detection counting (readings are still ingested)."""
    enabled = run_async(call(app_ctx, lambda c: c.set_enabled(False)))
    emit(app_ctx, {"enabled": enabled}, "disable", "System disabled")


@click.command("control")
@click.option("--buzzer/--no-buzzer", "buzzer_on", default=None, help="Buzzer on or off")
@click.option("--servo", "servo_angle", type=int, default=None, help="Servo angle (0-180)")
@global_options
def control_cmd(app_ctx: AppContext, buzzer_on: bool | None, servo_angle: int | None) -> None:
    """Send an actuator command to the device."""
    if buzzer_on is None and servo_angle is None:
        raise click.UsageError("Give --buzzer/--no-buzzer and/or --servo.")
    run_async(call(app_ctx, lambda c: c.control(buzzer_on=buzzer_on, servo_angle=servo_angle)))
    parts = []
    if buzzer_on is not None:
        parts.append(f"buzzer {'on' if buzzer_on else 'off'}")
    if servo_angle is not None:
        parts.append(f"servo {servo_angle}")
    emit(
        app_ctx,
        {"buzzer_on": buzzer_on, "servo_angle": servo_angle},
        "control",
        ", ".join(parts),
    )


@click.command("ingest")
@click.argument("value", type=float)
@click.option("--threshold", type=float, default=None, help="Detection threshold")
@click.option("--detected/--idle", default=None, help="Detection flag")
@click.option("--buzzer/--no-buzzer", "buzzer_on", default=None, help="Buzzer state")
@click.option("--servo", "servo_angle", type=int, default=None, help="Servo angle")
@global_options
def ingest_cmd(
    app_ctx: AppContext,
    value: float,
    threshold: float | None,
    detected: bool | None,
    buzzer_on: bool | None,
    servo_angle: int | None,
) -> None:
    """Push one reading as if it came from the device (testing aid)."""
    run_async(
        call(
            app_ctx,
            lambda c: c.ingest(
                value,
                threshold=threshold,
                detected=detected,
                buzzer_on=buzzer_on,
                servo_angle=servo_angle,
            ),
        )
    )
    emit(app_ctx, {"value": value}, "ingest", f"value {value}")


@click.command("display")
@click.argument("lines", nargs=-1, required=True)
@global_options
def display_cmd(app_ctx: AppContext, lines: tuple[str, ...]) -> None:
    """Override the device display with up to three LINES."""
    if len(lines) > 3:
        raise click.UsageError("The display has three lines.")
    shown = run_async(call(app_ctx, lambda c: c.display(list(lines))))
    emit(app_ctx, {"lines": shown}, "display", " | ".join(shown))
