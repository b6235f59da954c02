from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

from rich.panel import Panel
from rich.table import Table

if TYPE_CHECKING:
    from rich.console import Console

_BAR_WIDTH = 40


class RichOutput:
    """Rich-based terminal output helpers for *magdash*."""

    def __init__(self, console: Console) -> None:
        self._con = console

    # ------------------------------------------------------------------
    # Live status
    # ------------------------------------------------------------------

    def status(self, data: dict[str, Any]) -> None:
        """Print the detector snapshot and the display lines it drives."""
        current: dict[str, Any] = data.get("current", {})
        enabled = data.get("system_enabled", False)

        table = Table(title="Detector Status")
        table.add_column("Field", style="bold")
        table.add_column("Value")

        detected = current.get("detected", False)
        table.add_row("Value", f"{current.get('value', 0)}")
        table.add_row("Threshold", f"{current.get('threshold', 0)}")
        table.add_row("State", "[red]DETECTED[/red]" if detected else "[green]IDLE[/green]")
        table.add_row("Buzzer", "on" if current.get("buzzer_on") else "off")
        table.add_row("Servo", f"{current.get('servo_angle', 0)}°")
        table.add_row("Detections", str(data.get("detection_count", 0)))
        table.add_row("System", "[green]enabled[/green]" if enabled else "[yellow]disabled[/yellow]")
        self._con.print(table)

        lines = current.get("display_lines") or []
        if lines:
            self._con.print(Panel("\n".join(lines), title="Display", expand=False))

    # ------------------------------------------------------------------
    # Detection log
    # ------------------------------------------------------------------

    def detection_log(self, events: list[dict[str, Any]]) -> None:
        """Print a newest-first table of detection events."""
        table = Table(title=f"Detections ({len(events)})")
        table.add_column("Detected at", style="cyan")
        table.add_column("Sensor value", justify="right")
        table.add_column("ID", justify="right", style="dim")

        for event in events:
            table.add_row(
                _local_time(event.get("detected_at")),
                f"{event.get('sensor_value', '')}",
                str(event.get("id", "")),
            )

        self._con.print(table)

    # ------------------------------------------------------------------
    # Summary views
    # ------------------------------------------------------------------

    def chart(self, points: list[dict[str, Any]]) -> None:
        """Print the non-empty chart buckets."""
        table = Table(title="Signal (bucket averages)")
        table.add_column("Bucket start", style="cyan")
        table.add_column("Average", justify="right")

        filled = [p for p in points if p.get("avg") is not None]
        for p in filled:
            start = datetime.fromtimestamp(p["t"] / 1000).strftime("%H:%M:%S")
            table.add_row(start, f"{p['avg']:.2f}")
        if not filled:
            table.add_row("[dim]no samples in window[/dim]", "")

        self._con.print(table)

    def histogram(self, bins: list[dict[str, Any]]) -> None:
        """Print histogram bins as horizontal bars."""
        if not bins:
            self._con.print("[dim]No samples buffered.[/dim]")
            return
        peak = max(b["count"] for b in bins) or 1
        for b in bins:
            width = round(b["count"] / peak * _BAR_WIDTH)
            self._con.print(f"{b['i']:>3} [cyan]{'█' * width}[/cyan] {b['count']}")

    # ------------------------------------------------------------------
    # Streamed messages
    # ------------------------------------------------------------------

    def event(self, message: dict[str, Any]) -> None:
        """Print one WebSocket broadcast as a single line."""
        kind = message.get("type", "?")
        if kind == "telemetry":
            state = "[red]DETECTED[/red]" if message.get("detected") else "IDLE"
            text = (
                f"value={message.get('value')} th={message.get('threshold')} {state}"
                f" buzzer={'on' if message.get('buzzer_on') else 'off'}"
                f" servo={message.get('servo_angle')} count={message.get('detection_count')}"
            )
        elif kind == "notify":
            text = f"[bold yellow]{message.get('message', '')}[/bold yellow]"
        elif kind == "counter":
            text = f"count={message.get('detection_count')}"
        elif kind == "enabled":
            text = "system enabled" if message.get("enabled") else "system disabled"
        elif kind == "oled":
            text = " | ".join(message.get("lines", []))
        elif kind == "hello":
            text = f"connected, count={message.get('detection_count')}"
        else:
            text = str(message)
        self._con.print(f"[dim]{kind:<9}[/dim] {text}")

    # ------------------------------------------------------------------
    # Command result helpers
    # ------------------------------------------------------------------

    def command_result(self, success: bool, message: str = "") -> None:
        """Print a coloured OK / FAILED indicator."""
        text = "[green]OK[/green]" if success else "[red]FAILED[/red]"
        if message:
            text += f"  {message}"
        self._con.print(text)

    def error(self, message: str) -> None:
        """Print a bold red error line."""
        self._con.print(f"[bold red]Error:[/bold red] {message}")

    def info(self, message: str) -> None:
        self._con.print(message)


def _local_time(value: Any) -> str:
    if not isinstance(value, str):
        return ""
    try:
        return datetime.fromisoformat(value).astimezone().strftime("%Y-%m-%d %H:%M:%S")
    except ValueError:
        return value
