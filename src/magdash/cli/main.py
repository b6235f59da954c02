"""CLI entry-point: Click command group and dispatch."""

from __future__ import annotations

import dataclasses

import click
import httpx

from magdash import __version__
from magdash.api.errors import ApiError
from magdash.output.formatter import OutputFormatter

# ---------------------------------------------------------------------------
# Application context (stored in ctx.obj)
# ---------------------------------------------------------------------------


@dataclasses.dataclass
class AppContext:
    """Shared state passed to every Click command via ``@click.pass_obj``."""

    server_url: str | None
    output_format: str | None
    quiet: bool
    verbose: bool
    _formatter: OutputFormatter | None = dataclasses.field(default=None, repr=False)

    @property
    def formatter(self) -> OutputFormatter:
        if self._formatter is None:
            force = "quiet" if self.quiet else self.output_format
            self._formatter = OutputFormatter(force_format=force)
        return self._formatter

    @property
    def resolved_server_url(self) -> str:
        """``--server`` if given, else ``MAGDASH_SERVER_URL`` / the default."""
        if self.server_url:
            return self.server_url
        from magdash.models.config import AppSettings

        return AppSettings().server_url


# ---------------------------------------------------------------------------
# Root Click group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(__version__, prog_name="magdash")
@click.option("--server", "server_url", default=None, help="magdash server URL")
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["rich", "json", "quiet"]),
    default=None,
    help="Output format (default: auto-detect)",
)
@click.option("--quiet", is_flag=True, default=False, help="Suppress normal output")
@click.option("--verbose", is_flag=True, default=False, help="Enable verbose logging")
@click.pass_context
def cli(
    ctx: click.Context,
    server_url: str | None,
    output_format: str | None,
    quiet: bool,
    verbose: bool,
) -> None:
    """Magnetic detector dashboard: server, client and live stream."""
    ctx.ensure_object(dict)
    ctx.obj = AppContext(
        server_url=server_url,
        output_format=output_format,
        quiet=quiet,
        verbose=verbose,
    )


# ---------------------------------------------------------------------------
# Register subcommands (lazy imports keep startup fast)
# ---------------------------------------------------------------------------


def _register_commands() -> None:
    """Import and attach all subcommands to the root CLI."""
    from magdash.cli.detector import (
        chart_cmd,
        control_cmd,
        disable_cmd,
        display_cmd,
        enable_cmd,
        histogram_cmd,
        ingest_cmd,
        logs_cmd,
        reset_cmd,
        status_cmd,
    )
    from magdash.cli.serve import serve_cmd
    from magdash.cli.watch import watch_cmd

    for command in (
        serve_cmd,
        status_cmd,
        logs_cmd,
        chart_cmd,
        histogram_cmd,
        reset_cmd,
        enable_cmd,
        disable_cmd,
        control_cmd,
        ingest_cmd,
        display_cmd,
        watch_cmd,
    ):
        cli.add_command(command)


_register_commands()


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main(argv: list[str] | None = None) -> None:
    """Parse arguments and dispatch to the appropriate command handler."""
    try:
        cli(args=argv, standalone_mode=False)
    except click.exceptions.Exit as exc:
        raise SystemExit(exc.exit_code) from None
    except click.exceptions.Abort:
        raise SystemExit(1) from None
    except click.exceptions.ClickException as exc:
        exc.show()
        raise SystemExit(exc.exit_code) from None
    except KeyboardInterrupt:
        raise SystemExit(130) from None
    except SystemExit:
        raise
    except Exception as exc:
        app_ctx = _extract_app_ctx()
        formatter = app_ctx.formatter if app_ctx else OutputFormatter()
        cmd_name = _get_command_name()

        if _handle_known_error(exc, app_ctx, formatter, cmd_name):
            raise SystemExit(1) from exc

        formatter.output_error(
            code=type(exc).__name__,
            message=str(exc),
            command=cmd_name,
        )
        raise SystemExit(1) from exc


# ---------------------------------------------------------------------------
# Helpers for error handling
# ---------------------------------------------------------------------------


def _extract_app_ctx() -> AppContext | None:
    """Try to extract AppContext from the current Click context."""
    ctx = click.get_current_context(silent=True)
    while ctx is not None:
        if isinstance(ctx.obj, AppContext):
            return ctx.obj
        ctx = ctx.parent
    return None


def _get_command_name() -> str:
    """Reconstruct a dotted command name from the Click context chain."""
    ctx = click.get_current_context(silent=True)
    parts: list[str] = []
    while ctx is not None:
        if ctx.info_name and ctx.info_name not in ("cli", "magdash"):
            parts.append(ctx.info_name)
        ctx = ctx.parent
    return ".".join(reversed(parts)) or "unknown"


def _handle_known_error(
    exc: Exception,
    app_ctx: AppContext | None,
    formatter: OutputFormatter,
    cmd_name: str,
) -> bool:
    """Print friendly output for well-known errors.

    Returns ``True`` if the error was handled and the caller should exit.
    """
    if isinstance(exc, httpx.TransportError):
        url = app_ctx.resolved_server_url if app_ctx else "the server"
        _handle_unreachable(url, exc, formatter, cmd_name)
        return True
    if isinstance(exc, ApiError):
        code = f"http_{exc.status_code}" if exc.status_code else "api_error"
        formatter.output_error(code=code, message=str(exc), command=cmd_name)
        return True
    return False


def _handle_unreachable(
    url: str,
    exc: Exception,
    formatter: OutputFormatter,
    cmd_name: str,
) -> None:
    message = f"Cannot reach magdash at {url} ({type(exc).__name__})."
    hint = "Start it with 'magdash serve' or pass --server."

    if formatter.format == "json":
        formatter.output_error(code="unreachable", message=f"{message} {hint}", command=cmd_name)
        return

    formatter.rich.error(message)
    formatter.rich.info("")
    formatter.rich.info("Next steps:")
    formatter.rich.info("  [cyan]magdash serve[/cyan]")
    formatter.rich.info("  [cyan]magdash --server http://<host>:3100 status[/cyan]")
