"""``magdash serve``: run the dashboard backend under uvicorn."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import click

from magdash._internal.async_utils import run_async
from magdash.cli._options import global_options

if TYPE_CHECKING:
    from magdash.cli.main import AppContext
    from magdash.models.config import AppSettings

logger = logging.getLogger(__name__)

# Library loggers that would drown the server's own output at INFO.
_NOISY_LOGGERS = ("uvicorn.access", "httpx", "httpcore", "websockets")


def _resolve_port(host: str, preferred: int, *, auto_select: bool = True) -> int:
    """Return *preferred* if available, or find a free port.

    With *auto_select* (the default port was not chosen by the user) the OS
    picks a free port.  Otherwise raise ``click.UsageError``.
    """
    import socket

    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            s.bind((host, preferred))
            return preferred
        except OSError:
            pass

    if not auto_select:
        raise click.UsageError(
            f"Port {preferred} is already in use.\n"
            f"Use --port to specify a different port, e.g.:\n"
            f"  magdash serve --port {preferred + 1}"
        )

    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind((host, 0))
        free_port: int = s.getsockname()[1]

    logger.info("Port %d in use, using port %d instead", preferred, free_port)
    return free_port


async def _safe_uvicorn_serve(server: Any, port: int) -> None:
    """Run ``uvicorn.Server.serve()`` with SystemExit protection.

    Uvicorn calls ``sys.exit(1)`` when it cannot bind the port, which would
    tear down the event loop before the caller sees an exception.  This
    turns it into an ``OSError``.
    """
    try:
        await server.serve()
    except SystemExit as exc:
        if exc.code == 0:
            logger.debug("Uvicorn exited cleanly (code 0) on port %d", port)
            return
        raise OSError(f"magdash server failed to start on port {port}") from exc


def configure_logging(*, verbose: bool, output_format: str) -> None:
    """Install a root handler: Rich on a terminal, plain lines for ``json``."""
    level = logging.DEBUG if verbose else logging.INFO
    handler: logging.Handler
    if output_format == "json":
        handler = logging.StreamHandler()
        handler.setFormatter(
            logging.Formatter(
                "%(asctime)s  %(levelname)-5s  [%(name)s]  %(message)s",
                datefmt="%Y-%m-%dT%H:%M:%S",
            )
        )
    else:
        from rich.logging import RichHandler

        handler = RichHandler(rich_tracebacks=True, show_path=verbose)
        handler.setFormatter(logging.Formatter("%(message)s", datefmt="[%X]"))

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.DEBUG if verbose else logging.WARNING)


@click.command("serve")
@click.option("--host", default=None, help="Bind address (default: 0.0.0.0)")
@click.option("--port", type=int, default=None, envvar="MAGDASH_PORT", help="HTTP port")
@click.option(
    "--data-dir",
    type=click.Path(file_okay=False),
    default=None,
    help="Directory for the CSV signal and detection logs",
)
@click.option(
    "--no-store",
    is_flag=True,
    default=False,
    help="Keep the detection log in memory only",
)
@click.option(
    "--retention",
    type=click.FloatRange(min=1),
    default=None,
    help="Seconds of samples kept for the chart and histogram",
)
@global_options
def serve_cmd(
    app_ctx: AppContext,
    host: str | None,
    port: int | None,
    data_dir: str | None,
    no_store: bool,
    retention: float | None,
) -> None:
    """Start the dashboard backend.

    Serves the REST API, the viewer WebSocket (/ws/telemetry) and the device
    WebSocket (/ws/device).

    \b
    Examples:
      magdash serve                         # 0.0.0.0:3100, CSV log in ~/.config/magdash
      magdash serve --port 8080 --no-store  # memory-only
      MAGDASH_RETENTION_SECONDS=600 magdash serve
    """
    from magdash.models.config import AppSettings

    settings = AppSettings()
    overrides: dict[str, Any] = {}
    if host is not None:
        overrides["host"] = host
    if data_dir is not None:
        overrides["data_dir"] = data_dir
    if no_store:
        overrides["store_enabled"] = False
    if retention is not None:
        overrides["retention_seconds"] = retention
    settings = settings.model_copy(update=overrides)

    port_source = click.get_current_context().get_parameter_source("port")
    port_explicit = port_source in (
        click.core.ParameterSource.COMMANDLINE,
        click.core.ParameterSource.ENVIRONMENT,
    )
    configure_logging(verbose=app_ctx.verbose, output_format=app_ctx.formatter.format)
    resolved = _resolve_port(
        settings.host,
        port if port is not None else settings.port,
        auto_select=not port_explicit,
    )
    settings = settings.model_copy(update={"port": resolved})

    run_async(_cmd_serve(app_ctx, settings))


async def _cmd_serve(app_ctx: AppContext, settings: AppSettings) -> None:
    import uvicorn

    from magdash.telemetry.server import create_app

    app = create_app(settings)
    formatter = app_ctx.formatter
    if formatter.format == "rich":
        formatter.rich.info(
            f"[bold]magdash[/bold] listening on [cyan]http://{settings.host}:{settings.port}[/cyan]"
        )
        formatter.rich.info(
            f"  viewers: ws://{settings.host}:{settings.port}/ws/telemetry"
            f"   devices: ws://{settings.host}:{settings.port}/ws/device"
        )

    config = uvicorn.Config(
        app,
        host=settings.host,
        port=settings.port,
        log_config=None,
    )
    server = uvicorn.Server(config)
    await _safe_uvicorn_serve(server, settings.port)
