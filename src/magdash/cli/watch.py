"""``magdash watch``: stream broadcasts from a running server."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

import click

from magdash._internal.async_utils import run_async
from magdash.api.errors import ApiError
from magdash.cli._options import global_options

if TYPE_CHECKING:
    from collections.abc import Callable

    from magdash.cli.main import AppContext

logger = logging.getLogger(__name__)

_CHANNEL_PATHS = {"viewer": "/ws/telemetry", "device": "/ws/device"}


def websocket_url(server_url: str, channel: str = "viewer") -> str:
    """Map ``http(s)://host:port`` to the ``ws(s)://`` URL of *channel*."""
    base = server_url.rstrip("/")
    if base.startswith("https://"):
        base = "wss://" + base[len("https://") :]
    elif base.startswith("http://"):
        base = "ws://" + base[len("http://") :]
    elif not base.startswith(("ws://", "wss://")):
        base = "ws://" + base
    return base + _CHANNEL_PATHS[channel]


async def stream_messages(
    url: str,
    on_message: Callable[[dict[str, Any]], None],
    *,
    count: int | None = None,
) -> int:
    """Connect to *url* and hand every JSON object to *on_message*.

    Returns after *count* messages, or when the server closes the
    connection.  Non-JSON frames are skipped.
    """
    import websockets.asyncio.client as ws_client
    from websockets.exceptions import ConnectionClosed

    try:
        ws = await ws_client.connect(url)
    except Exception as exc:
        raise ApiError(f"Failed to connect to {url}: {exc}") from exc

    received = 0
    try:
        async for raw in ws:
            try:
                msg = json.loads(raw)
            except (json.JSONDecodeError, TypeError):
                logger.warning("Received non-JSON frame, ignoring")
                continue
            if not isinstance(msg, dict):
                continue
            on_message(msg)
            received += 1
            if count is not None and received >= count:
                break
    except ConnectionClosed:
        logger.info("Server closed the connection after %d messages", received)
    finally:
        await ws.close()
    return received


@click.command("watch")
@click.option(
    "--channel",
    type=click.Choice(sorted(_CHANNEL_PATHS)),
    default="viewer",
    help="viewer: dashboard broadcasts; device: actuator commands",
)
@click.option("--count", type=click.IntRange(min=1), default=None, help="Stop after N messages")
@global_options
def watch_cmd(app_ctx: AppContext, channel: str, count: int | None) -> None:
    """Print live messages from the server (Ctrl+C to stop).

    With --format json each message is one JSON line.
    """
    url = websocket_url(app_ctx.resolved_server_url, channel)
    formatter = app_ctx.formatter
    if formatter.format == "rich":
        formatter.rich.info(f"[dim]Watching {url}[/dim]")
    run_async(stream_messages(url, formatter.stream_event, count=count))
