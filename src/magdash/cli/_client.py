"""Shared helpers for building the HTTP client from the CLI context."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, TypeVar

from magdash.api.client import MagdashClient

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from magdash.cli.main import AppContext

T = TypeVar("T")


def get_client(app_ctx: AppContext) -> MagdashClient:
    """Client for the server named by ``--server`` (or ``MAGDASH_SERVER_URL``)."""
    return MagdashClient(app_ctx.resolved_server_url)


async def call(app_ctx: AppContext, fn: Callable[[MagdashClient], Awaitable[T]]) -> T:
    """Open a client, run *fn* with it and close it again."""
    async with get_client(app_ctx) as client:
        return await fn(client)


def emit(app_ctx: AppContext, data: Any, command: str, message: str = "") -> None:
    """Print a simple command outcome: JSON envelope or a Rich OK line."""
    formatter = app_ctx.formatter
    if formatter.format == "json":
        formatter.output(data, command=command)
    elif formatter.format == "rich":
        formatter.rich.command_result(True, message)
