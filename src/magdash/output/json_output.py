from __future__ import annotations

import dataclasses
import json
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel


def _serialize(obj: Any) -> Any:
    """Convert *obj* to a JSON-friendly structure.

    Pydantic models go through ``model_dump(mode="json")``, dataclass
    instances (samples, detection events) through :func:`dataclasses.asdict`.
    Lists and tuples are recursed; anything else is left to ``default=str``.
    """
    if isinstance(obj, BaseModel):
        return obj.model_dump(mode="json")
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return {k: _serialize(v) for k, v in dataclasses.asdict(obj).items()}
    if isinstance(obj, (list, tuple)):
        return [_serialize(item) for item in obj]
    if isinstance(obj, dict):
        return {k: _serialize(v) for k, v in obj.items()}
    return obj


def format_json_response(*, data: Any, command: str) -> str:
    """Return a JSON envelope for a successful command::

        {"ok": true, "command": "<command>", "data": ..., "timestamp": "<ISO-8601 UTC>"}
    """
    envelope: dict[str, Any] = {
        "ok": True,
        "command": command,
        "data": _serialize(data),
        "timestamp": datetime.now(UTC).isoformat(),
    }
    return json.dumps(envelope, indent=2, default=str)


def format_json_error(*, code: str, message: str, command: str, **extra: Any) -> str:
    """Return a JSON envelope for a failed command::

        {"ok": false, "command": "<command>", "error": {"code", "message", ...}, "timestamp": ...}
    """
    envelope: dict[str, Any] = {
        "ok": False,
        "command": command,
        "error": {"code": code, "message": message, **extra},
        "timestamp": datetime.now(UTC).isoformat(),
    }
    return json.dumps(envelope, indent=2, default=str)


def format_json_line(message: dict[str, Any]) -> str:
    """One compact line per streamed WebSocket message (JSONL)."""
    return json.dumps(_serialize(message), separators=(",", ":"), default=str)
