from __future__ import annotations

from magdash.models.config import AppSettings
from magdash.models.telemetry import (
    INITIAL_DISPLAY_LINES,
    ControlRequest,
    DisplayRequest,
    EnableRequest,
    IngestRequest,
    TelemetrySnapshot,
)

__all__ = [
    "INITIAL_DISPLAY_LINES",
    "AppSettings",
    "ControlRequest",
    "DisplayRequest",
    "EnableRequest",
    "IngestRequest",
    "TelemetrySnapshot",
]
