"""Pydantic v2 models for the detector's live state and inbound requests.

Inbound request models are lenient about optional fields: a
field of the wrong type is ignored rather than rejected, so a firmware
revision that sends ``"servo_angle": "90"`` still gets its reading accepted.
Only ``value`` on an ingest is mandatory.
"""

from __future__ import annotations

import math
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

INITIAL_DISPLAY_LINES = ("MAG:0 TH:0", "STATE:IDLE CNT:0", "BUZZER:OFF SERVO:0")


def _finite_number_or_none(value: Any) -> float | int | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not math.isfinite(value):
        return None
    return value


def _bool_or_none(value: Any) -> bool | None:
    return value if isinstance(value, bool) else None


class TelemetrySnapshot(BaseModel):
    """Immutable view of the detector's current status."""

    model_config = ConfigDict(frozen=True)

    value: float = 0.0
    threshold: float = 0.5
    detected: bool = False
    buzzer_on: bool = False
    servo_angle: int = Field(default=0, ge=0, le=180)
    display_lines: tuple[str, str, str] = INITIAL_DISPLAY_LINES


class IngestRequest(BaseModel):
    """A telemetry push from the device (``POST /api/ingest`` or ``/ws/device``)."""

    model_config = ConfigDict(extra="ignore", allow_inf_nan=False)

    value: float
    threshold: float | None = None
    detected: bool | None = None
    buzzer_on: bool | None = None
    servo_angle: float | None = None

    @field_validator("value", mode="before")
    @classmethod
    def _reject_bool_value(cls, v: Any) -> Any:
        if isinstance(v, bool):
            raise ValueError("value must be a number")
        return v

    @field_validator("threshold", "servo_angle", mode="before")
    @classmethod
    def _ignore_non_numeric(cls, v: Any) -> float | int | None:
        return _finite_number_or_none(v)

    @field_validator("detected", "buzzer_on", mode="before")
    @classmethod
    def _ignore_non_bool(cls, v: Any) -> bool | None:
        return _bool_or_none(v)


class ControlRequest(BaseModel):
    """Actuator command from a viewer (``POST /api/control``)."""

    model_config = ConfigDict(extra="ignore")

    buzzer_on: bool | None = None
    servo_angle: float | None = None

    @field_validator("servo_angle", mode="before")
    @classmethod
    def _ignore_non_numeric(cls, v: Any) -> float | int | None:
        return _finite_number_or_none(v)

    @field_validator("buzzer_on", mode="before")
    @classmethod
    def _ignore_non_bool(cls, v: Any) -> bool | None:
        return _bool_or_none(v)


class EnableRequest(BaseModel):
    """System enable toggle (``POST /api/enable``); any truthy value enables."""

    model_config = ConfigDict(extra="ignore")

    enabled: bool = False

    @field_validator("enabled", mode="before")
    @classmethod
    def _truthy(cls, v: Any) -> bool:
        return bool(v)


class DisplayRequest(BaseModel):
    """Raw display override (``POST /api/display``)."""

    model_config = ConfigDict(extra="ignore")

    lines: list[str] = Field(min_length=1, max_length=3)
