"""Authoritative live state of the detector.

One :class:`TelemetryState` per process holds the current
:class:`~magdash.models.telemetry.TelemetrySnapshot`, the detection counter
and the system-enabled flag.  Every transition replaces the snapshot with a
new frozen copy, so readers can hold on to a snapshot without it changing
underneath them.  An ingest re-derives all three display lines; a control
command re-derives only the actuator line and a reset only the state line.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from magdash._internal.rounding import clamp_angle, js_round
from magdash.api.errors import InvalidIngestError
from magdash.models.telemetry import TelemetrySnapshot

if TYPE_CHECKING:
    from collections.abc import Sequence

    from magdash.models.telemetry import IngestRequest

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class IngestResult:
    """Outcome of :meth:`TelemetryState.apply_ingest`."""

    snapshot: TelemetrySnapshot
    detection_count: int
    system_enabled: bool
    new_detection: bool


@dataclass(frozen=True, slots=True)
class StatusView:
    """Consistent read of the snapshot, counter and enable flag."""

    current: TelemetrySnapshot
    detection_count: int
    system_enabled: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "detection_count": self.detection_count,
            "system_enabled": self.system_enabled,
            "current": self.current.model_dump(mode="json"),
        }


def display_lines(snapshot: TelemetrySnapshot, detection_count: int) -> tuple[str, str, str]:
    """Derive the three OLED lines the device shows for *snapshot*."""
    return (
        f"MAG:{js_round(snapshot.value)} TH:{js_round(snapshot.threshold * 100)}",
        f"STATE:{'DETECTED' if snapshot.detected else 'IDLE'} CNT:{detection_count}",
        f"BUZZER:{'ON' if snapshot.buzzer_on else 'OFF'} SERVO:{snapshot.servo_angle}",
    )


class TelemetryState:
    """Single-writer state machine for the detector.

    Mutators are synchronous; callers serialize them (the pipeline runs them
    on the event loop) and must not share the object across threads.
    """

    def __init__(self, snapshot: TelemetrySnapshot | None = None) -> None:
        self._snapshot = snapshot or TelemetrySnapshot()
        self._detection_count = 0
        self._enabled = True

    # -- Reads ----------------------------------------------------------------

    @property
    def snapshot(self) -> TelemetrySnapshot:
        return self._snapshot

    @property
    def detection_count(self) -> int:
        return self._detection_count

    @property
    def system_enabled(self) -> bool:
        return self._enabled

    def status(self) -> StatusView:
        return StatusView(
            current=self._snapshot,
            detection_count=self._detection_count,
            system_enabled=self._enabled,
        )

    # -- Transitions ----------------------------------------------------------

    def apply_ingest(self, update: IngestRequest) -> IngestResult:
        """Merge a device reading onto the snapshot.

        Unset optional fields keep their previous value.  The counter moves
        only on a rising edge of ``detected`` while the system is enabled;
        repeated ``detected: true`` readings count once.
        """
        if update.value is None:
            raise InvalidIngestError("value is required")

        prev = self._snapshot
        changes: dict[str, Any] = {"value": float(update.value)}
        if update.threshold is not None:
            changes["threshold"] = float(update.threshold)
        if update.detected is not None:
            changes["detected"] = update.detected
        if update.buzzer_on is not None:
            changes["buzzer_on"] = update.buzzer_on
        if update.servo_angle is not None:
            changes["servo_angle"] = clamp_angle(update.servo_angle)

        merged = prev.model_copy(update=changes)

        new_detection = self._enabled and merged.detected and not prev.detected
        if new_detection:
            self._detection_count += 1

        self._snapshot = self._derive(merged)
        return IngestResult(
            snapshot=self._snapshot,
            detection_count=self._detection_count,
            system_enabled=self._enabled,
            new_detection=new_detection,
        )

    def apply_control(
        self,
        buzzer_on: bool | None = None,
        servo_angle: float | None = None,
    ) -> TelemetrySnapshot:
        """Set actuator fields; only the actuator display line is re-derived."""
        changes: dict[str, Any] = {}
        if buzzer_on is not None:
            changes["buzzer_on"] = buzzer_on
        if servo_angle is not None:
            changes["servo_angle"] = clamp_angle(servo_angle)
        self._snapshot = self._rederive_line(self._snapshot.model_copy(update=changes), 2)
        return self._snapshot

    def set_enabled(self, enabled: bool) -> bool:
        self._enabled = bool(enabled)
        logger.info("System %s", "enabled" if self._enabled else "disabled")
        return self._enabled

    def reset_counter(self) -> int:
        self._detection_count = 0
        self._snapshot = self._rederive_line(self._snapshot, 1)
        logger.info("Detection counter reset")
        return self._detection_count

    def override_display(self, lines: Sequence[str]) -> TelemetrySnapshot:
        """Replace the display lines verbatim.

        Entries beyond the given ones keep their current text.  An ingest
        re-derives every line; control and reset only their own line.
        """
        if not 1 <= len(lines) <= 3:
            raise ValueError("display override takes 1 to 3 lines")
        current = list(self._snapshot.display_lines)
        current[: len(lines)] = [str(line) for line in lines]
        self._snapshot = self._snapshot.model_copy(
            update={"display_lines": (current[0], current[1], current[2])}
        )
        return self._snapshot

    # -- Internals ------------------------------------------------------------

    def _derive(self, snapshot: TelemetrySnapshot) -> TelemetrySnapshot:
        return snapshot.model_copy(
            update={"display_lines": display_lines(snapshot, self._detection_count)}
        )

    def _rederive_line(self, snapshot: TelemetrySnapshot, index: int) -> TelemetrySnapshot:
        lines = list(snapshot.display_lines)
        lines[index] = display_lines(snapshot, self._detection_count)[index]
        return snapshot.model_copy(update={"display_lines": (lines[0], lines[1], lines[2])})
