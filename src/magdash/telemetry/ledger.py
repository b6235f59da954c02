"""In-memory detection log with best-effort durable mirroring."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from magdash.telemetry.store import StoreMirror

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 2000
DEFAULT_COMPACT_TO = 1500


@dataclass(frozen=True, slots=True)
class DetectionEvent:
    """One accepted detection: when it happened and what the sensor read."""

    id: int
    detected_at: datetime
    sensor_value: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "detected_at": self.detected_at.isoformat(),
            "sensor_value": self.sensor_value,
        }


class DetectionLedger:
    """Append-only record of detection events.

    The in-memory list is authoritative for live queries.  It is compacted in
    one step (to the newest ``compact_to`` events) once it grows past
    ``capacity``.  Every event is also handed to the optional
    :class:`~magdash.telemetry.store.StoreMirror`, whose failures never reach
    the caller.
    """

    def __init__(
        self,
        mirror: StoreMirror | None = None,
        *,
        capacity: int = DEFAULT_CAPACITY,
        compact_to: int = DEFAULT_COMPACT_TO,
    ) -> None:
        if not 0 < compact_to <= capacity:
            raise ValueError("compact_to must be in 1..capacity")
        self._mirror = mirror
        self._capacity = capacity
        self._compact_to = compact_to
        self._events: list[DetectionEvent] = []
        self._last_id = 0

    def __len__(self) -> int:
        return len(self._events)

    def record(self, sensor_value: float, detected_at: datetime | None = None) -> DetectionEvent:
        """Append a detection and queue it for the durable store."""
        event = DetectionEvent(
            id=self._next_id(),
            detected_at=detected_at or datetime.now(UTC),
            sensor_value=float(sensor_value),
        )
        self._events.append(event)
        if len(self._events) > self._capacity:
            del self._events[: len(self._events) - self._compact_to]

        if self._mirror is not None:
            self._mirror.submit(event)
        return event

    def recent(self, limit: int) -> list[DetectionEvent]:
        """Return up to *limit* in-memory events, newest first."""
        if limit <= 0:
            return []
        return list(reversed(self._events[-limit:]))

    async def try_durable_read(self, limit: int) -> list[DetectionEvent] | None:
        """Read from the durable store, or ``None`` if it is unavailable."""
        if self._mirror is None:
            return None
        try:
            return await asyncio.wait_for(
                self._mirror.store.read_detections(limit), self._mirror.timeout
            )
        except TimeoutError:
            logger.warning("Durable detection read timed out; serving in-memory log")
        except Exception as exc:
            logger.warning("Durable detection read failed (%s); serving in-memory log", exc)
        return None

    async def history(self, limit: int) -> list[DetectionEvent]:
        """Durable read-through with the in-memory log as fallback.

        Durable rows are merged with in-memory events by id, so a detection
        still queued in the mirror is not missing from the answer.
        """
        if limit <= 0:
            return []
        events = await self.try_durable_read(limit)
        if events is None:
            return self.recent(limit)
        merged = {event.id: event for event in events}
        for event in self.recent(limit):
            merged.setdefault(event.id, event)
        return sorted(merged.values(), key=lambda e: e.id, reverse=True)[:limit]

    def _next_id(self) -> int:
        # Millisecond timestamp, bumped when two detections share a millisecond.
        self._last_id = max(int(time.time() * 1000), self._last_id + 1)
        return self._last_id
