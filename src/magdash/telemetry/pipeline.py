"""Ingest/command orchestration: the single writer of the live state.

Every mutating method here is synchronous.  They run on the event loop
thread, so "mutate state, derive views, enqueue broadcasts" is one
uninterrupted step: two concurrent ingests can never interleave, and the
order in which broadcasts are queued is the order in which the state
changed.  Delivery and durable writes happen afterwards, on their own tasks.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from magdash.api.errors import InvalidCommandError, InvalidIngestError
from magdash.models.telemetry import (
    ControlRequest,
    DisplayRequest,
    EnableRequest,
    IngestRequest,
)
from magdash.telemetry.buffer import ChartPoint, HistogramBin, SampleBuffer
from magdash.telemetry.hub import DEFAULT_QUEUE_SIZE, DEFAULT_SEND_TIMEOUT, BroadcastHub
from magdash.telemetry.ledger import DetectionEvent, DetectionLedger
from magdash.telemetry.state import IngestResult, StatusView, TelemetryState

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

    from magdash.models.telemetry import TelemetrySnapshot
    from magdash.telemetry.store import StoreMirror

logger = logging.getLogger(__name__)

NOTIFY_MESSAGE = "Magnetic object detected."


def _error_details(exc: ValidationError) -> list[dict[str, Any]]:
    return [
        {"loc": ".".join(str(p) for p in err["loc"]), "msg": err["msg"]} for err in exc.errors()
    ]


def _require_object(payload: Any, error: type[InvalidIngestError | InvalidCommandError]) -> None:
    if not isinstance(payload, dict):
        raise error("request body must be a JSON object")


class IngestPipeline:
    """Owns the live state and fans changes out to viewers and devices.

    Parameters:
        state: Live detector state.
        buffer: Retained sample series.
        ledger: Detection log.
        viewer_hub: Dashboard subscribers.  If omitted, a hub whose
            on-connect greeting is :meth:`hello` is created.
        device_hub: Device subscribers (actuator commands).
        mirror: Durable write-behind queue for samples, or ``None``.
        queue_size: Per-subscriber outbound queue capacity for created hubs.
        send_timeout: Per-send timeout for created hubs.
        clock: Source of sample timestamps (epoch seconds).
    """

    def __init__(
        self,
        *,
        state: TelemetryState | None = None,
        buffer: SampleBuffer | None = None,
        ledger: DetectionLedger | None = None,
        viewer_hub: BroadcastHub | None = None,
        device_hub: BroadcastHub | None = None,
        mirror: StoreMirror | None = None,
        queue_size: int = DEFAULT_QUEUE_SIZE,
        send_timeout: float = DEFAULT_SEND_TIMEOUT,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.state = state or TelemetryState()
        self.buffer = buffer or SampleBuffer()
        self.ledger = ledger or DetectionLedger(mirror)
        self.viewer_hub = viewer_hub or BroadcastHub(
            "viewer", on_connect=self.hello, queue_size=queue_size, send_timeout=send_timeout
        )
        self.device_hub = device_hub or BroadcastHub(
            "device", queue_size=queue_size, send_timeout=send_timeout
        )
        self.mirror = mirror
        self._clock = clock
        self._ingest_count = 0
        self._rejected_count = 0

    @property
    def ingest_count(self) -> int:
        return self._ingest_count

    @property
    def rejected_count(self) -> int:
        return self._rejected_count

    # -- Messages -------------------------------------------------------------

    def hello(self) -> dict[str, Any]:
        """Full-state greeting queued for every new viewer."""
        status = self.state.status()
        return {
            "type": "hello",
            "current": status.current.model_dump(mode="json"),
            "detection_count": status.detection_count,
            "system_enabled": status.system_enabled,
        }

    def _telemetry_message(self) -> dict[str, Any]:
        status = self.state.status()
        return {
            "type": "telemetry",
            **status.current.model_dump(mode="json"),
            "detection_count": status.detection_count,
            "system_enabled": status.system_enabled,
        }

    @staticmethod
    def _control_message(snapshot: TelemetrySnapshot) -> dict[str, Any]:
        return {
            "type": "control",
            "buzzer_on": snapshot.buzzer_on,
            "servo_angle": snapshot.servo_angle,
        }

    # -- Writers --------------------------------------------------------------

    def ingest(self, payload: Mapping[str, Any] | Any) -> IngestResult:
        """Accept one device reading.

        Raises :class:`InvalidIngestError` (nothing mutated, nothing
        broadcast) when ``value`` is missing or unusable.
        """
        try:
            _require_object(payload, InvalidIngestError)
            if payload.get("value") is None:
                raise InvalidIngestError("value is required")
            try:
                update = IngestRequest.model_validate(payload)
            except ValidationError as exc:
                raise InvalidIngestError(
                    "invalid telemetry payload", details=_error_details(exc)
                ) from exc
        except InvalidIngestError:
            self._rejected_count += 1
            raise

        result = self.state.apply_ingest(update)
        now = self._clock()
        sample = self.buffer.append(result.snapshot.value, now)
        if self.mirror is not None:
            self.mirror.submit(sample)

        if result.new_detection:
            event = self.ledger.record(result.snapshot.value)
            logger.info(
                "Detection #%d: value=%.2f (event %d)",
                result.detection_count,
                event.sensor_value,
                event.id,
            )
            self.viewer_hub.publish({"type": "notify", "message": NOTIFY_MESSAGE})

        self.viewer_hub.publish(self._telemetry_message())
        self._ingest_count += 1
        return result

    def control(self, payload: Mapping[str, Any] | Any) -> TelemetrySnapshot:
        """Apply an actuator command; fields of the wrong type are ignored."""
        _require_object(payload, InvalidCommandError)
        command = ControlRequest.model_validate(payload)
        snapshot = self.state.apply_control(
            buzzer_on=command.buzzer_on, servo_angle=command.servo_angle
        )
        logger.info("Control: buzzer=%s servo=%d", snapshot.buzzer_on, snapshot.servo_angle)
        self.device_hub.publish(self._control_message(snapshot))
        self.viewer_hub.publish(self._telemetry_message())
        return snapshot

    def reset(self) -> int:
        count = self.state.reset_counter()
        self.viewer_hub.publish({"type": "counter", "detection_count": count})
        return count

    def set_enabled(self, payload: Mapping[str, Any] | Any) -> bool:
        _require_object(payload, InvalidCommandError)
        request = EnableRequest.model_validate(payload)
        enabled = self.state.set_enabled(request.enabled)
        self.viewer_hub.publish({"type": "enabled", "enabled": enabled})
        return enabled

    def override_display(self, payload: Mapping[str, Any] | Any) -> tuple[str, str, str]:
        """Push raw display lines to the device and the dashboards."""
        _require_object(payload, InvalidCommandError)
        try:
            request = DisplayRequest.model_validate(payload)
        except ValidationError as exc:
            raise InvalidCommandError(
                "invalid display payload", details=_error_details(exc)
            ) from exc
        snapshot = self.state.override_display(request.lines)
        message = {"type": "oled", "lines": list(snapshot.display_lines)}
        self.device_hub.publish(message)
        self.viewer_hub.publish(message)
        return snapshot.display_lines

    # -- Readers --------------------------------------------------------------

    def status(self) -> StatusView:
        return self.state.status()

    def chart(self, bucket_seconds: float) -> list[ChartPoint]:
        now = self._evict_stale()
        return self.buffer.chart_points(bucket_seconds, window_end=now)

    def histogram(self, bins: int) -> list[HistogramBin]:
        """Bin the samples still inside the retention window."""
        self._evict_stale()
        return self.buffer.histogram(bins)

    def _evict_stale(self) -> float:
        # Eviction otherwise only happens on append, and the device may be quiet.
        now = self._clock()
        self.buffer.evict_older_than(now - self.buffer.retention_seconds)
        return now

    async def logs(self, limit: int) -> list[DetectionEvent]:
        return await self.ledger.history(limit)
