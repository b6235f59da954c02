"""Tests for IngestPipeline orchestration and broadcasts."""

from __future__ import annotations

import asyncio
import json
from typing import TYPE_CHECKING, Any
from unittest.mock import MagicMock

import pytest

from magdash.api.errors import InvalidCommandError, InvalidIngestError
from magdash.telemetry.buffer import Sample, SampleBuffer
from magdash.telemetry.pipeline import NOTIFY_MESSAGE, IngestPipeline
from tests.telemetry.conftest import Recorder

if TYPE_CHECKING:
    from tests.telemetry.conftest import FakeClock


async def _drain() -> None:
    for _ in range(20):
        await asyncio.sleep(0)


def _types(rec: Recorder) -> list[str]:
    return [json.loads(m)["type"] for m in rec.sent]


def _messages(rec: Recorder) -> list[dict[str, Any]]:
    return [json.loads(m) for m in rec.sent]


# ---------------------------------------------------------------------------
# ingest
# ---------------------------------------------------------------------------


class TestIngest:
    async def test_accepts_reading(self, pipeline: IngestPipeline, clock: FakeClock) -> None:
        result = pipeline.ingest({"value": 412.5, "threshold": 0.6})
        assert result.snapshot.value == 412.5
        assert result.snapshot.threshold == 0.6
        assert pipeline.buffer.samples() == [Sample(timestamp=clock.now, value=412.5)]
        assert pipeline.ingest_count == 1

    async def test_viewer_gets_hello_then_telemetry(self, pipeline: IngestPipeline) -> None:
        viewer = Recorder()
        pipeline.viewer_hub.subscribe(viewer)
        pipeline.ingest({"value": 10})
        await _drain()
        hello, telemetry = _messages(viewer)
        assert hello["type"] == "hello"
        assert hello["current"]["value"] == 0
        assert telemetry["type"] == "telemetry"
        assert telemetry["value"] == 10
        assert telemetry["detection_count"] == 0
        assert telemetry["system_enabled"] is True
        assert len(telemetry["display_lines"]) == 3

    async def test_devices_do_not_get_telemetry(self, pipeline: IngestPipeline) -> None:
        device = Recorder()
        pipeline.device_hub.subscribe(device)
        pipeline.ingest({"value": 10, "detected": True})
        await _drain()
        assert device.sent == []

    @pytest.mark.parametrize(
        "payload",
        [
            {},
            {"value": None},
            {"threshold": 0.5},
            {"value": "abc"},
            {"value": True},
            {"value": float("nan")},
            {"value": float("inf")},
            [1, 2, 3],
            "value=1",
        ],
    )
    async def test_rejects_without_side_effects(
        self, pipeline: IngestPipeline, payload: Any
    ) -> None:
        viewer = Recorder()
        pipeline.viewer_hub.subscribe(viewer)
        before = pipeline.status()

        with pytest.raises(InvalidIngestError):
            pipeline.ingest(payload)
        await _drain()

        assert pipeline.status() == before
        assert len(pipeline.buffer) == 0
        assert pipeline.viewer_hub.published_count == 0
        assert _types(viewer) == ["hello"]
        assert pipeline.rejected_count == 1

    async def test_rejection_carries_details(self, pipeline: IngestPipeline) -> None:
        with pytest.raises(InvalidIngestError) as exc_info:
            pipeline.ingest({"value": "abc"})
        assert exc_info.value.status_code == 400
        assert exc_info.value.details[0]["loc"] == "value"

    async def test_numeric_string_value_is_accepted(self, pipeline: IngestPipeline) -> None:
        assert pipeline.ingest({"value": "12.5"}).snapshot.value == 12.5


class TestDetection:
    async def test_notify_precedes_telemetry(self, pipeline: IngestPipeline) -> None:
        viewer = Recorder()
        pipeline.viewer_hub.subscribe(viewer)
        pipeline.ingest({"value": 900, "detected": True})
        await _drain()
        messages = _messages(viewer)
        assert [m["type"] for m in messages] == ["hello", "notify", "telemetry"]
        assert messages[1]["message"] == NOTIFY_MESSAGE
        assert messages[2]["detection_count"] == 1
        assert len(pipeline.ledger) == 1

    async def test_repeat_detected_notifies_once(self, pipeline: IngestPipeline) -> None:
        viewer = Recorder()
        pipeline.viewer_hub.subscribe(viewer)
        pipeline.ingest({"value": 10, "detected": True})
        pipeline.ingest({"value": 10, "detected": True})
        await _drain()
        assert _types(viewer).count("notify") == 1
        assert pipeline.status().detection_count == 1

    async def test_disabled_system_suppresses_notify(self, pipeline: IngestPipeline) -> None:
        viewer = Recorder()
        pipeline.set_enabled({"enabled": False})
        pipeline.viewer_hub.subscribe(viewer)
        pipeline.ingest({"value": 900, "detected": True})
        await _drain()
        assert "notify" not in _types(viewer)
        assert pipeline.status().detection_count == 0
        assert len(pipeline.ledger) == 0
        assert len(pipeline.buffer) == 1

    async def test_mirror_receives_sample_and_event(self, clock: FakeClock) -> None:
        mirror = MagicMock()
        pipeline = IngestPipeline(mirror=mirror, clock=clock)
        pipeline.ingest({"value": 900, "detected": True})
        submitted = [call.args[0] for call in mirror.submit.call_args_list]
        assert submitted[0] == Sample(timestamp=clock.now, value=900.0)
        assert submitted[1].sensor_value == 900.0


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


class TestCommands:
    async def test_control_goes_to_devices(self, pipeline: IngestPipeline) -> None:
        device, viewer = Recorder(), Recorder()
        pipeline.device_hub.subscribe(device)
        pipeline.viewer_hub.subscribe(viewer)
        snapshot = pipeline.control({"buzzer_on": True, "servo_angle": 200})
        await _drain()
        assert snapshot.servo_angle == 180
        assert _messages(device) == [{"type": "control", "buzzer_on": True, "servo_angle": 180}]
        assert _types(viewer) == ["hello", "telemetry"]

    async def test_control_ignores_wrong_types(self, pipeline: IngestPipeline) -> None:
        snapshot = pipeline.control({"buzzer_on": "yes", "servo_angle": "90"})
        assert snapshot.buzzer_on is False
        assert snapshot.servo_angle == 0

    async def test_control_rejects_non_object(self, pipeline: IngestPipeline) -> None:
        with pytest.raises(InvalidCommandError):
            pipeline.control([1])

    async def test_reset_publishes_counter(self, pipeline: IngestPipeline) -> None:
        viewer = Recorder()
        pipeline.ingest({"value": 1, "detected": True})
        pipeline.viewer_hub.subscribe(viewer)
        assert pipeline.reset() == 0
        await _drain()
        messages = _messages(viewer)
        assert messages[0]["type"] == "hello"
        assert messages[0]["detection_count"] == 1
        assert messages[1] == {"type": "counter", "detection_count": 0}

    @pytest.mark.parametrize(
        ("body", "expected"),
        [({"enabled": True}, True), ({"enabled": 0}, False), ({"enabled": "on"}, True), ({}, False)],
    )
    async def test_set_enabled_truthiness(
        self, pipeline: IngestPipeline, body: dict[str, Any], expected: bool
    ) -> None:
        viewer = Recorder()
        pipeline.viewer_hub.subscribe(viewer)
        assert pipeline.set_enabled(body) is expected
        await _drain()
        assert _messages(viewer)[1] == {"type": "enabled", "enabled": expected}

    async def test_display_override_goes_to_both_hubs(self, pipeline: IngestPipeline) -> None:
        device, viewer = Recorder(), Recorder()
        pipeline.device_hub.subscribe(device)
        pipeline.viewer_hub.subscribe(viewer)
        lines = pipeline.override_display({"lines": ["HELLO", "WORLD"]})
        await _drain()
        assert lines[:2] == ("HELLO", "WORLD")
        expected = {"type": "oled", "lines": list(lines)}
        assert _messages(device) == [expected]
        assert _messages(viewer)[1] == expected

    @pytest.mark.parametrize("body", [{}, {"lines": []}, {"lines": ["a", "b", "c", "d"]}, []])
    async def test_display_override_rejects_bad_body(
        self, pipeline: IngestPipeline, body: Any
    ) -> None:
        with pytest.raises(InvalidCommandError):
            pipeline.override_display(body)


# ---------------------------------------------------------------------------
# Readers
# ---------------------------------------------------------------------------


class TestReaders:
    async def test_chart_window_ends_now(self, pipeline: IngestPipeline, clock: FakeClock) -> None:
        pipeline.ingest({"value": 4})
        clock.advance(5)
        pipeline.ingest({"value": 6})
        points = pipeline.chart(10)
        assert len(points) == 7
        assert points[-1].t == clock.now
        assert points[-2].avg == 4.0
        assert points[-1].avg == 6.0

    async def test_histogram(self, pipeline: IngestPipeline) -> None:
        for v in (1, 1, 2, 9):
            pipeline.ingest({"value": v})
        bins = pipeline.histogram(4)
        assert [b.count for b in bins] == [3, 0, 0, 1]

    async def test_histogram_drops_samples_past_retention(
        self, pipeline: IngestPipeline, clock: FakeClock
    ) -> None:
        pipeline.ingest({"value": 5})
        clock.advance(pipeline.buffer.retention_seconds + 1)
        assert pipeline.histogram(8) == []
        assert all(p.avg is None for p in pipeline.chart(10))
        assert len(pipeline.buffer) == 0

    async def test_logs_newest_first(self, clock: FakeClock) -> None:
        pipeline = IngestPipeline(buffer=SampleBuffer(60), clock=clock)
        for v in (100, 0, 200, 0, 300):
            pipeline.ingest({"value": v, "detected": v > 0})
        events = await pipeline.logs(2)
        assert [e.sensor_value for e in events] == [300.0, 200.0]
