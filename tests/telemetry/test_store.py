"""Tests for StoreMirror write-behind queue and NullStore."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock

import pytest

from magdash.api.errors import DurableStoreUnavailable
from magdash.telemetry.buffer import Sample
from magdash.telemetry.ledger import DetectionEvent
from magdash.telemetry.store import DurableStore, NullStore, StoreMirror


def _store() -> MagicMock:
    store = MagicMock(spec=DurableStore)
    store.insert_sample = AsyncMock()
    store.insert_detection = AsyncMock()
    return store


def _event(i: int = 1) -> DetectionEvent:
    return DetectionEvent(id=i, detected_at=datetime.now(UTC), sensor_value=float(i))


class TestNullStore:
    async def test_writes_vanish(self) -> None:
        store = NullStore()
        await store.insert_sample(Sample(1.0, 2.0))
        await store.insert_detection(_event())

    async def test_reads_raise(self) -> None:
        with pytest.raises(DurableStoreUnavailable):
            await NullStore().read_detections(10)


class TestStoreMirror:
    async def test_routes_items_to_store(self) -> None:
        store = _store()
        mirror = StoreMirror(store)
        mirror.start()
        sample = Sample(1.0, 2.0)
        event = _event()
        assert mirror.submit(sample)
        assert mirror.submit(event)
        await mirror.stop()

        store.insert_sample.assert_awaited_once_with(sample)
        store.insert_detection.assert_awaited_once_with(event)
        assert mirror.written_count == 2
        store.close.assert_called_once()

    async def test_full_queue_drops(self) -> None:
        mirror = StoreMirror(_store(), maxsize=2)
        assert mirror.submit(Sample(1.0, 1.0))
        assert mirror.submit(Sample(2.0, 2.0))
        assert not mirror.submit(Sample(3.0, 3.0))
        assert mirror.dropped_count == 1
        assert mirror.pending == 2

    async def test_store_failure_is_counted_not_raised(self) -> None:
        store = _store()
        store.insert_sample.side_effect = DurableStoreUnavailable("disk full")
        mirror = StoreMirror(store)
        mirror.start()
        mirror.submit(Sample(1.0, 1.0))
        mirror.submit(_event())
        await mirror.stop()
        assert mirror.failed_count == 1
        assert mirror.written_count == 1

    async def test_store_timeout_is_counted(self) -> None:
        async def _hang(item: object) -> None:
            await asyncio.sleep(10)

        store = _store()
        store.insert_sample.side_effect = _hang
        mirror = StoreMirror(store, timeout=0.02)
        mirror.start()
        mirror.submit(Sample(1.0, 1.0))
        await mirror.stop(drain_timeout=1.0)
        assert mirror.failed_count == 1

    async def test_stop_without_start_closes_store(self) -> None:
        store = _store()
        await StoreMirror(store).stop()
        store.close.assert_called_once()

    async def test_stop_gives_up_after_drain_timeout(self) -> None:
        gate = asyncio.Event()

        async def _blocked(item: object) -> None:
            await gate.wait()

        store = _store()
        store.insert_sample.side_effect = _blocked
        mirror = StoreMirror(store, timeout=5.0)
        mirror.start()
        mirror.submit(Sample(1.0, 1.0))
        mirror.submit(Sample(2.0, 2.0))
        await asyncio.sleep(0)
        await mirror.stop(drain_timeout=0.05)
        assert mirror.written_count == 0
        store.close.assert_called_once()

    async def test_stop_drains_full_queue(self, caplog: pytest.LogCaptureFixture) -> None:
        store = _store()
        mirror = StoreMirror(store, maxsize=2, timeout=1.0)
        mirror.start()
        assert mirror.submit(Sample(1.0, 1.0))
        assert mirror.submit(Sample(2.0, 2.0))
        assert not mirror.submit(Sample(3.0, 3.0))
        with caplog.at_level("WARNING", logger="magdash.telemetry.store"):
            await mirror.stop()
        assert mirror.written_count == 2
        assert mirror.pending == 0
        assert "did not drain" not in caplog.text
        store.close.assert_called_once()
