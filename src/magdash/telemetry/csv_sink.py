"""CSV-backed durable store for samples and detection events.

Two append-only files live under the data directory::

    signal.csv        timestamp,value
                      1767268495.123,412.5
    detections.csv    id,detected_at,sensor_value
                      1767268495123,2026-01-01T12:34:55.123000+00:00,812.0

Files are opened lazily in append mode; the header is written only when a
file is created.  Blocking file IO runs in a worker thread so the event loop
never waits on the disk.
"""

from __future__ import annotations

import asyncio
import csv
import logging
import threading
from collections import deque
from datetime import datetime
from pathlib import Path
from typing import IO, TYPE_CHECKING, Any

from magdash.api.errors import DurableStoreUnavailable
from magdash.telemetry.ledger import DetectionEvent
from magdash.telemetry.store import DurableStore

if TYPE_CHECKING:
    from magdash.telemetry.buffer import Sample

logger = logging.getLogger(__name__)

SIGNAL_FILE = "signal.csv"
DETECTIONS_FILE = "detections.csv"

_SIGNAL_COLUMNS = ("timestamp", "value")
_DETECTION_COLUMNS = ("id", "detected_at", "sensor_value")

# Flush to disk every N rows for crash safety.
_FLUSH_INTERVAL = 10


def resolve_data_dir(data_dir: str | Path | None = None) -> Path:
    """Expand and create the data directory (default ``~/.config/magdash/data``)."""
    if data_dir is None:
        path = Path.home() / ".config" / "magdash" / "data"
    else:
        path = Path(data_dir).expanduser()
    path.mkdir(parents=True, exist_ok=True)
    return path


class _AppendLog:
    """One lazily opened, append-only CSV file."""

    def __init__(self, path: Path, columns: tuple[str, ...]) -> None:
        self.path = path
        self._columns = columns
        self._fh: IO[str] | None = None
        self._writer: Any = None
        self._since_flush = 0
        self.row_count = 0

    def write(self, row: tuple[object, ...]) -> None:
        if self._fh is None:
            self._open()
        assert self._writer is not None
        self._writer.writerow(row)
        self.row_count += 1
        self._since_flush += 1
        if self._since_flush >= _FLUSH_INTERVAL:
            self.flush()

    def flush(self) -> None:
        if self._fh is not None:
            self._fh.flush()
            self._since_flush = 0

    def close(self) -> None:
        if self._fh is not None:
            self.flush()
            self._fh.close()
            self._fh = None
            self._writer = None

    def _open(self) -> None:
        is_new = not self.path.exists() or self.path.stat().st_size == 0
        self._fh = open(self.path, "a", newline="", encoding="utf-8")  # noqa: SIM115
        self._writer = csv.writer(self._fh)
        if is_new:
            self._writer.writerow(self._columns)


class CSVStore(DurableStore):
    """Durable store that appends CSV rows under *directory*.

    Parameters:
        directory: Where ``signal.csv`` and ``detections.csv`` live.
        record_samples: Set ``False`` to keep only the detection log.
    """

    def __init__(self, directory: Path, *, record_samples: bool = True) -> None:
        self._dir = directory
        self._record_samples = record_samples
        self._signal = _AppendLog(directory / SIGNAL_FILE, _SIGNAL_COLUMNS)
        self._detections = _AppendLog(directory / DETECTIONS_FILE, _DETECTION_COLUMNS)
        self._lock = threading.Lock()

    # -- Properties -----------------------------------------------------------

    @property
    def directory(self) -> Path:
        return self._dir

    @property
    def sample_count(self) -> int:
        """Samples written by this instance."""
        return self._signal.row_count

    @property
    def detection_count(self) -> int:
        """Detections written by this instance."""
        return self._detections.row_count

    # -- DurableStore ---------------------------------------------------------

    async def insert_sample(self, sample: Sample) -> None:
        if not self._record_samples:
            return
        await asyncio.to_thread(self._write, self._signal, (f"{sample.timestamp:.3f}", sample.value))

    async def insert_detection(self, event: DetectionEvent) -> None:
        row = (event.id, event.detected_at.isoformat(), event.sensor_value)
        await asyncio.to_thread(self._write, self._detections, row)
        # Detections are rare; make them visible to readers straight away.
        await asyncio.to_thread(self._flush, self._detections)

    async def read_detections(self, limit: int) -> list[DetectionEvent]:
        return await asyncio.to_thread(self._read_detections, limit)

    def close(self) -> None:
        with self._lock:
            self._signal.close()
            self._detections.close()

    # -- Internals ------------------------------------------------------------

    def _write(self, log: _AppendLog, row: tuple[object, ...]) -> None:
        try:
            with self._lock:
                log.write(row)
        except OSError as exc:
            raise DurableStoreUnavailable(f"cannot write {log.path}: {exc}") from exc

    def _flush(self, log: _AppendLog) -> None:
        with self._lock:
            log.flush()

    def _read_detections(self, limit: int) -> list[DetectionEvent]:
        path = self._detections.path
        if not path.exists():
            return []
        tail: deque[dict[str, str]] = deque(maxlen=max(limit, 0))
        try:
            with self._lock, open(path, newline="", encoding="utf-8") as f:
                for row in csv.DictReader(f):
                    tail.append(row)
        except OSError as exc:
            raise DurableStoreUnavailable(f"cannot read {path}: {exc}") from exc

        events: list[DetectionEvent] = []
        for row in reversed(tail):
            try:
                events.append(
                    DetectionEvent(
                        id=int(row["id"]),
                        detected_at=datetime.fromisoformat(row["detected_at"]),
                        sensor_value=float(row["sensor_value"]),
                    )
                )
            except (KeyError, TypeError, ValueError):
                logger.debug("Skipping unreadable detection row: %r", row)
        return events
