"""Bounded, time-windowed buffer of raw sensor samples.

Holds the last ``retention_seconds`` of readings and derives the two summary
views served to the dashboard: a bucketed average series and a histogram over
the current value range.

Eviction is batched: nothing is trimmed until the oldest sample is verifiably
older than the cutoff, and then the whole stale prefix goes in one slice.
"""

from __future__ import annotations

import bisect
import logging
import math
import time
from dataclasses import dataclass

logger = logging.getLogger(__name__)

DEFAULT_RETENTION_SECONDS = 60 * 60.0


@dataclass(frozen=True, slots=True)
class Sample:
    """A single reading, stamped with the ingest time (epoch seconds)."""

    timestamp: float
    value: float


@dataclass(frozen=True, slots=True)
class ChartPoint:
    """Average of the samples in ``[t, t + bucket_seconds)``; ``None`` if empty."""

    t: float
    avg: float | None


@dataclass(frozen=True, slots=True)
class HistogramBin:
    i: int
    count: int


class SampleBuffer:
    """Time-ordered sample store with a fixed retention window.

    Not thread-safe: owned by the ingest pipeline and only touched from the
    event loop.
    """

    def __init__(self, retention_seconds: float = DEFAULT_RETENTION_SECONDS) -> None:
        if retention_seconds <= 0:
            raise ValueError("retention_seconds must be positive")
        self._retention = float(retention_seconds)
        self._samples: list[Sample] = []
        # Parallel list of timestamps so eviction and out-of-order inserts
        # can bisect without building a key list each time.
        self._times: list[float] = []

    @property
    def retention_seconds(self) -> float:
        return self._retention

    def __len__(self) -> int:
        return len(self._samples)

    def samples(self) -> list[Sample]:
        """Return a copy of the buffered samples, oldest first."""
        return list(self._samples)

    def append(self, value: float, timestamp: float | None = None) -> Sample:
        """Store a reading and evict anything older than the retention window."""
        ts = time.time() if timestamp is None else float(timestamp)
        sample = Sample(timestamp=ts, value=float(value))

        if not self._times or ts >= self._times[-1]:
            self._times.append(ts)
            self._samples.append(sample)
        else:
            idx = bisect.bisect_right(self._times, ts)
            self._times.insert(idx, ts)
            self._samples.insert(idx, sample)

        self.evict_older_than(ts - self._retention)
        return sample

    def evict_older_than(self, cutoff: float) -> int:
        """Drop every sample stamped before *cutoff*.  Returns the number dropped."""
        if not self._times or self._times[0] >= cutoff:
            return 0
        idx = bisect.bisect_left(self._times, cutoff)
        del self._times[:idx]
        del self._samples[:idx]
        logger.debug("Evicted %d samples older than %.3f", idx, cutoff)
        return idx

    def chart_points(
        self,
        bucket_seconds: float = 10.0,
        window_end: float | None = None,
    ) -> list[ChartPoint]:
        """Average the retention window into fixed-width buckets.

        Bucket ``i`` covers ``[start + i*step, start + (i+1)*step)`` where
        ``start = window_end - retention``.  A sample exactly on a boundary
        lands in the later bucket.  One extra trailing bucket is emitted so a
        sample stamped exactly ``window_end`` is still counted.
        """
        if bucket_seconds <= 0:
            raise ValueError("bucket_seconds must be positive")

        end = time.time() if window_end is None else float(window_end)
        start = end - self._retention
        step = float(bucket_seconds)
        count = math.floor(self._retention / step) + 1

        sums = [0.0] * count
        hits = [0] * count
        lo = bisect.bisect_left(self._times, start)
        hi = bisect.bisect_right(self._times, end)
        for sample in self._samples[lo:hi]:
            idx = math.floor((sample.timestamp - start) / step)
            if idx >= count:
                continue
            sums[idx] += sample.value
            hits[idx] += 1

        return [
            ChartPoint(t=start + i * step, avg=(sums[i] / hits[i]) if hits[i] else None)
            for i in range(count)
        ]

    def histogram(self, bin_count: int = 8) -> list[HistogramBin]:
        """Count buffered values into *bin_count* equal-width bins over min..max.

        When every value is identical the whole mass lands in bin 0.  An
        empty buffer yields an empty list.
        """
        if bin_count < 1:
            raise ValueError("bin_count must be at least 1")
        if not self._samples:
            return []

        values = [s.value for s in self._samples]
        low = min(values)
        high = max(values)
        counts = [0] * bin_count

        if low == high:
            counts[0] = len(values)
        else:
            span = high - low
            for v in values:
                idx = math.floor((v - low) / span * bin_count)
                if idx >= bin_count:
                    idx = bin_count - 1
                counts[idx] += 1

        return [HistogramBin(i=i, count=c) for i, c in enumerate(counts)]
