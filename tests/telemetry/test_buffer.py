"""Tests for the time-windowed SampleBuffer."""

from __future__ import annotations

import pytest

from magdash.telemetry.buffer import ChartPoint, HistogramBin, SampleBuffer

T0 = 1_000_000.0


# ---------------------------------------------------------------------------
# append / eviction
# ---------------------------------------------------------------------------


class TestAppend:
    def test_append_returns_sample(self) -> None:
        buf = SampleBuffer(retention_seconds=60)
        sample = buf.append(412.5, T0)
        assert sample.timestamp == T0
        assert sample.value == 412.5
        assert len(buf) == 1

    def test_append_defaults_to_wall_clock(self) -> None:
        buf = SampleBuffer()
        sample = buf.append(1.0)
        assert sample.timestamp > 0

    def test_evicts_samples_outside_window(self) -> None:
        buf = SampleBuffer(retention_seconds=60)
        buf.append(1.0, T0)
        buf.append(2.0, T0 + 30)
        buf.append(3.0, T0 + 70)
        assert [s.value for s in buf.samples()] == [2.0, 3.0]

    def test_sample_exactly_at_cutoff_is_kept(self) -> None:
        buf = SampleBuffer(retention_seconds=60)
        buf.append(1.0, T0)
        buf.append(2.0, T0 + 60)
        assert len(buf) == 2

    def test_out_of_order_insert_keeps_order(self) -> None:
        buf = SampleBuffer(retention_seconds=60)
        buf.append(1.0, T0)
        buf.append(3.0, T0 + 20)
        buf.append(2.0, T0 + 10)
        assert [s.timestamp for s in buf.samples()] == [T0, T0 + 10, T0 + 20]

    def test_never_retains_stale_samples(self) -> None:
        buf = SampleBuffer(retention_seconds=10)
        for i in range(200):
            ts = T0 + i * 0.7
            buf.append(float(i), ts)
            assert all(s.timestamp >= ts - 10 for s in buf.samples())

    def test_rejects_non_positive_retention(self) -> None:
        with pytest.raises(ValueError):
            SampleBuffer(retention_seconds=0)


class TestEvictOlderThan:
    def test_returns_count(self) -> None:
        buf = SampleBuffer(retention_seconds=1000)
        for i in range(5):
            buf.append(float(i), T0 + i)
        assert buf.evict_older_than(T0 + 3) == 3
        assert [s.value for s in buf.samples()] == [3.0, 4.0]

    def test_noop_when_oldest_is_fresh(self) -> None:
        buf = SampleBuffer(retention_seconds=1000)
        buf.append(1.0, T0)
        assert buf.evict_older_than(T0) == 0
        assert len(buf) == 1

    def test_empty_buffer(self) -> None:
        assert SampleBuffer().evict_older_than(T0) == 0


# ---------------------------------------------------------------------------
# chart_points
# ---------------------------------------------------------------------------


class TestChartPoints:
    def test_bucket_count(self) -> None:
        buf = SampleBuffer(retention_seconds=60)
        points = buf.chart_points(10, window_end=T0)
        assert len(points) == 7
        assert points[0].t == T0 - 60
        assert points[-1].t == T0

    def test_empty_buckets_have_no_average(self) -> None:
        buf = SampleBuffer(retention_seconds=60)
        points = buf.chart_points(10, window_end=T0)
        assert all(p.avg is None for p in points)

    def test_averages_per_bucket(self) -> None:
        buf = SampleBuffer(retention_seconds=60)
        end = T0 + 60
        buf.append(10.0, T0 + 1)
        buf.append(20.0, T0 + 9)
        buf.append(50.0, T0 + 25)
        points = buf.chart_points(10, window_end=end)
        assert points[0] == ChartPoint(t=T0, avg=15.0)
        assert points[1].avg is None
        assert points[2].avg == 50.0

    def test_boundary_sample_goes_to_later_bucket(self) -> None:
        buf = SampleBuffer(retention_seconds=60)
        buf.append(5.0, T0 + 10)
        points = buf.chart_points(10, window_end=T0 + 60)
        assert points[0].avg is None
        assert points[1].avg == 5.0

    def test_sample_at_window_end_is_counted(self) -> None:
        buf = SampleBuffer(retention_seconds=60)
        buf.append(7.0, T0)
        points = buf.chart_points(10, window_end=T0)
        assert points[-1].avg == 7.0

    def test_every_sample_lands_in_exactly_one_bucket(self) -> None:
        buf = SampleBuffer(retention_seconds=60)
        for i in range(61):
            buf.append(1.0, T0 + i)
        buf_points = buf.chart_points(7, window_end=T0 + 60)
        assert len(buf_points) == 60 // 7 + 1
        assert all(p.avg == 1.0 for p in buf_points)

    def test_rejects_non_positive_bucket(self) -> None:
        with pytest.raises(ValueError):
            SampleBuffer().chart_points(0)


# ---------------------------------------------------------------------------
# histogram
# ---------------------------------------------------------------------------


class TestHistogram:
    def test_empty_buffer_gives_empty_histogram(self) -> None:
        assert SampleBuffer().histogram(8) == []

    def test_counts_sum_to_sample_count(self) -> None:
        buf = SampleBuffer(retention_seconds=1000)
        for i, v in enumerate([1.0, 2.0, 2.5, 3.0, 7.0, 9.0, 10.0]):
            buf.append(v, T0 + i)
        bins = buf.histogram(4)
        assert len(bins) == 4
        assert sum(b.count for b in bins) == 7

    def test_max_value_in_last_bin(self) -> None:
        buf = SampleBuffer(retention_seconds=1000)
        buf.append(0.0, T0)
        buf.append(10.0, T0 + 1)
        assert buf.histogram(2) == [HistogramBin(0, 1), HistogramBin(1, 1)]

    def test_all_equal_values_in_first_bin(self) -> None:
        buf = SampleBuffer(retention_seconds=1000)
        for i in range(5):
            buf.append(3.3, T0 + i)
        bins = buf.histogram(8)
        assert bins[0].count == 5
        assert all(b.count == 0 for b in bins[1:])

    def test_rejects_zero_bins(self) -> None:
        with pytest.raises(ValueError):
            SampleBuffer().histogram(0)
