"""Telemetry core: live state, sample buffer, detection log and fan-out."""

from __future__ import annotations

from magdash.telemetry.buffer import ChartPoint, HistogramBin, Sample, SampleBuffer
from magdash.telemetry.csv_sink import CSVStore
from magdash.telemetry.hub import BroadcastHub, Subscription
from magdash.telemetry.ledger import DetectionEvent, DetectionLedger
from magdash.telemetry.pipeline import IngestPipeline
from magdash.telemetry.server import build_pipeline, create_app
from magdash.telemetry.state import IngestResult, StatusView, TelemetryState
from magdash.telemetry.store import DurableStore, NullStore, StoreMirror

__all__ = [
    "BroadcastHub",
    "CSVStore",
    "ChartPoint",
    "DetectionEvent",
    "DetectionLedger",
    "DurableStore",
    "HistogramBin",
    "IngestPipeline",
    "IngestResult",
    "NullStore",
    "Sample",
    "SampleBuffer",
    "StatusView",
    "StoreMirror",
    "Subscription",
    "TelemetryState",
    "build_pipeline",
    "create_app",
]
