"""Shared fixtures for telemetry tests."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from magdash.models.config import AppSettings
from magdash.telemetry.buffer import SampleBuffer
from magdash.telemetry.pipeline import IngestPipeline

if TYPE_CHECKING:
    from pathlib import Path


class FakeClock:
    """Manually advanced epoch-seconds clock."""

    def __init__(self, now: float = 1_767_268_800.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def pipeline(clock: FakeClock) -> IngestPipeline:
    """Memory-only pipeline driven by the fake clock."""
    return IngestPipeline(buffer=SampleBuffer(retention_seconds=60), clock=clock)


@pytest.fixture()
def settings(tmp_path: Path) -> AppSettings:
    return AppSettings(data_dir=str(tmp_path), store_enabled=False)


class Recorder:
    """Async ``send`` callable that keeps everything it is given."""

    def __init__(self) -> None:
        self.sent: list[str] = []

    async def __call__(self, data: str) -> None:
        self.sent.append(data)
