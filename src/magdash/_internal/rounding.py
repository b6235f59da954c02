"""Rounding helpers matching the device firmware and dashboard."""

from __future__ import annotations

import math


def js_round(value: float) -> int:
    """Round half toward positive infinity, like JavaScript's ``Math.round``."""
    return math.floor(value + 0.5)


def clamp_angle(angle: float, low: int = 0, high: int = 180) -> int:
    """Floor *angle* to an integer and clamp it to ``[low, high]``."""
    return max(low, min(high, math.floor(angle)))
