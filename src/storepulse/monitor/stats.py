"""Rolling statistics over recorded samples."""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from storepulse.monitor.samples import HasDuration, MemorySample, VitalRating

RECENT_WINDOW = 10

LCP_BANDS = (2500.0, 4000.0)
FID_BANDS = (100.0, 300.0)
CLS_BANDS = (0.1, 0.25)


@dataclass
class DurationStats:
    count: int = 0
    average: float = 0.0
    min: float = 0.0
    max: float = 0.0
    p95: float = 0.0
    p99: float = 0.0
    recent: list[Any] = field(default_factory=list)


@dataclass
class MemoryStats:
    current: int = 0
    peak: int = 0
    average: float = 0.0
    trend: str = "stable"
    history: list[MemorySample] = field(default_factory=list)


def calculate_stats(samples: Sequence[HasDuration]) -> DurationStats:
    """
    Summarize samples by duration.

    Percentiles use nearest rank: index ``floor(n * p)`` into the ascending
    durations, without interpolation.
    """
    if not samples:
        return DurationStats()

    durations = sorted(s.duration_ms for s in samples)
    n = len(durations)
    return DurationStats(
        count=n,
        average=sum(durations) / n,
        min=durations[0],
        max=durations[-1],
        p95=durations[math.floor(n * 0.95)],
        p99=durations[math.floor(n * 0.99)],
        recent=list(samples)[-RECENT_WINDOW:],
    )


def rate_web_vital(value: float, bands: tuple[float, float]) -> VitalRating:
    good, needs_improvement = bands
    if value <= good:
        return VitalRating.GOOD
    if value <= needs_improvement:
        return VitalRating.NEEDS_IMPROVEMENT
    return VitalRating.POOR


def memory_trend(values: Sequence[float]) -> str:
    """Compare the mean of the newer half of readings against the older half."""
    half = len(values) // 2
    first, second = values[:half], values[half:]
    if not first or not second:
        return "stable"
    first_avg = sum(first) / len(first)
    second_avg = sum(second) / len(second)
    if second_avg > first_avg * 1.1:
        return "increasing"
    if second_avg < first_avg * 0.9:
        return "decreasing"
    return "stable"


def calculate_memory_stats(
    samples: Sequence[MemorySample], *, current: int = 0
) -> MemoryStats:
    if not samples:
        return MemoryStats(current=current)

    recent = list(samples)[-RECENT_WINDOW:]
    used = [s.used for s in recent]
    return MemoryStats(
        current=current,
        peak=max(used),
        average=sum(used) / len(used),
        trend=memory_trend(used),
        history=recent,
    )
