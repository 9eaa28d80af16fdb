"""Performance telemetry: samples, statistics and the metrics collector."""

from storepulse.monitor.collector import MetricsCollector, PerformanceReport
from storepulse.monitor.samples import (
    Alert,
    AlertType,
    ApiSample,
    Bottleneck,
    BottleneckKind,
    CustomSample,
    InteractionSample,
    MemoryAlert,
    MemorySample,
    NavigationTiming,
    ResourceSample,
    Severity,
    Thresholds,
    VitalRating,
    WebVital,
)
from storepulse.monitor.sources import (
    EntryBus,
    MemoryReading,
    NullSource,
    PerformanceEntry,
    PerformanceSource,
)
from storepulse.monitor.stats import DurationStats, MemoryStats, calculate_stats

__all__ = [
    "Alert",
    "AlertType",
    "ApiSample",
    "Bottleneck",
    "BottleneckKind",
    "CustomSample",
    "DurationStats",
    "EntryBus",
    "InteractionSample",
    "MemoryAlert",
    "MemoryReading",
    "MemorySample",
    "MemoryStats",
    "MetricsCollector",
    "NavigationTiming",
    "NullSource",
    "PerformanceEntry",
    "PerformanceReport",
    "PerformanceSource",
    "ResourceSample",
    "Severity",
    "Thresholds",
    "VitalRating",
    "WebVital",
    "calculate_stats",
]
