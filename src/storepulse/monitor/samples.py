"""Sample, bottleneck and alert types recorded by the metrics collector."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Protocol


def now_ms() -> float:
    """Wall clock in epoch milliseconds."""
    return time.time() * 1000


class HasDuration(Protocol):
    @property
    def duration_ms(self) -> float: ...


class Severity(StrEnum):
    MEDIUM = "medium"
    HIGH = "high"


class BottleneckKind(StrEnum):
    API_SLOW_RESPONSE = "api_slow_response"
    INTERACTION_DELAY = "interaction_delay"
    CUSTOM_METRIC_SLOW = "custom_metric_slow"


class AlertType(StrEnum):
    API_PERFORMANCE = "api_performance"
    INTERACTION_PERFORMANCE = "interaction_performance"
    CUSTOM_PERFORMANCE = "custom_performance"
    MEMORY_USAGE = "memory_usage"


class VitalRating(StrEnum):
    GOOD = "good"
    NEEDS_IMPROVEMENT = "needs-improvement"
    POOR = "poor"


@dataclass
class ApiSample:
    """One API call, from resource timing or manual instrumentation."""

    endpoint: str
    method: str
    duration_ms: float
    response_time_ms: float
    transfer_size: int = 0
    status: int = 200
    cached: bool = False
    retried: bool = False
    captured_at_ms: float = field(default_factory=now_ms)


@dataclass
class InteractionSample:
    interaction_type: str
    duration_ms: float
    start_time: float
    processing_start: float
    processing_end: float
    captured_at_ms: float = field(default_factory=now_ms)


@dataclass
class MemorySample:
    used: int
    total: int
    limit: int
    captured_at_ms: float = field(default_factory=now_ms)


@dataclass
class CustomSample:
    name: str
    duration_ms: float
    threshold_ms: float
    metadata: dict[str, Any] = field(default_factory=dict)
    captured_at_ms: float = field(default_factory=now_ms)


@dataclass
class ResourceSample:
    name: str
    resource_type: str
    duration_ms: float
    transfer_size: int = 0
    captured_at_ms: float = field(default_factory=now_ms)


@dataclass
class NavigationTiming:
    dom_content_loaded: float
    load_complete: float
    dom_interactive: float
    first_paint: float
    ttfb: float
    captured_at_ms: float = field(default_factory=now_ms)


@dataclass
class WebVital:
    value: float
    rating: VitalRating
    captured_at_ms: float = field(default_factory=now_ms)


@dataclass
class Bottleneck:
    """A sample whose duration exceeded its threshold."""

    kind: BottleneckKind
    subject: str  # endpoint, interaction type or custom metric name
    duration_ms: float
    threshold_ms: float
    severity: Severity
    captured_at_ms: float = field(default_factory=now_ms)


@dataclass
class MemoryAlert:
    used: int
    threshold: int
    percentage: float
    severity: Severity
    kind: str = "memory_usage_high"
    captured_at_ms: float = field(default_factory=now_ms)


@dataclass
class Alert:
    """Delivered to every ``on_alert`` subscriber."""

    alert_type: AlertType
    payload: Bottleneck | MemoryAlert
    captured_at_ms: float = field(default_factory=now_ms)


@dataclass
class Thresholds:
    api_response_time_ms: float = 2000.0
    memory_usage_bytes: int = 100 * 1024 * 1024
    render_time_ms: float = 16.0  # one frame at 60fps
    interaction_delay_ms: float = 100.0
    bundle_size_bytes: int = 2 * 1024 * 1024
