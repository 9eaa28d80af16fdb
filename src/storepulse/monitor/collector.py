"""Performance metrics collector.

Aggregates rolling windows of timing samples (API calls, user interactions,
memory, page resources, custom metrics and Web Vitals), flags samples that
exceed configured thresholds as bottlenecks, and fans alerts out to
subscribers.

Samples arrive two ways:
- passively, from a ``PerformanceSource`` the collector observes after ``start()``
- actively, through ``record_api_call`` and ``record_custom_metric``

Example:
    collector = MetricsCollector(EntryBus())
    await collector.start()

    unsubscribe = collector.on_alert(lambda alert: print(alert.alert_type))
    collector.record_api_call("/api/products", "GET", start, end, status=200)

    report = collector.get_performance_report()
    await collector.stop()
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections import deque
from collections.abc import Callable, Sequence
from dataclasses import asdict, dataclass, field, replace
from typing import Any
from urllib.parse import urlsplit

from storepulse.config import Settings
from storepulse.monitor import sources
from storepulse.monitor.export import report_to_csv, report_to_json
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
    WebVital,
    now_ms,
)
from storepulse.monitor.sources import (
    EntryCallback,
    NullSource,
    PerformanceEntry,
    PerformanceSource,
    Subscription,
)
from storepulse.monitor.stats import (
    CLS_BANDS,
    FID_BANDS,
    LCP_BANDS,
    DurationStats,
    MemoryStats,
    calculate_memory_stats,
    calculate_stats,
    rate_web_vital,
)

logger = logging.getLogger(__name__)

API_SAMPLES_CAP = 50
INTERACTION_SAMPLES_CAP = 30
MEMORY_SAMPLES_CAP = 100
CUSTOM_SAMPLES_CAP = 30
RESOURCE_SAMPLES_CAP = 100
BOTTLENECKS_CAP = 50
REPORT_RESOURCES = 20
DEFAULT_CUSTOM_THRESHOLD_MS = 1000.0

AlertCallback = Callable[[Alert], Any]


def resource_type(url: str) -> str:
    """Classify a page resource by its URL."""
    path = urlsplit(url).path.lower() or url.lower()
    if ".js" in url:
        return "script"
    if ".css" in url:
        return "stylesheet"
    if path.endswith((".jpg", ".jpeg", ".png", ".gif", ".webp", ".svg")):
        return "image"
    if "/api/" in url:
        return "api"
    return "other"


@dataclass
class PerformanceReport:
    """Read-only snapshot of every derived statistic."""

    api: dict[str, DurationStats]
    interactions: dict[str, DurationStats]
    memory: MemoryStats
    web_vitals: dict[str, WebVital]
    bottlenecks: list[Bottleneck]
    navigation: NavigationTiming | None
    resources: list[ResourceSample]
    custom: dict[str, DurationStats]
    timestamp: float = field(default_factory=now_ms)
    is_monitoring: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class MetricsCollector:
    """
    Collects performance samples and detects bottlenecks.

    Construct one per application and pass it to whatever needs to record
    timings. ``start()`` attaches to the source; ``stop()`` detaches.
    ``clear_metrics()`` drops recorded data without detaching.
    """

    def __init__(
        self,
        source: PerformanceSource | None = None,
        *,
        thresholds: Thresholds | None = None,
        memory_interval_seconds: float = 30.0,
        api_patterns: Sequence[str] = ("/api/",),
    ) -> None:
        self._source: PerformanceSource = source or NullSource()
        self._thresholds = thresholds or Thresholds()
        self._memory_interval = memory_interval_seconds
        self._api_patterns = tuple(api_patterns)

        self._api: dict[str, deque[ApiSample]] = {}
        self._interactions: dict[str, deque[InteractionSample]] = {}
        self._custom: dict[str, deque[CustomSample]] = {}
        self._memory: deque[MemorySample] = deque(maxlen=MEMORY_SAMPLES_CAP)
        self._resources: deque[ResourceSample] = deque(maxlen=RESOURCE_SAMPLES_CAP)
        self._bottlenecks: deque[Bottleneck] = deque(maxlen=BOTTLENECKS_CAP)
        self._vitals: dict[str, WebVital] = {}
        self._cls_value = 0.0
        self._navigation: NavigationTiming | None = None

        # dict as an insertion-ordered set
        self._alert_callbacks: dict[AlertCallback, None] = {}
        self._subscriptions: list[Subscription] = []
        self._memory_task: asyncio.Task[None] | None = None
        self._memory_stop = asyncio.Event()
        self._monitoring = False

    @classmethod
    def from_settings(
        cls, settings: Settings, source: PerformanceSource | None = None
    ) -> MetricsCollector:
        return cls(
            source,
            thresholds=Thresholds(
                api_response_time_ms=settings.api_response_time_ms,
                memory_usage_bytes=settings.memory_usage_bytes,
                render_time_ms=settings.render_time_ms,
                interaction_delay_ms=settings.interaction_delay_ms,
                bundle_size_bytes=settings.bundle_size_bytes,
            ),
            memory_interval_seconds=settings.memory_sample_interval_seconds,
            api_patterns=settings.api_patterns,
        )

    @property
    def is_monitoring(self) -> bool:
        return self._monitoring

    @property
    def thresholds(self) -> Thresholds:
        return replace(self._thresholds)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Attach to the source. Unsupported capabilities are skipped."""
        if self._monitoring:
            return

        self._cls_value = 0.0
        self._observe(sources.NAVIGATION, self._on_navigation)
        self._observe(sources.RESOURCE, self._on_resource)
        self._observe(sources.EVENT, self._on_interaction)
        self._observe(sources.LARGEST_CONTENTFUL_PAINT, self._on_lcp)
        self._observe(sources.FIRST_INPUT, self._on_first_input)
        self._observe(sources.LAYOUT_SHIFT, self._on_layout_shift)

        try:
            existing = self._source.navigation_entries()
        except Exception as e:
            logger.debug(f"Navigation timing unavailable: {e}")
            existing = []
        if existing:
            self._record_navigation(existing[0])

        if self.sample_memory():
            self._memory_stop.clear()
            self._memory_task = asyncio.create_task(self._memory_loop())

        self._monitoring = True
        logger.info(
            "Performance monitoring started (%d observers, memory=%s)",
            len(self._subscriptions),
            self._memory_task is not None,
        )

    async def stop(self) -> None:
        """Detach every observer and stop the memory sampler."""
        for subscription in self._subscriptions:
            try:
                subscription.disconnect()
            except Exception as e:
                logger.debug(f"Observer disconnect failed: {e}")
        self._subscriptions = []

        task = self._memory_task
        self._memory_task = None
        if task is not None:
            self._memory_stop.set()
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

        if self._monitoring:
            logger.info("Performance monitoring stopped")
        self._monitoring = False

    async def restart(self) -> None:
        await self.stop()
        await self.start()

    def _observe(self, entry_type: str, handler: EntryCallback) -> None:
        try:
            subscription = self._source.observe(entry_type, self._guard(handler))
        except Exception as e:
            logger.debug(f"Failed to observe {entry_type}: {e}")
            return
        if subscription is None:
            logger.debug(f"Entry type {entry_type} not supported by source")
            return
        self._subscriptions.append(subscription)

    def _guard(self, handler: EntryCallback) -> EntryCallback:
        def _callback(entries: list[PerformanceEntry]) -> None:
            try:
                handler(entries)
            except Exception:
                logger.exception("Performance entry handler failed")

        return _callback

    async def _memory_loop(self) -> None:
        while not self._memory_stop.is_set():
            try:
                async with asyncio.timeout(self._memory_interval):
                    await self._memory_stop.wait()
            except TimeoutError:
                self.sample_memory()

    # ------------------------------------------------------------------
    # Passive recording
    # ------------------------------------------------------------------

    def _on_navigation(self, entries: list[PerformanceEntry]) -> None:
        for entry in entries:
            self._record_navigation(entry)

    def _record_navigation(self, entry: PerformanceEntry) -> None:
        self._navigation = NavigationTiming(
            dom_content_loaded=entry.dom_content_loaded_event_end
            - entry.dom_content_loaded_event_start,
            load_complete=entry.load_event_end - entry.load_event_start,
            dom_interactive=entry.dom_interactive - entry.navigation_start,
            first_paint=entry.response_end - entry.request_start,
            ttfb=entry.response_start - entry.request_start,
        )

    def _on_resource(self, entries: list[PerformanceEntry]) -> None:
        for entry in entries:
            if any(pattern in entry.name for pattern in self._api_patterns):
                self._record_api_timing(entry)
            else:
                self._resources.append(
                    ResourceSample(
                        name=entry.name,
                        resource_type=resource_type(entry.name),
                        duration_ms=entry.duration,
                        transfer_size=entry.transfer_size,
                    )
                )

    def _record_api_timing(self, entry: PerformanceEntry) -> None:
        endpoint = urlsplit(entry.name).path or entry.name
        sample = ApiSample(
            endpoint=endpoint,
            # Resource timing carries no method; manual recording overrides.
            method="GET",
            duration_ms=entry.duration,
            response_time_ms=entry.response_end - entry.request_start,
            transfer_size=entry.transfer_size,
        )
        self._append_api(sample)

    def _on_interaction(self, entries: list[PerformanceEntry]) -> None:
        for entry in entries:
            sample = InteractionSample(
                interaction_type=entry.name,
                duration_ms=entry.duration,
                start_time=entry.start_time,
                processing_start=entry.processing_start,
                processing_end=entry.processing_end,
            )
            buffer = self._interactions.setdefault(
                entry.name, deque(maxlen=INTERACTION_SAMPLES_CAP)
            )
            buffer.append(sample)
            self._check_interaction(sample)

    def _on_lcp(self, entries: list[PerformanceEntry]) -> None:
        for entry in entries:
            self._vitals["lcp"] = WebVital(
                value=entry.start_time,
                rating=rate_web_vital(entry.start_time, LCP_BANDS),
            )

    def _on_first_input(self, entries: list[PerformanceEntry]) -> None:
        for entry in entries:
            delay = entry.processing_start - entry.start_time
            self._vitals["fid"] = WebVital(
                value=delay, rating=rate_web_vital(delay, FID_BANDS)
            )

    def _on_layout_shift(self, entries: list[PerformanceEntry]) -> None:
        for entry in entries:
            if entry.had_recent_input:
                continue
            self._cls_value += entry.value
            self._vitals["cls"] = WebVital(
                value=self._cls_value,
                rating=rate_web_vital(self._cls_value, CLS_BANDS),
            )

    def sample_memory(self) -> bool:
        """Take one memory reading. Returns False when memory is unreadable."""
        try:
            reading = self._source.read_memory()
        except Exception as e:
            logger.debug(f"Memory reading failed: {e}")
            return False
        if reading is None:
            return False

        sample = MemorySample(used=reading.used, total=reading.total, limit=reading.limit)
        self._memory.append(sample)
        self._check_memory(sample)
        return True

    # ------------------------------------------------------------------
    # Active recording
    # ------------------------------------------------------------------

    def record_api_call(
        self,
        endpoint: str,
        method: str,
        start_time: float,
        end_time: float,
        *,
        transfer_size: int = 0,
        status: int = 200,
        cached: bool = False,
        retried: bool = False,
    ) -> ApiSample:
        """
        Record an API call timed by the caller.

        Args:
            endpoint: Endpoint path the samples are grouped under
            method: HTTP method
            start_time: Start timestamp in milliseconds (any monotonic base)
            end_time: End timestamp in milliseconds, same base as start_time
            transfer_size: Response size in bytes
            status: HTTP status (0 for transport failures)
            cached: Whether the response came from a cache
            retried: Whether the call needed retries

        Returns:
            The recorded sample
        """
        duration = end_time - start_time
        sample = ApiSample(
            endpoint=endpoint,
            method=method,
            duration_ms=duration,
            response_time_ms=duration,
            transfer_size=transfer_size,
            status=status,
            cached=cached,
            retried=retried,
        )
        self._append_api(sample)
        return sample

    def record_custom_metric(
        self,
        name: str,
        duration_ms: float,
        metadata: dict[str, Any] | None = None,
        *,
        threshold_ms: float | None = None,
    ) -> CustomSample:
        """Record a named timing; slower than ``threshold_ms`` (1000 ms) is a bottleneck."""
        threshold = threshold_ms if threshold_ms is not None else DEFAULT_CUSTOM_THRESHOLD_MS
        sample = CustomSample(
            name=name,
            duration_ms=duration_ms,
            threshold_ms=threshold,
            metadata=dict(metadata or {}),
        )
        buffer = self._custom.setdefault(name, deque(maxlen=CUSTOM_SAMPLES_CAP))
        buffer.append(sample)

        if duration_ms > threshold:
            bottleneck = Bottleneck(
                kind=BottleneckKind.CUSTOM_METRIC_SLOW,
                subject=name,
                duration_ms=duration_ms,
                threshold_ms=threshold,
                severity=Severity.HIGH if duration_ms > threshold * 2 else Severity.MEDIUM,
            )
            self._record_bottleneck(bottleneck, AlertType.CUSTOM_PERFORMANCE)
        return sample

    def _append_api(self, sample: ApiSample) -> None:
        buffer = self._api.setdefault(sample.endpoint, deque(maxlen=API_SAMPLES_CAP))
        buffer.append(sample)
        self._check_api(sample)

    # ------------------------------------------------------------------
    # Bottlenecks and alerts
    # ------------------------------------------------------------------

    def _check_api(self, sample: ApiSample) -> None:
        threshold = self._thresholds.api_response_time_ms
        if sample.duration_ms <= threshold:
            return
        bottleneck = Bottleneck(
            kind=BottleneckKind.API_SLOW_RESPONSE,
            subject=sample.endpoint,
            duration_ms=sample.duration_ms,
            threshold_ms=threshold,
            severity=Severity.HIGH if sample.duration_ms > threshold * 2 else Severity.MEDIUM,
        )
        self._record_bottleneck(bottleneck, AlertType.API_PERFORMANCE)

    def _check_interaction(self, sample: InteractionSample) -> None:
        threshold = self._thresholds.interaction_delay_ms
        if sample.duration_ms <= threshold:
            return
        bottleneck = Bottleneck(
            kind=BottleneckKind.INTERACTION_DELAY,
            subject=sample.interaction_type,
            duration_ms=sample.duration_ms,
            threshold_ms=threshold,
            severity=Severity.HIGH if sample.duration_ms > threshold * 3 else Severity.MEDIUM,
        )
        self._record_bottleneck(bottleneck, AlertType.INTERACTION_PERFORMANCE)

    def _check_memory(self, sample: MemorySample) -> None:
        threshold = self._thresholds.memory_usage_bytes
        if sample.used <= threshold:
            return
        alert = MemoryAlert(
            used=sample.used,
            threshold=threshold,
            percentage=(sample.used / sample.total) * 100 if sample.total else 0.0,
            severity=Severity.HIGH if sample.used > threshold * 1.5 else Severity.MEDIUM,
        )
        self._trigger_alert(AlertType.MEMORY_USAGE, alert)

    def _record_bottleneck(self, bottleneck: Bottleneck, alert_type: AlertType) -> None:
        self._bottlenecks.append(bottleneck)
        logger.debug(
            "Bottleneck %s on %s: %.1fms > %.1fms (%s)",
            bottleneck.kind.value,
            bottleneck.subject,
            bottleneck.duration_ms,
            bottleneck.threshold_ms,
            bottleneck.severity.value,
        )
        self._trigger_alert(alert_type, bottleneck)

    def _trigger_alert(
        self, alert_type: AlertType, payload: Bottleneck | MemoryAlert
    ) -> None:
        alert = Alert(alert_type=alert_type, payload=payload)
        for callback in list(self._alert_callbacks):
            try:
                callback(alert)
            except Exception:
                logger.exception("Performance alert callback failed")

    def on_alert(self, callback: AlertCallback) -> Callable[[], None]:
        """Subscribe to alerts. Returns a function that unsubscribes."""
        self._alert_callbacks[callback] = None

        def _unsubscribe() -> None:
            self._alert_callbacks.pop(callback, None)

        return _unsubscribe

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    def get_api_stats(
        self, endpoint: str | None = None
    ) -> DurationStats | dict[str, DurationStats]:
        if endpoint is not None:
            return calculate_stats(self._api.get(endpoint, ()))
        return {key: calculate_stats(samples) for key, samples in self._api.items()}

    def get_interaction_stats(
        self, interaction_type: str | None = None
    ) -> DurationStats | dict[str, DurationStats]:
        if interaction_type is not None:
            return calculate_stats(self._interactions.get(interaction_type, ()))
        return {
            key: calculate_stats(samples) for key, samples in self._interactions.items()
        }

    def get_custom_stats(
        self, name: str | None = None
    ) -> DurationStats | dict[str, DurationStats]:
        if name is not None:
            return calculate_stats(self._custom.get(name, ()))
        return {key: calculate_stats(samples) for key, samples in self._custom.items()}

    def get_memory_stats(self) -> MemoryStats:
        try:
            reading = self._source.read_memory()
        except Exception:
            reading = None
        current = reading.used if reading is not None else 0
        return calculate_memory_stats(self._memory, current=current)

    def get_web_vitals(self) -> dict[str, WebVital]:
        return dict(self._vitals)

    def get_bottlenecks(
        self,
        kind: BottleneckKind | str | None = None,
        severity: Severity | str | None = None,
    ) -> list[Bottleneck]:
        """Bottlenecks newest first, optionally filtered."""
        items = list(self._bottlenecks)
        if kind is not None:
            items = [b for b in items if b.kind == kind]
        if severity is not None:
            items = [b for b in items if b.severity == severity]
        # Stable sort: equal timestamps keep newest-appended first.
        items.reverse()
        items.sort(key=lambda b: b.captured_at_ms, reverse=True)
        return items

    def get_performance_report(self) -> PerformanceReport:
        return PerformanceReport(
            api=self.get_api_stats(),  # type: ignore[arg-type]
            interactions=self.get_interaction_stats(),  # type: ignore[arg-type]
            memory=self.get_memory_stats(),
            web_vitals=self.get_web_vitals(),
            bottlenecks=self.get_bottlenecks(),
            navigation=self._navigation,
            resources=list(self._resources)[-REPORT_RESOURCES:],
            custom=self.get_custom_stats(),  # type: ignore[arg-type]
            is_monitoring=self._monitoring,
        )

    def export_data(self, format: str = "json") -> str:
        report = self.get_performance_report().to_dict()
        if format == "json":
            return report_to_json(report)
        if format == "csv":
            return report_to_csv(report)
        raise ValueError(f"Unsupported export format: {format}")

    # ------------------------------------------------------------------
    # Configuration and reset
    # ------------------------------------------------------------------

    def update_thresholds(self, **changes: float) -> Thresholds:
        """Merge threshold changes; unknown names raise TypeError."""
        self._thresholds = replace(self._thresholds, **changes)
        return self.thresholds

    def clear_metrics(self) -> None:
        """Drop all recorded data. Observers stay attached."""
        self._api.clear()
        self._interactions.clear()
        self._custom.clear()
        self._memory.clear()
        self._resources.clear()
        self._bottlenecks.clear()
        self._vitals = {}
        self._cls_value = 0.0
        self._navigation = None
