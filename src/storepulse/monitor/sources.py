"""Performance entry sources consumed by the metrics collector.

A source is the collector's only view of the runtime. Each capability may be
missing: ``observe`` returns ``None`` for entry types it cannot deliver and
``read_memory`` returns ``None`` when memory cannot be measured. The collector
treats ``None`` as "collect less" rather than an error.

Example:
    bus = EntryBus()
    collector = MetricsCollector(bus)
    await collector.start()

    # From an HTTP middleware, render loop, etc.
    bus.emit(PerformanceEntry(name="click", entry_type="event", duration=140.0))
"""

from __future__ import annotations

import logging
import sys
import tracemalloc
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

logger = logging.getLogger(__name__)

NAVIGATION = "navigation"
RESOURCE = "resource"
EVENT = "event"
LARGEST_CONTENTFUL_PAINT = "largest-contentful-paint"
FIRST_INPUT = "first-input"
LAYOUT_SHIFT = "layout-shift"


@dataclass
class PerformanceEntry:
    """A timing entry. Fields that do not apply to an entry type stay at 0."""

    name: str
    entry_type: str
    start_time: float = 0.0
    duration: float = 0.0
    # resource / navigation
    request_start: float = 0.0
    response_start: float = 0.0
    response_end: float = 0.0
    transfer_size: int = 0
    navigation_start: float = 0.0
    dom_interactive: float = 0.0
    dom_content_loaded_event_start: float = 0.0
    dom_content_loaded_event_end: float = 0.0
    load_event_start: float = 0.0
    load_event_end: float = 0.0
    # event / first-input
    processing_start: float = 0.0
    processing_end: float = 0.0
    # layout-shift
    value: float = 0.0
    had_recent_input: bool = False


@dataclass
class MemoryReading:
    used: int
    total: int
    limit: int


EntryCallback = Callable[[list[PerformanceEntry]], None]


class Subscription(Protocol):
    def disconnect(self) -> None: ...


class PerformanceSource(Protocol):
    def observe(
        self, entry_type: str, callback: EntryCallback
    ) -> Subscription | None: ...

    def navigation_entries(self) -> list[PerformanceEntry]: ...

    def read_memory(self) -> MemoryReading | None: ...


class NullSource:
    """A runtime with no performance facilities."""

    def observe(self, entry_type: str, callback: EntryCallback) -> None:
        return None

    def navigation_entries(self) -> list[PerformanceEntry]:
        return []

    def read_memory(self) -> None:
        return None


class _BusSubscription:
    def __init__(self, bus: EntryBus, entry_type: str, callback: EntryCallback) -> None:
        self._bus = bus
        self._entry_type = entry_type
        self._callback = callback
        self.active = True

    def deliver(self, entries: list[PerformanceEntry]) -> None:
        if self.active:
            self._callback(entries)

    def disconnect(self) -> None:
        if not self.active:
            return
        self.active = False
        self._bus._remove(self._entry_type, self)


def _process_memory() -> MemoryReading | None:
    """Traced heap when tracemalloc is running, else peak RSS, else nothing."""
    if tracemalloc.is_tracing():
        current, peak = tracemalloc.get_traced_memory()
        return MemoryReading(used=current, total=peak, limit=0)
    try:
        import resource
    except ImportError:
        return None
    peak_rss = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
    # ru_maxrss is bytes on macOS, kilobytes elsewhere.
    used = peak_rss if sys.platform == "darwin" else peak_rss * 1024
    return MemoryReading(used=used, total=used, limit=0)


class EntryBus:
    """
    In-process performance source.

    Producers call ``emit``/``emit_many``; observers registered through
    ``observe`` receive the entries synchronously. Entry types listed in
    ``supported`` (all types when ``None``) can be observed; others return
    ``None`` from ``observe``.
    """

    def __init__(
        self,
        *,
        supported: set[str] | None = None,
        memory_reader: Callable[[], MemoryReading | None] | None = _process_memory,
    ) -> None:
        self._supported = supported
        self._memory_reader = memory_reader
        self._subscriptions: dict[str, list[_BusSubscription]] = {}
        self._navigation: list[PerformanceEntry] = []

    def observe(
        self, entry_type: str, callback: EntryCallback
    ) -> _BusSubscription | None:
        if self._supported is not None and entry_type not in self._supported:
            return None
        subscription = _BusSubscription(self, entry_type, callback)
        self._subscriptions.setdefault(entry_type, []).append(subscription)
        return subscription

    def subscriber_count(self, entry_type: str) -> int:
        return len(self._subscriptions.get(entry_type, []))

    def emit(self, entry: PerformanceEntry) -> None:
        self.emit_many([entry])

    def emit_many(self, entries: list[PerformanceEntry]) -> None:
        by_type: dict[str, list[PerformanceEntry]] = {}
        for entry in entries:
            if entry.entry_type == NAVIGATION:
                self._navigation.append(entry)
            by_type.setdefault(entry.entry_type, []).append(entry)

        for entry_type, batch in by_type.items():
            for subscription in list(self._subscriptions.get(entry_type, [])):
                try:
                    subscription.deliver(batch)
                except Exception as e:
                    logger.warning(
                        f"Performance observer for '{entry_type}' failed: {e}",
                        exc_info=True,
                    )

    def navigation_entries(self) -> list[PerformanceEntry]:
        return list(self._navigation)

    def read_memory(self) -> MemoryReading | None:
        if self._memory_reader is None:
            return None
        return self._memory_reader()

    def _remove(self, entry_type: str, subscription: _BusSubscription) -> None:
        subscriptions = self._subscriptions.get(entry_type, [])
        if subscription in subscriptions:
            subscriptions.remove(subscription)
