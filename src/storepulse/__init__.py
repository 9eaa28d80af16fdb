"""storepulse - performance telemetry and request batching for storefront APIs."""

from storepulse._version import __version__
from storepulse.batching import DEFAULT_BATCH_RULES, BatchRule, RequestBatcher
from storepulse.config import Settings, get_settings
from storepulse.errors import (
    ApiError,
    BatchClearedError,
    BatchItemError,
    BatchRequestError,
    MissingBatchResponseError,
    NotBatchableError,
    StorePulseError,
)
from storepulse.http import ApiClient, ApiRequest, RequestDeduplicator, RequestOptions
from storepulse.monitor import (
    EntryBus,
    MetricsCollector,
    PerformanceEntry,
    PerformanceSource,
    Thresholds,
)

__all__ = [
    "DEFAULT_BATCH_RULES",
    "ApiClient",
    "ApiError",
    "ApiRequest",
    "BatchClearedError",
    "BatchItemError",
    "BatchRequestError",
    "BatchRule",
    "EntryBus",
    "MetricsCollector",
    "MissingBatchResponseError",
    "NotBatchableError",
    "PerformanceEntry",
    "PerformanceSource",
    "RequestBatcher",
    "RequestDeduplicator",
    "RequestOptions",
    "Settings",
    "StorePulseError",
    "Thresholds",
    "__version__",
    "build_client",
    "get_settings",
]


def build_client(
    settings: Settings | None = None,
    *,
    source: PerformanceSource | None = None,
    rules: tuple[BatchRule, ...] = DEFAULT_BATCH_RULES,
) -> tuple[ApiClient, RequestBatcher, MetricsCollector]:
    """Wire an API client with batching and performance recording.

    The collector is returned unstarted; call ``await collector.start()`` to
    attach it to ``source``. On shutdown: ``await batcher.destroy()``,
    ``await collector.stop()``, ``await client.close()``.

    Example:
        client, batcher, collector = storepulse.build_client()
        await collector.start()
        product = await client.get("/products/42")
    """
    settings = settings or get_settings()
    collector = MetricsCollector.from_settings(settings, source)
    client = ApiClient(
        settings.api_url,
        api_key=settings.api_key,
        timeout_seconds=settings.request_timeout_seconds,
        collector=collector,
        deduplicator=RequestDeduplicator(strategy=settings.dedupe_strategy),
    )
    batcher = RequestBatcher.from_settings(client, settings, rules=rules)
    client.use_batcher(batcher)
    return client, batcher, collector
