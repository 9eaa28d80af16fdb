"""Request batcher for read endpoints.

Eligible GET requests are grouped by ``METHOD:pattern`` and sent as a single
POST to the rule's batch endpoint. A batch is dispatched when it reaches its
size cap, or when no new request has joined it for the rule's timeout
(debounce: every arrival re-arms the timer).

A batch leaves the pending map before its POST is awaited, so requests that
arrive during an in-flight dispatch start a new batch under the same key.

Example:
    batcher = RequestBatcher(client)
    product = await batcher.execute_with_batching("/products/42")
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

from storepulse.batching.rules import (
    DEFAULT_BATCH_RULES,
    BatchRule,
    match_rule,
    overlapping_patterns,
)
from storepulse.batching.wire import (
    BatchRequestEnvelope,
    BatchRequestItem,
    BatchResponseEnvelope,
)
from storepulse.config import Settings
from storepulse.errors import (
    BatchClearedError,
    BatchItemError,
    BatchRequestError,
    MissingBatchResponseError,
    NotBatchableError,
)
from storepulse.http.models import DIRECT, RAW, ApiRequest, RequestOptions

logger = logging.getLogger(__name__)


class BatchClient(Protocol):
    async def post(
        self, endpoint: str, payload: Any, *, options: RequestOptions = ...
    ) -> Any: ...

    async def request(
        self,
        endpoint: str,
        request: ApiRequest | None = None,
        *,
        options: RequestOptions = ...,
    ) -> Any: ...


def _now_ms() -> float:
    return time.time() * 1000


@dataclass
class PendingRequest:
    id: str
    endpoint: str
    request: ApiRequest
    future: asyncio.Future[Any]
    enqueued_at_ms: float = field(default_factory=_now_ms)


@dataclass
class Batch:
    """Requests waiting to be sent together, plus their debounce timer."""

    key: str
    rule: BatchRule
    requests: list[PendingRequest] = field(default_factory=list)
    timer: asyncio.TimerHandle | None = None
    created_at_ms: float = field(default_factory=_now_ms)

    def cancel_timer(self) -> None:
        if self.timer is not None:
            self.timer.cancel()
            self.timer = None


@dataclass
class BatchStats:
    active_batches: int
    total_pending_requests: int
    oldest_batch_age_ms: float | None
    batch_size_distribution: dict[int, int]
    average_batch_size: float


def _error_message(error: Any) -> str:
    # Servers report item errors as strings or as {"message": ...} objects.
    if isinstance(error, dict):
        error = error.get("message") or error.get("error")
    if not error:
        return "Batch request failed"
    return error if isinstance(error, str) else str(error)


def _settle(
    future: asyncio.Future[Any],
    *,
    result: Any = None,
    error: Exception | None = None,
) -> None:
    # The caller may have given up on (cancelled) its future.
    if future.done():
        return
    if error is not None:
        future.set_exception(error)
    else:
        future.set_result(result)


class RequestBatcher:
    """
    Coalesces concurrent GET requests to configured endpoints.

    Construct one per API client; ``destroy()`` on teardown.
    """

    def __init__(
        self,
        client: BatchClient,
        *,
        rules: Sequence[BatchRule] = DEFAULT_BATCH_RULES,
        batch_size: int = 10,
        batch_timeout_ms: float = 100.0,
    ) -> None:
        """
        Initialize the batcher.

        Args:
            client: HTTP client used for batch POSTs and non-batched requests
            rules: Batchable endpoint patterns, matched first-wins in order
            batch_size: Size cap for rules without ``max_batch_size``
            batch_timeout_ms: Debounce window for rules without ``timeout_ms``
        """
        self._client = client
        self._rules = tuple(rules)
        self._batch_size = batch_size
        self._batch_timeout_ms = batch_timeout_ms
        self._batches: dict[str, Batch] = {}
        self._dispatches: set[asyncio.Task[None]] = set()

        for earlier, later in overlapping_patterns(self._rules):
            logger.warning(
                f"Batch patterns '{earlier}' and '{later}' overlap; "
                f"endpoints matching both route to '{earlier}'"
            )

    @classmethod
    def from_settings(
        cls,
        client: BatchClient,
        settings: Settings,
        *,
        rules: Sequence[BatchRule] = DEFAULT_BATCH_RULES,
    ) -> RequestBatcher:
        return cls(
            client,
            rules=rules,
            batch_size=settings.batch_size,
            batch_timeout_ms=settings.batch_timeout_ms,
        )

    @property
    def rules(self) -> tuple[BatchRule, ...]:
        return self._rules

    def is_batchable(self, endpoint: str) -> bool:
        return match_rule(self._rules, endpoint) is not None

    def get_batch_config(self, endpoint: str) -> BatchRule | None:
        return match_rule(self._rules, endpoint)

    def add_to_batch(
        self,
        endpoint: str,
        request: ApiRequest,
        future: asyncio.Future[Any],
    ) -> str:
        """
        Queue a request; ``future`` is settled when its batch is dispatched.

        Must be called from a running event loop.

        Returns:
            The generated request id

        Raises:
            NotBatchableError: No rule matches the endpoint
        """
        rule = match_rule(self._rules, endpoint)
        if rule is None:
            raise NotBatchableError(endpoint)

        key = f"{request.method}:{rule.pattern}"
        batch = self._batches.get(key)
        if batch is None:
            batch = Batch(key=key, rule=rule)
            self._batches[key] = batch

        request_id = f"batch_req_{uuid.uuid4().hex}"
        batch.requests.append(
            PendingRequest(
                id=request_id,
                endpoint=endpoint,
                request=request,
                future=future,
            )
        )

        max_size = rule.max_batch_size or self._batch_size
        execute_now = len(batch.requests) >= max_size
        if execute_now:
            self._spawn_dispatch(self._detach(key))
        else:
            timeout_ms = rule.timeout_ms or self._batch_timeout_ms
            batch.cancel_timer()
            batch.timer = asyncio.get_running_loop().call_later(
                timeout_ms / 1000, self._on_timer, key, batch
            )

        logger.debug(
            "Request %s added to batch %s (size=%d, execute_now=%s)",
            request_id,
            key,
            len(batch.requests),
            execute_now,
        )
        return request_id

    def _on_timer(self, key: str, batch: Batch) -> None:
        # A timer that fires after its batch was dispatched or cleared is stale.
        if self._batches.get(key) is not batch:
            return
        batch.timer = None
        self._spawn_dispatch(self._detach(key))

    def _detach(self, key: str) -> Batch | None:
        """Remove a batch from the pending map and stop its timer."""
        batch = self._batches.pop(key, None)
        if batch is not None:
            batch.cancel_timer()
        return batch

    def _spawn_dispatch(self, batch: Batch | None) -> None:
        if batch is None:
            return
        task = asyncio.create_task(self._dispatch(batch))
        self._dispatches.add(task)
        task.add_done_callback(self._dispatches.discard)

    async def execute_batch(self, batch_key: str) -> None:
        """Dispatch one pending batch now. Failures settle futures, never raise."""
        batch = self._detach(batch_key)
        if batch is None:
            return
        await self._dispatch(batch)

    async def _dispatch(self, batch: Batch) -> None:
        requests = batch.requests
        if not requests:
            return

        logger.debug(
            "Executing batch %s: %d requests -> %s",
            batch.key,
            len(requests),
            batch.rule.batch_endpoint,
        )

        try:
            envelope = BatchRequestEnvelope(
                requests=[
                    BatchRequestItem(
                        id=pending.id,
                        method=pending.request.method,
                        endpoint=pending.endpoint,
                        params=pending.request.params,
                        data=pending.request.data,
                        headers=pending.request.headers,
                    )
                    for pending in requests
                ]
            )
            raw = await self._client.post(
                batch.rule.batch_endpoint,
                envelope.to_payload(),
                options=RAW,
            )
            response = BatchResponseEnvelope.model_validate(raw or {})
        except Exception as e:
            logger.warning(
                f"Batch {batch.key} failed ({len(requests)} requests): {e}",
                extra={
                    "batch_key": batch.key,
                    "batch_endpoint": batch.rule.batch_endpoint,
                    "batch_size": len(requests),
                },
            )
            for pending in requests:
                error = BatchRequestError(f"Batch request failed: {e}")
                error.__cause__ = e
                _settle(pending.future, error=error)
            return

        self._process_response(requests, response)

    def _process_response(
        self, requests: list[PendingRequest], response: BatchResponseEnvelope
    ) -> None:
        by_id = {item.id: item for item in response.responses}
        succeeded = 0

        for pending in requests:
            item = by_id.get(pending.id)
            if item is None:
                _settle(pending.future, error=MissingBatchResponseError(pending.id))
            elif item.success:
                succeeded += 1
                _settle(pending.future, result=item.data)
            else:
                _settle(
                    pending.future,
                    error=BatchItemError(
                        _error_message(item.error),
                        status=item.status,
                        code=item.code,
                    ),
                )

        logger.debug(
            "Batch processed: %d requests, %d succeeded, %d failed",
            len(requests),
            succeeded,
            len(requests) - succeeded,
        )

    async def execute_with_batching(
        self, endpoint: str, request: ApiRequest | None = None
    ) -> Any:
        """Queue batchable GETs; send everything else straight through the client."""
        request = request or ApiRequest()
        if request.method != "GET" or not self.is_batchable(endpoint):
            return await self._client.request(endpoint, request, options=DIRECT)

        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self.add_to_batch(endpoint, request, future)
        return await future

    async def flush_all(self) -> None:
        """Dispatch every pending batch now and wait for the results."""
        batches = [self._detach(key) for key in list(self._batches)]
        if batches:
            logger.debug(f"Flushing {len(batches)} batches")
        await asyncio.gather(*(self._dispatch(b) for b in batches if b is not None))

    def clear(self) -> None:
        """Discard every pending batch, rejecting its requests without sending."""
        batches = list(self._batches.values())
        self._batches.clear()
        for batch in batches:
            batch.cancel_timer()
            for pending in batch.requests:
                _settle(pending.future, error=BatchClearedError())
        if batches:
            logger.debug(f"Cleared {len(batches)} batches")

    def get_stats(self) -> BatchStats:
        batches = list(self._batches.values())
        sizes = [len(b.requests) for b in batches]
        distribution: dict[int, int] = {}
        for size in sizes:
            distribution[size] = distribution.get(size, 0) + 1

        oldest_age = None
        if batches:
            oldest_age = _now_ms() - min(b.created_at_ms for b in batches)

        return BatchStats(
            active_batches=len(batches),
            total_pending_requests=sum(sizes),
            oldest_batch_age_ms=oldest_age,
            batch_size_distribution=distribution,
            average_batch_size=sum(sizes) / len(sizes) if sizes else 0.0,
        )

    async def destroy(self) -> None:
        """Clear pending batches and wait for in-flight dispatches to settle."""
        self.clear()
        if self._dispatches:
            await asyncio.gather(*list(self._dispatches), return_exceptions=True)
