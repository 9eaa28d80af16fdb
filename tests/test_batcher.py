from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, cast

import pytest
from _fixtures.runtime import wait_until
from storepulse.batching.batcher import RequestBatcher
from storepulse.batching.rules import DEFAULT_BATCH_RULES, BatchRule
from storepulse.config import Settings
from storepulse.errors import (
    ApiError,
    BatchClearedError,
    BatchItemError,
    BatchRequestError,
    MissingBatchResponseError,
    NotBatchableError,
)
from storepulse.http.models import DIRECT, RAW, ApiRequest, RequestOptions

Responder = Callable[[str, dict[str, Any]], Awaitable[Any]]


async def _echo(endpoint: str, payload: dict[str, Any]) -> dict[str, Any]:
    return {
        "responses": [
            {"id": item["id"], "success": True, "data": {"endpoint": item["endpoint"]}}
            for item in payload["requests"]
        ]
    }


class _ClientStub:
    def __init__(self, responder: Responder = _echo) -> None:
        self.responder = responder
        self.posts: list[tuple[str, dict[str, Any], RequestOptions]] = []
        self.requests: list[tuple[str, ApiRequest | None, RequestOptions]] = []

    async def post(
        self, endpoint: str, payload: Any, *, options: RequestOptions = RAW
    ) -> Any:
        self.posts.append((endpoint, payload, options))
        return await self.responder(endpoint, payload)

    async def request(
        self,
        endpoint: str,
        request: ApiRequest | None = None,
        *,
        options: RequestOptions = DIRECT,
    ) -> Any:
        self.requests.append((endpoint, request, options))
        return {"direct": endpoint}


def _rules(max_size: int = 5, timeout_ms: float = 20) -> tuple[BatchRule, ...]:
    return (
        BatchRule("/products", "/products/batch", max_batch_size=max_size, timeout_ms=timeout_ms),
        BatchRule("/categories", "/categories/batch", max_batch_size=max_size, timeout_ms=timeout_ms),
    )


@pytest.mark.asyncio
async def test_concurrent_gets_share_one_batch_call() -> None:
    client = _ClientStub()
    batcher = RequestBatcher(client, rules=_rules())

    results = await asyncio.gather(
        batcher.execute_with_batching("/products/1"),
        batcher.execute_with_batching("/products/2"),
        batcher.execute_with_batching("/products/3"),
    )

    assert results == [
        {"endpoint": "/products/1"},
        {"endpoint": "/products/2"},
        {"endpoint": "/products/3"},
    ]
    assert len(client.posts) == 1
    endpoint, payload, options = client.posts[0]
    assert endpoint == "/products/batch"
    assert options == RAW
    assert [item["endpoint"] for item in payload["requests"]] == [
        "/products/1",
        "/products/2",
        "/products/3",
    ]


@pytest.mark.asyncio
async def test_each_arrival_rearms_the_debounce_timer() -> None:
    client = _ClientStub()
    batcher = RequestBatcher(client, rules=_rules(timeout_ms=80))
    loop = asyncio.get_running_loop()

    first: asyncio.Future[Any] = loop.create_future()
    second: asyncio.Future[Any] = loop.create_future()

    batcher.add_to_batch("/products/1", ApiRequest(), first)
    await asyncio.sleep(0.05)
    batcher.add_to_batch("/products/2", ApiRequest(), second)
    await asyncio.sleep(0.05)

    # 100ms after the first arrival, 50ms after the second: still waiting.
    assert client.posts == []

    await asyncio.wait_for(asyncio.gather(first, second), timeout=1)
    assert len(client.posts) == 1
    assert len(client.posts[0][1]["requests"]) == 2


@pytest.mark.asyncio
async def test_size_cap_dispatches_without_waiting_for_timer() -> None:
    client = _ClientStub()
    batcher = RequestBatcher(client, rules=_rules(max_size=3, timeout_ms=10_000))

    results = await asyncio.wait_for(
        asyncio.gather(*(batcher.execute_with_batching(f"/products/{i}") for i in range(3))),
        timeout=1,
    )

    assert len(results) == 3
    assert len(client.posts) == 1
    assert batcher.get_stats().active_batches == 0


@pytest.mark.asyncio
async def test_size_cap_cancels_armed_debounce_timer() -> None:
    client = _ClientStub()
    batcher = RequestBatcher(client, rules=_rules(max_size=3, timeout_ms=200))
    loop = asyncio.get_running_loop()
    first = [loop.create_future() for _ in range(3)]

    batcher.add_to_batch("/products/1", ApiRequest(), first[0])
    await asyncio.sleep(0.03)
    batcher.add_to_batch("/products/2", ApiRequest(), first[1])
    batcher.add_to_batch("/products/3", ApiRequest(), first[2])
    await asyncio.wait_for(asyncio.gather(*first), timeout=1)
    assert len(client.posts) == 1

    await asyncio.sleep(0.1)
    late: asyncio.Future[Any] = loop.create_future()
    batcher.add_to_batch("/products/4", ApiRequest(), late)

    # Past the first arrival's deadline; the late request has its own timer.
    await asyncio.sleep(0.1)
    assert len(client.posts) == 1
    assert batcher.get_stats().total_pending_requests == 1

    assert await asyncio.wait_for(late, timeout=1) == {"endpoint": "/products/4"}
    assert len(client.posts) == 2


@pytest.mark.asyncio
async def test_batch_size_falls_back_to_batcher_default() -> None:
    client = _ClientStub()
    rules = (BatchRule("/products", "/products/batch"),)
    batcher = RequestBatcher(client, rules=rules, batch_size=2, batch_timeout_ms=10_000)

    await asyncio.wait_for(
        asyncio.gather(
            batcher.execute_with_batching("/products/1"),
            batcher.execute_with_batching("/products/2"),
        ),
        timeout=1,
    )

    assert len(client.posts) == 1


@pytest.mark.asyncio
async def test_arrivals_during_dispatch_start_a_new_batch() -> None:
    gate = asyncio.Event()

    async def _gated(endpoint: str, payload: dict[str, Any]) -> Any:
        await gate.wait()
        return await _echo(endpoint, payload)

    client = _ClientStub(_gated)
    batcher = RequestBatcher(client, rules=_rules(max_size=2, timeout_ms=10_000))

    first = asyncio.gather(
        batcher.execute_with_batching("/products/1"),
        batcher.execute_with_batching("/products/2"),
    )
    await wait_until(lambda: len(client.posts) == 1)

    late = asyncio.ensure_future(batcher.execute_with_batching("/products/3"))
    await wait_until(lambda: batcher.get_stats().total_pending_requests == 1)

    stats = batcher.get_stats()
    assert stats.active_batches == 1
    assert stats.batch_size_distribution == {1: 1}

    gate.set()
    assert len(await first) == 2
    await batcher.flush_all()
    assert await late == {"endpoint": "/products/3"}
    assert len(client.posts) == 2
    assert [item["endpoint"] for item in client.posts[1][1]["requests"]] == ["/products/3"]


@pytest.mark.asyncio
async def test_transport_failure_rejects_every_request_in_batch() -> None:
    failure = ApiError("connection reset", status=0)

    async def _fail(endpoint: str, payload: dict[str, Any]) -> Any:
        raise failure

    batcher = RequestBatcher(_ClientStub(_fail), rules=_rules(max_size=4))

    results = await asyncio.gather(
        *(batcher.execute_with_batching(f"/products/{i}") for i in range(4)),
        return_exceptions=True,
    )

    assert len(results) == 4
    for result in results:
        assert isinstance(result, BatchRequestError)
        assert str(result) == "Batch request failed: connection reset"
        assert result.__cause__ is failure


@pytest.mark.asyncio
async def test_malformed_batch_response_rejects_batch() -> None:
    async def _malformed(endpoint: str, payload: dict[str, Any]) -> Any:
        return {"responses": "not-a-list"}

    batcher = RequestBatcher(_ClientStub(_malformed), rules=_rules())

    with pytest.raises(BatchRequestError):
        await batcher.execute_with_batching("/products/1")


@pytest.mark.asyncio
async def test_items_settle_independently() -> None:
    async def _mixed(endpoint: str, payload: dict[str, Any]) -> Any:
        ok, failed, _missing = payload["requests"]
        return {
            "responses": [
                {"id": ok["id"], "success": True, "data": {"sku": "A-1"}},
                {
                    "id": failed["id"],
                    "success": False,
                    "error": "Product not found",
                    "status": 404,
                    "code": "NOT_FOUND",
                },
                {"id": "unrelated", "success": True, "data": None},
            ]
        }

    batcher = RequestBatcher(_ClientStub(_mixed), rules=_rules(max_size=3))

    ok, failed, missing = await asyncio.gather(
        batcher.execute_with_batching("/products/1"),
        batcher.execute_with_batching("/products/2"),
        batcher.execute_with_batching("/products/3"),
        return_exceptions=True,
    )

    assert ok == {"sku": "A-1"}
    assert isinstance(failed, BatchItemError)
    assert str(failed) == "Product not found"
    assert failed.status == 404
    assert failed.code == "NOT_FOUND"
    assert isinstance(missing, MissingBatchResponseError)
    assert str(missing) == "No response received for request"
    assert missing.request_id.startswith("batch_req_")


@pytest.mark.asyncio
async def test_structured_item_error_fails_only_that_request() -> None:
    async def _structured(endpoint: str, payload: dict[str, Any]) -> Any:
        ok, failed = payload["requests"]
        return {
            "responses": [
                {"id": ok["id"], "success": True, "data": {"sku": "A-1"}},
                {
                    "id": failed["id"],
                    "success": False,
                    "error": {"message": "not found", "field": "sku"},
                    "status": 404,
                },
            ]
        }

    batcher = RequestBatcher(_ClientStub(_structured), rules=_rules(max_size=2))

    ok, failed = await asyncio.wait_for(
        asyncio.gather(
            batcher.execute_with_batching("/products/1"),
            batcher.execute_with_batching("/products/2"),
            return_exceptions=True,
        ),
        timeout=1,
    )

    assert ok == {"sku": "A-1"}
    assert isinstance(failed, BatchItemError)
    assert str(failed) == "not found"
    assert failed.status == 404


@pytest.mark.asyncio
async def test_non_string_item_error_is_stringified() -> None:
    async def _coded(endpoint: str, payload: dict[str, Any]) -> Any:
        return {
            "responses": [
                {"id": payload["requests"][0]["id"], "success": False, "error": 4041}
            ]
        }

    batcher = RequestBatcher(_ClientStub(_coded), rules=_rules())

    with pytest.raises(BatchItemError, match="4041"):
        await asyncio.wait_for(batcher.execute_with_batching("/products/1"), timeout=1)


@pytest.mark.asyncio
async def test_unencodable_request_rejects_batch_instead_of_hanging() -> None:
    client = _ClientStub()
    batcher = RequestBatcher(client, rules=_rules(max_size=2))
    bad_headers = cast(dict[str, str], {"X-Page": 2})

    results = await asyncio.wait_for(
        asyncio.gather(
            batcher.execute_with_batching("/products/1"),
            batcher.execute_with_batching("/products/2", ApiRequest(headers=bad_headers)),
            return_exceptions=True,
        ),
        timeout=1,
    )

    assert all(isinstance(r, BatchRequestError) for r in results)
    assert all(r.__cause__ is not None for r in results)
    assert client.posts == []


@pytest.mark.asyncio
async def test_failed_item_without_message_uses_generic_error() -> None:
    async def _bare_failure(endpoint: str, payload: dict[str, Any]) -> Any:
        return {"responses": [{"id": payload["requests"][0]["id"], "success": False}]}

    batcher = RequestBatcher(_ClientStub(_bare_failure), rules=_rules())

    with pytest.raises(BatchItemError, match="Batch request failed"):
        await batcher.execute_with_batching("/products/1")


@pytest.mark.asyncio
async def test_clear_rejects_pending_without_sending() -> None:
    client = _ClientStub()
    batcher = RequestBatcher(client, rules=_rules(timeout_ms=20))
    loop = asyncio.get_running_loop()
    futures = [loop.create_future() for _ in range(2)]

    batcher.add_to_batch("/products/1", ApiRequest(), futures[0])
    batcher.add_to_batch("/categories/1", ApiRequest(), futures[1])
    batcher.clear()

    for future in futures:
        with pytest.raises(BatchClearedError, match="Batch cleared"):
            await future

    await asyncio.sleep(0.05)
    assert client.posts == []
    assert batcher.get_stats().active_batches == 0


@pytest.mark.asyncio
async def test_flush_all_dispatches_every_batch_immediately() -> None:
    client = _ClientStub()
    batcher = RequestBatcher(client, rules=_rules(timeout_ms=10_000))
    loop = asyncio.get_running_loop()
    product: asyncio.Future[Any] = loop.create_future()
    category: asyncio.Future[Any] = loop.create_future()

    batcher.add_to_batch("/products/1", ApiRequest(), product)
    batcher.add_to_batch("/categories/7", ApiRequest(), category)
    await batcher.flush_all()

    assert product.result() == {"endpoint": "/products/1"}
    assert category.result() == {"endpoint": "/categories/7"}
    assert sorted(endpoint for endpoint, _, _ in client.posts) == [
        "/categories/batch",
        "/products/batch",
    ]
    assert batcher.get_stats().active_batches == 0


@pytest.mark.asyncio
async def test_execute_batch_unknown_key_is_noop() -> None:
    client = _ClientStub()
    batcher = RequestBatcher(client, rules=_rules())

    await batcher.execute_batch("GET:/nowhere")

    assert client.posts == []


@pytest.mark.asyncio
async def test_execute_batch_sends_named_batch() -> None:
    client = _ClientStub()
    batcher = RequestBatcher(client, rules=_rules(timeout_ms=10_000))
    future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()

    batcher.add_to_batch("/products/9", ApiRequest(), future)
    await batcher.execute_batch("GET:/products")

    assert future.result() == {"endpoint": "/products/9"}


@pytest.mark.asyncio
async def test_non_get_and_unmatched_requests_bypass_batching() -> None:
    client = _ClientStub()
    batcher = RequestBatcher(client, rules=_rules())

    created = await batcher.execute_with_batching(
        "/products", ApiRequest(method="post", data={"name": "Lamp"})
    )
    cart = await batcher.execute_with_batching("/cart")

    assert created == {"direct": "/products"}
    assert cart == {"direct": "/cart"}
    assert client.posts == []
    assert [(endpoint, options) for endpoint, _, options in client.requests] == [
        ("/products", DIRECT),
        ("/cart", DIRECT),
    ]
    assert client.requests[0][1] is not None
    assert client.requests[0][1].method == "POST"


@pytest.mark.asyncio
async def test_add_to_batch_rejects_unmatched_endpoint() -> None:
    batcher = RequestBatcher(_ClientStub(), rules=_rules())
    future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()

    with pytest.raises(NotBatchableError, match="Endpoint /cart is not batchable"):
        batcher.add_to_batch("/cart", ApiRequest(), future)
    assert batcher.get_stats().active_batches == 0


@pytest.mark.asyncio
async def test_envelope_omits_unset_fields() -> None:
    client = _ClientStub()
    batcher = RequestBatcher(client, rules=_rules())

    await batcher.execute_with_batching(
        "/products/1",
        ApiRequest(params={"fields": "price"}, headers={"Accept-Language": "de"}),
    )

    (item,) = client.posts[0][1]["requests"]
    assert item["id"].startswith("batch_req_")
    assert item == {
        "id": item["id"],
        "method": "GET",
        "endpoint": "/products/1",
        "params": {"fields": "price"},
        "headers": {"Accept-Language": "de"},
    }


@pytest.mark.asyncio
async def test_cancelled_caller_does_not_block_others() -> None:
    client = _ClientStub()
    batcher = RequestBatcher(client, rules=_rules(timeout_ms=10_000))
    loop = asyncio.get_running_loop()
    abandoned: asyncio.Future[Any] = loop.create_future()
    kept: asyncio.Future[Any] = loop.create_future()

    batcher.add_to_batch("/products/1", ApiRequest(), abandoned)
    batcher.add_to_batch("/products/2", ApiRequest(), kept)
    abandoned.cancel()
    await batcher.flush_all()

    assert abandoned.cancelled()
    assert kept.result() == {"endpoint": "/products/2"}


@pytest.mark.asyncio
async def test_stats_report_pending_batches() -> None:
    batcher = RequestBatcher(_ClientStub(), rules=_rules(timeout_ms=10_000))
    loop = asyncio.get_running_loop()

    empty = batcher.get_stats()
    assert empty.active_batches == 0
    assert empty.oldest_batch_age_ms is None
    assert empty.average_batch_size == 0.0

    for endpoint in ("/products/1", "/products/2", "/categories/1"):
        batcher.add_to_batch(endpoint, ApiRequest(), loop.create_future())

    stats = batcher.get_stats()
    assert stats.active_batches == 2
    assert stats.total_pending_requests == 3
    assert stats.batch_size_distribution == {2: 1, 1: 1}
    assert stats.average_batch_size == 1.5
    assert stats.oldest_batch_age_ms is not None
    assert stats.oldest_batch_age_ms >= 0

    await batcher.destroy()


@pytest.mark.asyncio
async def test_destroy_waits_for_in_flight_dispatch() -> None:
    gate = asyncio.Event()

    async def _slow(endpoint: str, payload: dict[str, Any]) -> Any:
        await gate.wait()
        return await _echo(endpoint, payload)

    client = _ClientStub(_slow)
    batcher = RequestBatcher(client, rules=_rules(max_size=1))
    future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()

    batcher.add_to_batch("/products/1", ApiRequest(), future)
    await wait_until(lambda: len(client.posts) == 1)

    destroying = asyncio.ensure_future(batcher.destroy())
    await asyncio.sleep(0)
    assert not destroying.done()

    gate.set()
    await destroying
    assert future.result() == {"endpoint": "/products/1"}


def test_first_matching_rule_wins_and_overlap_is_logged(
    caplog: pytest.LogCaptureFixture,
) -> None:
    with caplog.at_level(logging.WARNING, logger="storepulse.batching.batcher"):
        batcher = RequestBatcher(_ClientStub())

    assert batcher.rules == DEFAULT_BATCH_RULES
    rule = batcher.get_batch_config("/products/search?q=lamp")
    assert rule is not None
    assert rule.batch_endpoint == "/products/batch"
    assert batcher.is_batchable("/search?q=lamp")
    assert not batcher.is_batchable("/cart")
    assert caplog.records == []

    with caplog.at_level(logging.WARNING, logger="storepulse.batching.batcher"):
        RequestBatcher(
            _ClientStub(),
            rules=(
                BatchRule("/products", "/products/batch"),
                BatchRule("/products/featured", "/featured/batch"),
            ),
        )

    assert any("overlap" in record.getMessage() for record in caplog.records)


def test_from_settings_uses_configured_defaults() -> None:
    settings = Settings(batch_size=7, batch_timeout_ms=250)

    batcher = RequestBatcher.from_settings(_ClientStub(), settings)

    assert batcher._batch_size == 7  # noqa: SLF001
    assert batcher._batch_timeout_ms == 250  # noqa: SLF001
