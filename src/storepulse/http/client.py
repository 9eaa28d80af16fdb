"""Storefront API client."""

from __future__ import annotations

import json
import logging
import time
from typing import TYPE_CHECKING, Any, Self
from urllib.parse import urlencode

import aiohttp

from storepulse.config import get_settings
from storepulse.errors import ApiError
from storepulse.http.dedupe import RequestDeduplicator
from storepulse.http.models import ApiRequest, RequestOptions

if TYPE_CHECKING:
    from storepulse.batching.batcher import RequestBatcher
    from storepulse.monitor.collector import MetricsCollector

logger = logging.getLogger(__name__)

_DEFAULT_OPTIONS = RequestOptions()


class ApiClient:
    """
    aiohttp client for the storefront API.

    Layers, in order, for each ``request()``:
    - batchable GETs go through the attached ``RequestBatcher`` (``options.batch``)
    - idempotent calls share in-flight results via the deduplicator (``options.dedupe``)
    - everything else is sent directly

    Every request actually sent is timed into the attached ``MetricsCollector``.

    Example:
        client = ApiClient(collector=collector)
        client.use_batcher(RequestBatcher(client))
        products = await client.request("/products", ApiRequest(params={"page": 1}))
        await client.close()
    """

    def __init__(
        self,
        base_url: str | None = None,
        *,
        api_key: str | None = None,
        timeout_seconds: float | None = None,
        collector: MetricsCollector | None = None,
        deduplicator: RequestDeduplicator | None = None,
    ) -> None:
        settings = get_settings()
        headers = {
            "Content-Type": "application/json",
        }
        api_key = api_key or settings.api_key
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._headers = headers
        self._base_url = (base_url or settings.api_url).rstrip("/")
        self._timeout = aiohttp.ClientTimeout(
            total=timeout_seconds or settings.request_timeout_seconds
        )
        self._session: aiohttp.ClientSession | None = None
        self._collector = collector
        self._deduplicator = deduplicator or RequestDeduplicator(
            strategy=settings.dedupe_strategy
        )
        self._batcher: RequestBatcher | None = None

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: Any,
    ) -> None:
        await self.close()

    @property
    def deduplicator(self) -> RequestDeduplicator:
        return self._deduplicator

    def use_batcher(self, batcher: RequestBatcher | None) -> None:
        """Route batchable GETs through ``batcher`` (``None`` detaches)."""
        self._batcher = batcher

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or bool(getattr(self._session, "closed", False)):
            self._session = aiohttp.ClientSession(
                headers=self._headers, timeout=self._timeout
            )
        return self._session

    async def close(self) -> None:
        session = self._session
        if session is None:
            return
        if not bool(getattr(session, "closed", False)):
            await session.close()
        self._session = None

    def url(self, endpoint: str) -> str:
        if endpoint.startswith(("http://", "https://")):
            return endpoint
        return f"{self._base_url}/{endpoint.lstrip('/')}"

    async def request(
        self,
        endpoint: str,
        request: ApiRequest | None = None,
        *,
        options: RequestOptions = _DEFAULT_OPTIONS,
    ) -> Any:
        request = request or ApiRequest()

        batcher = self._batcher
        if (
            options.batch
            and batcher is not None
            and request.method == "GET"
            and batcher.is_batchable(endpoint)
        ):
            return await batcher.execute_with_batching(endpoint, request)

        if options.dedupe and self._deduplicator.should_deduplicate(request.method):
            fingerprint = self._deduplicator.fingerprint(
                request.method,
                self._with_query(endpoint, request.params),
                request.data,
                request.headers,
            )
            return await self._deduplicator.run(
                fingerprint, lambda: self._send(endpoint, request)
            )

        return await self._send(endpoint, request)

    async def post(
        self,
        endpoint: str,
        payload: Any,
        *,
        options: RequestOptions = _DEFAULT_OPTIONS,
    ) -> Any:
        return await self.request(
            endpoint, ApiRequest(method="POST", data=payload), options=options
        )

    async def get(
        self,
        endpoint: str,
        params: dict[str, Any] | None = None,
        *,
        options: RequestOptions = _DEFAULT_OPTIONS,
    ) -> Any:
        return await self.request(endpoint, ApiRequest(params=params), options=options)

    async def _send(self, endpoint: str, request: ApiRequest) -> Any:
        session = await self._ensure_session()
        status = 0
        transfer_size = 0
        start = time.perf_counter() * 1000
        try:
            async with session.request(
                request.method,
                self.url(endpoint),
                params=request.params,
                json=request.data,
                headers=request.headers,
            ) as resp:
                status = resp.status
                transfer_size = resp.content_length or 0
                payload = await self._read_payload(resp)
        except (aiohttp.ClientError, TimeoutError) as e:
            raise ApiError(f"{request.method} {endpoint} failed: {e}") from e
        finally:
            self._record(endpoint, request.method, start, status, transfer_size)

        if status >= 400:
            detail = payload.get("message") if isinstance(payload, dict) else None
            logger.warning("%s %s returned %s", request.method, endpoint, status)
            raise ApiError(
                detail or f"HTTP {status}",
                status=status,
                payload=payload,
            )
        return payload

    @staticmethod
    async def _read_payload(resp: Any) -> Any:
        text = await resp.text()
        if not text:
            return None
        try:
            return json.loads(text)
        except ValueError:
            return text

    @staticmethod
    def _with_query(endpoint: str, params: dict[str, Any] | None) -> str:
        if not params:
            return endpoint
        query = urlencode(params, doseq=True)
        separator = "&" if "?" in endpoint else "?"
        return f"{endpoint}{separator}{query}"

    def _record(
        self,
        endpoint: str,
        method: str,
        start_ms: float,
        status: int,
        transfer_size: int,
    ) -> None:
        if self._collector is None:
            return
        try:
            self._collector.record_api_call(
                endpoint,
                method,
                start_ms,
                time.perf_counter() * 1000,
                status=status,
                transfer_size=transfer_size,
            )
        except Exception as e:
            logger.warning(f"Performance monitoring failed: {e}")
