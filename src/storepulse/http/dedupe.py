"""In-flight request deduplication.

Identical requests issued while one is already in flight share its result
instead of hitting the network again.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any
from urllib.parse import parse_qsl, urlencode, urlsplit

from storepulse.config import DedupeStrategy

logger = logging.getLogger(__name__)

IDEMPOTENT_METHODS = frozenset({"GET", "HEAD", "OPTIONS", "PUT", "DELETE"})
SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})
RELEVANT_HEADERS = ("content-type", "accept", "accept-language", "cache-control")


def normalize_url(url: str) -> str:
    """Path plus query string with parameters sorted by key."""
    parts = urlsplit(url)
    query = sorted(parse_qsl(parts.query, keep_blank_values=True))
    path = parts.path or url
    return f"{path}?{urlencode(query)}" if query else path


class RequestDeduplicator:
    """Shares one in-flight task between callers with the same fingerprint."""

    def __init__(self, *, strategy: DedupeStrategy = DedupeStrategy.DEFAULT) -> None:
        self._strategy = strategy
        self._pending: dict[str, asyncio.Task[Any]] = {}
        self._deduplicated = 0

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def deduplicated_count(self) -> int:
        return self._deduplicated

    def fingerprint(
        self,
        method: str,
        url: str,
        data: Any = None,
        headers: dict[str, str] | None = None,
    ) -> str:
        lowered = {k.lower(): v for k, v in (headers or {}).items()}
        relevant = {k: lowered[k] for k in RELEVANT_HEADERS if lowered.get(k)}
        data_part = "" if data is None else json.dumps(data, sort_keys=True, default=str)
        raw = "|".join(
            [
                method.upper(),
                normalize_url(url),
                data_part,
                json.dumps(relevant, sort_keys=True),
            ]
        )
        return hashlib.sha1(raw.encode()).hexdigest()

    def should_deduplicate(
        self, method: str, *, strategy: DedupeStrategy | None = None
    ) -> bool:
        strategy = strategy or self._strategy
        method = method.upper()
        if strategy == DedupeStrategy.AGGRESSIVE:
            return True
        if strategy == DedupeStrategy.CONSERVATIVE:
            return method in SAFE_METHODS
        return method in IDEMPOTENT_METHODS

    async def run(
        self, fingerprint: str, factory: Callable[[], Awaitable[Any]]
    ) -> Any:
        """
        Await the in-flight call for ``fingerprint``, starting it if needed.

        Cancelling one waiter does not cancel the shared call.
        """
        task = self._pending.get(fingerprint)
        if task is not None and not task.done():
            self._deduplicated += 1
            logger.debug(f"Deduplicated request {fingerprint[:12]}")
        else:

            async def _call() -> Any:
                return await factory()

            task = asyncio.create_task(_call())
            self._pending[fingerprint] = task
            task.add_done_callback(lambda done: self._forget(fingerprint, done))

        return await asyncio.shield(task)

    def _forget(self, fingerprint: str, task: asyncio.Task[Any]) -> None:
        if self._pending.get(fingerprint) is task:
            del self._pending[fingerprint]
