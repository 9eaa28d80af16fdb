from __future__ import annotations

from collections.abc import AsyncIterator

import pytest
import pytest_asyncio
from storepulse.config import get_settings
from storepulse.monitor.collector import MetricsCollector
from storepulse.monitor.sources import EntryBus


@pytest.fixture(autouse=True)
def _isolated_settings(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("STOREPULSE_API_URL", "STOREPULSE_API_KEY", "STOREPULSE_BATCH_SIZE"):
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()


@pytest.fixture
def bus() -> EntryBus:
    return EntryBus(memory_reader=None)


@pytest_asyncio.fixture
async def collector(bus: EntryBus) -> AsyncIterator[MetricsCollector]:
    instance = MetricsCollector(bus)
    try:
        yield instance
    finally:
        await instance.stop()
