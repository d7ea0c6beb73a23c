"""Pytest fixtures: a controllable clock, cache stores and fake upstream HTTP."""

from datetime import datetime, timedelta, timezone

import httpx
import pytest

from dashboard.config import Settings
from dashboard.services.cache import TemporalCache
from dashboard.services.stores import MemoryCacheStore, SqlCacheStore


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def memory_store() -> MemoryCacheStore:
    return MemoryCacheStore()


@pytest.fixture
def cache(memory_store: MemoryCacheStore, clock: FakeClock) -> TemporalCache:
    return TemporalCache(memory_store, clock=clock)


@pytest.fixture
async def sql_store(tmp_path):
    store = SqlCacheStore(f"sqlite:///{tmp_path / 'cache.db'}")
    store.create_tables()
    yield store
    await store.close()


@pytest.fixture
def settings(monkeypatch) -> Settings:
    monkeypatch.setenv("OPENWEATHER_API_KEY", "test-key")
    monkeypatch.delenv("CACHE_DATABASE_URL", raising=False)
    monkeypatch.setenv("DASHBOARD_LOCATION", "port_alberni")
    return Settings()


def mock_client(handler) -> httpx.AsyncClient:
    """AsyncClient whose requests are answered by ``handler(request)``."""
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def failing_handler(request: httpx.Request) -> httpx.Response:
    return httpx.Response(503, json={"message": "upstream down"})
