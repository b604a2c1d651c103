"""Shared pytest fixtures."""
from __future__ import annotations

from datetime import date
from typing import List

import pytest

from config import CacheConfig, GoogleConfig, HttpConfig, SchedulerConfig
from core.auth import StaticTokenProvider
from core.retry import RetryPolicy
from database.cache import CacheStore
from database.habit_cache import HabitCache
from database.storage import MemoryStorage
from services.http_client import RateLimitedClient
from services.sheet_repository import SheetRepository
from services.sync_engine import SyncEngine
from tests.fakes import FakeGoogleApi, FakeSession

TODAY = date(2025, 3, 15)
SCHEMA_VERSION = "1.0.0"


class FakeClock:
    """Manually advanced clock, usable for both wall and monotonic time."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class RecordingSleep:
    """Async sleep replacement that only records requested delays."""

    def __init__(self):
        self.calls: List[float] = []

    async def __call__(self, delay: float):
        self.calls.append(delay)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleeper() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def fake_api() -> FakeGoogleApi:
    return FakeGoogleApi()


@pytest.fixture
def session(fake_api: FakeGoogleApi) -> FakeSession:
    return FakeSession(fake_api)


@pytest.fixture
def token_provider() -> StaticTokenProvider:
    return StaticTokenProvider("test-token")


@pytest.fixture
def google_config() -> GoogleConfig:
    return GoogleConfig()


@pytest.fixture
def http_config() -> HttpConfig:
    return HttpConfig(jitter=0.0, request_delay=0.1)


@pytest.fixture
def cache_config() -> CacheConfig:
    return CacheConfig(schema_version=SCHEMA_VERSION)


@pytest.fixture
def scheduler_config() -> SchedulerConfig:
    return SchedulerConfig()


@pytest.fixture
def client(session: FakeSession, sleeper: RecordingSleep) -> RateLimitedClient:
    policy = RetryPolicy(max_retries=3, base_delay=1.0, max_delay=30.0, jitter=0.0)
    return RateLimitedClient(session=session, policy=policy, sleep=sleeper)


@pytest.fixture
def repository(client, token_provider, google_config, http_config, sleeper) -> SheetRepository:
    return SheetRepository(client, token_provider, google_config, http_config,
                           sleep=sleeper, today=lambda: TODAY)


@pytest.fixture
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def cache_store(storage: MemoryStorage, clock: FakeClock) -> CacheStore:
    return CacheStore(storage, SCHEMA_VERSION, clock=clock, monotonic=clock)


@pytest.fixture
def habit_cache(cache_store: CacheStore, clock: FakeClock) -> HabitCache:
    return HabitCache(cache_store, habit_ttl=2 * 60 * 60, system_ttl=None, clock=clock)


@pytest.fixture
def engine(repository: SheetRepository, habit_cache: HabitCache, clock: FakeClock) -> SyncEngine:
    counter = iter(range(1, 10_000))
    return SyncEngine(
        repository,
        habit_cache,
        freshness_window=300,
        id_factory=lambda: f"habit_test_{next(counter)}",
        clock=clock,
        monotonic=clock
    )
