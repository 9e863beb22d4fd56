from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
import pytest_asyncio

from taskcore.cache.layer import CacheLayer
from taskcore.core.config import Settings
from taskcore.database import build_engine, build_session_factory, create_db_and_tables
from taskcore.services.task_service import TaskService
from taskcore.stores.memory import MemoryTaskStore
from taskcore.stores.sql import SqlTaskStore

T0 = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


class FixedClock:
    """Deterministic clock: returns `now` until advanced."""

    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float = 1) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


@pytest.fixture()
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture()
def settings() -> Settings:
    # explicit values so a developer's .env cannot leak into tests
    return Settings(
        store_backend="memory",
        redis_dsn=None,
        cache_maxsize=128,
        cache_ttl_seconds=600,
        cache_absent_ttl_seconds=60,
        cache_namespace="taskcache:",
    )


@pytest.fixture()
def cache(settings: Settings) -> CacheLayer:
    return CacheLayer(settings)


async def _sql_store(db_path: Path, clock: FixedClock) -> SqlTaskStore:
    engine = build_engine(f"sqlite+aiosqlite:///{db_path}")
    await create_db_and_tables(engine)
    return SqlTaskStore(build_session_factory(engine), clock=clock, engine=engine)


@pytest_asyncio.fixture(params=["memory", "sql"])
async def store(request, tmp_path: Path, clock: FixedClock):
    """
    Every store-level and service-level behaviour runs against both
    backends: swapping the store must not change what callers observe.
    """
    if request.param == "memory":
        yield MemoryTaskStore(clock=clock)
        return

    sql_store = await _sql_store(tmp_path / "tasks.db", clock)
    yield sql_store
    await sql_store.close()


@pytest.fixture()
def service(store, cache: CacheLayer, clock: FixedClock) -> TaskService:
    return TaskService(store, cache, clock=clock)
