from taskcore.core.config import Settings
from taskcore.models import utc_now
from taskcore.stores.base import TaskStore
from taskcore.stores.memory import MemoryTaskStore


def build_store(settings: Settings, clock=utc_now) -> TaskStore:
    """
    Return the backend named by settings.store_backend.
    - memory: MemoryTaskStore
    - sql: SqlTaskStore on settings.database_url
    """
    if settings.store_backend == "memory":
        return MemoryTaskStore(clock=clock)

    if settings.store_backend == "sql":
        from taskcore.database import build_engine, build_session_factory
        from taskcore.stores.sql import SqlTaskStore

        engine = build_engine(settings.database_url, echo=settings.database_echo)
        return SqlTaskStore(build_session_factory(engine), clock=clock, engine=engine)

    raise ValueError(f"Unknown store backend: {settings.store_backend!r}")
