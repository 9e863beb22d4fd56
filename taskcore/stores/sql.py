import logging
from typing import AsyncIterator

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from taskcore.core.locks import KeyedLocks
from taskcore.errors import StoreError
from taskcore.mapping import record_to_row, row_to_record
from taskcore.models import TASK_ID_MAX, Task, TaskFilter, TaskRecord, utc_now
from taskcore.stores.base import TaskListing, TaskStore

logger = logging.getLogger(__name__)


def _addressable(task_id: int) -> bool:
    # out-of-range ids cannot be bound as INTEGER; no row can have them
    return 1 <= task_id <= TASK_ID_MAX


class SqlTaskStore(TaskStore):
    """
    Relational store on the `tasks` table through SQLModel's AsyncSession.

    Every SQLAlchemy failure leaves this class as StoreError with the
    original exception as its cause.
    """

    backend = "sql"

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock=utc_now,
        engine: AsyncEngine | None = None,
    ):
        self._session_factory = session_factory
        self._clock = clock
        self._engine = engine
        self._locks = KeyedLocks()

    async def put(self, record: TaskRecord) -> TaskRecord | None:
        try:
            if record.id is None:
                return await self._insert(record)
            async with self._locks.for_key(record.id):
                return await self._replace(record)
        except SQLAlchemyError as e:
            logger.error(f"Task put failed: {e}")
            raise StoreError(e) from e

    async def _insert(self, record: TaskRecord) -> TaskRecord:
        if record.created_at is None:
            record = record.model_copy(update={"created_at": self._clock()})
        row = record_to_row(record)
        async with self._session_factory() as session:
            session.add(row)
            await session.commit()
            await session.refresh(row)
            logger.debug("Inserted task %s", row.id)
            return row_to_record(row)

    async def _replace(self, record: TaskRecord) -> TaskRecord | None:
        if not _addressable(record.id):
            return None
        async with self._session_factory() as session:
            row = await session.get(Task, record.id, with_for_update=True)
            if row is None:
                return None
            # created_at is left as stored
            row.title = record.title
            row.description = record.description
            row.completed = record.completed
            row.owner_id = record.owner_id
            session.add(row)
            await session.commit()
            await session.refresh(row)
            logger.debug("Replaced task %s", row.id)
            return row_to_record(row)

    async def get(self, task_id: int) -> TaskRecord | None:
        if not _addressable(task_id):
            return None
        try:
            async with self._session_factory() as session:
                row = await session.get(Task, task_id)
                return None if row is None else row_to_record(row)
        except SQLAlchemyError as e:
            logger.error(f"Task get failed: {e}")
            raise StoreError(e) from e

    def list(self, query: TaskFilter | None = None) -> TaskListing:
        q = query or TaskFilter()

        statement = select(Task)
        if q.owner_id is not None:
            statement = statement.where(Task.owner_id == q.owner_id)
        if q.completed is not None:
            statement = statement.where(Task.completed == q.completed)
        # ids are allocated in insertion order
        statement = statement.order_by(Task.id).offset(q.skip)
        if q.limit is not None:
            statement = statement.limit(q.limit)

        async def source() -> AsyncIterator[TaskRecord]:
            try:
                async with self._session_factory() as session:
                    result = await session.exec(statement)
                    rows = result.all()
            except SQLAlchemyError as e:
                logger.error(f"Task list failed: {e}")
                raise StoreError(e) from e
            for row in rows:
                yield row_to_record(row)

        return TaskListing(source)

    async def delete(self, task_id: int) -> bool:
        if not _addressable(task_id):
            return False
        try:
            async with self._locks.for_key(task_id):
                async with self._session_factory() as session:
                    row = await session.get(Task, task_id, with_for_update=True)
                    if row is None:
                        return False
                    await session.delete(row)
                    await session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Task delete failed: {e}")
            raise StoreError(e) from e
        logger.debug("Deleted task %s", task_id)
        return True

    @property
    def engine(self) -> AsyncEngine | None:
        return self._engine

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
