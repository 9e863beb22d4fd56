import itertools
import logging
from typing import AsyncIterator

from taskcore.core.locks import KeyedLocks
from taskcore.models import TaskFilter, TaskRecord, utc_now
from taskcore.stores.base import TaskListing, TaskStore

logger = logging.getLogger(__name__)


class MemoryTaskStore(TaskStore):
    """
    Process-local store for tests and the default runtime.

    Records are copied on the way in and out so callers never hold the
    store's own objects.
    """

    backend = "memory"

    def __init__(self, clock=utc_now):
        self._clock = clock
        self._items: dict[int, TaskRecord] = {}
        # ids are never reused, even after delete
        self._ids = itertools.count(1)
        self._locks = KeyedLocks()

    async def put(self, record: TaskRecord) -> TaskRecord | None:
        if record.id is None:
            task_id = next(self._ids)
            async with self._locks.for_key(task_id):
                stored = record.model_copy(
                    update={
                        "id": task_id,
                        "created_at": record.created_at or self._clock(),
                    }
                )
                self._items[task_id] = stored
            logger.debug("Inserted task %s", task_id)
            return stored.model_copy()

        async with self._locks.for_key(record.id):
            existing = self._items.get(record.id)
            if existing is None:
                return None
            stored = record.model_copy(update={"created_at": existing.created_at})
            self._items[record.id] = stored
        logger.debug("Replaced task %s", record.id)
        return stored.model_copy()

    async def get(self, task_id: int) -> TaskRecord | None:
        item = self._items.get(task_id)
        return None if item is None else item.model_copy()

    def list(self, query: TaskFilter | None = None) -> TaskListing:
        q = query or TaskFilter()

        async def source() -> AsyncIterator[TaskRecord]:
            # snapshot so concurrent writes cannot break iteration
            items = list(self._items.values())
            matched = (item for item in items if q.matches(item))
            stop = None if q.limit is None else q.skip + q.limit
            for item in itertools.islice(matched, q.skip, stop):
                yield item.model_copy()

        return TaskListing(source)

    async def delete(self, task_id: int) -> bool:
        async with self._locks.for_key(task_id):
            removed = self._items.pop(task_id, None) is not None
        if removed:
            logger.debug("Deleted task %s", task_id)
        return removed
