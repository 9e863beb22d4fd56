import dataclasses
import logging
from typing import Any, Awaitable, Callable, TypeVar

from taskcore.cache.layer import CacheLayer
from taskcore.errors import NotFoundError, StoreError, ValidationError, Violation
from taskcore.mapping import draft_to_record
from taskcore.models import (
    OWNER_ID_MAX_LENGTH,
    TaskDraft,
    TaskFilter,
    TaskRecord,
    utc_now,
)
from taskcore.stores.base import TaskStore
from taskcore.validation import TOO_LONG, Rejected, validate_task

logger = logging.getLogger(__name__)

T = TypeVar("T")


class TaskService:
    """
    Lifecycle of task records: Absent -> Active -> Absent.

    Reads go through the cache; every write invalidates the affected id.
    Store failures on reads (get, list) are retried once; writes are never
    retried.
    """

    def __init__(
        self,
        store: TaskStore,
        cache: CacheLayer,
        validator: Callable[[Any], Any] = validate_task,
        clock: Callable[[], Any] = utc_now,
    ):
        self._store = store
        self._cache = cache
        self._validate = validator
        self._clock = clock

    def _validated(self, payload: Any, principal: str | None = None) -> TaskDraft:
        result = self._validate(payload)
        violations = list(result.violations) if isinstance(result, Rejected) else []
        # the owner column is bounded on every relational backend
        if principal is not None and len(principal) > OWNER_ID_MAX_LENGTH:
            violations.append(Violation("owner_id", TOO_LONG))
        if violations:
            raise ValidationError(violations)
        return result.draft

    async def _read(self, operation: str, call: Callable[[], Awaitable[T]]) -> T:
        try:
            return await call()
        except StoreError as e:
            logger.warning(f"{operation} failed, retrying once: {e}")
            return await call()

    async def create(self, payload: Any, principal: str | None = None) -> TaskRecord:
        draft = self._validated(payload, principal)
        record = draft_to_record(draft, created_at=self._clock(), owner_id=principal)
        stored = await self._store.put(record)

        # drops a possible absent marker, then warms with the new record
        await self._cache.invalidate(stored.id)
        await self._cache.set(stored)
        logger.info("Created task %s", stored.id)
        return stored

    async def get(self, task_id: int) -> TaskRecord:
        record = await self._cache.get(
            task_id,
            loader=lambda: self._read("Task get", lambda: self._store.get(task_id)),
        )
        if record is None:
            raise NotFoundError(task_id)
        return record

    async def update(self, task_id: int, payload: Any) -> TaskRecord:
        existing = await self.get(task_id)
        draft = self._validated(payload)
        record = draft_to_record(
            draft,
            task_id=task_id,
            created_at=existing.created_at,
            owner_id=existing.owner_id,
        )
        try:
            stored = await self._store.put(record)
        finally:
            await self._cache.invalidate(task_id)

        if stored is None:
            # deleted between the existence check and the write
            raise NotFoundError(task_id)
        logger.info("Updated task %s", task_id)
        return stored

    async def complete(self, task_id: int) -> TaskRecord:
        """Mark a task completed, keeping its title and description."""
        existing = await self.get(task_id)
        return await self.update(
            task_id,
            {
                "title": existing.title,
                "description": existing.description,
                "completed": True,
            },
        )

    async def delete(self, task_id: int) -> None:
        await self.get(task_id)
        try:
            deleted = await self._store.delete(task_id)
        finally:
            await self._cache.invalidate(task_id)

        if not deleted:
            raise NotFoundError(task_id)
        logger.info("Deleted task %s", task_id)

    async def list(
        self, query: TaskFilter | None = None, principal: str | None = None
    ) -> list[TaskRecord]:
        q = query or TaskFilter()
        if principal is not None:
            q = dataclasses.replace(q, owner_id=principal)
        return await self._read("Task list", self._store.list(q).all)
