from abc import ABC, abstractmethod
from typing import AsyncIterator, Callable

from taskcore.models import TaskFilter, TaskRecord


class TaskListing:
    """
    Lazy, restartable sequence of task records.

    Nothing is read until iteration starts, and every new iteration reads
    the backing store again.
    """

    def __init__(self, source: Callable[[], AsyncIterator[TaskRecord]]):
        self._source = source

    def __aiter__(self) -> AsyncIterator[TaskRecord]:
        return self._source()

    async def all(self) -> list[TaskRecord]:
        return [record async for record in self]


class TaskStore(ABC):
    """
    Keyed storage of task records.

    Absence is a normal result here (None / False), never an exception.
    put/delete on the same id are serialised; different ids never wait
    on each other.
    """

    backend: str = "abstract"

    @abstractmethod
    async def put(self, record: TaskRecord) -> TaskRecord | None:
        """
        Insert when record.id is None, otherwise replace in place.

        Replacing keeps the original created_at. Replacing an id that does
        not exist writes nothing and returns None.
        """

    @abstractmethod
    async def get(self, task_id: int) -> TaskRecord | None:
        """Return the record or None."""

    @abstractmethod
    def list(self, query: TaskFilter | None = None) -> TaskListing:
        """Records in insertion order, filtered and sliced by query."""

    @abstractmethod
    async def delete(self, task_id: int) -> bool:
        """True if a record was removed, False if it was absent."""

    async def close(self) -> None:
        return None
