from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import DateTime
from sqlalchemy.types import TypeDecorator
from sqlmodel import Column, Field, SQLModel

TITLE_MAX_LENGTH = 100
DESCRIPTION_MAX_LENGTH = 500
OWNER_ID_MAX_LENGTH = 64
# ids are signed 64-bit integer keys in every relational backend
TASK_ID_MAX = 2**63 - 1


def utc_now() -> datetime:
    """Default clock: current UTC time with timezone"""
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware DateTime that always hands back UTC.

    SQLite drops tzinfo on the way out; re-attach it so values read back
    compare equal to the aware values that were written.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None and value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value


class TaskFields(SQLModel):
    """Fields a caller may write"""

    title: str = Field(max_length=TITLE_MAX_LENGTH)
    description: str = Field(default="", max_length=DESCRIPTION_MAX_LENGTH)
    completed: bool = Field(default=False)


class TaskDraft(TaskFields):
    """Validated, normalised create/update payload"""

    pass


class TaskRecord(TaskFields):
    """The task record as the core hands it around"""

    id: int | None = None
    created_at: datetime | None = None
    owner_id: str | None = None

    model_config = {"from_attributes": True}


class Task(TaskFields, table=True):
    """Database model"""

    __tablename__ = "tasks"
    # AUTOINCREMENT: SQLite must never hand out the id of a deleted row again
    __table_args__ = {"sqlite_autoincrement": True}

    id: int | None = Field(default=None, primary_key=True)
    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(UTCDateTime(), nullable=False),
    )
    owner_id: str | None = Field(default=None, max_length=OWNER_ID_MAX_LENGTH, index=True)


@dataclass(frozen=True)
class TaskFilter:
    """
    List query. None means "do not filter on this field".

    skip/limit slice the filtered sequence; relative order is always
    insertion order.
    """

    owner_id: str | None = None
    completed: bool | None = None
    skip: int = 0
    limit: int | None = None

    def matches(self, record: TaskRecord) -> bool:
        if self.owner_id is not None and record.owner_id != self.owner_id:
            return False
        if self.completed is not None and record.completed != self.completed:
            return False
        return True
