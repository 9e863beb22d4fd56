from datetime import datetime
from typing import Any

from taskcore.models import Task, TaskDraft, TaskRecord


def draft_to_record(
    draft: TaskDraft,
    *,
    task_id: int | None = None,
    created_at: datetime | None = None,
    owner_id: str | None = None,
) -> TaskRecord:
    return TaskRecord(
        id=task_id,
        title=draft.title,
        description=draft.description,
        completed=draft.completed,
        created_at=created_at,
        owner_id=owner_id,
    )


def row_to_record(row: Task) -> TaskRecord:
    return TaskRecord.model_validate(row)


def record_to_row(record: TaskRecord) -> Task:
    """Build a Task row. created_at is only passed when set so the column default applies."""
    values = record.model_dump(exclude={"id", "created_at"})
    if record.created_at is not None:
        values["created_at"] = record.created_at
    return Task(id=record.id, **values)


def record_to_dict(record: TaskRecord) -> dict[str, Any]:
    """JSON-safe representation (datetimes as ISO strings)."""
    return record.model_dump(mode="json")


def record_from_dict(data: dict[str, Any]) -> TaskRecord:
    return TaskRecord.model_validate(data)
