from typing import Any, NamedTuple


class Violation(NamedTuple):
    """A single field-level validation failure."""

    field: str
    reason: str


class TaskServiceError(Exception):
    """Base class for every failure the task service surfaces."""

    code: str = "task_service_error"
    status_code: int = 500

    def detail(self) -> Any:
        return None

    def to_dict(self) -> dict:
        return {"error": self.code, "message": str(self), "detail": self.detail()}


class ValidationError(TaskServiceError):
    code = "validation_error"
    status_code = 422

    def __init__(self, violations):
        self.violations: tuple[Violation, ...] = tuple(
            Violation(*v) for v in violations
        )
        fields = ", ".join(f"{v.field}: {v.reason}" for v in self.violations)
        super().__init__(f"Invalid task payload ({fields})")

    def detail(self) -> list[dict]:
        return [{"field": v.field, "reason": v.reason} for v in self.violations]


class NotFoundError(TaskServiceError):
    code = "not_found"
    status_code = 404

    def __init__(self, task_id: int):
        self.task_id = task_id
        super().__init__(f"Task with id {task_id} not found")

    def detail(self) -> dict:
        return {"id": self.task_id}


class ConflictError(TaskServiceError):
    """Reserved for optimistic concurrency; not raised by the base service."""

    code = "conflict"
    status_code = 409

    def __init__(self, task_id: int):
        self.task_id = task_id
        super().__init__(f"Task with id {task_id} was modified concurrently")

    def detail(self) -> dict:
        return {"id": self.task_id}


class StoreError(TaskServiceError):
    """Wraps a backend failure (connection loss, constraint violation, ...)."""

    code = "store_error"
    status_code = 503

    def __init__(self, cause: BaseException):
        self.cause = cause
        super().__init__(f"Task store failure: {cause}")

    def detail(self) -> dict:
        return {"cause": type(self.cause).__name__}
