"""
Explicit validation of task create/update payloads.

``validate_task`` is pure and total: it never raises for any input and
reports every problem in one pass instead of stopping at the first one.
Violations come back in field declaration order (title, description,
completed) so responses stay deterministic.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Union

from taskcore.errors import Violation
from taskcore.models import DESCRIPTION_MAX_LENGTH, TITLE_MAX_LENGTH, TaskDraft

REQUIRED = "required"
TOO_LONG = "too_long"
INVALID_TYPE = "invalid_type"


@dataclass(frozen=True)
class Accepted:
    draft: TaskDraft
    ok: bool = True


@dataclass(frozen=True)
class Rejected:
    violations: tuple[Violation, ...]
    ok: bool = False


ValidationResult = Union[Accepted, Rejected]


def _check_title(value: Any) -> tuple[str | None, list[Violation]]:
    if not isinstance(value, str) or not value.strip():
        return None, [Violation("title", REQUIRED)]
    title = value.strip()
    if len(title) > TITLE_MAX_LENGTH:
        return None, [Violation("title", TOO_LONG)]
    return title, []


def _check_description(value: Any) -> tuple[str | None, list[Violation]]:
    if value is None:
        return "", []
    if not isinstance(value, str):
        return None, [Violation("description", INVALID_TYPE)]
    if len(value) > DESCRIPTION_MAX_LENGTH:
        return None, [Violation("description", TOO_LONG)]
    return value, []


def _check_completed(value: Any) -> tuple[bool | None, list[Violation]]:
    # bool only: 0/1 and "true" are rejected rather than coerced
    if not isinstance(value, bool):
        return None, [Violation("completed", REQUIRED)]
    return value, []


def validate_task(payload: Any) -> ValidationResult:
    """Map a proposed payload to an Accepted draft or a Rejected violation list."""
    data = payload if isinstance(payload, Mapping) else {}

    title, violations = _check_title(data.get("title"))
    description, found = _check_description(data.get("description"))
    violations += found
    completed, found = _check_completed(data.get("completed"))
    violations += found

    if violations:
        return Rejected(violations=tuple(violations))
    return Accepted(
        draft=TaskDraft(title=title, description=description, completed=completed)
    )
