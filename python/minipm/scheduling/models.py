"""Value objects exchanged with the task scheduler."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, Iterable, Iterator, Mapping, Optional, Tuple, Union

from minipm.exceptions_unified import InvalidTaskError

DueDate = Union[date, datetime]


def normalize_title(title: str) -> str:
    """Case- and whitespace-insensitive key for a task title.

    Validation, graph construction and result lookups all key on this.
    """
    return title.strip().casefold()


@dataclass(frozen=True)
class TaskInput:
    """One task descriptor for a scheduling run."""

    title: str
    estimated_hours: int = 0
    due_date: Optional[DueDate] = None
    dependencies: Tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        # Accept a single title or any iterable of titles; store a tuple
        deps = self.dependencies
        if isinstance(deps, str):
            object.__setattr__(self, "dependencies", (deps,))
        elif not isinstance(deps, tuple):
            object.__setattr__(self, "dependencies", tuple(deps or ()))

    @property
    def key(self) -> str:
        return normalize_title(self.title)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "TaskInput":
        """Build from a mapping using either snake_case or camelCase keys.

        ``dueDate`` may be a date/datetime or an ISO-8601 string.
        """
        hours = data.get("estimated_hours", data.get("estimatedHours"))
        due = data.get("due_date", data.get("dueDate"))
        if isinstance(due, str):
            try:
                due = _parse_iso(due)
            except ValueError:
                raise InvalidTaskError(data.get("title"), f"unparseable due date {due!r}") from None
        deps = data.get("dependencies") or ()
        if isinstance(deps, str):
            deps = (deps,)
        return cls(
            title=data.get("title", ""),
            estimated_hours=0 if hours is None else hours,
            due_date=due,
            dependencies=tuple(deps),
        )


def _parse_iso(value: str) -> DueDate:
    value = value.strip()
    if len(value) == 10:
        return date.fromisoformat(value)
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return datetime.fromisoformat(value)


@dataclass(frozen=True)
class ScheduleResult:
    """A feasible order of task titles, earliest first."""

    order: Tuple[str, ...]

    def __len__(self) -> int:
        return len(self.order)

    def __iter__(self) -> Iterator[str]:
        return iter(self.order)

    def position(self, title: str) -> int:
        """Index of *title* in the order (case-insensitive).

        Raises KeyError if the title was not scheduled.
        """
        key = normalize_title(title)
        for index, scheduled in enumerate(self.order):
            if normalize_title(scheduled) == key:
                return index
        raise KeyError(title)

    def to_dict(self) -> Dict[str, Any]:
        return {"recommendedOrder": list(self.order)}


def as_task_inputs(tasks: Iterable[Union[TaskInput, Mapping[str, Any]]]) -> list:
    """Coerce mappings to TaskInput, leaving TaskInput instances untouched."""
    return [t if isinstance(t, TaskInput) else TaskInput.from_dict(t) for t in tasks]
