"""Priority-aware dependency resolver for MiniPM task scheduling.

Standalone module: pure functions over in-memory task lists, no I/O and no
state kept between calls.

Provides:
- Input validation (field checks, duplicate titles, unknown dependencies)
- Dependency graph construction keyed by normalised title
- Total ordering via Kahn's algorithm with a priority ready set
  (earliest due date, then fewest estimated hours, then input position)
- Cycle detection: anything left unordered is reported, never truncated
"""

from __future__ import annotations

import heapq
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from minipm.enhanced_logging import track_performance
from minipm.exceptions_unified import (
    DuplicateTitleError,
    InfeasibleDependenciesError,
    InvalidTaskError,
    SchedulingError,
    UnknownDependencyError,
)
from minipm.scheduling.models import DueDate, ScheduleResult, TaskInput, as_task_inputs, normalize_title

logger = logging.getLogger(__name__)

# (missing flag, naive UTC datetime, estimated hours, input index)
PriorityKey = Tuple[int, datetime, int, int]


# ── Graph ────────────────────────────────────────────────────────────


@dataclass
class DependencyGraph:
    """Directed dependency graph for one scheduling run.

    Edges point from a dependency to the task that needs it.  A task that
    lists the same dependency twice contributes two edges.
    """

    tasks: Dict[str, TaskInput] = field(default_factory=dict)
    # Normalised title → position in the caller's list
    index: Dict[str, int] = field(default_factory=dict)
    # Normalised title → count of unresolved incoming edges
    in_degree: Dict[str, int] = field(default_factory=dict)
    # Normalised title → dependents, one entry per edge
    adjacency: Dict[str, List[str]] = field(default_factory=dict)
    edge_count: int = 0

    def __len__(self) -> int:
        return len(self.tasks)

    def priority(self, key: str) -> PriorityKey:
        """Comparator key used to pick the next ready task."""
        task = self.tasks[key]
        missing, due = due_sort_key(task.due_date)
        return (missing, due, task.estimated_hours, self.index[key])


def due_sort_key(due: Optional[DueDate]) -> Tuple[int, datetime]:
    """Make dates and datetimes (naive or aware) mutually comparable.

    A missing due date sorts after every dated task.
    """
    if due is None:
        return (1, datetime.min)
    if isinstance(due, datetime):
        if due.tzinfo is not None:
            due = due.astimezone(timezone.utc).replace(tzinfo=None)
        return (0, due)
    return (0, datetime.combine(due, time.min))


# ── Validation ───────────────────────────────────────────────────────


def validate_tasks(tasks: Sequence[TaskInput]) -> None:
    """Reject malformed input before any graph work starts.

    Checks, in order: per-task fields, duplicate titles, unknown
    dependencies.  The first failure is raised.

    Raises:
        InvalidTaskError: empty title, negative or non-integer hours,
            or a non-string dependency.
        DuplicateTitleError: titles equal after normalisation.
        UnknownDependencyError: dependency naming no task in *tasks*.
    """
    for task in tasks:
        _check_fields(task)

    seen: Dict[str, List[str]] = {}
    for task in tasks:
        seen.setdefault(task.key, []).append(task.title)
    for titles in seen.values():
        if len(titles) > 1:
            raise DuplicateTitleError(titles)

    for task in tasks:
        for dep in task.dependencies:
            if normalize_title(dep) not in seen:
                raise UnknownDependencyError(task.title, dep)


def _check_fields(task: TaskInput) -> None:
    if not isinstance(task.title, str) or not task.title.strip():
        raise InvalidTaskError(task.title, "title must be a non-empty string")
    hours = task.estimated_hours
    if isinstance(hours, bool) or not isinstance(hours, int):
        raise InvalidTaskError(task.title, "estimated hours must be an integer")
    if hours < 0:
        raise InvalidTaskError(task.title, "estimated hours must not be negative")
    if task.due_date is not None and not isinstance(task.due_date, date):
        raise InvalidTaskError(task.title, "due date must be a date or datetime")
    for dep in task.dependencies:
        if not isinstance(dep, str):
            raise InvalidTaskError(task.title, f"dependency {dep!r} is not a title")


# ── Graph construction ───────────────────────────────────────────────


def build_graph(tasks: Sequence[TaskInput]) -> DependencyGraph:
    """Turn a validated task list into a DependencyGraph."""
    graph = DependencyGraph()
    for position, task in enumerate(tasks):
        key = task.key
        graph.tasks[key] = task
        graph.index[key] = position
        graph.in_degree[key] = 0
        graph.adjacency[key] = []

    for task in tasks:
        for dep in task.dependencies:
            graph.adjacency[normalize_title(dep)].append(task.key)
            graph.in_degree[task.key] += 1
            graph.edge_count += 1

    logger.debug("Built dependency graph: %d tasks, %d edges", len(graph), graph.edge_count)
    return graph


# ── Ordering ─────────────────────────────────────────────────────────


def order_graph(graph: DependencyGraph) -> ScheduleResult:
    """Kahn's algorithm with a priority ready set.

    Each step emits the ready task with the smallest
    ``(due date, estimated hours, input position)``.  Input position is
    unique, so equal due dates and hours always resolve the same way.

    Raises:
        InfeasibleDependenciesError: some tasks never became ready
            (cycle or self-dependency).  No partial order is returned.
    """
    in_degree = dict(graph.in_degree)
    ready: List[Tuple[PriorityKey, str]] = [
        (graph.priority(key), key) for key, deg in in_degree.items() if deg == 0
    ]
    heapq.heapify(ready)

    order: List[str] = []
    while ready:
        _, key = heapq.heappop(ready)
        order.append(graph.tasks[key].title)
        for dependent in graph.adjacency[key]:
            in_degree[dependent] -= 1
            if in_degree[dependent] == 0:
                heapq.heappush(ready, (graph.priority(dependent), dependent))

    if len(order) != len(graph):
        unresolved = sorted(
            (key for key, deg in in_degree.items() if deg > 0),
            key=graph.index.__getitem__,
        )
        raise InfeasibleDependenciesError([graph.tasks[key].title for key in unresolved])

    return ScheduleResult(order=tuple(order))


# ── Entry point ──────────────────────────────────────────────────────


@track_performance(operation="schedule_tasks")
def schedule_tasks(tasks: Iterable[Union[TaskInput, Mapping[str, Any]]]) -> ScheduleResult:
    """Validate, build and order *tasks* in one call.

    Mappings are accepted and converted with ``TaskInput.from_dict``.
    Repeated calls with the same input return the same order.
    """
    try:
        inputs = as_task_inputs(tasks)
        validate_tasks(inputs)
        result = order_graph(build_graph(inputs))
    except SchedulingError as e:
        logger.warning("Scheduling rejected (%s): %s", e.code.value, e.message)
        raise

    logger.info("Scheduled %d tasks", len(result))
    return result
