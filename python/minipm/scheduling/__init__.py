"""Deterministic task scheduling for MiniPM.

Dependency validation, graph construction and priority topological
ordering, plus projection of the resulting order onto stored records.
"""

from minipm.scheduling.dependency_resolver import (
    DependencyGraph,
    build_graph,
    due_sort_key,
    order_graph,
    schedule_tasks,
    validate_tasks,
)
from minipm.scheduling.models import (
    ScheduleResult,
    TaskInput,
    normalize_title,
)
from minipm.scheduling.result_projector import project_order

__all__ = [
    "DependencyGraph",
    "ScheduleResult",
    "TaskInput",
    "build_graph",
    "due_sort_key",
    "normalize_title",
    "order_graph",
    "project_order",
    "schedule_tasks",
    "validate_tasks",
]
