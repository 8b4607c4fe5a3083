"""Persistent storage for projects and their task records.

Holds only what the scheduler service needs: reading a project's tasks and
writing back the order it computed.  State lives in memory and, when a path
is given, in a single JSON file that is replaced atomically on every write.
"""

import json
import logging
import os
import tempfile
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

from minipm.exceptions_unified import ProjectNotFoundError, StorageReadError, StorageWriteError
from minipm.scheduling.models import TaskInput

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _dt_to_str(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _dt_from_str(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


@dataclass
class TaskRecord:
    """A stored task."""

    id: int
    project_id: int
    title: str
    is_completed: bool = False
    due_date: Optional[datetime] = None
    # Persisted display position, written by the scheduler
    sort_order: int = 0
    created_at: datetime = field(default_factory=_utcnow)
    estimated_hours: int = 0
    dependencies: List[str] = field(default_factory=list)

    def to_task_input(self) -> TaskInput:
        return TaskInput(
            title=self.title,
            estimated_hours=self.estimated_hours,
            due_date=self.due_date,
            dependencies=tuple(self.dependencies),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "title": self.title,
            "is_completed": self.is_completed,
            "due_date": _dt_to_str(self.due_date),
            "sort_order": self.sort_order,
            "created_at": _dt_to_str(self.created_at),
            "estimated_hours": self.estimated_hours,
            "dependencies": list(self.dependencies),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TaskRecord":
        return cls(
            id=int(data["id"]),
            project_id=int(data["project_id"]),
            title=data["title"],
            is_completed=bool(data.get("is_completed", False)),
            due_date=_dt_from_str(data.get("due_date")),
            sort_order=int(data.get("sort_order", 0)),
            created_at=_dt_from_str(data.get("created_at")) or _utcnow(),
            estimated_hours=int(data.get("estimated_hours", 0)),
            dependencies=list(data.get("dependencies", [])),
        )


@dataclass
class ProjectRecord:
    """A stored project."""

    id: int
    title: str
    description: Optional[str] = None
    created_at: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "created_at": _dt_to_str(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProjectRecord":
        return cls(
            id=int(data["id"]),
            title=data["title"],
            description=data.get("description"),
            created_at=_dt_from_str(data.get("created_at")) or _utcnow(),
        )


class ProjectStore:
    """Thread-safe project/task store with all-or-nothing reorder writes.

    With ``storage_path=None`` nothing touches the disk.
    """

    def __init__(self, storage_path: Optional[str] = None) -> None:
        self.storage_path = os.path.expanduser(storage_path) if storage_path else None
        self._lock = threading.RLock()
        self._projects: Dict[int, ProjectRecord] = {}
        self._tasks: Dict[int, TaskRecord] = {}
        self._next_project_id = 1
        self._next_task_id = 1
        if self.storage_path:
            self._ensure_directory()
            self._load()

    def _ensure_directory(self) -> None:
        directory = os.path.dirname(self.storage_path)
        if directory:
            os.makedirs(directory, exist_ok=True)

    # ── Seeding ──────────────────────────────────────────────────────

    def add_project(self, title: str, description: Optional[str] = None) -> ProjectRecord:
        with self._lock:
            project = ProjectRecord(id=self._next_project_id, title=title, description=description)
            self._projects[project.id] = project
            self._next_project_id += 1
            self._flush_or_rollback(lambda: self._projects.pop(project.id))
            return project

    def add_task(
        self,
        project_id: int,
        title: str,
        due_date: Optional[datetime] = None,
        estimated_hours: int = 0,
        dependencies: Optional[Iterable[str]] = None,
        created_at: Optional[datetime] = None,
    ) -> TaskRecord:
        """Append a task to *project_id*, placed after its existing tasks."""
        with self._lock:
            self._require_project(project_id)
            existing = [t for t in self._tasks.values() if t.project_id == project_id]
            task = TaskRecord(
                id=self._next_task_id,
                project_id=project_id,
                title=title,
                due_date=due_date,
                sort_order=len(existing),
                estimated_hours=estimated_hours,
                dependencies=list(dependencies or []),
                created_at=created_at or _utcnow(),
            )
            self._tasks[task.id] = task
            self._next_task_id += 1
            self._flush_or_rollback(lambda: self._tasks.pop(task.id))
            return task

    # ── Queries ──────────────────────────────────────────────────────

    def get_project(self, project_id: int) -> ProjectRecord:
        with self._lock:
            return self._require_project(project_id)

    def list_tasks(self, project_id: int) -> List[TaskRecord]:
        """Copies of the tasks of *project_id* in stored display order."""
        with self._lock:
            self._require_project(project_id)
            tasks = [t for t in self._tasks.values() if t.project_id == project_id]
        tasks.sort(key=lambda t: (t.sort_order, t.id))
        return [replace(t, dependencies=list(t.dependencies)) for t in tasks]

    # ── Reordering ───────────────────────────────────────────────────

    def apply_sort_order(self, project_id: int, positions: Iterable[Tuple[int, int]]) -> int:
        """Write ``(position, task_id)`` pairs for one project.

        Every pair is checked before anything changes; if the write to disk
        fails the previous positions are restored.  Returns the number of
        tasks whose position changed.

        Raises:
            ProjectNotFoundError: unknown project.
            StorageWriteError: a task is missing or belongs to another
                project, or the file could not be written.
        """
        positions = list(positions)
        with self._lock:
            self._require_project(project_id)
            for _, task_id in positions:
                task = self._tasks.get(task_id)
                if task is None or task.project_id != project_id:
                    raise StorageWriteError(
                        f"Task {task_id} is not part of project {project_id}",
                        details={"project_id": project_id, "task_id": task_id},
                    )

            previous = {task_id: self._tasks[task_id].sort_order for _, task_id in positions}
            changed = 0
            for position, task_id in positions:
                task = self._tasks[task_id]
                if task.sort_order != position:
                    task.sort_order = position
                    changed += 1

            def restore() -> None:
                for task_id, sort_order in previous.items():
                    self._tasks[task_id].sort_order = sort_order

            if changed:
                self._flush_or_rollback(restore)
            logger.info("Project %d reordered: %d of %d tasks moved", project_id, changed, len(positions))
            return changed

    # ── Internal helpers ─────────────────────────────────────────────

    def _require_project(self, project_id: int) -> ProjectRecord:
        project = self._projects.get(project_id)
        if project is None:
            raise ProjectNotFoundError(project_id)
        return project

    def _flush_or_rollback(self, rollback) -> None:
        try:
            self._flush()
        except OSError as e:
            rollback()
            logger.error("Failed to save store to %s: %s", self.storage_path, e)
            raise StorageWriteError(f"Failed to save store: {e}") from e

    def _flush(self) -> None:
        if not self.storage_path:
            return
        data = {
            "next_project_id": self._next_project_id,
            "next_task_id": self._next_task_id,
            "projects": [p.to_dict() for p in self._projects.values()],
            "tasks": [t.to_dict() for t in self._tasks.values()],
        }
        directory = os.path.dirname(self.storage_path) or "."
        fd, tmp_path = tempfile.mkstemp(prefix=".store-", suffix=".json", dir=directory)
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(data, f, indent=2)
            os.replace(tmp_path, self.storage_path)
        except OSError:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise

    def _load(self) -> None:
        if not os.path.exists(self.storage_path):
            return
        try:
            with open(self.storage_path, "r") as f:
                data = json.load(f)
            projects = [ProjectRecord.from_dict(p) for p in data.get("projects", [])]
            tasks = [TaskRecord.from_dict(t) for t in data.get("tasks", [])]
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.error("Failed to load store from %s: %s", self.storage_path, e)
            raise StorageReadError(f"Failed to load store: {e}") from e

        self._projects = {p.id: p for p in projects}
        self._tasks = {t.id: t for t in tasks}
        self._next_project_id = int(data.get("next_project_id", max(self._projects, default=0) + 1))
        self._next_task_id = int(data.get("next_task_id", max(self._tasks, default=0) + 1))
        logger.info(
            "Loaded %d projects and %d tasks from %s",
            len(self._projects), len(self._tasks), self.storage_path,
        )
