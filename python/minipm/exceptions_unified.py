"""
UnifiedError System - Consolidated error handling for MiniPM.

Single exception hierarchy shared by the scheduler, the project store and
the HTTP layer:
- Consistent error context and metadata
- Machine-checkable reason codes for scheduling failures
- API-safe serialisation (no stack traces in responses)

Scheduling failures are data-shape failures: none of them is transient, so
nothing in this module retries.
"""

import traceback
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence


# ============================================================================
# Enums & Constants
# ============================================================================

class ErrorSeverity(Enum):
    """Error severity levels."""
    CRITICAL = "critical"      # System failure, immediate attention required
    ERROR = "error"            # Operation failure, user impacted
    WARNING = "warning"        # Caller must fix input
    INFO = "info"              # Informational, no action needed


class ErrorCategory(Enum):
    """Error categories for classification and routing."""
    VALIDATION = "validation"           # Input validation failure
    SCHEDULING = "scheduling"           # Dependency graph cannot be ordered
    NOT_FOUND = "not_found"             # Requested entity does not exist
    STORAGE = "storage"                 # Persistence failure
    INTERNAL = "internal"               # Internal invariant violated


class SchedulingErrorCode(str, Enum):
    """Reason codes surfaced to callers of the scheduler."""

    INVALID_TASK = "InvalidTask"
    DUPLICATE_TITLE = "DuplicateTitle"
    UNKNOWN_DEPENDENCY = "UnknownDependency"
    INFEASIBLE_DEPENDENCIES = "InfeasibleDependencies"


# ============================================================================
# Data Classes
# ============================================================================

@dataclass
class ErrorContext:
    """Rich error context with metadata."""
    error_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    severity: ErrorSeverity = ErrorSeverity.ERROR
    category: ErrorCategory = ErrorCategory.INTERNAL
    message: str = ""
    user_message: str = ""
    details: Dict[str, Any] = field(default_factory=dict)
    stack_trace: Optional[str] = None
    is_recoverable: bool = True
    http_status: int = 500

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary (excludes stack trace for API responses)."""
        return {
            "error_id": self.error_id,
            "timestamp": self.timestamp.isoformat(),
            "severity": self.severity.value,
            "category": self.category.value,
            "message": self.message,
            "user_message": self.user_message,
            "details": self.details,
            "is_recoverable": self.is_recoverable,
            "http_status": self.http_status,
        }


# ============================================================================
# Exception Hierarchy
# ============================================================================

class MiniPMException(Exception):
    """Base exception for all MiniPM errors with rich context."""

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.INTERNAL,
        severity: ErrorSeverity = ErrorSeverity.ERROR,
        details: Optional[Dict[str, Any]] = None,
        is_recoverable: bool = True,
        http_status: int = 500,
        user_message: Optional[str] = None,
    ):
        """Initialize exception with full context."""
        self.message = message
        self.category = category
        self.severity = severity
        self.details = details or {}
        self.is_recoverable = is_recoverable
        self.http_status = http_status
        self.user_message = user_message or message

        stack = traceback.format_exc()
        self.context = ErrorContext(
            severity=severity,
            category=category,
            message=message,
            user_message=self.user_message,
            details=self.details,
            stack_trace=None if stack.startswith("NoneType: None") else stack,
            is_recoverable=is_recoverable,
            http_status=http_status,
        )

        super().__init__(self.message)

    def __str__(self) -> str:
        return f"{self.category.value}: {self.message}"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return self.context.to_dict()

    def to_api_response(self) -> Dict[str, Any]:
        """Body returned to HTTP clients."""
        return {"error": self.user_message, "details": self.details}


# ============================================================================
# Validation Errors
# ============================================================================

class ValidationError(MiniPMException):
    """Validation error (input/schema validation failed)."""
    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("category", ErrorCategory.VALIDATION)
        kwargs.setdefault("severity", ErrorSeverity.WARNING)
        kwargs.setdefault("http_status", 400)
        super().__init__(message, **kwargs)


# ============================================================================
# Scheduling Errors
# ============================================================================

class SchedulingError(ValidationError):
    """Base for every failure the scheduler can report.

    ``code`` is the machine-checkable reason; ``details`` carries the
    offending title(s).  The caller must fix its input before retrying.
    """

    code: SchedulingErrorCode

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("is_recoverable", False)
        super().__init__(message, **kwargs)

    def to_api_response(self) -> Dict[str, Any]:
        return {
            "error": self.user_message,
            "code": self.code.value,
            "details": self.details,
        }


class InvalidTaskError(SchedulingError):
    """A task descriptor has an empty title or a bad hours estimate."""

    code = SchedulingErrorCode.INVALID_TASK

    def __init__(self, title: Any, reason: str) -> None:
        self.title = title
        self.reason = reason
        super().__init__(
            f"Invalid task {title!r}: {reason}",
            details={"task": title, "reason": reason},
        )


class DuplicateTitleError(SchedulingError):
    """Two or more tasks share a title (case-insensitive)."""

    code = SchedulingErrorCode.DUPLICATE_TITLE

    def __init__(self, titles: Sequence[str]) -> None:
        self.titles = list(titles)
        super().__init__(
            f"Duplicate task titles: {', '.join(repr(t) for t in self.titles)}",
            details={"titles": self.titles},
            user_message="Task titles must be unique",
        )


class UnknownDependencyError(SchedulingError):
    """A task depends on a title that is not part of the run."""

    code = SchedulingErrorCode.UNKNOWN_DEPENDENCY

    def __init__(self, task: str, dependency: str) -> None:
        self.task = task
        self.dependency = dependency
        super().__init__(
            f"Unknown dependency '{dependency}' for task '{task}'",
            details={"task": task, "dependency": dependency},
        )


class InfeasibleDependenciesError(SchedulingError):
    """The dependency graph has a cycle, so no total order exists."""

    code = SchedulingErrorCode.INFEASIBLE_DEPENDENCIES

    def __init__(self, unresolved: List[str]) -> None:
        self.unresolved = list(unresolved)
        super().__init__(
            f"Cyclic or unresolved dependencies detected among: {', '.join(self.unresolved)}",
            category=ErrorCategory.SCHEDULING,
            details={"unresolved": self.unresolved},
        )


# ============================================================================
# Lookup & Storage Errors
# ============================================================================

class NotFoundError(MiniPMException):
    """Requested entity does not exist."""
    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("category", ErrorCategory.NOT_FOUND)
        kwargs.setdefault("severity", ErrorSeverity.INFO)
        kwargs.setdefault("http_status", 404)
        kwargs.setdefault("is_recoverable", False)
        super().__init__(message, **kwargs)


class ProjectNotFoundError(NotFoundError):
    """No project with the given id."""

    def __init__(self, project_id: int) -> None:
        self.project_id = project_id
        super().__init__(
            f"Project {project_id} not found",
            details={"project_id": project_id},
            user_message="Project not found",
        )


class StorageError(MiniPMException):
    """Base storage error."""
    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("category", ErrorCategory.STORAGE)
        kwargs.setdefault("severity", ErrorSeverity.ERROR)
        kwargs.setdefault("http_status", 500)
        super().__init__(message, **kwargs)


class StorageReadError(StorageError):
    """Persisted state could not be loaded."""
    pass


class StorageWriteError(StorageError):
    """Persisting a change failed; nothing was applied."""
    pass


class ProjectionError(MiniPMException):
    """A scheduled title cannot be mapped to exactly one record (internal invariant)."""

    def __init__(self, title: str, reason: str = "has no matching record") -> None:
        self.title = title
        super().__init__(
            f"Scheduled task {title!r} {reason}",
            category=ErrorCategory.INTERNAL,
            severity=ErrorSeverity.CRITICAL,
            details={"title": title},
            is_recoverable=False,
            user_message="Server error generating schedule",
        )
