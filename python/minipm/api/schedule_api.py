"""
MiniPM scheduler: FastAPI application entry point.

Provides REST API for task ordering:
- /health: service health status
- /api/v1/projects/{id}/schedule: dependency- and priority-aware order
- /api/projects/{id}/schedule, /api/projects/{id}/schedule/generate,
  /api/schedule: deadline order (due date, then creation time)

Computed orders are written back to the project's stored tasks in a single
all-or-nothing store update.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from minipm.config.settings import get_settings
from minipm.di_container import get_container, shutdown_container
from minipm.enhanced_logging import configure_logging
from minipm.exceptions_unified import MiniPMException, ValidationError
from minipm.middleware.request_id import RequestIDLogFilter, RequestIDMiddleware
from minipm.scheduling import TaskInput, due_sort_key, project_order, schedule_tasks

logger = logging.getLogger(__name__)

SERVER_ERROR = "Server error generating schedule"


# ---------------------------------------------------------------------------
# Request / Response models
# ---------------------------------------------------------------------------


class TaskPayload(BaseModel):
    """One task as posted by the client (camelCase or snake_case)."""

    model_config = ConfigDict(populate_by_name=True)

    title: str = ""
    estimated_hours: int = Field(default=0, alias="estimatedHours")
    due_date: Optional[datetime] = Field(default=None, alias="dueDate")
    dependencies: Optional[List[str]] = None

    def to_task_input(self) -> TaskInput:
        return TaskInput(
            title=self.title,
            estimated_hours=self.estimated_hours,
            due_date=self.due_date,
            dependencies=tuple(self.dependencies or ()),
        )


class SchedulerRequest(BaseModel):
    tasks: Optional[List[TaskPayload]] = None


class SchedulerResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    recommended_order: List[str] = Field(alias="recommendedOrder")


class ProjectIdRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    project_id: int = Field(default=0, alias="projectId")


# ---------------------------------------------------------------------------
# Application lifecycle
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(application: FastAPI):
    settings = get_settings()
    handler = configure_logging(settings.log_level, settings.log_format)
    handler.addFilter(RequestIDLogFilter())
    logger.info("%s %s starting up (%s)", settings.app_name, settings.app_version, settings.environment)
    yield
    shutdown_container()
    logger.info("%s shutting down", settings.app_name)


_settings = get_settings()

app = FastAPI(
    title=_settings.app_name,
    version=_settings.app_version,
    description="Dependency-aware task scheduling for MiniPM projects",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestIDMiddleware)


@app.exception_handler(MiniPMException)
async def minipm_exception_handler(request: Request, exc: MiniPMException):
    if exc.http_status >= 500:
        logger.error("Request %s failed: %s", request.url.path, exc.message)
    return JSONResponse(status_code=exc.http_status, content=exc.to_api_response())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    # Malformed bodies answer 400 with the same {"error": ...} shape as other failures
    errors = exc.errors()
    first = errors[0] if errors else {}
    where = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    message = f"Invalid request: {where} {first.get('msg', '')}".strip()
    logger.info("Rejected malformed request to %s: %s", request.url.path, message)
    return JSONResponse(status_code=400, content={"error": message})


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


@app.get("/health")
async def health():
    """Health check."""
    settings = get_container().settings
    return {
        "status": "healthy",
        "app": settings.app_name,
        "version": settings.app_version,
    }


@app.post("/api/v1/projects/{project_id}/schedule", response_model=SchedulerResponse, response_model_by_alias=True)
async def project_schedule_v1(project_id: int, req: Optional[SchedulerRequest] = None):
    """Order a project's tasks by dependencies, due date and effort.

    Tasks in the body are scheduled when given; otherwise the project's
    stored tasks are.  Stored tasks matching a scheduled title get its
    position as their sort order.
    """
    container = get_container()
    store = container.store
    try:
        records = store.list_tasks(project_id)
        explicit = bool(req and req.tasks)
        if explicit:
            limit = container.settings.max_tasks_per_request
            if len(req.tasks) > limit:
                raise ValidationError(
                    f"Too many tasks: {len(req.tasks)} (limit {limit})",
                    details={"count": len(req.tasks), "limit": limit},
                )
            inputs = [t.to_task_input() for t in req.tasks]
        else:
            inputs = [r.to_task_input() for r in records]

        result = schedule_tasks(inputs)

        # Explicit payloads may name tasks that were never stored
        positions = project_order(
            result.order,
            records,
            title_of=lambda r: r.title,
            id_of=lambda r: r.id,
            strict=not explicit,
        )
        store.apply_sort_order(project_id, positions)
    except MiniPMException:
        raise
    except Exception:
        logger.exception("Scheduler failed for project %d", project_id)
        return JSONResponse(status_code=500, content={"error": SERVER_ERROR})

    return SchedulerResponse(recommended_order=list(result.order))


@app.post("/api/projects/{project_id}/schedule")
async def project_schedule(project_id: int):
    return _deadline_schedule(project_id)


@app.post("/api/projects/{project_id}/schedule/generate")
async def project_schedule_generate(project_id: int):
    return _deadline_schedule(project_id)


@app.post("/api/schedule")
async def global_schedule(req: Optional[ProjectIdRequest] = None):
    if req is None or req.project_id <= 0:
        return JSONResponse(status_code=400, content={"error": "projectId required"})
    return _deadline_schedule(req.project_id)


def _deadline_schedule(project_id: int) -> Dict[str, Any]:
    """Order stored tasks by due date (undated last), then creation time."""
    store = get_container().store
    try:
        ordered = sorted(
            store.list_tasks(project_id),
            key=lambda t: (due_sort_key(t.due_date), due_sort_key(t.created_at)[1], t.id),
        )
        store.apply_sort_order(project_id, [(i, t.id) for i, t in enumerate(ordered)])
    except MiniPMException:
        raise
    except Exception:
        logger.exception("Failed to generate schedule for project %d", project_id)
        return JSONResponse(status_code=500, content={"error": SERVER_ERROR})

    return {
        "projectId": project_id,
        "schedule": [
            {
                "id": t.id,
                "title": t.title,
                "dueDate": t.due_date.isoformat() if t.due_date else None,
                "isCompleted": t.is_completed,
                "sortOrder": i,
            }
            for i, t in enumerate(ordered)
        ],
    }


def run() -> None:
    """Serve the API with uvicorn using the configured host and port."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(app, host=settings.api_host, port=settings.api_port)


if __name__ == "__main__":
    run()
