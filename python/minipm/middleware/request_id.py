"""
Request ID Middleware for Correlation Tracking
Adds a unique request ID to every API call and to the log records it emits
"""
import logging
import time
import uuid
from contextvars import ContextVar
from typing import Callable, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

logger = logging.getLogger(__name__)

# Context variable to store request ID across async contexts
request_id_context: ContextVar[Optional[str]] = ContextVar("request_id", default=None)


class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    Middleware to add unique request IDs for correlation tracking.

    - Accepts an existing X-Request-ID header from clients
    - Echoes request_id in the response headers
    - Logs method, path, status and duration
    """

    def __init__(self, app: ASGIApp, header_name: str = "X-Request-ID"):
        super().__init__(app)
        self.header_name = header_name

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(self.header_name) or str(uuid.uuid4())
        token = request_id_context.set(request_id)
        request.state.request_id = request_id

        start_time = time.time()
        try:
            response = await call_next(request)
        finally:
            request_id_context.reset(token)

        duration = time.time() - start_time
        response.headers[self.header_name] = request_id
        logger.info(
            "Request completed",
            extra={
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "duration_ms": round(duration * 1000, 2),
            },
        )
        return response


def get_request_id() -> Optional[str]:
    """
    Get current request ID from context.

    Returns:
        Request ID string or None if not in request context
    """
    return request_id_context.get()


class RequestIDLogFilter(logging.Filter):
    """Attach the current request ID to every record passing through."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "request_id"):
            record.request_id = get_request_id()
        return True
