"""Workflow error taxonomy and the FastAPI handlers that turn it into responses."""

from __future__ import annotations

import logging

from fastapi import Request, status
from fastapi.responses import JSONResponse

logger = logging.getLogger("reqflow.errors")

__all__ = [
    "WorkflowError",
    "AuthorizationError",
    "ValidationError",
    "InvalidStateError",
    "ConcurrencyConflictError",
    "NotFoundError",
    "handle_workflow_error",
]


class WorkflowError(Exception):
    """Base class for errors raised by a single workflow action.

    None of these is retried by the server; the action that raised it has
    not been persisted.
    """

    status_code: int = status.HTTP_400_BAD_REQUEST
    error_code: str = "workflow_error"

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


class AuthorizationError(WorkflowError):
    status_code = status.HTTP_403_FORBIDDEN
    error_code = "not_authorised"


class ValidationError(WorkflowError):
    status_code = status.HTTP_400_BAD_REQUEST
    error_code = "validation_failed"


class InvalidStateError(WorkflowError):
    status_code = status.HTTP_409_CONFLICT
    error_code = "not_pending"


class ConcurrencyConflictError(WorkflowError):
    """Another writer changed the request first. Re-fetch and retry once."""

    status_code = status.HTTP_409_CONFLICT
    error_code = "state_changed"


class NotFoundError(WorkflowError):
    status_code = status.HTTP_404_NOT_FOUND
    error_code = "not_found"


# fastapi docs on error handlers: https://fastapi.tiangolo.com/tutorial/handling-errors/
async def handle_workflow_error(request: Request, exc: WorkflowError) -> JSONResponse:
    logger.warning(
        "workflow_error",
        extra={
            "request_id": getattr(request.state, "request_id", None),
            "path": request.url.path,
            "method": request.method,
            "status_code": exc.status_code,
            "error_type": type(exc).__name__,
        },
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "error": exc.error_code},
    )
