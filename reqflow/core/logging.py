from __future__ import annotations

import json
import logging
import sys
import time
import uuid
from datetime import datetime, timezone
from typing import Any

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

# Attributes copied from ``extra=`` into the JSON line when present.
LOG_FIELDS = (
    "request_id",
    "user_id",
    "path",
    "method",
    "status_code",
    "latency_ms",
    "error_type",
    "work_request",
    "action",
    "actor_role",
    "result_status",
)


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update({key: getattr(record, key) for key in LOG_FIELDS if hasattr(record, key)})
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def configure_logging(level: str = "INFO") -> None:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())
    logging.basicConfig(level=level.upper(), handlers=[handler], force=True)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Tags each request with an ``X-Request-Id`` and logs its outcome.

    Denied (403) and conflicting (409) workflow calls are also reported on the
    ``security`` and ``reqflow.workflow`` loggers.
    """

    def __init__(self, app, logger_name: str = "request") -> None:
        super().__init__(app)
        self.logger = logging.getLogger(logger_name)

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        request.state.request_id = request_id
        start = time.perf_counter()

        def context(**fields: Any) -> dict[str, Any]:
            return {
                "request_id": request_id,
                "path": request.url.path,
                "method": request.method,
                "latency_ms": round((time.perf_counter() - start) * 1000, 2),
                # Set by get_current_user once the session is resolved.
                "user_id": getattr(request.state, "user_id", None),
                **fields,
            }

        try:
            response = await call_next(request)
        except Exception:
            self.logger.exception("unhandled_exception", extra=context())
            raise

        extra = context(status_code=response.status_code)
        self.logger.info("request", extra=extra)
        if response.status_code == 403:
            logging.getLogger("security").info("forbidden", extra=extra)
        elif response.status_code == 409:
            logging.getLogger("reqflow.workflow").warning("conflict_response", extra=extra)

        response.headers["X-Request-Id"] = request_id
        return response
