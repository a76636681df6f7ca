from __future__ import annotations

import logging

from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.orm import Session

from reqflow.core.errors import WorkflowError, handle_workflow_error
from reqflow.core.logging import RequestLoggingMiddleware, configure_logging
from reqflow.core.observability import PrometheusMiddleware, metrics_endpoint, update_pending_metric
from reqflow.core.settings import settings
from reqflow.db.session import get_db
from reqflow.routers import auth, requests
from reqflow.services.requests import count_pending

configure_logging(level=settings.log_level)
logger = logging.getLogger(__name__)

ROUTERS = (auth.router, requests.router)


def _check_production_settings() -> None:
    if not settings.is_production:
        return
    if any(origin.strip() == "*" for origin in settings.allow_origins):
        raise RuntimeError("ALLOW_ORIGINS cannot include '*' in production")
    if settings.jwt_secret.startswith("change_me"):
        raise RuntimeError("JWT_SECRET must be set in production")


def create_app() -> FastAPI:
    _check_production_settings()
    application = FastAPI(title=settings.project_name, version=settings.project_version)

    # Always allow localhost during development.
    allow_origin_regex = None
    if not settings.is_production:
        allow_origin_regex = r"^http://(localhost|127\.0\.0\.1)(:\d+)?$"

    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allow_origins,
        allow_origin_regex=allow_origin_regex,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "If-Match", "X-Request-Id", "Accept"],
    )
    application.add_middleware(PrometheusMiddleware)
    application.add_middleware(RequestLoggingMiddleware)

    application.add_exception_handler(WorkflowError, handle_workflow_error)
    application.add_api_route(
        "/metrics", metrics_endpoint, methods=["GET"], tags=["observability"], include_in_schema=False
    )

    for router in ROUTERS:
        application.include_router(router)

    @application.get("/api/health", tags=["health"])
    @application.get("/healthz", tags=["health"], include_in_schema=False)
    def healthcheck(db: Session = Depends(get_db)) -> dict[str, str | int]:
        """Database connectivity plus the size of the pending queue."""
        try:
            db.execute(text("SELECT 1"))
            pending = count_pending(db)
        except Exception as exc:  # pragma: no cover - runtime health check
            logger.error("healthcheck_failed", exc_info=True)
            raise HTTPException(status_code=503, detail="Service unavailable") from exc
        update_pending_metric(pending)
        return {"status": "ok", "database": "ok", "pending_requests": pending}

    @application.get("/version", tags=["health"])
    def version() -> dict[str, str]:
        return {
            "version": settings.project_version,
            "environment": settings.environment,
        }

    return application


app = create_app()
