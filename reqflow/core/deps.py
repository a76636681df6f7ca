from __future__ import annotations

import json
import logging
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from jose import JWTError
from sqlalchemy.orm import Session

from reqflow.core.security import decode_token, token_from_request
from reqflow.core.token_blacklist import is_token_revoked
from reqflow.db.session import get_db
from reqflow.models.user import User

security_logger = logging.getLogger("security")


def log_auth_event(event: str, *, request: Request, **fields) -> None:
    """One JSON line per authentication event on the ``security`` logger."""
    payload = {
        "event": event,
        "request_id": getattr(request.state, "request_id", None) or request.headers.get("x-request-id"),
        "path": request.url.path,
        "client": request.client.host if request.client else None,
        **fields,
    }
    security_logger.info(json.dumps(payload, default=str))


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_session_token(request: Request) -> str:
    token = token_from_request(request)
    if not token:
        log_auth_event("session_missing", request=request)
        raise _unauthorized("Please sign in first")
    return token


def _session_user_id(token: str) -> Optional[int]:
    try:
        subject = decode_token(token).get("sub")
        return int(subject) if subject is not None else None
    except (JWTError, ValueError, TypeError):
        return None


def get_current_user(
    request: Request,
    token: str = Depends(get_session_token),
    db: Session = Depends(get_db),
) -> User:
    expired = _unauthorized("Your session has expired, please sign in again")
    if is_token_revoked(db, token):
        log_auth_event("token_revoked", request=request)
        raise expired

    user_id = _session_user_id(token)
    if user_id is None:
        log_auth_event("token_invalid", request=request)
        raise expired

    user = db.get(User, user_id)
    if user is None or not user.is_active:
        log_auth_event("user_inactive_or_missing", request=request, user_id=user_id)
        raise expired

    # Picked up by the request logging middleware.
    request.state.user_id = user.id
    return user
