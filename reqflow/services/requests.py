"""Persistence side of the approval workflow.

Each mutating function runs the read-check-write of one action inside the
caller's transaction: the row is loaded ``FOR UPDATE`` and the write is a
compare-and-swap on ``ServiceRequest.version``. Callers commit on success; on
any error nothing from the action has been persisted.
"""

from __future__ import annotations

import logging
import re
from typing import Optional

from sqlalchemy import cast, func, or_, select
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload
from sqlalchemy.orm.exc import StaleDataError

from reqflow.core import errors
from reqflow.core.observability import workflow_conflicts_total
from reqflow.models.enums import RequestStatus, RequestType, Role
from reqflow.models.request import ServiceRequest
from reqflow.models.sequence import RequestSequence
from reqflow.models.user import User
from reqflow.services import workflow

logger = logging.getLogger("reqflow.workflow")

REQUEST_SEQUENCE = "request"
_REQUEST_ID = re.compile(r"^req-(\d+)$")


def format_request_id(number: int) -> str:
    return f"req-{number:03d}"


def parse_request_number(request_id: str) -> Optional[int]:
    match = _REQUEST_ID.match(request_id or "")
    return int(match.group(1)) if match else None


def _max_existing_number(db: Session) -> int:
    numbers = (parse_request_number(value) for value in db.execute(select(ServiceRequest.id)).scalars())
    return max((n for n in numbers if n is not None), default=0)


def next_request_id(db: Session) -> str:
    """Reserve the next ``req-NNN`` id.

    The counter row stays locked until the surrounding transaction ends, so
    concurrent creators are serialised. The counter is seeded from the highest
    id already stored the first time it is needed.
    """
    sequence = db.execute(
        select(RequestSequence).where(RequestSequence.name == REQUEST_SEQUENCE).with_for_update()
    ).scalar_one_or_none()
    if sequence is None:
        sequence = RequestSequence(name=REQUEST_SEQUENCE, last_value=_max_existing_number(db))
        db.add(sequence)
    sequence.last_value += 1
    db.flush()
    return format_request_id(sequence.last_value)


def build_request(
    *,
    request_id: str,
    requester: User,
    request_type: RequestType,
    payload: list[dict],
) -> ServiceRequest:
    """A new PENDING request waiting on the first role of its chain."""
    return ServiceRequest(
        id=request_id,
        requester=requester,
        requester_id=requester.id,
        requester_name=requester.name,
        department=requester.department,
        request_type=request_type,
        payload=list(payload),
        status=RequestStatus.PENDING,
        current_approver=workflow.first_approver(request_type),
        approval_history=[],
        rejection_reason=None,
    )


def _conflict(db: Session, operation: str, request_id: Optional[str]) -> errors.ConcurrencyConflictError:
    db.rollback()
    workflow_conflicts_total.labels(operation=operation).inc()
    logger.warning("request_conflict", extra={"work_request": request_id, "action": operation})
    subject = f"Request {request_id}" if request_id else "The request"
    return errors.ConcurrencyConflictError(f"{subject} was changed by someone else; refresh and try again")


def create_request(
    db: Session,
    *,
    requester: User,
    request_type: RequestType,
    payload: list[dict],
) -> ServiceRequest:
    if not payload:
        raise errors.ValidationError("At least one detail record is required")
    request_type = RequestType(request_type)
    try:
        request_id = next_request_id(db)
        request = build_request(
            request_id=request_id,
            requester=requester,
            request_type=request_type,
            payload=payload,
        )
        db.add(request)
        db.flush()
    except IntegrityError as exc:
        raise _conflict(db, "create", None) from exc

    logger.info(
        "request_created",
        extra={
            "work_request": request.id,
            "action": "created",
            "actor_role": requester.role.value,
            "user_id": requester.id,
            "result_status": request.status.value,
        },
    )
    return request


def get_request(db: Session, request_id: str, *, for_update: bool = False) -> ServiceRequest:
    stmt = select(ServiceRequest).where(ServiceRequest.id == request_id)
    if for_update:
        # Re-read under the lock so checks run against the committed row.
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    request = db.execute(stmt).scalar_one_or_none()
    if request is None:
        raise errors.NotFoundError(f"Request {request_id} not found")
    return request


def _lock_request(db: Session, request_id: str, expected_version: Optional[int]) -> ServiceRequest:
    request = get_request(db, request_id, for_update=True)
    if expected_version is not None and request.version != expected_version:
        raise _conflict(db, "version_check", request_id)
    return request


def _flush(db: Session, request: ServiceRequest, operation: str) -> ServiceRequest:
    request_id = request.id
    try:
        db.flush()
    except StaleDataError as exc:
        raise _conflict(db, operation, request_id) from exc
    return request


def approve_request(
    db: Session,
    *,
    request_id: str,
    user: User,
    expected_version: Optional[int] = None,
) -> ServiceRequest:
    request = _lock_request(db, request_id, expected_version)
    workflow.apply_approval(request, user)
    return _flush(db, request, "approve")


def reject_request(
    db: Session,
    *,
    request_id: str,
    user: User,
    reason: Optional[str],
    expected_version: Optional[int] = None,
) -> ServiceRequest:
    request = _lock_request(db, request_id, expected_version)
    workflow.apply_rejection(request, user, reason)
    return _flush(db, request, "reject")


def set_letter_number(
    db: Session,
    *,
    request_id: str,
    file_id: str,
    user: User,
    letter_number: Optional[str],
    expected_version: Optional[int] = None,
) -> ServiceRequest:
    """Fill in the dispatch letter number of one file, once."""
    request = _lock_request(db, request_id, expected_version)
    if request.requester_id != user.id:
        raise errors.AuthorizationError("Only the requester can set letter numbers on this request")
    if request.request_type != RequestType.FILE_TRANSFER:
        raise errors.ValidationError("Letter numbers only apply to file transfer requests")
    cleaned = (letter_number or "").strip()
    if not cleaned:
        raise errors.ValidationError("A letter number is required")

    files = [dict(item) for item in request.payload or []]
    for item in files:
        if item.get("id") == file_id:
            break
    else:
        raise errors.NotFoundError(f"File {file_id} not found on request {request_id}")
    if (item.get("letter_number") or "").strip():
        raise errors.ValidationError("The letter number has already been set and cannot be changed")
    item["letter_number"] = cleaned
    request.payload = files
    return _flush(db, request, "letter_number")


def _newest_first(stmt):
    return stmt.order_by(ServiceRequest.created_at.desc(), ServiceRequest.id.desc())


def list_inbox(db: Session, user: User) -> list[ServiceRequest]:
    """Requests the user should see on their main list.

    Requesters get everything they submitted; approvers get the pending
    requests currently waiting on their role that they are allowed to act on.
    """
    if user.role == Role.REQUESTER:
        stmt = _newest_first(select(ServiceRequest).where(ServiceRequest.requester_id == user.id))
        return list(db.execute(stmt).scalars())
    stmt = _newest_first(
        select(ServiceRequest)
        .where(
            ServiceRequest.status == RequestStatus.PENDING,
            ServiceRequest.current_approver == user.role,
        )
        # can_act reads the requester's groups.
        .options(selectinload(ServiceRequest.requester))
    )
    return [request for request in db.execute(stmt).scalars() if workflow.can_act(user, request)]


def history_statement(user: User, dialect_name: str):
    """Candidate rows for :func:`list_history`.

    PostgreSQL narrows the JSONB history with containment on the approver id
    or name; other backends return every row. Either way the result is
    refined by ``workflow.involves_user``.
    """
    stmt = select(ServiceRequest)
    if dialect_name == "postgresql":
        history = cast(ServiceRequest.approval_history, JSONB)
        stmt = stmt.where(
            or_(
                ServiceRequest.requester_id == user.id,
                history.contains([{"approver_id": user.id}]),
                history.contains([{"approver_name": user.name}]),
            )
        )
    return _newest_first(stmt)


def list_history(db: Session, user: User) -> list[ServiceRequest]:
    stmt = history_statement(user, db.get_bind().dialect.name)
    return [request for request in db.execute(stmt).scalars() if workflow.involves_user(request, user)]


def get_visible_request(db: Session, request_id: str, user: User) -> ServiceRequest:
    request = get_request(db, request_id)
    if workflow.involves_user(request, user) or workflow.can_act(user, request):
        return request
    raise errors.AuthorizationError(f"You are not permitted to view request {request_id}")


def count_pending(db: Session) -> int:
    stmt = select(func.count()).select_from(ServiceRequest).where(ServiceRequest.status == RequestStatus.PENDING)
    return int(db.execute(stmt).scalar_one())


def refresh_interval_for(user: User, *, approver_seconds: int, requester_seconds: int) -> int:
    return requester_seconds if user.role == Role.REQUESTER else approver_seconds

