"""Approval routing and the per-request state machine.

Functions here only touch the ``ServiceRequest`` instance they are given; the
caller owns the session, the row lock and the commit (see
``reqflow.services.requests``).
"""

from __future__ import annotations

import logging
from datetime import datetime
from types import MappingProxyType
from typing import Mapping, Optional

from reqflow.core import errors
from reqflow.core.observability import workflow_decisions_total
from reqflow.db.base import utcnow
from reqflow.models.enums import RequestStatus, RequestType, Role
from reqflow.models.request import ServiceRequest
from reqflow.models.user import User

logger = logging.getLogger("reqflow.workflow")

REJECTION_REASON_MAX_LENGTH = 500

APPROVAL_HIERARCHY: Mapping[RequestType, tuple[Role, ...]] = MappingProxyType(
    {
        RequestType.FILE_TRANSFER: (Role.GROUP_LEAD, Role.DEPUTY, Role.NETWORK_HEAD, Role.NETWORK_ADMIN),
        RequestType.BACKUP: (Role.GROUP_LEAD, Role.NETWORK_HEAD, Role.NETWORK_ADMIN),
        RequestType.VDI: (Role.DEPUTY, Role.NETWORK_HEAD, Role.NETWORK_ADMIN),
    }
)


def hierarchy_for(request_type: RequestType | str | None) -> tuple[Role, ...]:
    # Unknown types fall back to the full file-transfer chain.
    try:
        key = RequestType(request_type)
    except ValueError:
        return APPROVAL_HIERARCHY[RequestType.FILE_TRANSFER]
    return APPROVAL_HIERARCHY[key]


def first_approver(request_type: RequestType) -> Role:
    return hierarchy_for(request_type)[0]


def requester_group_ids(request: ServiceRequest) -> frozenset[int]:
    requester = request.requester
    if requester is None:
        return frozenset()
    return requester.group_set


def shares_group(user: User, request: ServiceRequest) -> bool:
    """Group half of the authorization rule.

    Administrators (group 0) pass unconditionally. A requester with no groups
    on record is visible to every approver of the right role.
    """
    if user.is_group_admin:
        return True
    requester_groups = requester_group_ids(request)
    if not requester_groups:
        return True
    return bool(user.group_set & requester_groups)


def can_act(user: User, request: ServiceRequest) -> bool:
    if request.status != RequestStatus.PENDING:
        return False
    if request.current_approver is None or request.current_approver != user.role:
        return False
    return shares_group(user, request)


def _require_can_act(user: User, request: ServiceRequest) -> None:
    if request.status != RequestStatus.PENDING:
        raise errors.InvalidStateError(f"Request {request.id} is not pending and can no longer be acted upon")
    if request.current_approver != user.role:
        raise errors.AuthorizationError(
            f"Request {request.id} is waiting for {_role_label(request.current_approver)}, not {user.role.value}"
        )
    if not shares_group(user, request):
        raise errors.AuthorizationError(f"You are not permitted to act on request {request.id}")


def _role_label(role: Optional[Role]) -> str:
    return role.value if role is not None else "nobody"


def validate_rejection_reason(reason: Optional[str]) -> str:
    cleaned = (reason or "").strip()
    if not cleaned:
        raise errors.ValidationError("A rejection reason is required")
    if len(cleaned) > REJECTION_REASON_MAX_LENGTH:
        raise errors.ValidationError(
            f"Rejection reason must be at most {REJECTION_REASON_MAX_LENGTH} characters"
        )
    return cleaned


def _history_entry(
    user: User,
    status: RequestStatus,
    decided_at: datetime,
    rejection_reason: Optional[str] = None,
) -> dict:
    entry = {
        "approver_role": user.role.value,
        "approver_name": user.name,
        "approver_id": user.id,
        "status": status.value,
        "date": decided_at.isoformat(),
    }
    if rejection_reason is not None:
        entry["rejection_reason"] = rejection_reason
    return entry


def _log_transition(request: ServiceRequest, user: User, action: str) -> None:
    workflow_decisions_total.labels(request_type=request.request_type.value, action=action).inc()
    logger.info(
        "request_%s",
        action,
        extra={
            "work_request": request.id,
            "action": action,
            "actor_role": user.role.value,
            "user_id": user.id,
            "result_status": request.status.value,
        },
    )


def apply_approval(request: ServiceRequest, user: User, *, now: Optional[datetime] = None) -> ServiceRequest:
    """Record ``user``'s approval and advance the request one step.

    Approval by the last role in the chain completes the request.
    """
    _require_can_act(user, request)
    hierarchy = hierarchy_for(request.request_type)
    if user.role not in hierarchy:
        raise errors.InvalidStateError(f"Request {request.id} has no approval step for {user.role.value}")
    idx = hierarchy.index(user.role)
    is_last = idx == len(hierarchy) - 1

    entry = _history_entry(
        user,
        RequestStatus.COMPLETED if is_last else RequestStatus.APPROVED,
        now or utcnow(),
    )
    request.approval_history = [*(request.approval_history or []), entry]
    request.status = RequestStatus.COMPLETED if is_last else RequestStatus.PENDING
    request.current_approver = None if is_last else hierarchy[idx + 1]

    _log_transition(request, user, "completed" if is_last else "approved")
    return request


def apply_rejection(
    request: ServiceRequest,
    user: User,
    reason: Optional[str],
    *,
    now: Optional[datetime] = None,
) -> ServiceRequest:
    """Reject the request outright; the remaining chain is skipped."""
    _require_can_act(user, request)
    cleaned = validate_rejection_reason(reason)

    entry = _history_entry(user, RequestStatus.REJECTED, now or utcnow(), rejection_reason=cleaned)
    request.approval_history = [*(request.approval_history or []), entry]
    request.status = RequestStatus.REJECTED
    request.current_approver = None
    request.rejection_reason = cleaned

    _log_transition(request, user, "rejected")
    return request


def involves_user(request: ServiceRequest, user: User) -> bool:
    """True when ``user`` created the request or appears in its history."""
    if request.requester_id == user.id:
        return True
    for entry in request.approval_history or []:
        approver_id = entry.get("approver_id")
        if approver_id is not None:
            if approver_id == user.id:
                return True
        elif entry.get("approver_name") == user.name:
            return True
    return False
