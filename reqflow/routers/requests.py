from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Header, status
from sqlalchemy.orm import Session

from reqflow.core import errors
from reqflow.core.deps import get_current_user
from reqflow.core.settings import settings
from reqflow.db.session import get_db
from reqflow.models.user import User
from reqflow.schemas.payload import RequestCreate
from reqflow.schemas.request import (
    LetterNumberPayload,
    LetterNumberRead,
    RefreshInterval,
    RejectionPayload,
    RequestRead,
)
from reqflow.services import requests as request_service

router = APIRouter(prefix="/api/requests", tags=["requests"])


def _expected_version(if_match: Optional[str]) -> Optional[int]:
    if if_match is None:
        return None
    raw = if_match.strip()
    # "*" matches whatever version is current.
    if raw == "*":
        return None
    raw = raw.strip('"')
    if raw.startswith("W/"):
        raw = raw[2:].strip('"')
    try:
        return int(raw)
    except ValueError:
        raise errors.ValidationError("If-Match must carry the request version number")


@router.get("", response_model=List[RequestRead])
def list_requests(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> List[RequestRead]:
    """Own requests for requesters, the pending inbox for approvers."""
    return request_service.list_inbox(db, current_user)


@router.get("/history", response_model=List[RequestRead])
def request_history(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> List[RequestRead]:
    return request_service.list_history(db, current_user)


@router.get("/refresh-interval", response_model=RefreshInterval)
def refresh_interval(current_user: User = Depends(get_current_user)) -> RefreshInterval:
    seconds = request_service.refresh_interval_for(
        current_user,
        approver_seconds=settings.approver_refresh_seconds,
        requester_seconds=settings.requester_refresh_seconds,
    )
    return RefreshInterval(seconds=seconds)


@router.post("", response_model=RequestRead, status_code=status.HTTP_201_CREATED)
def create_request(
    request_in: RequestCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> RequestRead:
    created = request_service.create_request(
        db,
        requester=current_user,
        request_type=request_in.request_type,
        payload=request_in.dump_payload(),
    )
    db.commit()
    return created


@router.get("/{request_id}", response_model=RequestRead)
def get_request(
    request_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> RequestRead:
    return request_service.get_visible_request(db, request_id, current_user)


@router.put("/{request_id}/approve", response_model=RequestRead)
def approve(
    request_id: str,
    if_match: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> RequestRead:
    updated = request_service.approve_request(
        db,
        request_id=request_id,
        user=current_user,
        expected_version=_expected_version(if_match),
    )
    db.commit()
    return updated


@router.put("/{request_id}/reject", response_model=RequestRead)
def reject(
    request_id: str,
    payload: RejectionPayload,
    if_match: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> RequestRead:
    updated = request_service.reject_request(
        db,
        request_id=request_id,
        user=current_user,
        reason=payload.rejection_reason,
        expected_version=_expected_version(if_match),
    )
    db.commit()
    return updated


@router.put("/{request_id}/files/{file_id}/letter-number", response_model=LetterNumberRead)
def update_letter_number(
    request_id: str,
    file_id: str,
    payload: LetterNumberPayload,
    if_match: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> LetterNumberRead:
    updated = request_service.set_letter_number(
        db,
        request_id=request_id,
        file_id=file_id,
        user=current_user,
        letter_number=payload.letter_number,
        expected_version=_expected_version(if_match),
    )
    db.commit()
    return updated
