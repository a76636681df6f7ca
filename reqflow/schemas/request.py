from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import Field

from reqflow.models.enums import RequestStatus, RequestType, Role
from reqflow.schemas.base import ORMModel


class ApprovalEntry(ORMModel):
    approver_role: Role
    approver_name: str
    approver_id: Optional[int] = None
    status: RequestStatus
    date: datetime
    rejection_reason: Optional[str] = None


class RequestRead(ORMModel):
    id: str
    requester_id: int
    requester_name: str
    department: str
    request_type: RequestType
    payload: List[dict]
    status: RequestStatus
    current_approver: Optional[Role] = None
    approval_history: List[ApprovalEntry]
    rejection_reason: Optional[str] = None
    hierarchy: List[Role]
    version: int
    created_at: datetime
    updated_at: datetime


class RejectionPayload(ORMModel):
    # Blank and over-long reasons are rejected after trimming by the workflow.
    rejection_reason: str = ""


class LetterNumberPayload(ORMModel):
    letter_number: str = Field(default="", max_length=100)


class LetterNumberRead(ORMModel):
    id: str
    payload: List[dict]
    version: int


class RefreshInterval(ORMModel):
    seconds: int
