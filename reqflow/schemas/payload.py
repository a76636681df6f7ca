"""Type-specific request details.

A request carries a list of detail records whose shape depends on its
``request_type``. The create schema is a discriminated union so a BACKUP
request can never carry file rows.
"""

from __future__ import annotations

import uuid
from datetime import date
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, RootModel, field_validator, model_validator

from reqflow.models.enums import BackupSchedule, RequestType, VdiAccessLevel
from reqflow.schemas.base import require_text


def _new_detail_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


class DetailModel(BaseModel):
    model_config = ConfigDict(extra="ignore")


class FileDetail(DetailModel):
    id: str = Field(default_factory=lambda: _new_detail_id("file"), max_length=64)
    file_name: str = Field(..., max_length=255)
    file_content: str = Field(..., max_length=4000)
    file_format: str = Field(..., max_length=50)
    recipient: str = Field(..., max_length=255)
    file_fields: str = Field(..., max_length=4000)
    letter_number: Optional[str] = Field(default=None, max_length=100)
    source_server_ip: Optional[str] = Field(default=None, max_length=64)
    source_file_path: Optional[str] = Field(default=None, max_length=1024)
    destination_server_ip: Optional[str] = Field(default=None, max_length=64)
    destination_file_path: Optional[str] = Field(default=None, max_length=1024)

    @field_validator("file_name", "file_content", "file_format", "recipient", "file_fields")
    @classmethod
    def required_text(cls, value: str) -> str:
        return require_text(value)

    @field_validator("letter_number")
    @classmethod
    def blank_letter_number_is_unset(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return value.strip() or None


class BackupDetail(DetailModel):
    id: str = Field(default_factory=lambda: _new_detail_id("item"), max_length=64)
    server_name: str = Field(..., max_length=255)
    server_ip: str = Field(..., max_length=64)
    backup_path: str = Field(..., max_length=1024)
    schedule: BackupSchedule = BackupSchedule.DAILY
    retention_days: int = Field(default=30, ge=1, le=3650)
    description: Optional[str] = Field(default=None, max_length=1000)

    @field_validator("server_name", "server_ip", "backup_path")
    @classmethod
    def required_text(cls, value: str) -> str:
        return require_text(value)


class VdiAccessDetail(DetailModel):
    id: str = Field(default_factory=lambda: _new_detail_id("item"), max_length=64)
    username: str = Field(..., max_length=100)
    full_name: str = Field(..., max_length=255)
    access_level: VdiAccessLevel = VdiAccessLevel.STANDARD
    start_date: date
    end_date: Optional[date] = None
    justification: str = Field(..., max_length=1000)

    @field_validator("username", "full_name", "justification")
    @classmethod
    def required_text(cls, value: str) -> str:
        return require_text(value)

    @model_validator(mode="after")
    def check_dates(self) -> "VdiAccessDetail":
        if self.end_date is not None and self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


def _check_unique_ids(details: list) -> list:
    seen: set[str] = set()
    for detail in details:
        if detail.id in seen:
            raise ValueError(f"duplicate detail id {detail.id!r}")
        seen.add(detail.id)
    return details


class FileTransferRequestCreate(BaseModel):
    request_type: Literal["FILE_TRANSFER"]
    payload: List[FileDetail] = Field(..., min_length=1)

    unique_ids = field_validator("payload")(_check_unique_ids)


class BackupRequestCreate(BaseModel):
    request_type: Literal["BACKUP"]
    payload: List[BackupDetail] = Field(..., min_length=1)

    unique_ids = field_validator("payload")(_check_unique_ids)


class VdiRequestCreate(BaseModel):
    request_type: Literal["VDI"]
    payload: List[VdiAccessDetail] = Field(..., min_length=1)

    unique_ids = field_validator("payload")(_check_unique_ids)


TypedRequestCreate = Annotated[
    Union[FileTransferRequestCreate, BackupRequestCreate, VdiRequestCreate],
    Field(discriminator="request_type"),
]


class RequestCreate(RootModel[TypedRequestCreate]):
    """Body of POST /api/requests: ``{"request_type": ..., "payload": [...]}``."""

    @property
    def request_type(self) -> RequestType:
        return RequestType(self.root.request_type)

    def dump_payload(self) -> list[dict]:
        """JSON-ready detail records for the ``payload`` column."""
        return [detail.model_dump(mode="json") for detail in self.root.payload]
