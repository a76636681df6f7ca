from __future__ import annotations

from typing import List

from pydantic import Field, field_validator

from reqflow.models.enums import Role
from reqflow.schemas.base import ORMModel, require_text

PASSWORD_MIN_LENGTH = 6


class UserRead(ORMModel):
    id: int
    name: str
    username: str
    role: Role
    department: str
    group_ids: List[int] = Field(default_factory=list)

    @field_validator("group_ids", mode="before")
    @classmethod
    def default_groups(cls, value):
        return value or []


class UserRegister(ORMModel):
    name: str = Field(..., min_length=1, max_length=255)
    username: str = Field(..., min_length=1, max_length=100)
    password: str = Field(..., min_length=PASSWORD_MIN_LENGTH, max_length=128)
    role: Role
    department: str = Field(..., min_length=1, max_length=255)

    @field_validator("name", "username", "department")
    @classmethod
    def strip_text(cls, value: str) -> str:
        return require_text(value)


class LoginRequest(ORMModel):
    username: str
    password: str


class LoginResponse(ORMModel):
    access_token: str
    token_type: str = "bearer"
    user: UserRead


class ChangePasswordRequest(ORMModel):
    current_password: str
    new_password: str = Field(..., min_length=PASSWORD_MIN_LENGTH, max_length=128)


class MessageResponse(ORMModel):
    message: str
