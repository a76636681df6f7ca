from __future__ import annotations

from typing import List

from sqlalchemy import Boolean, Enum, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from reqflow.db.base import Base, JSONList, TimestampMixin
from reqflow.models.enums import Role

# Membership in this group lets an approver act on any group's requests.
ADMIN_GROUP_ID = 0


class User(TimestampMixin, Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    username: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    hashed_password: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[Role] = mapped_column(Enum(Role, name="role"), default=Role.REQUESTER, nullable=False, index=True)
    department: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    group_ids: Mapped[list[int]] = mapped_column(JSONList, nullable=False, default=list)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False, index=True)

    requests: Mapped[List["ServiceRequest"]] = relationship(back_populates="requester")

    @property
    def group_set(self) -> frozenset[int]:
        return frozenset(self.group_ids or ())

    @property
    def is_group_admin(self) -> bool:
        return ADMIN_GROUP_ID in self.group_set
