from __future__ import annotations

from typing import Optional

from sqlalchemy import Enum, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from reqflow.db.base import Base, JSONList, TimestampMixin
from reqflow.models.enums import RequestStatus, RequestType, Role


class ServiceRequest(TimestampMixin, Base):
    """One approval request row.

    ``payload`` holds the type-specific detail records and ``approval_history``
    the append-only list of decisions. Both are JSON columns, so writers must
    assign a new list rather than mutate the loaded one.
    """

    __tablename__ = "requests"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    requester_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    requester_name: Mapped[str] = mapped_column(String(255), nullable=False)
    department: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    request_type: Mapped[RequestType] = mapped_column(
        Enum(RequestType, name="request_type"),
        nullable=False,
        index=True,
    )
    payload: Mapped[list[dict]] = mapped_column(JSONList, nullable=False, default=list)
    status: Mapped[RequestStatus] = mapped_column(
        Enum(RequestStatus, name="request_status"),
        default=RequestStatus.PENDING,
        nullable=False,
        index=True,
    )
    current_approver: Mapped[Optional[Role]] = mapped_column(
        Enum(Role, name="role"),
        nullable=True,
        index=True,
    )
    approval_history: Mapped[list[dict]] = mapped_column(JSONList, nullable=False, default=list)
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    requester: Mapped[Optional["User"]] = relationship(back_populates="requests")

    @property
    def hierarchy(self) -> tuple[Role, ...]:
        from reqflow.services.workflow import hierarchy_for

        return hierarchy_for(self.request_type)

    # Every UPDATE carries "WHERE version = <loaded version>"; a concurrent
    # writer makes the flush fail with StaleDataError.
    __mapper_args__ = {"version_id_col": version}
