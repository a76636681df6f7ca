from __future__ import annotations

from sqlalchemy import Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from reqflow.db.base import Base


class RequestSequence(Base):
    """Named counter backing the human-readable ``req-NNN`` identifiers."""

    __tablename__ = "request_sequences"

    name: Mapped[str] = mapped_column(String(50), primary_key=True)
    last_value: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
