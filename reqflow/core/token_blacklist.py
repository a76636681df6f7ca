"""Server-side revocation of session tokens.

Session JWTs are self-contained, so signing out records the token's hash
until its own ``exp`` passes.
"""

from __future__ import annotations

import hashlib
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from reqflow.models.revoked_token import RevokedToken


def token_hash(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def _as_utc(value: datetime) -> datetime:
    # SQLite returns naive values for timezone-aware columns.
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


def revoke_token(db: Session, token: str, expires_at: datetime, *, user_id: Optional[int] = None) -> RevokedToken:
    digest = token_hash(token)
    entry = db.execute(select(RevokedToken).where(RevokedToken.token_hash == digest)).scalar_one_or_none()
    if entry is None:
        entry = RevokedToken(token_hash=digest, user_id=user_id, expires_at=expires_at)
        db.add(entry)
        db.flush()
    return entry


def is_token_revoked(db: Session, token: str) -> bool:
    entry = db.execute(
        select(RevokedToken).where(RevokedToken.token_hash == token_hash(token))
    ).scalar_one_or_none()
    if entry is None:
        return False
    return _as_utc(entry.expires_at) > datetime.now(timezone.utc)


def purge_expired(db: Session, *, now: Optional[datetime] = None) -> int:
    """Delete revocations whose tokens have expired; returns the row count."""
    cutoff = now or datetime.now(timezone.utc)
    stmt = delete(RevokedToken).where(RevokedToken.expires_at <= cutoff)
    result = db.execute(stmt.execution_options(synchronize_session=False))
    return result.rowcount or 0
