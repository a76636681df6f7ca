from __future__ import annotations

from typing import Any, Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from reqflow.core.settings import settings


def make_engine(url: str, **overrides: Any) -> Engine:
    """Engine for ``url`` with the pool settings appropriate to its backend.

    SQLite connections are shared across the request threadpool, so the
    same-thread check is disabled. Pool sizing applies to server databases
    unless a ``poolclass`` override is given.
    """
    options: dict[str, Any] = {"pool_pre_ping": True}
    if url.startswith("sqlite"):
        options["connect_args"] = {"check_same_thread": False}
    elif "poolclass" not in overrides:
        options.update(
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_timeout=settings.db_pool_timeout,
            pool_recycle=settings.db_pool_recycle,
        )
    options.update(overrides)
    return create_engine(url, **options)


def make_sessionmaker(bind: Engine) -> sessionmaker[Session]:
    # Objects stay readable after commit so routers can serialise them.
    return sessionmaker(bind=bind, autoflush=False, expire_on_commit=False)


engine = make_engine(settings.database_url)
SessionLocal = make_sessionmaker(engine)


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
