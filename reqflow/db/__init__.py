from reqflow.db.base import Base, JSONList, TimestampMixin, utcnow
from reqflow.db.session import SessionLocal, engine, get_db, make_engine, make_sessionmaker

__all__ = [
    "Base",
    "JSONList",
    "TimestampMixin",
    "utcnow",
    "engine",
    "SessionLocal",
    "get_db",
    "make_engine",
    "make_sessionmaker",
]
