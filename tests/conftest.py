from __future__ import annotations

import os

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("JWT_SECRET", "test-secret")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from reqflow.core.security import create_session_token
from reqflow.db.session import get_db
from reqflow.main import app
from reqflow.models import Base, Role, User


@pytest.fixture()
def db():
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


@pytest.fixture()
def make_user(db):
    def _make_user(username: str, role: Role, group_ids=(1,), name: str | None = None) -> User:
        user = User(
            username=username,
            name=name or username.title(),
            hashed_password="x",
            role=role,
            department="Network" if role != Role.REQUESTER else "IT Unit",
            group_ids=list(group_ids),
            is_active=True,
        )
        db.add(user)
        db.flush()
        return user

    return _make_user


@pytest.fixture()
def client(db):
    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    client_instance = TestClient(app)
    try:
        yield client_instance
    finally:
        client_instance.close()
        app.dependency_overrides.clear()


def _auth_headers(user: User, version: int | None = None) -> dict[str, str]:
    token = create_session_token({"sub": str(user.id), "role": user.role.value})
    headers = {"Authorization": f"Bearer {token}"}
    if version is not None:
        headers["If-Match"] = str(version)
    return headers


@pytest.fixture()
def auth_headers():
    return _auth_headers
