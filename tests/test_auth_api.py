from __future__ import annotations

from datetime import datetime, timedelta, timezone

from sqlalchemy import select

from reqflow.core.token_blacklist import token_hash
from reqflow.models.enums import Role
from reqflow.models.revoked_token import RevokedToken
from reqflow.models.user import User
from reqflow.routers import auth as auth_router

REGISTRATION = {
    "name": "Ana Petrova",
    "username": "ana",
    "password": "s3cret-pass",
    "role": "REQUESTER",
    "department": "IT Unit",
}


def _register(client, **overrides):
    response = client.post("/api/auth/register", json={**REGISTRATION, **overrides})
    assert response.status_code == 201, response.text
    return response.json()


def test_register_starts_session(client):
    body = _register(client)

    assert body["token_type"] == "bearer"
    assert body["user"]["username"] == "ana"
    assert body["user"]["role"] == "REQUESTER"
    assert body["user"]["group_ids"] == []
    assert client.cookies.get("session") == body["access_token"]

    me = client.get("/api/auth/me")
    assert me.status_code == 200, me.text
    assert me.json()["name"] == "Ana Petrova"


def test_register_rejects_duplicate_username(client):
    _register(client)
    response = client.post("/api/auth/register", json=REGISTRATION)
    assert response.status_code == 400
    assert response.json()["error"] == "validation_failed"


def test_register_duplicate_committed_concurrently(client, monkeypatch):
    _register(client)
    client.cookies.clear()
    # The other registration lands between the lookup and the insert.
    monkeypatch.setattr(auth_router, "_username_taken", lambda db, username: False)

    response = client.post("/api/auth/register", json={**REGISTRATION, "name": "Second Ana"})
    assert response.status_code == 400
    assert response.json()["error"] == "validation_failed"
    assert response.json()["detail"] == "This username is already registered"


def test_register_validates_fields(client):
    response = client.post("/api/auth/register", json={**REGISTRATION, "password": "123"})
    assert response.status_code == 422
    response = client.post("/api/auth/register", json={**REGISTRATION, "name": "   "})
    assert response.status_code == 422


def test_login(client, db):
    _register(client, username="deputy", role="DEPUTY")
    client.cookies.clear()

    bad = client.post("/api/auth/login", json={"username": "deputy", "password": "wrong"})
    assert bad.status_code == 401

    unknown = client.post("/api/auth/login", json={"username": "nobody", "password": "s3cret-pass"})
    assert unknown.status_code == 401

    ok = client.post("/api/auth/login", json={"username": "deputy", "password": "s3cret-pass"})
    assert ok.status_code == 200, ok.text
    assert ok.json()["user"]["role"] == Role.DEPUTY.value

    token = ok.json()["access_token"]
    client.cookies.clear()
    me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.status_code == 200
    assert me.json()["username"] == "deputy"


def test_inactive_user_cannot_sign_in(client, db):
    _register(client)
    user = db.query(User).filter(User.username == "ana").one()
    user.is_active = False
    db.commit()

    assert client.get("/api/auth/me").status_code == 401
    response = client.post("/api/auth/login", json={"username": "ana", "password": "s3cret-pass"})
    assert response.status_code == 401


def test_change_password(client):
    _register(client)

    wrong = client.post(
        "/api/auth/change-password",
        json={"current_password": "guess", "new_password": "another-pass"},
    )
    assert wrong.status_code == 401

    changed = client.post(
        "/api/auth/change-password",
        json={"current_password": "s3cret-pass", "new_password": "another-pass"},
    )
    assert changed.status_code == 200, changed.text
    assert changed.json() == {"message": "Password changed"}

    client.cookies.clear()
    old = client.post("/api/auth/login", json={"username": "ana", "password": "s3cret-pass"})
    assert old.status_code == 401
    new = client.post("/api/auth/login", json={"username": "ana", "password": "another-pass"})
    assert new.status_code == 200


def test_logout_revokes_session(client):
    token = _register(client)["access_token"]

    response = client.post("/api/auth/logout")
    assert response.status_code == 200
    assert response.json() == {"message": "Signed out"}

    reused = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert reused.status_code == 401


def test_garbage_token_is_rejected(client):
    response = client.get("/api/auth/me", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401


def test_logout_records_owner_and_purges_expired(client, db):
    body = _register(client)
    db.add(
        RevokedToken(
            token_hash="0" * 64,
            expires_at=datetime.now(timezone.utc) - timedelta(hours=1),
        )
    )
    db.commit()

    assert client.post("/api/auth/logout").status_code == 200

    rows = db.execute(select(RevokedToken)).scalars().all()
    assert [row.token_hash for row in rows] == [token_hash(body["access_token"])]
    assert rows[0].user_id == body["user"]["id"]
