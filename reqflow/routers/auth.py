from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from jose import JWTError
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from reqflow.core import errors
from reqflow.core.deps import get_current_user, get_session_token, log_auth_event
from reqflow.core.security import (
    create_session_token,
    decode_token,
    get_password_hash,
    session_lifetime,
    token_expiry,
    verify_password,
)
from reqflow.core.settings import settings
from reqflow.core.token_blacklist import purge_expired, revoke_token
from reqflow.db.session import get_db
from reqflow.models.user import User
from reqflow.schemas.user import (
    ChangePasswordRequest,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    UserRead,
    UserRegister,
)

router = APIRouter(prefix="/api/auth", tags=["auth"])


def _start_session(response: Response, user: User) -> LoginResponse:
    token = create_session_token({"sub": str(user.id), "role": user.role.value})
    response.set_cookie(
        key=settings.session_cookie_name,
        value=token,
        max_age=int(session_lifetime().total_seconds()),
        httponly=True,
        secure=settings.session_cookie_secure or settings.is_production,
        samesite="lax",
    )
    return LoginResponse(access_token=token, user=UserRead.model_validate(user))


def _session_owner(db: Session, payload: dict) -> Optional[int]:
    try:
        user = db.get(User, int(payload.get("sub")))
    except (TypeError, ValueError):
        return None
    return user.id if user is not None else None


def _username_taken(db: Session, username: str) -> bool:
    return db.query(User.id).filter(User.username == username).first() is not None


@router.post("/register", response_model=LoginResponse, status_code=status.HTTP_201_CREATED)
def register(
    request: Request,
    response: Response,
    user_in: UserRegister,
    db: Session = Depends(get_db),
) -> LoginResponse:
    duplicate = errors.ValidationError("This username is already registered")
    if _username_taken(db, user_in.username):
        raise duplicate

    user = User(
        name=user_in.name,
        username=user_in.username,
        hashed_password=get_password_hash(user_in.password),
        role=user_in.role,
        department=user_in.department,
        group_ids=[],
        is_active=True,
    )
    db.add(user)
    try:
        db.commit()
    except IntegrityError as exc:
        # Lost a race with a concurrent registration of the same name.
        db.rollback()
        raise duplicate from exc
    db.refresh(user)
    log_auth_event("user_registered", request=request, user_id=user.id, role=user.role.value)
    return _start_session(response, user)


@router.post("/login", response_model=LoginResponse)
def login(
    request: Request,
    response: Response,
    credentials: LoginRequest,
    db: Session = Depends(get_db),
) -> LoginResponse:
    user = db.query(User).filter(User.username == credentials.username).first()
    if not user or not verify_password(credentials.password, user.hashed_password):
        log_auth_event("login_failed", request=request, username=credentials.username)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid username or password")
    if not user.is_active:
        log_auth_event("login_inactive", request=request, user_id=user.id)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User is inactive")

    log_auth_event("login_success", request=request, user_id=user.id)
    return _start_session(response, user)


@router.get("/me", response_model=UserRead)
def me(current_user: User = Depends(get_current_user)) -> UserRead:
    return UserRead.model_validate(current_user)


@router.post("/change-password", response_model=MessageResponse)
def change_password(
    request: Request,
    payload: ChangePasswordRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> MessageResponse:
    if not verify_password(payload.current_password, current_user.hashed_password):
        log_auth_event("password_change_failed", request=request, user_id=current_user.id)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Current password is incorrect")
    current_user.hashed_password = get_password_hash(payload.new_password)
    db.add(current_user)
    db.commit()
    log_auth_event("password_changed", request=request, user_id=current_user.id)
    return MessageResponse(message="Password changed")


@router.post("/logout", response_model=MessageResponse)
def logout(
    request: Request,
    response: Response,
    token: str = Depends(get_session_token),
    db: Session = Depends(get_db),
) -> MessageResponse:
    try:
        payload = decode_token(token)
    except JWTError:
        payload = None
    if payload is not None:
        revoke_token(db, token, token_expiry(payload), user_id=_session_owner(db, payload))
        purge_expired(db)
        db.commit()
        log_auth_event("logout", request=request, user_id=payload.get("sub"))
    response.delete_cookie(settings.session_cookie_name)
    return MessageResponse(message="Signed out")
