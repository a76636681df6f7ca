from __future__ import annotations

import argparse
import logging

from sqlalchemy.orm import Session

from reqflow.core.logging import configure_logging
from reqflow.core.security import get_password_hash
from reqflow.core.settings import settings
from reqflow.db.base import Base
from reqflow.db.session import SessionLocal, engine
from reqflow.models.enums import Role
from reqflow.models.user import ADMIN_GROUP_ID, User

logger = logging.getLogger("reqflow.seed")

DEMO_PASSWORD = "password123"

DEMO_USERS = (
    {"username": "requester", "name": "Requester", "role": Role.REQUESTER, "department": "IT Unit", "group_ids": [1]},
    {"username": "grouplead", "name": "Group Lead", "role": Role.GROUP_LEAD, "department": "Office", "group_ids": [1]},
    {"username": "deputy", "name": "Deputy", "role": Role.DEPUTY, "department": "Deputy Office", "group_ids": [ADMIN_GROUP_ID]},
    {"username": "networkhead", "name": "Network Head", "role": Role.NETWORK_HEAD, "department": "Network", "group_ids": [ADMIN_GROUP_ID]},
    {"username": "networkadmin", "name": "Network Admin", "role": Role.NETWORK_ADMIN, "department": "Network", "group_ids": [ADMIN_GROUP_ID]},
)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Seed the approval database with demo users")
    parser.add_argument("--reset", action="store_true", help="Drop and recreate all tables before seeding")
    return parser.parse_args()


def reset_db() -> None:
    if not settings.destructive_actions_enabled:
        raise RuntimeError("Destructive actions are disabled in this environment.")
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)


def get_or_create_user(
    db: Session,
    *,
    username: str,
    name: str,
    role: Role,
    department: str,
    group_ids: list[int],
    password: str = DEMO_PASSWORD,
) -> User:
    user = db.query(User).filter(User.username == username).first()
    if user:
        user.name = name
        user.role = role
        user.department = department
        user.group_ids = list(group_ids)
        return user
    user = User(
        username=username,
        name=name,
        role=role,
        department=department,
        group_ids=list(group_ids),
        hashed_password=get_password_hash(password),
        is_active=True,
    )
    db.add(user)
    db.flush()
    return user


def seed_users(db: Session) -> list[User]:
    users = [get_or_create_user(db, **fields) for fields in DEMO_USERS]
    db.commit()
    return users


def main() -> None:
    configure_logging(level=settings.log_level)
    args = parse_args()
    if args.reset:
        reset_db()
    db = SessionLocal()
    try:
        for user in seed_users(db):
            logger.info("seeded_user %s (%s)", user.username, user.role.value)
    finally:
        db.close()


if __name__ == "__main__":
    main()
