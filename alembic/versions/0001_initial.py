"""Create users, requests, request_sequences and revoked_tokens.

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None

ROLE_VALUES = ("REQUESTER", "GROUP_LEAD", "DEPUTY", "NETWORK_HEAD", "NETWORK_ADMIN")
REQUEST_TYPE_VALUES = ("FILE_TRANSFER", "BACKUP", "VDI")
REQUEST_STATUS_VALUES = ("PENDING", "APPROVED", "REJECTED", "COMPLETED")


def _json():
    return sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def upgrade() -> None:
    role = sa.Enum(*ROLE_VALUES, name="role")
    # Both tables share the "role" type; only the first use creates it.
    role_ref = role
    if op.get_bind().dialect.name == "postgresql":
        role_ref = postgresql.ENUM(*ROLE_VALUES, name="role", create_type=False)

    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("username", sa.String(100), nullable=False),
        sa.Column("hashed_password", sa.String(255), nullable=False),
        sa.Column("role", role, nullable=False),
        sa.Column("department", sa.String(255), nullable=False),
        sa.Column("group_ids", _json(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id", name="pk_users"),
    )
    op.create_index("ix_users_id", "users", ["id"])
    op.create_index("ix_users_username", "users", ["username"], unique=True)
    op.create_index("ix_users_role", "users", ["role"])
    op.create_index("ix_users_is_active", "users", ["is_active"])

    op.create_table(
        "requests",
        sa.Column("id", sa.String(32), nullable=False),
        sa.Column("requester_id", sa.Integer(), nullable=False),
        sa.Column("requester_name", sa.String(255), nullable=False),
        sa.Column("department", sa.String(255), nullable=False),
        sa.Column("request_type", sa.Enum(*REQUEST_TYPE_VALUES, name="request_type"), nullable=False),
        sa.Column("payload", _json(), nullable=False),
        sa.Column("status", sa.Enum(*REQUEST_STATUS_VALUES, name="request_status"), nullable=False),
        sa.Column("current_approver", role_ref, nullable=True),
        sa.Column("approval_history", _json(), nullable=False),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(["requester_id"], ["users.id"], name="fk_requests_requester_id_users"),
        sa.PrimaryKeyConstraint("id", name="pk_requests"),
    )
    op.create_index("ix_requests_requester_id", "requests", ["requester_id"])
    op.create_index("ix_requests_request_type", "requests", ["request_type"])
    op.create_index("ix_requests_status", "requests", ["status"])
    op.create_index("ix_requests_current_approver", "requests", ["current_approver"])

    op.create_table(
        "request_sequences",
        sa.Column("name", sa.String(50), nullable=False),
        sa.Column("last_value", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("name", name="pk_request_sequences"),
    )
    op.bulk_insert(
        sa.table("request_sequences", sa.column("name", sa.String), sa.column("last_value", sa.Integer)),
        [{"name": "request", "last_value": 0}],
    )

    op.create_table(
        "revoked_tokens",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("token_hash", sa.String(64), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ["user_id"], ["users.id"], name="fk_revoked_tokens_user_id_users", ondelete="CASCADE"
        ),
        sa.PrimaryKeyConstraint("id", name="pk_revoked_tokens"),
    )
    op.create_index("ix_revoked_tokens_token_hash", "revoked_tokens", ["token_hash"], unique=True)
    op.create_index("ix_revoked_tokens_expires_at", "revoked_tokens", ["expires_at"])


def downgrade() -> None:
    op.drop_index("ix_revoked_tokens_expires_at", table_name="revoked_tokens")
    op.drop_index("ix_revoked_tokens_token_hash", table_name="revoked_tokens")
    op.drop_table("revoked_tokens")
    op.drop_table("request_sequences")
    op.drop_index("ix_requests_current_approver", table_name="requests")
    op.drop_index("ix_requests_status", table_name="requests")
    op.drop_index("ix_requests_request_type", table_name="requests")
    op.drop_index("ix_requests_requester_id", table_name="requests")
    op.drop_table("requests")
    op.drop_index("ix_users_is_active", table_name="users")
    op.drop_index("ix_users_role", table_name="users")
    op.drop_index("ix_users_username", table_name="users")
    op.drop_index("ix_users_id", table_name="users")
    op.drop_table("users")
    if op.get_bind().dialect.name == "postgresql":
        for name in ("request_status", "request_type", "role"):
            op.execute(f"DROP TYPE IF EXISTS {name}")
