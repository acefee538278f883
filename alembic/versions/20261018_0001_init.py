"""init schema (users + devices + versioned entities + sync history)

Revision ID: 20261018_0001
Revises: None
Create Date: 2026-10-18 00:00:00
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect


revision = "20261018_0001"
down_revision = None
branch_labels = None
depends_on = None


def _table_exists(table_name: str) -> bool:
    bind = op.get_bind()
    insp = inspect(bind)
    return table_name in insp.get_table_names()


def _versioned_columns() -> list[sa.Column]:
    return [
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), primary_key=True),
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("server_version", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_deleted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("deleted_at", sa.BigInteger(), nullable=True),
        sa.Column("created_at", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("updated_at", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("server_updated_at", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("updated_by_device", sa.String(length=36), nullable=True),
    ]


def _versioned_indexes(table: str, extra: list[str]) -> None:
    for col in ["is_deleted", "server_updated_at", *extra]:
        op.create_index(f"ix_{table}_{col}", table, [col], unique=False)


def upgrade() -> None:
    if not _table_exists("users"):
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
            sa.Column("username", sa.String(length=64), nullable=False),
            sa.Column("password_hash", sa.String(length=255), nullable=False),
            sa.Column("api_token", sa.String(length=128), nullable=True),
            sa.Column("api_token_expires_at", sa.BigInteger(), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        )
        op.create_index("ix_users_username", "users", ["username"], unique=True)
        op.create_index("ix_users_api_token", "users", ["api_token"], unique=True)
        op.create_index("ix_users_is_active", "users", ["is_active"], unique=False)
        op.create_index("ix_users_created_at", "users", ["created_at"], unique=False)

    if not _table_exists("devices"):
        op.create_table(
            "devices",
            sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("device_type", sa.String(length=20), nullable=False),
            sa.Column("revoked", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("revoked_at", sa.BigInteger(), nullable=True),
            sa.Column("last_seen_at", sa.BigInteger(), nullable=False, server_default="0"),
            sa.Column("created_at", sa.BigInteger(), nullable=False, server_default="0"),
        )
        for col in ["user_id", "revoked", "last_seen_at", "created_at"]:
            op.create_index(f"ix_devices_{col}", "devices", [col], unique=False)

    if not _table_exists("workspaces"):
        op.create_table(
            "workspaces",
            *_versioned_columns(),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("description", sa.String(length=1000), nullable=True),
            sa.Column("icon", sa.String(length=64), nullable=True),
            sa.Column("color", sa.String(length=32), nullable=True),
            sa.Column("parent_id", sa.String(length=64), nullable=True),
            sa.Column("is_default", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
        )
        _versioned_indexes("workspaces", ["parent_id"])

    if not _table_exists("folders"):
        op.create_table(
            "folders",
            *_versioned_columns(),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("parent_id", sa.String(length=64), nullable=True),
            sa.Column("workspace_id", sa.String(length=64), nullable=True),
            sa.Column("icon", sa.String(length=64), nullable=True),
            sa.Column("color", sa.String(length=32), nullable=True),
            sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
        )
        _versioned_indexes("folders", ["parent_id", "workspace_id"])

    if not _table_exists("tags"):
        op.create_table(
            "tags",
            *_versioned_columns(),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("color", sa.String(length=32), nullable=True),
            sa.Column("workspace_id", sa.String(length=64), nullable=True),
        )
        _versioned_indexes("tags", ["workspace_id"])

    if not _table_exists("notes"):
        op.create_table(
            "notes",
            *_versioned_columns(),
            sa.Column("title", sa.String(length=500), nullable=False, server_default=""),
            sa.Column("content", sa.Text(), nullable=False),
            sa.Column("folder_id", sa.String(length=64), nullable=True),
            sa.Column("workspace_id", sa.String(length=64), nullable=True),
            sa.Column("is_favorite", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("is_pinned", sa.Boolean(), nullable=False, server_default=sa.false()),
        )
        _versioned_indexes("notes", ["folder_id", "workspace_id"])

    if not _table_exists("note_snapshots"):
        op.create_table(
            "note_snapshots",
            *_versioned_columns(),
            sa.Column("note_id", sa.String(length=64), nullable=False),
            sa.Column("title", sa.String(length=500), nullable=False, server_default=""),
            sa.Column("content", sa.Text(), nullable=False),
            sa.Column("snapshot_name", sa.String(length=200), nullable=True),
            sa.Column("workspace_id", sa.String(length=64), nullable=True),
        )
        _versioned_indexes("note_snapshots", ["note_id", "workspace_id"])

    if not _table_exists("note_tags"):
        op.create_table(
            "note_tags",
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), primary_key=True),
            sa.Column("note_id", sa.String(length=64), primary_key=True),
            sa.Column("tag_id", sa.String(length=64), primary_key=True),
            sa.Column("is_deleted", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("deleted_at", sa.BigInteger(), nullable=True),
            sa.Column("created_at", sa.BigInteger(), nullable=False, server_default="0"),
            sa.Column("updated_at", sa.BigInteger(), nullable=False, server_default="0"),
            sa.Column("server_updated_at", sa.BigInteger(), nullable=False, server_default="0"),
        )
        for col in ["tag_id", "is_deleted", "server_updated_at"]:
            op.create_index(f"ix_note_tags_{col}", "note_tags", [col], unique=False)

    if not _table_exists("sync_history"):
        op.create_table(
            "sync_history",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
            sa.Column("device_id", sa.String(length=36), nullable=True),
            sa.Column("sync_type", sa.String(length=10), nullable=False),
            sa.Column("pushed_count", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("pulled_count", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("conflict_count", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("error", sa.Text(), nullable=True),
            sa.Column("duration_ms", sa.BigInteger(), nullable=False, server_default="0"),
            sa.Column("created_at", sa.BigInteger(), nullable=False, server_default="0"),
        )
        op.create_index("ix_sync_history_user_id", "sync_history", ["user_id"], unique=False)
        op.create_index(
            "ix_sync_history_created_at", "sync_history", ["created_at"], unique=False
        )


def downgrade() -> None:
    for table in [
        "sync_history",
        "note_tags",
        "note_snapshots",
        "notes",
        "tags",
        "folders",
        "workspaces",
        "devices",
        "users",
    ]:
        if _table_exists(table):
            op.drop_table(table)
