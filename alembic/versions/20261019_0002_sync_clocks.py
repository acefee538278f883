"""per-owner sync change clock

Revision ID: 20261019_0002
Revises: 20261018_0001
Create Date: 2026-10-19 00:00:00
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect


revision = "20261019_0002"
down_revision = "20261018_0001"
branch_labels = None
depends_on = None


def _table_exists(table_name: str) -> bool:
    bind = op.get_bind()
    insp = inspect(bind)
    return table_name in insp.get_table_names()


def upgrade() -> None:
    if not _table_exists("sync_clocks"):
        op.create_table(
            "sync_clocks",
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), primary_key=True),
            sa.Column("last_change_at", sa.BigInteger(), nullable=False, server_default="0"),
        )

    # Seed from rows already on disk so existing checkpoints stay valid.
    bind = op.get_bind()
    for table in ["workspaces", "folders", "tags", "notes", "note_snapshots", "note_tags"]:
        if not _table_exists(table):
            continue
        bind.execute(
            sa.text(
                "INSERT INTO sync_clocks (user_id, last_change_at) "
                f"SELECT user_id, MAX(server_updated_at) FROM {table} "
                "WHERE user_id NOT IN (SELECT user_id FROM sync_clocks) GROUP BY user_id"
            )
        )
        bind.execute(
            sa.text(
                "UPDATE sync_clocks SET last_change_at = ("
                f"SELECT MAX(server_updated_at) FROM {table} t "
                "WHERE t.user_id = sync_clocks.user_id) "
                f"WHERE last_change_at < (SELECT MAX(server_updated_at) FROM {table} t "
                "WHERE t.user_id = sync_clocks.user_id)"
            )
        )


def downgrade() -> None:
    if _table_exists("sync_clocks"):
        op.drop_table("sync_clocks")
