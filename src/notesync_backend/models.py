# basedpyright: reportAssignmentType=false
# basedpyright: reportIncompatibleVariableOverride=false

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import BigInteger, Column, Text
from sqlmodel import Field, SQLModel


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class User(SQLModel, table=True):
    __tablename__ = "users"  # pyright: ignore[reportAssignmentType,reportIncompatibleVariableOverride]

    id: Optional[int] = Field(default=None, primary_key=True)
    username: str = Field(index=True, unique=True, min_length=1, max_length=64)
    password_hash: str = Field(min_length=1, max_length=255)

    # Opaque bearer token; rotated once expired.
    api_token: Optional[str] = Field(default=None, index=True, unique=True, max_length=128)
    api_token_expires_at: Optional[int] = Field(default=None, sa_type=BigInteger)

    is_active: bool = Field(default=True, index=True)
    created_at: datetime = Field(default_factory=utc_now, index=True)


class Device(SQLModel, table=True):
    __tablename__ = "devices"  # pyright: ignore[reportAssignmentType,reportIncompatibleVariableOverride]

    # Server-generated; every registration creates a new row (no dedup by name/type).
    id: str = Field(primary_key=True, min_length=1, max_length=36)
    user_id: int = Field(index=True, foreign_key="users.id")

    name: str = Field(min_length=1, max_length=255)
    device_type: str = Field(default="desktop", max_length=20)

    # Monotonic: once true it never flips back.
    revoked: bool = Field(default=False, index=True)
    revoked_at: Optional[int] = Field(default=None, sa_type=BigInteger)

    last_seen_at: int = Field(default=0, index=True, sa_type=BigInteger)
    created_at: int = Field(default=0, index=True, sa_type=BigInteger)


class VersionedRow(SQLModel):
    # Ids are client-generated, so rows are keyed by (user_id, id).
    user_id: int = Field(primary_key=True, foreign_key="users.id")

    # Mutated only by the server: 1 on first accepted push, +1 per accepted push after.
    server_version: int = Field(default=0)
    is_deleted: bool = Field(default=False, index=True)
    deleted_at: Optional[int] = Field(default=None, sa_type=BigInteger)
    created_at: int = Field(default=0, sa_type=BigInteger)
    updated_at: int = Field(default=0, sa_type=BigInteger)

    # Server clock; pull checkpoints compare against this, never the client clock.
    server_updated_at: int = Field(default=0, index=True, sa_type=BigInteger)
    updated_by_device: Optional[str] = Field(default=None, max_length=36)


class Workspace(VersionedRow, table=True):
    __tablename__ = "workspaces"  # pyright: ignore[reportAssignmentType]

    id: str = Field(primary_key=True, min_length=1, max_length=64)
    name: str = Field(min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=1000)
    icon: Optional[str] = Field(default=None, max_length=64)
    color: Optional[str] = Field(default=None, max_length=32)
    parent_id: Optional[str] = Field(default=None, index=True, max_length=64)
    is_default: bool = Field(default=False)
    sort_order: int = Field(default=0)


class Folder(VersionedRow, table=True):
    __tablename__ = "folders"  # pyright: ignore[reportAssignmentType]

    id: str = Field(primary_key=True, min_length=1, max_length=64)
    name: str = Field(min_length=1, max_length=200)
    parent_id: Optional[str] = Field(default=None, index=True, max_length=64)
    workspace_id: Optional[str] = Field(default=None, index=True, max_length=64)
    icon: Optional[str] = Field(default=None, max_length=64)
    color: Optional[str] = Field(default=None, max_length=32)
    sort_order: int = Field(default=0)


class Tag(VersionedRow, table=True):
    __tablename__ = "tags"  # pyright: ignore[reportAssignmentType]

    id: str = Field(primary_key=True, min_length=1, max_length=64)
    name: str = Field(min_length=1, max_length=200)
    color: Optional[str] = Field(default=None, max_length=32)
    workspace_id: Optional[str] = Field(default=None, index=True, max_length=64)


class Note(VersionedRow, table=True):
    __tablename__ = "notes"  # pyright: ignore[reportAssignmentType]

    id: str = Field(primary_key=True, min_length=1, max_length=64)
    title: str = Field(default="", max_length=500)
    content: str = Field(default="", sa_column=Column(Text, nullable=False))
    folder_id: Optional[str] = Field(default=None, index=True, max_length=64)
    workspace_id: Optional[str] = Field(default=None, index=True, max_length=64)
    is_favorite: bool = Field(default=False)
    is_pinned: bool = Field(default=False)


class NoteSnapshot(VersionedRow, table=True):
    __tablename__ = "note_snapshots"  # pyright: ignore[reportAssignmentType]

    id: str = Field(primary_key=True, min_length=1, max_length=64)
    note_id: str = Field(index=True, min_length=1, max_length=64)
    title: str = Field(default="", max_length=500)
    content: str = Field(default="", sa_column=Column(Text, nullable=False))
    snapshot_name: Optional[str] = Field(default=None, max_length=200)
    workspace_id: Optional[str] = Field(default=None, index=True, max_length=64)


class NoteTag(SQLModel, table=True):
    """Note <-> tag relation. Unversioned: the last accepted write wins."""

    __tablename__ = "note_tags"  # pyright: ignore[reportAssignmentType,reportIncompatibleVariableOverride]

    user_id: int = Field(primary_key=True, foreign_key="users.id")
    note_id: str = Field(primary_key=True, max_length=64)
    tag_id: str = Field(primary_key=True, index=True, max_length=64)

    is_deleted: bool = Field(default=False, index=True)
    deleted_at: Optional[int] = Field(default=None, sa_type=BigInteger)
    created_at: int = Field(default=0, sa_type=BigInteger)
    updated_at: int = Field(default=0, sa_type=BigInteger)
    server_updated_at: int = Field(default=0, index=True, sa_type=BigInteger)


class SyncHistoryEntry(SQLModel, table=True):
    """Append-only audit record of one sync run. Never updated after insert."""

    __tablename__ = "sync_history"  # pyright: ignore[reportAssignmentType,reportIncompatibleVariableOverride]

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(index=True, foreign_key="users.id")
    device_id: Optional[str] = Field(default=None, max_length=36)

    sync_type: str = Field(max_length=10)  # push / pull / full
    pushed_count: int = Field(default=0)
    pulled_count: int = Field(default=0)
    conflict_count: int = Field(default=0)
    error: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    duration_ms: int = Field(default=0, sa_type=BigInteger)

    created_at: int = Field(default=0, index=True, sa_type=BigInteger)


class SyncClock(SQLModel, table=True):
    """Per-owner change clock, advanced inside every push transaction.

    Pull hands out the committed value as its checkpoint, so a push still in
    flight always stamps its rows above any checkpoint issued meanwhile.
    """

    __tablename__ = "sync_clocks"  # pyright: ignore[reportAssignmentType,reportIncompatibleVariableOverride]

    user_id: int = Field(primary_key=True, foreign_key="users.id")
    last_change_at: int = Field(default=0, sa_type=BigInteger)
