from __future__ import annotations

from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator

from notesync_backend.config import settings


EntityType = Literal["note", "folder", "tag", "snapshot", "workspace"]
SyncType = Literal["push", "pull", "full"]


class VersionedEntity(BaseModel):
    # On push, server_version is the base version the client last observed.
    id: str = Field(min_length=1, max_length=64)
    server_version: int = Field(default=0, ge=0)
    is_deleted: bool = False
    deleted_at: int | None = Field(default=None, ge=0)
    created_at: int = Field(default=0, ge=0)
    updated_at: int = Field(default=0, ge=0)


class NoteEntity(VersionedEntity):
    title: str = Field(default="", max_length=500)
    content: str = ""
    folder_id: str | None = Field(default=None, max_length=64)
    workspace_id: str | None = Field(default=None, max_length=64)
    is_favorite: bool = False
    is_pinned: bool = False


class FolderEntity(VersionedEntity):
    name: str = Field(min_length=1, max_length=200)
    parent_id: str | None = Field(default=None, max_length=64)
    workspace_id: str | None = Field(default=None, max_length=64)
    icon: str | None = Field(default=None, max_length=64)
    color: str | None = Field(default=None, max_length=32)
    sort_order: int = 0


class TagEntity(VersionedEntity):
    name: str = Field(min_length=1, max_length=200)
    color: str | None = Field(default=None, max_length=32)
    workspace_id: str | None = Field(default=None, max_length=64)


class SnapshotEntity(VersionedEntity):
    note_id: str = Field(min_length=1, max_length=64)
    title: str = Field(default="", max_length=500)
    content: str = ""
    snapshot_name: str | None = Field(default=None, max_length=200)
    workspace_id: str | None = Field(default=None, max_length=64)


class WorkspaceEntity(VersionedEntity):
    name: str = Field(min_length=1, max_length=200)
    description: str | None = Field(default=None, max_length=1000)
    icon: str | None = Field(default=None, max_length=64)
    color: str | None = Field(default=None, max_length=32)
    parent_id: str | None = Field(default=None, max_length=64)
    is_default: bool = False
    sort_order: int = 0


class NoteTagLink(BaseModel):
    note_id: str = Field(min_length=1, max_length=64)
    tag_id: str = Field(min_length=1, max_length=64)
    is_deleted: bool = False
    deleted_at: int | None = Field(default=None, ge=0)
    created_at: int = Field(default=0, ge=0)
    updated_at: int = Field(default=0, ge=0)


class ConflictInfo(BaseModel):
    entity_id: str
    entity_type: EntityType
    local_version: int
    server_version: int
    title: str
    resolution: str
    # create_conflict_copy: id of the new entity carrying the client's content.
    copy_id: str | None = None
    # manual_merge: the full server entity, for the caller to merge against.
    server: dict[str, Any] | None = None


class SyncPushRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    strategy: str | None = None
    workspaces: list[WorkspaceEntity] = Field(default_factory=list)
    folders: list[FolderEntity] = Field(default_factory=list)
    tags: list[TagEntity] = Field(default_factory=list)
    notes: list[NoteEntity] = Field(default_factory=list)
    snapshots: list[SnapshotEntity] = Field(default_factory=list)
    note_tags: list[NoteTagLink] = Field(
        default_factory=list, validation_alias=AliasChoices("noteTags", "note_tags")
    )

    @model_validator(mode="after")
    def _validate_batch(self) -> "SyncPushRequest":  # pyright: ignore[reportUnusedFunction]
        total = (
            len(self.workspaces)
            + len(self.folders)
            + len(self.tags)
            + len(self.notes)
            + len(self.snapshots)
            + len(self.note_tags)
        )
        if total > settings.sync_max_batch_size:
            raise ValueError(f"batch too large: {total} > {settings.sync_max_batch_size}")

        for kind, items in (
            ("workspaces", self.workspaces),
            ("folders", self.folders),
            ("tags", self.tags),
            ("notes", self.notes),
            ("snapshots", self.snapshots),
        ):
            ids = [e.id for e in items]
            if len(ids) != len(set(ids)):
                raise ValueError(f"duplicate ids in {kind}")
        return self

    def entity_count(self) -> int:
        return (
            len(self.workspaces)
            + len(self.folders)
            + len(self.tags)
            + len(self.notes)
            + len(self.snapshots)
            + len(self.note_tags)
        )


class SyncPushResponse(BaseModel):
    workspaces: list[WorkspaceEntity] = Field(default_factory=list)
    folders: list[FolderEntity] = Field(default_factory=list)
    tags: list[TagEntity] = Field(default_factory=list)
    notes: list[NoteEntity] = Field(default_factory=list)
    snapshots: list[SnapshotEntity] = Field(default_factory=list)
    conflicts: list[ConflictInfo] = Field(default_factory=list)
    server_time: int


class SyncPullRequest(BaseModel):
    last_sync_at: int | None = Field(default=None, ge=0)


class SyncPullResponse(BaseModel):
    workspaces: list[WorkspaceEntity] = Field(default_factory=list)
    folders: list[FolderEntity] = Field(default_factory=list)
    tags: list[TagEntity] = Field(default_factory=list)
    notes: list[NoteEntity] = Field(default_factory=list)
    snapshots: list[SnapshotEntity] = Field(default_factory=list)
    note_tags: list[NoteTagLink] = Field(default_factory=list)
    # Pull never reports conflicts.
    conflicts: list[ConflictInfo] = Field(default_factory=list)
    server_time: int

    def entity_count(self) -> int:
        return (
            len(self.workspaces)
            + len(self.folders)
            + len(self.tags)
            + len(self.notes)
            + len(self.snapshots)
            + len(self.note_tags)
        )


class FullSyncRequest(SyncPushRequest):
    last_sync_at: int | None = Field(default=None, ge=0)


class SyncReport(BaseModel):
    success: bool
    pushed_count: int = 0
    pulled_count: int = 0
    conflict_count: int = 0
    error: str | None = None
    duration_ms: int = 0


class FullSyncResponse(BaseModel):
    push: SyncPushResponse
    pull: SyncPullResponse
    report: SyncReport


class SyncHistoryAppend(BaseModel):
    sync_type: SyncType = "full"
    pushed_count: int = Field(default=0, ge=0)
    pulled_count: int = Field(default=0, ge=0)
    conflict_count: int = Field(default=0, ge=0)
    error: str | None = Field(default=None, max_length=4000)
    duration_ms: int = Field(default=0, ge=0)


class SyncHistoryOut(BaseModel):
    id: int
    device_id: str | None = None
    sync_type: SyncType
    pushed_count: int
    pulled_count: int
    conflict_count: int
    error: str | None = None
    duration_ms: int
    created_at: int


class SyncHistoryList(BaseModel):
    items: list[SyncHistoryOut] = Field(default_factory=list)
