# pyright: reportAttributeAccessIssue=false

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel.ext.asyncio.session import AsyncSession

from notesync_backend.config import settings
from notesync_backend.domain.conflict_resolver import (
    ConflictStrategy,
    PushPlan,
    ServerRowSnapshot,
    conflict_copy_title,
    parse_strategy,
    plan_push,
)
from notesync_backend.domain.folder_tree import collect_descendants, creates_cycle
from notesync_backend.errors import StorageError, ValidationError
from notesync_backend.models import (
    Folder,
    Note,
    NoteSnapshot,
    NoteTag,
    Tag,
    VersionedRow,
    Workspace,
)
from notesync_backend.repositories import sync_repo
from notesync_backend.schemas_sync import (
    ConflictInfo,
    EntityType,
    FolderEntity,
    NoteEntity,
    NoteTagLink,
    SnapshotEntity,
    SyncPullResponse,
    SyncPushRequest,
    SyncPushResponse,
    TagEntity,
    VersionedEntity,
    WorkspaceEntity,
)
from notesync_backend.sync_utils import (
    canonical_content,
    format_conflict_stamp,
    new_entity_id,
    now_ms,
)

logger = logging.getLogger(__name__)

_BOOKKEEPING_FIELDS = frozenset(
    {"id", "server_version", "created_at", "updated_at", "deleted_at"}
)


@dataclass(frozen=True)
class _Resource:
    entity_type: EntityType
    # Key in push/pull payloads.
    key: str
    model: type[VersionedRow]
    schema: type[VersionedEntity]
    title_field: str
    # Folder/workspace: parent_id must stay acyclic.
    tree: bool = False

    @property
    def content_fields(self) -> tuple[str, ...]:
        return tuple(f for f in self.schema.model_fields if f not in _BOOKKEEPING_FIELDS)


# Dependency order: parents before children, notes before their snapshots.
_RESOURCES: tuple[_Resource, ...] = (
    _Resource("workspace", "workspaces", Workspace, WorkspaceEntity, "name", tree=True),
    _Resource("folder", "folders", Folder, FolderEntity, "name", tree=True),
    _Resource("tag", "tags", Tag, TagEntity, "name"),
    _Resource("note", "notes", Note, NoteEntity, "title"),
    _Resource("snapshot", "snapshots", NoteSnapshot, SnapshotEntity, "title"),
)


def _content(res: _Resource, values: dict[str, Any]) -> bytes:
    return canonical_content({f: values.get(f) for f in res.content_fields})


def _to_entity(res: _Resource, row: VersionedRow) -> VersionedEntity:
    return res.schema.model_validate(row.model_dump())


def _snapshot(res: _Resource, row: VersionedRow) -> ServerRowSnapshot:
    return ServerRowSnapshot(
        entity_id=str(row.id),
        server_version=int(row.server_version),
        content=_content(res, row.model_dump()),
        deleted=bool(row.is_deleted),
    )


@dataclass
class _PushState:
    user_id: int
    device_id: str | None
    strategy: ConflictStrategy
    now: int
    accepted: dict[str, list[VersionedEntity]]
    conflicts: list[ConflictInfo]


def _write_values(state: _PushState, data: dict[str, Any], *, creating: bool) -> dict[str, object]:
    values: dict[str, object] = {k: v for k, v in data.items() if k != "server_version"}
    if values.get("is_deleted"):
        if values.get("deleted_at") is None:
            values["deleted_at"] = state.now
    else:
        values["deleted_at"] = None
    if not values.get("updated_at"):
        values["updated_at"] = state.now
    values["server_updated_at"] = state.now
    values["updated_by_device"] = state.device_id
    if creating:
        if not values.get("created_at"):
            values["created_at"] = state.now
        values["user_id"] = state.user_id
        values["server_version"] = 1
    else:
        # Identity and creation time never change after the first accepted push.
        values.pop("id", None)
        values.pop("created_at", None)
    return values


async def _check_tree(
    session: AsyncSession,
    res: _Resource,
    *,
    user_id: int,
    entity_id: str,
    new_parent_id: str | None,
    current_parent_id: str | None,
) -> None:
    if not res.tree or new_parent_id is None or new_parent_id == current_parent_id:
        return

    async def parent_of(node_id: str) -> str | None:
        return await sync_repo.get_parent_id(
            session, res.model, user_id=user_id, entity_id=node_id
        )

    if await creates_cycle(entity_id=entity_id, new_parent_id=new_parent_id, parent_of=parent_of):
        raise ValidationError(
            f"{res.entity_type} {entity_id}: parent_id {new_parent_id} would create a cycle",
            details={"entity_id": entity_id, "parent_id": new_parent_id},
        )


async def _cascade_folder_delete(session: AsyncSession, state: _PushState, folder_id: str) -> None:
    children = await sync_repo.children_by_parent(session, Folder, user_id=state.user_id)
    subtree = [folder_id, *collect_descendants(folder_id, children)]
    touched = await sync_repo.tombstone_folders_and_notes(
        session,
        user_id=state.user_id,
        folder_ids=subtree,
        deleted_at=state.now,
        device_id=state.device_id,
    )
    if touched:
        logger.info(
            "folder delete cascaded user_id=%s folder_id=%s rows=%s",
            state.user_id,
            folder_id,
            touched,
        )


async def _after_write(
    session: AsyncSession,
    state: _PushState,
    res: _Resource,
    *,
    entity_id: str,
    was_deleted: bool,
) -> None:
    row = await sync_repo.get_entity(session, res.model, user_id=state.user_id, entity_id=entity_id)
    if row is None:
        raise StorageError(f"{res.entity_type} {entity_id} vanished after write")
    if res.model is Folder and row.is_deleted and not was_deleted:
        await _cascade_folder_delete(session, state, entity_id)
        row = await sync_repo.get_entity(
            session, res.model, user_id=state.user_id, entity_id=entity_id
        )
        if row is None:
            raise StorageError(f"{res.entity_type} {entity_id} vanished after cascade")
    state.accepted[res.key].append(_to_entity(res, row))


def _conflict_info(
    res: _Resource,
    plan: PushPlan,
    data: dict[str, Any],
    *,
    copy_id: str | None = None,
    server: dict[str, Any] | None = None,
) -> ConflictInfo:
    return ConflictInfo(
        entity_id=plan.entity_id,
        entity_type=res.entity_type,
        local_version=int(plan.local_version or 0),
        server_version=int(plan.server_version or 0),
        title=str(data.get(res.title_field) or ""),
        resolution=str(plan.resolution),
        copy_id=copy_id,
        server=server,
    )


async def _push_entity(
    session: AsyncSession, state: _PushState, res: _Resource, entity: VersionedEntity
) -> None:
    data = entity.model_dump()
    incoming = _content(res, data)

    for _attempt in range(max(1, settings.sync_cas_max_attempts)):
        row = await sync_repo.get_entity(
            session, res.model, user_id=state.user_id, entity_id=entity.id
        )
        plan = plan_push(
            entity_id=entity.id,
            base_version=entity.server_version,
            incoming_content=incoming,
            incoming_deleted=entity.is_deleted,
            server_row=_snapshot(res, row) if row is not None else None,
            strategy=state.strategy,
        )

        if plan.kind == "create":
            await _check_tree(
                session,
                res,
                user_id=state.user_id,
                entity_id=entity.id,
                new_parent_id=data.get("parent_id"),
                current_parent_id=None,
            )
            created = await sync_repo.insert_if_absent(
                session, res.model, values=_write_values(state, data, creating=True)
            )
            if not created:
                # Another device created the same id first; re-plan against its row.
                continue
            await _after_write(session, state, res, entity_id=entity.id, was_deleted=False)
            return

        if row is None:
            raise StorageError(f"{res.entity_type} {entity.id}: planned against a missing row")

        if plan.kind == "unchanged":
            # Identical content: nothing to apply, no version bump.
            state.accepted[res.key].append(_to_entity(res, row))
            return

        if plan.kind == "apply" or plan.resolution == "client_wins":
            was_deleted = bool(row.is_deleted)
            await _check_tree(
                session,
                res,
                user_id=state.user_id,
                entity_id=entity.id,
                new_parent_id=data.get("parent_id"),
                current_parent_id=getattr(row, "parent_id", None),
            )
            applied = await sync_repo.compare_and_swap(
                session,
                res.model,
                user_id=state.user_id,
                entity_id=entity.id,
                expected_version=int(plan.expected_version or 0),
                values=_write_values(state, data, creating=False),
            )
            if not applied:
                # Version moved under us; re-read and re-plan.
                continue
            if plan.kind == "conflict":
                state.conflicts.append(_conflict_info(res, plan, data))
            await _after_write(
                session, state, res, entity_id=entity.id, was_deleted=was_deleted
            )
            return

        # Conflict left unapplied: the server copy stays as is but must reach the next pull.
        await sync_repo.touch(
            session,
            res.model,
            user_id=state.user_id,
            entity_id=entity.id,
            server_updated_at=state.now,
        )

        if plan.resolution == "create_conflict_copy":
            copy_id = new_entity_id()
            copy_data = {**data, "id": copy_id}
            copy_data[res.title_field] = conflict_copy_title(
                str(data.get(res.title_field) or ""), format_conflict_stamp(state.now)
            )
            await sync_repo.insert_if_absent(
                session, res.model, values=_write_values(state, copy_data, creating=True)
            )
            state.conflicts.append(_conflict_info(res, plan, data, copy_id=copy_id))
            await _after_write(session, state, res, entity_id=copy_id, was_deleted=False)
            return

        server: dict[str, Any] | None = None
        if plan.resolution == "manual_merge":
            server = _to_entity(res, row).model_dump()
        state.conflicts.append(_conflict_info(res, plan, data, server=server))
        return

    raise StorageError(
        f"{res.entity_type} {entity.id}: too many concurrent writers, retry the push",
        details={"entity_id": entity.id, "attempts": settings.sync_cas_max_attempts},
    )


async def _push_note_tag(session: AsyncSession, state: _PushState, link: NoteTagLink) -> None:
    values = link.model_dump()
    if values["is_deleted"] and values["deleted_at"] is None:
        values["deleted_at"] = state.now
    if not values["updated_at"]:
        values["updated_at"] = state.now
    if not values["created_at"]:
        values["created_at"] = state.now
    await sync_repo.upsert_note_tag(
        session, user_id=state.user_id, values=values, server_updated_at=state.now
    )


async def push(
    *,
    session: AsyncSession,
    user_id: int,
    device_id: str | None,
    req: SyncPushRequest,
) -> SyncPushResponse:
    """Apply a push batch.

    Notes:
    - One transaction for the whole batch: a validation or storage failure
      rolls back every entity already applied in it.
    - Per entity, the version check and increment is a single conditional UPDATE.
    - Conflicts are reported, never raised.
    """

    try:
        strategy = parse_strategy(req.strategy, default=settings.sync_default_conflict_strategy)
    except ValueError as e:
        raise ValidationError(str(e)) from e

    state = _PushState(
        user_id=user_id,
        device_id=device_id,
        strategy=strategy,
        now=0,
        accepted={res.key: [] for res in _RESOURCES},
        conflicts=[],
    )

    try:
        async with session.begin():
            # Every row written by this batch carries the same clock stamp.
            state.now = await sync_repo.advance_change_clock(
                session, user_id=user_id, now=now_ms()
            )
            for res in _RESOURCES:
                for entity in getattr(req, res.key):
                    await _push_entity(session, state, res, entity)
            for link in req.note_tags:
                await _push_note_tag(session, state, link)
    except SQLAlchemyError as e:
        logger.exception("sync push storage failure user_id=%s device_id=%s", user_id, device_id)
        raise StorageError("storage failure during push; batch rolled back") from e

    return SyncPushResponse(
        workspaces=state.accepted["workspaces"],
        folders=state.accepted["folders"],
        tags=state.accepted["tags"],
        notes=state.accepted["notes"],
        snapshots=state.accepted["snapshots"],
        conflicts=state.conflicts,
        server_time=state.now,
    )


async def pull(
    *, session: AsyncSession, user_id: int, last_sync_at: int | None
) -> SyncPullResponse:
    """Changes since `last_sync_at` (tombstones included), or a live snapshot without one.

    server_time is the owner's committed change clock, read before the rows.
    A push still in flight stamps its rows above it, so the next checkpointed
    pull returns them. Rows committed between the two reads may come back twice.
    """

    try:
        server_time = await sync_repo.read_change_clock(session, user_id=user_id)
        changes: dict[str, list[Any]] = {}
        for res in _RESOURCES:
            rows = await sync_repo.list_changed(
                session, res.model, user_id=user_id, since=last_sync_at
            )
            changes[res.key] = [_to_entity(res, r) for r in rows]
        links = await sync_repo.list_changed(session, NoteTag, user_id=user_id, since=last_sync_at)
    except SQLAlchemyError as e:
        logger.exception("sync pull storage failure user_id=%s", user_id)
        raise StorageError("storage failure during pull") from e

    return SyncPullResponse(
        workspaces=changes["workspaces"],
        folders=changes["folders"],
        tags=changes["tags"],
        notes=changes["notes"],
        snapshots=changes["snapshots"],
        note_tags=[NoteTagLink.model_validate(r.model_dump()) for r in links],
        conflicts=[],
        server_time=server_time,
    )
