# pyright: reportAttributeAccessIssue=false

from __future__ import annotations

from typing import Any, cast

import sqlalchemy as sa
from sqlalchemy.sql.elements import ColumnElement
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from notesync_backend.config import settings
from notesync_backend.models import Folder, Note, NoteTag, SyncClock, VersionedRow


def _c(attr: object) -> ColumnElement[Any]:
    return cast(ColumnElement[Any], attr)


def _is_sqlite() -> bool:
    return settings.database_url.lower().startswith("sqlite")


def _is_postgres() -> bool:
    v = settings.database_url.lower()
    return v.startswith("postgresql") or v.startswith("postgres")


def _dialect_insert(model: Any) -> Any:
    if _is_sqlite():
        from sqlalchemy.dialects.sqlite import insert as dialect_insert

        return dialect_insert(model)
    if _is_postgres():
        from sqlalchemy.dialects.postgresql import insert as dialect_insert

        return dialect_insert(model)
    return None


async def advance_change_clock(session: AsyncSession, *, user_id: int, now: int) -> int:
    """Move the owner's change clock to max(now, last + 1) and return the new value.

    Must run inside the push transaction: the upsert holds the owner's clock row
    until commit, so concurrent pushes for one owner take stamps in commit order.
    """

    table = SyncClock.__table__
    last = table.c.last_change_at
    advanced = sa.case((last + 1 > now, last + 1), else_=now)

    stmt = _dialect_insert(table)
    if stmt is not None:
        stmt = (
            stmt.values(user_id=user_id, last_change_at=now)
            .on_conflict_do_update(index_elements=["user_id"], set_={"last_change_at": advanced})
            .returning(last)
        )
        row = (await session.exec(stmt)).first()
        return now if row is None else int(row[0])

    if await session.get(SyncClock, user_id) is None:
        session.add(SyncClock(user_id=user_id, last_change_at=0))
        await session.flush()
    await session.exec(
        sa.update(table).where(table.c.user_id == user_id).values(last_change_at=advanced)
    )
    return await read_change_clock(session, user_id=user_id)


async def read_change_clock(session: AsyncSession, *, user_id: int) -> int:
    """Owner's change clock as this session sees it; 0 before the first push."""

    result = await session.exec(
        select(SyncClock.last_change_at).where(SyncClock.user_id == user_id)
    )
    value = result.first()
    return int(value or 0)


async def get_entity(
    session: AsyncSession, model: type[VersionedRow], *, user_id: int, entity_id: str
) -> VersionedRow | None:
    stmt = (
        select(model)
        .where(model.user_id == user_id)
        .where(model.id == entity_id)
        .execution_options(populate_existing=True)
    )
    return (await session.exec(stmt)).first()


async def insert_if_absent(
    session: AsyncSession, model: type[VersionedRow], *, values: dict[str, object]
) -> bool:
    """Insert a new row; False when another writer created the same id first."""

    stmt = _dialect_insert(model)
    if stmt is None:
        # Other dialects: a concurrent create surfaces as IntegrityError (storage failure).
        await session.exec(sa.insert(model).values(**values))
        return True

    stmt = stmt.values(**values).on_conflict_do_nothing(index_elements=["user_id", "id"])
    result = await session.exec(stmt)
    return int(result.rowcount or 0) == 1


async def compare_and_swap(
    session: AsyncSession,
    model: type[VersionedRow],
    *,
    user_id: int,
    entity_id: str,
    expected_version: int,
    values: dict[str, object],
) -> bool:
    """Apply `values` and bump server_version iff it still equals `expected_version`.

    Single conditional UPDATE: the read-compare-increment is atomic at the storage
    boundary. False means a concurrent writer moved the version first.
    """

    result = await session.exec(
        sa.update(model)
        .where(_c(model.user_id) == user_id)
        .where(_c(model.id) == entity_id)
        .where(_c(model.server_version) == expected_version)
        .values(**values, server_version=_c(model.server_version) + 1)
    )
    return int(result.rowcount or 0) == 1


async def touch(
    session: AsyncSession,
    model: type[VersionedRow],
    *,
    user_id: int,
    entity_id: str,
    server_updated_at: int,
) -> None:
    # Content and version untouched; only makes the row visible to the next pull.
    await session.exec(
        sa.update(model)
        .where(_c(model.user_id) == user_id)
        .where(_c(model.id) == entity_id)
        .values(server_updated_at=server_updated_at)
    )


async def get_parent_id(
    session: AsyncSession, model: type[VersionedRow], *, user_id: int, entity_id: str
) -> str | None:
    result = await session.exec(
        select(model.parent_id).where(model.user_id == user_id).where(model.id == entity_id)
    )
    parent = result.first()
    return str(parent) if parent else None


async def children_by_parent(
    session: AsyncSession, model: type[VersionedRow], *, user_id: int
) -> dict[str, list[str]]:
    rows = (
        await session.exec(
            select(model.id, model.parent_id)
            .where(model.user_id == user_id)
            .where(_c(model.parent_id).is_not(None))
            .where(_c(model.is_deleted).is_(False))
        )
    ).all()
    out: dict[str, list[str]] = {}
    for child_id, parent_id in rows:
        out.setdefault(str(parent_id), []).append(str(child_id))
    return out


async def tombstone_folders_and_notes(
    session: AsyncSession,
    *,
    user_id: int,
    folder_ids: list[str],
    deleted_at: int,
    device_id: str | None,
) -> int:
    """Tombstone live folders in `folder_ids` and live notes filed under any of them.

    Each affected row gets exactly one version increment. Returns rows touched.
    """

    if not folder_ids:
        return 0

    values: dict[str, object] = {
        "is_deleted": True,
        "deleted_at": deleted_at,
        "updated_at": deleted_at,
        "server_updated_at": deleted_at,
        "updated_by_device": device_id,
    }
    touched = 0
    result = await session.exec(
        sa.update(Folder)
        .where(_c(Folder.user_id) == user_id)
        .where(_c(Folder.id).in_(folder_ids))
        .where(_c(Folder.is_deleted).is_(False))
        .values(**values, server_version=_c(Folder.server_version) + 1)
    )
    touched += int(result.rowcount or 0)
    result = await session.exec(
        sa.update(Note)
        .where(_c(Note.user_id) == user_id)
        .where(_c(Note.folder_id).in_(folder_ids))
        .where(_c(Note.is_deleted).is_(False))
        .values(**values, server_version=_c(Note.server_version) + 1)
    )
    touched += int(result.rowcount or 0)
    return touched


async def list_changed(
    session: AsyncSession, model: type[Any], *, user_id: int, since: int | None
) -> list[Any]:
    """Rows changed server-side after `since`; without a checkpoint, all live rows."""

    stmt = select(model).where(model.user_id == user_id)
    if since is None:
        stmt = stmt.where(_c(model.is_deleted).is_(False))
    else:
        stmt = stmt.where(_c(model.server_updated_at) > since)
    stmt = stmt.order_by(_c(model.server_updated_at).asc())
    return list((await session.exec(stmt)).all())


async def upsert_note_tag(
    session: AsyncSession, *, user_id: int, values: dict[str, object], server_updated_at: int
) -> None:
    row_values: dict[str, object] = {
        **values,
        "user_id": user_id,
        "server_updated_at": server_updated_at,
    }
    mutable = {
        k: row_values[k]
        for k in ("is_deleted", "deleted_at", "updated_at", "server_updated_at")
    }

    stmt = _dialect_insert(NoteTag)
    if stmt is not None:
        stmt = stmt.values(**row_values).on_conflict_do_update(
            index_elements=["user_id", "note_id", "tag_id"], set_=mutable
        )
        await session.exec(stmt)
        return

    existing = await session.get(
        NoteTag, (user_id, str(values["note_id"]), str(values["tag_id"]))
    )
    if existing is None:
        session.add(NoteTag(**row_values))
        return
    for k, v in mutable.items():
        setattr(existing, k, v)
    session.add(existing)
