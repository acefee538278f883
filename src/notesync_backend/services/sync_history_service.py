# pyright: reportAttributeAccessIssue=false

from __future__ import annotations

import logging
from typing import Any, cast

import sqlalchemy as sa
from sqlalchemy.sql.elements import ColumnElement
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from notesync_backend.config import settings
from notesync_backend.db import session_scope
from notesync_backend.models import SyncHistoryEntry
from notesync_backend.sync_utils import now_ms

logger = logging.getLogger(__name__)

_DAY_MS = 24 * 60 * 60 * 1000


def _c(attr: object) -> ColumnElement[Any]:
    return cast(ColumnElement[Any], attr)


def clamp_limit(limit: int | None) -> int:
    v = settings.sync_history_default_limit if limit is None else int(limit)
    return max(1, min(v, settings.sync_history_max_limit))


async def record(
    session: AsyncSession,
    *,
    user_id: int,
    device_id: str | None,
    sync_type: str,
    pushed_count: int = 0,
    pulled_count: int = 0,
    conflict_count: int = 0,
    error: str | None = None,
    duration_ms: int = 0,
) -> SyncHistoryEntry:
    """Append one entry (entries are never updated afterwards), then apply retention."""

    entry = SyncHistoryEntry(
        user_id=user_id,
        device_id=device_id,
        sync_type=sync_type,
        pushed_count=pushed_count,
        pulled_count=pulled_count,
        conflict_count=conflict_count,
        error=error,
        duration_ms=max(0, int(duration_ms)),
        created_at=now_ms(),
    )
    session.add(entry)
    await session.commit()
    await session.refresh(entry)

    await prune(session, user_id=user_id)
    return entry


async def record_best_effort(
    *, user_id: int, device_id: str | None, sync_type: str, **counts: Any
) -> None:
    try:
        async with session_scope() as history_session:
            await record(
                history_session,
                user_id=user_id,
                device_id=device_id,
                sync_type=sync_type,
                **counts,
            )
    except Exception:
        # History is audit only; it must never fail the sync it describes.
        logger.warning(
            "sync history append failed user_id=%s sync_type=%s", user_id, sync_type, exc_info=True
        )


async def list_entries(
    session: AsyncSession, *, user_id: int, limit: int | None = None
) -> list[SyncHistoryEntry]:
    stmt = (
        select(SyncHistoryEntry)
        .where(SyncHistoryEntry.user_id == user_id)
        .order_by(_c(SyncHistoryEntry.created_at).desc(), _c(SyncHistoryEntry.id).desc())
        .limit(clamp_limit(limit))
    )
    return list((await session.exec(stmt)).all())


async def clear(session: AsyncSession, *, user_id: int) -> int:
    # Single statement: the owner's whole history goes at once.
    result = await session.exec(
        sa.delete(SyncHistoryEntry)
        .where(_c(SyncHistoryEntry.user_id) == user_id)
        .execution_options(synchronize_session=False)
    )
    await session.commit()
    deleted = int(result.rowcount or 0)
    logger.info("sync history cleared user_id=%s deleted=%s", user_id, deleted)
    return deleted


async def prune(session: AsyncSession, *, user_id: int) -> int:
    """Drop entries past the retention window or beyond the per-owner cap."""

    cutoff = now_ms() - settings.sync_history_retention_days * _DAY_MS
    result = await session.exec(
        sa.delete(SyncHistoryEntry)
        .where(_c(SyncHistoryEntry.user_id) == user_id)
        .where(_c(SyncHistoryEntry.created_at) < cutoff)
        .execution_options(synchronize_session=False)
    )
    removed = int(result.rowcount or 0)

    keep_ids = (
        select(SyncHistoryEntry.id)
        .where(SyncHistoryEntry.user_id == user_id)
        .order_by(_c(SyncHistoryEntry.created_at).desc(), _c(SyncHistoryEntry.id).desc())
        .limit(settings.sync_history_max_records)
    )
    result = await session.exec(
        sa.delete(SyncHistoryEntry)
        .where(_c(SyncHistoryEntry.user_id) == user_id)
        .where(_c(SyncHistoryEntry.id).not_in(keep_ids))
        .execution_options(synchronize_session=False)
    )
    removed += int(result.rowcount or 0)
    await session.commit()
    return removed
