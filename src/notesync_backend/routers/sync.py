from __future__ import annotations

import logging
import time

from fastapi import APIRouter, Depends, Query, Request
from sqlmodel.ext.asyncio.session import AsyncSession

from notesync_backend.db import get_session
from notesync_backend.deps import extract_device_id, get_current_user, get_sync_device
from notesync_backend.errors import SyncError
from notesync_backend.models import Device, SyncHistoryEntry, User
from notesync_backend.schemas_common import DeletedResponse
from notesync_backend.schemas_sync import (
    FullSyncRequest,
    FullSyncResponse,
    SyncHistoryAppend,
    SyncHistoryList,
    SyncHistoryOut,
    SyncPullRequest,
    SyncPullResponse,
    SyncPushRequest,
    SyncPushResponse,
    SyncReport,
)
from notesync_backend.services import sync_history_service, sync_service

router = APIRouter(prefix="/sync", tags=["sync"])

logger = logging.getLogger(__name__)


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


def _history_out(entry: SyncHistoryEntry) -> SyncHistoryOut:
    return SyncHistoryOut.model_validate(entry.model_dump())


async def _record_failure(
    *, user_id: int, device_id: str | None, sync_type: str, error: SyncError, started: float
) -> None:
    # Failed runs are logged with zero counts.
    await sync_history_service.record_best_effort(
        user_id=user_id,
        device_id=device_id,
        sync_type=sync_type,
        error=error.message,
        duration_ms=_elapsed_ms(started),
    )


@router.post("/push", response_model=SyncPushResponse)
async def push(
    req: SyncPushRequest,
    user: User = Depends(get_current_user),
    device: Device | None = Depends(get_sync_device),
    session: AsyncSession = Depends(get_session),
) -> SyncPushResponse:
    started = time.monotonic()
    user_id = int(user.id or 0)
    device_id = device.id if device else None
    logger.info(
        "sync push start user_id=%s device_id=%s entities=%s",
        user_id,
        device_id,
        req.entity_count(),
    )

    try:
        result = await sync_service.push(
            session=session, user_id=user_id, device_id=device_id, req=req
        )
    except SyncError as e:
        await _record_failure(
            user_id=user_id, device_id=device_id, sync_type="push", error=e, started=started
        )
        raise

    duration_ms = _elapsed_ms(started)
    logger.info(
        "sync push done user_id=%s device_id=%s pushed=%s conflicts=%s duration_ms=%s",
        user_id,
        device_id,
        req.entity_count(),
        len(result.conflicts),
        duration_ms,
    )
    await sync_history_service.record_best_effort(
        user_id=user_id,
        device_id=device_id,
        sync_type="push",
        pushed_count=req.entity_count(),
        conflict_count=len(result.conflicts),
        duration_ms=duration_ms,
    )
    return result


@router.post("/pull", response_model=SyncPullResponse)
async def pull(
    req: SyncPullRequest,
    user: User = Depends(get_current_user),
    device: Device | None = Depends(get_sync_device),
    session: AsyncSession = Depends(get_session),
) -> SyncPullResponse:
    started = time.monotonic()
    user_id = int(user.id or 0)
    device_id = device.id if device else None

    try:
        result = await sync_service.pull(
            session=session, user_id=user_id, last_sync_at=req.last_sync_at
        )
    except SyncError as e:
        await _record_failure(
            user_id=user_id, device_id=device_id, sync_type="pull", error=e, started=started
        )
        raise

    duration_ms = _elapsed_ms(started)
    logger.info(
        "sync pull done user_id=%s device_id=%s since=%s pulled=%s duration_ms=%s",
        user_id,
        device_id,
        req.last_sync_at,
        result.entity_count(),
        duration_ms,
    )
    await sync_history_service.record_best_effort(
        user_id=user_id,
        device_id=device_id,
        sync_type="pull",
        pulled_count=result.entity_count(),
        duration_ms=duration_ms,
    )
    return result


@router.post("", response_model=FullSyncResponse)
async def full_sync(
    req: FullSyncRequest,
    user: User = Depends(get_current_user),
    device: Device | None = Depends(get_sync_device),
    session: AsyncSession = Depends(get_session),
) -> FullSyncResponse:
    """Push then pull in one request. A pull failure leaves the push committed."""

    started = time.monotonic()
    user_id = int(user.id or 0)
    device_id = device.id if device else None

    try:
        pushed = await sync_service.push(
            session=session, user_id=user_id, device_id=device_id, req=req
        )
        pulled = await sync_service.pull(
            session=session, user_id=user_id, last_sync_at=req.last_sync_at
        )
    except SyncError as e:
        await _record_failure(
            user_id=user_id, device_id=device_id, sync_type="full", error=e, started=started
        )
        raise

    report = SyncReport(
        success=True,
        pushed_count=req.entity_count(),
        pulled_count=pulled.entity_count(),
        conflict_count=len(pushed.conflicts),
        duration_ms=_elapsed_ms(started),
    )
    logger.info(
        "sync full done user_id=%s device_id=%s pushed=%s pulled=%s conflicts=%s duration_ms=%s",
        user_id,
        device_id,
        report.pushed_count,
        report.pulled_count,
        report.conflict_count,
        report.duration_ms,
    )
    await sync_history_service.record_best_effort(
        user_id=user_id,
        device_id=device_id,
        sync_type="full",
        pushed_count=report.pushed_count,
        pulled_count=report.pulled_count,
        conflict_count=report.conflict_count,
        duration_ms=report.duration_ms,
    )
    return FullSyncResponse(push=pushed, pull=pulled, report=report)


@router.get("/history", response_model=SyncHistoryList)
async def list_history(
    limit: int | None = Query(default=None, ge=1),
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> SyncHistoryList:
    entries = await sync_history_service.list_entries(
        session, user_id=int(user.id or 0), limit=limit
    )
    return SyncHistoryList(items=[_history_out(e) for e in entries])


@router.post("/history", response_model=SyncHistoryOut, status_code=201)
async def append_history(
    payload: SyncHistoryAppend,
    request: Request,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> SyncHistoryOut:
    entry = await sync_history_service.record(
        session,
        user_id=int(user.id or 0),
        device_id=extract_device_id(request),
        sync_type=payload.sync_type,
        pushed_count=payload.pushed_count,
        pulled_count=payload.pulled_count,
        conflict_count=payload.conflict_count,
        error=payload.error,
        duration_ms=payload.duration_ms,
    )
    return _history_out(entry)


@router.delete("/history", response_model=DeletedResponse)
async def clear_history(
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> DeletedResponse:
    deleted = await sync_history_service.clear(session, user_id=int(user.id or 0))
    return DeletedResponse(deleted=deleted)
