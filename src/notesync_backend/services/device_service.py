# pyright: reportAttributeAccessIssue=false

from __future__ import annotations

import logging
from typing import Any, cast

import sqlalchemy as sa
from fastapi import HTTPException, status
from sqlalchemy.sql.elements import ColumnElement
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from notesync_backend.errors import AuthError, ForbiddenError
from notesync_backend.models import Device
from notesync_backend.sync_utils import new_entity_id, now_ms

logger = logging.getLogger(__name__)


def _c(attr: object) -> ColumnElement[Any]:
    return cast(ColumnElement[Any], attr)


def parse_device_type(user_agent: str | None) -> str:
    ua = (user_agent or "").lower()

    # Tablets first: tablet UAs may also contain "mobile".
    if "ipad" in ua or ("android" in ua and "mobile" not in ua):
        return "tablet"
    if "iphone" in ua or "android" in ua or "mobile" in ua:
        return "mobile"
    return "desktop"


async def _get_device(session: AsyncSession, *, user_id: int, device_id: str) -> Device | None:
    return (
        await session.exec(
            select(Device)
            .where(Device.user_id == user_id)
            .where(Device.id == device_id)
            .execution_options(populate_existing=True)
        )
    ).first()


async def register_device(
    session: AsyncSession, *, user_id: int, name: str, device_type: str
) -> Device:
    # No dedup by (user, name, type): every registration is a new row.
    now = now_ms()
    device = Device(
        id=new_entity_id(),
        user_id=user_id,
        name=name.strip(),
        device_type=device_type,
        revoked=False,
        last_seen_at=now,
        created_at=now,
    )
    session.add(device)
    await session.commit()
    await session.refresh(device)
    logger.info(
        "device registered user_id=%s device_id=%s type=%s", user_id, device.id, device_type
    )
    return device


async def list_devices(
    session: AsyncSession, *, user_id: int, include_revoked: bool = False
) -> list[Device]:
    stmt = select(Device).where(Device.user_id == user_id)
    if not include_revoked:
        stmt = stmt.where(_c(Device.revoked).is_(False))
    stmt = stmt.order_by(_c(Device.last_seen_at).desc(), _c(Device.created_at).desc())
    return list((await session.exec(stmt)).all())


async def revoke_device(session: AsyncSession, *, user_id: int, device_id: str) -> Device:
    """Active -> Revoked. Idempotent; there is no path back to active."""

    result = await session.exec(
        sa.update(Device)
        .where(_c(Device.user_id) == user_id)
        .where(_c(Device.id) == device_id)
        .where(_c(Device.revoked).is_(False))
        .values(revoked=True, revoked_at=now_ms())
    )
    await session.commit()

    device = await _get_device(session, user_id=user_id, device_id=device_id)
    if device is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="device not found")
    if int(result.rowcount or 0):
        logger.info("device revoked user_id=%s device_id=%s", user_id, device_id)
    return device


async def heartbeat(session: AsyncSession, *, user_id: int, device_id: str) -> Device:
    # Conditional on revoked=false so a revoked device's last_seen_at never moves.
    result = await session.exec(
        sa.update(Device)
        .where(_c(Device.user_id) == user_id)
        .where(_c(Device.id) == device_id)
        .where(_c(Device.revoked).is_(False))
        .values(last_seen_at=now_ms())
    )
    await session.commit()

    device = await _get_device(session, user_id=user_id, device_id=device_id)
    if device is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="device not found")
    if not int(result.rowcount or 0):
        raise ForbiddenError("device revoked", details={"device_id": device_id})
    return device


async def require_active_device(session: AsyncSession, *, user_id: int, device_id: str) -> Device:
    device = await _get_device(session, user_id=user_id, device_id=device_id)
    if device is None:
        raise AuthError("unknown device", details={"device_id": device_id})
    if device.revoked:
        raise ForbiddenError("device revoked", details={"device_id": device_id})
    return device
