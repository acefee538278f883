from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from sqlmodel.ext.asyncio.session import AsyncSession

from notesync_backend.db import get_session
from notesync_backend.deps import get_current_user
from notesync_backend.models import Device, User
from notesync_backend.schemas_devices import DeviceList, DeviceOut, DeviceRegisterRequest
from notesync_backend.services import device_service

router = APIRouter(prefix="/devices", tags=["devices"])


def _device_out(device: Device) -> DeviceOut:
    return DeviceOut.model_validate(device.model_dump())


@router.get("", response_model=DeviceList)
async def list_devices(
    include_revoked: bool = False,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> DeviceList:
    devices = await device_service.list_devices(
        session, user_id=int(user.id or 0), include_revoked=include_revoked
    )
    return DeviceList(items=[_device_out(d) for d in devices])


@router.post("", response_model=DeviceOut, status_code=201)
async def register_device(
    payload: DeviceRegisterRequest,
    request: Request,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> DeviceOut:
    device_type = payload.device_type or device_service.parse_device_type(
        request.headers.get("user-agent")
    )
    device = await device_service.register_device(
        session, user_id=int(user.id or 0), name=payload.device_name, device_type=device_type
    )
    return _device_out(device)


@router.delete("/{device_id}", response_model=DeviceOut)
async def revoke_device(
    device_id: str,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> DeviceOut:
    device = await device_service.revoke_device(
        session, user_id=int(user.id or 0), device_id=device_id
    )
    return _device_out(device)


@router.post("/{device_id}/heartbeat", response_model=DeviceOut)
async def heartbeat(
    device_id: str,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> DeviceOut:
    device = await device_service.heartbeat(session, user_id=int(user.id or 0), device_id=device_id)
    return _device_out(device)
