from __future__ import annotations

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from notesync_backend.config import settings
from notesync_backend.db import get_session
from notesync_backend.errors import AuthError
from notesync_backend.models import Device, User
from notesync_backend.services import device_service
from notesync_backend.sync_utils import now_ms

_bearer = HTTPBearer(auto_error=False)

_DEVICE_ID_HEADERS = ("X-Device-Id", "X-Sync-Device-Id")


def _header_first(request: Request, names: tuple[str, ...]) -> str | None:
    for n in names:
        v = request.headers.get(n)
        if v and v.strip():
            return v.strip()
    return None


def extract_device_id(request: Request) -> str | None:
    return _header_first(request, _DEVICE_ID_HEADERS)


async def get_current_user(
    request: Request,
    creds: HTTPAuthorizationCredentials | None = Depends(_bearer),
    # Use a dedicated session for auth so services can own tx boundaries
    # on a separate request-scoped session.
    session: AsyncSession = Depends(get_session, use_cache=False),
) -> User:
    raw_token = creds.credentials if creds is not None else None
    if not raw_token or not raw_token.strip():
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="missing token")

    token = raw_token.strip()
    user = (await session.exec(select(User).where(User.api_token == token))).first()
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid token")
    if user.api_token_expires_at is not None and int(user.api_token_expires_at) <= now_ms():
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="token expired")
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="user disabled")

    user_id = user.id
    if user_id is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="user missing id"
        )
    request.state.auth_user_id = int(user_id)
    return user


async def get_sync_device(
    request: Request,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session, use_cache=False),
) -> Device | None:
    """The active device driving a push/pull; revoked devices are refused."""

    device_id = extract_device_id(request)
    if not device_id:
        if settings.sync_require_device:
            raise AuthError("missing device id (X-Device-Id)")
        return None
    user_id = user.id
    if user_id is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="user missing id"
        )
    return await device_service.require_active_device(
        session, user_id=int(user_id), device_id=device_id
    )
