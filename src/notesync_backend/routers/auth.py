from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.exc import IntegrityError
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from notesync_backend.config import settings
from notesync_backend.db import get_session
from notesync_backend.deps import get_current_user
from notesync_backend.models import User
from notesync_backend.schemas import AuthTokenResponse, LoginRequest, RegisterRequest
from notesync_backend.schemas_common import OkResponse
from notesync_backend.security import hash_password, new_api_token, verify_password
from notesync_backend.services import device_service
from notesync_backend.sync_utils import now_ms

router = APIRouter(prefix="/auth", tags=["auth"])

logger = logging.getLogger(__name__)


def _token_expiry(now: int) -> int:
    return now + settings.auth_token_max_age_seconds * 1000


async def _issue_response(
    session: AsyncSession,
    request: Request,
    user: User,
    *,
    device_name: str | None,
    device_type: str | None,
) -> AuthTokenResponse:
    user_id = user.id
    if user_id is None or not user.api_token or user.api_token_expires_at is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="user token missing"
        )

    device_id: str | None = None
    if device_name:
        device = await device_service.register_device(
            session,
            user_id=int(user_id),
            name=device_name,
            device_type=device_type
            or device_service.parse_device_type(request.headers.get("user-agent")),
        )
        device_id = device.id

    return AuthTokenResponse(
        token=user.api_token,
        expires_at=int(user.api_token_expires_at),
        user_id=int(user_id),
        device_id=device_id,
    )


@router.post("/register", response_model=AuthTokenResponse)
async def register(
    payload: RegisterRequest,
    request: Request,
    session: AsyncSession = Depends(get_session),
) -> AuthTokenResponse:
    existing = (await session.exec(select(User).where(User.username == payload.username))).first()
    if existing:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="username already exists")

    user = User(
        username=payload.username,
        password_hash="",
        api_token=new_api_token(),
        api_token_expires_at=_token_expiry(now_ms()),
        is_active=True,
    )
    try:
        user.password_hash = hash_password(payload.password)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    try:
        session.add(user)
        await session.commit()
        await session.refresh(user)
    except IntegrityError:
        await session.rollback()
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="username already exists")

    logger.info("user registered user_id=%s", user.id)
    return await _issue_response(
        session,
        request,
        user,
        device_name=payload.device_name,
        device_type=payload.device_type,
    )


@router.post("/login", response_model=AuthTokenResponse)
async def login(
    payload: LoginRequest,
    request: Request,
    session: AsyncSession = Depends(get_session),
) -> AuthTokenResponse:
    user = (await session.exec(select(User).where(User.username == payload.username))).first()
    if not user or not verify_password(payload.password, user.password_hash):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid credentials")
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="user disabled")

    now = now_ms()
    expires_at = user.api_token_expires_at
    if not user.api_token or expires_at is None or int(expires_at) <= now:
        # Rotate only once expired so other devices keep their token.
        user.api_token = new_api_token()
        user.api_token_expires_at = _token_expiry(now)
        session.add(user)
        await session.commit()
        await session.refresh(user)

    return await _issue_response(
        session,
        request,
        user,
        device_name=payload.device_name,
        device_type=payload.device_type,
    )


async def _reload_user(session: AsyncSession, user: User) -> User:
    # get_current_user loads on its own session; writes go through this one.
    fresh = await session.get(User, user.id)
    if fresh is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid token")
    return fresh


@router.post("/refresh", response_model=AuthTokenResponse)
async def refresh(
    request: Request,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> AuthTokenResponse:
    """Swap a still-valid token for a new one; the old token stops working at once."""

    fresh = await _reload_user(session, user)
    fresh.api_token = new_api_token()
    fresh.api_token_expires_at = _token_expiry(now_ms())
    session.add(fresh)
    await session.commit()
    await session.refresh(fresh)

    logger.info("token refreshed user_id=%s", fresh.id)
    return await _issue_response(session, request, fresh, device_name=None, device_type=None)


@router.post("/logout", response_model=OkResponse)
async def logout(
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> OkResponse:
    """Revoke the bearer token. Every client holding it must log in again."""

    fresh = await _reload_user(session, user)
    fresh.api_token = None
    fresh.api_token_expires_at = None
    session.add(fresh)
    await session.commit()

    logger.info("user logged out user_id=%s", fresh.id)
    return OkResponse()
