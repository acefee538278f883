"""HTTP transport for the client-side sync coordinator.

Maps every failure onto the sync error taxonomy so callers only ever see
`SyncError` subclasses. Nothing here retries: retry policy belongs to the caller.
"""

from __future__ import annotations

from typing import Any

import httpx
from pydantic import ValidationError as PydanticValidationError

from notesync_backend.config import settings
from notesync_backend.errors import (
    AuthError,
    ForbiddenError,
    StorageError,
    SyncError,
    TransportError,
    ValidationError,
)
from notesync_backend.schemas_sync import (
    SyncHistoryAppend,
    SyncPullRequest,
    SyncPullResponse,
    SyncPushRequest,
    SyncPushResponse,
    SyncReport,
)


def _error_message(resp: httpx.Response) -> tuple[str, object | None]:
    try:
        data = resp.json()
    except ValueError:
        return f"{resp.status_code} {resp.text}", None
    if isinstance(data, dict) and isinstance(data.get("message"), str):
        return data["message"], data.get("details")
    return f"{resp.status_code} {resp.text}", None


def _raise_for_status(resp: httpx.Response) -> None:
    if 200 <= resp.status_code < 300:
        return
    message, details = _error_message(resp)
    if resp.status_code == 401:
        raise AuthError(message, details=details)
    if resp.status_code == 403:
        raise ForbiddenError(message, details=details)
    if resp.status_code == 422:
        raise ValidationError(message, details=details)
    if resp.status_code == 503:
        raise StorageError(message, details=details)
    raise SyncError(f"unexpected status {resp.status_code}: {message}", details=details)


class HttpSyncTransport:
    def __init__(
        self,
        base_url: str,
        token: str,
        device_id: str | None = None,
        *,
        api_prefix: str = "/api/v1",
        timeout_seconds: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_prefix = "/" + api_prefix.strip("/") if api_prefix.strip("/") else ""
        self._token = token.strip()
        self._device_id = device_id
        self._timeout = (
            settings.sync_client_timeout_seconds if timeout_seconds is None else timeout_seconds
        )
        # Injectable for tests (httpx.ASGITransport) and custom networking.
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        if not self._token:
            raise AuthError("sync token is empty")
        headers = {"Authorization": f"Bearer {self._token}"}
        if self._device_id:
            headers["X-Device-Id"] = self._device_id
        return headers

    async def _post_json(self, path: str, payload: dict[str, Any]) -> Any:
        url = f"{self._base_url}{self._api_prefix}{path}"
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                resp = await client.post(url, headers=self._headers(), json=payload)
        except httpx.TimeoutException as e:
            raise TransportError(f"timeout calling {path}") from e
        except httpx.HTTPError as e:
            raise TransportError(f"network error calling {path}: {e}") from e

        _raise_for_status(resp)
        try:
            return resp.json()
        except ValueError as e:
            raise SyncError(f"malformed response from {path}") from e

    async def push(self, req: SyncPushRequest) -> SyncPushResponse:
        data = await self._post_json("/sync/push", req.model_dump(mode="json", by_alias=False))
        try:
            return SyncPushResponse.model_validate(data)
        except PydanticValidationError as e:
            raise SyncError("malformed push response") from e

    async def pull(self, last_sync_at: int | None) -> SyncPullResponse:
        data = await self._post_json(
            "/sync/pull", SyncPullRequest(last_sync_at=last_sync_at).model_dump(mode="json")
        )
        try:
            return SyncPullResponse.model_validate(data)
        except PydanticValidationError as e:
            raise SyncError("malformed pull response") from e

    async def append_history(self, report: SyncReport, *, sync_type: str = "full") -> None:
        payload = SyncHistoryAppend(
            sync_type=sync_type,  # pyright: ignore[reportArgumentType]
            pushed_count=report.pushed_count,
            pulled_count=report.pulled_count,
            conflict_count=report.conflict_count,
            error=report.error[:4000] if report.error else None,
            duration_ms=report.duration_ms,
        )
        await self._post_json("/sync/history", payload.model_dump(mode="json"))
