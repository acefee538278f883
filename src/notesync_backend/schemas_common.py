from __future__ import annotations

from pydantic import BaseModel


class HealthResponse(BaseModel):
    ok: bool = True


class OkResponse(BaseModel):
    ok: bool = True


class DeletedResponse(BaseModel):
    ok: bool = True
    deleted: int = 0


class ErrorResponse(BaseModel):
    """Error body shared by every endpoint: {error, message, request_id, details}."""

    error: str
    message: str
    request_id: str | None = None
    details: object | None = None
