from __future__ import annotations

from pydantic import BaseModel, Field

from notesync_backend.schemas import DeviceType


class DeviceRegisterRequest(BaseModel):
    device_name: str = Field(min_length=1, max_length=255)
    # Derived from the User-Agent when omitted.
    device_type: DeviceType | None = None


class DeviceOut(BaseModel):
    id: str
    name: str
    device_type: str
    revoked: bool
    revoked_at: int | None = None
    last_seen_at: int
    created_at: int


class DeviceList(BaseModel):
    items: list[DeviceOut] = Field(default_factory=list)
