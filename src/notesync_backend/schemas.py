from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field, field_validator

_MAX_BCRYPT_PASSWORD_BYTES = 72

DeviceType = Literal["desktop", "laptop", "mobile", "tablet"]


class RegisterRequest(BaseModel):
    username: str = Field(min_length=1, max_length=64, pattern=r"^[A-Za-z0-9_]+$")
    password: str = Field(min_length=6, max_length=72)
    # Optional: register the calling device in the same round trip.
    device_name: str | None = Field(default=None, min_length=1, max_length=255)
    device_type: DeviceType | None = None

    @field_validator("password")
    @classmethod
    def validate_password_bytes(cls, v: str) -> str:
        if len(v.encode("utf-8")) > _MAX_BCRYPT_PASSWORD_BYTES:
            raise ValueError("password too long (bcrypt accepts at most 72 bytes)")
        return v


class LoginRequest(BaseModel):
    username: str = Field(min_length=1, max_length=64, pattern=r"^[A-Za-z0-9_]+$")
    password: str = Field(min_length=1, max_length=72)
    device_name: str | None = Field(default=None, min_length=1, max_length=255)
    device_type: DeviceType | None = None


class AuthTokenResponse(BaseModel):
    token: str
    expires_at: int
    user_id: int
    device_id: str | None = None
