from __future__ import annotations

from pathlib import Path

import httpx
import pytest
from fastapi import HTTPException, Request
from sqlmodel import select

from notesync_backend.config import settings
from notesync_backend.db import init_db, reset_engine_cache, session_scope
from notesync_backend.deps import get_sync_device
from notesync_backend.main import app
from notesync_backend.models import Device, User
from notesync_backend.security import hash_password
from notesync_backend.services.device_service import parse_device_type


def _make_async_client() -> httpx.AsyncClient:
    transport = httpx.ASGITransport(app=app)
    return httpx.AsyncClient(transport=transport, base_url="http://test")


def _bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


async def _create_user(username: str, token: str, password: str | None = None) -> int:
    async with session_scope() as session:
        user = User(
            username=username,
            password_hash=hash_password(password) if password else "x",
            api_token=token,
            is_active=True,
        )
        session.add(user)
        await session.commit()
        await session.refresh(user)
        assert user.id is not None
        return int(user.id)


@pytest.mark.parametrize(
    ("user_agent", "expected"),
    [
        (None, "desktop"),
        ("", "desktop"),
        ("Mozilla/5.0 (Windows NT 10.0; Win64; x64)", "desktop"),
        ("Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) Mobile/15E148", "mobile"),
        ("Mozilla/5.0 (Linux; Android 14; Pixel 8) Mobile Safari/537.36", "mobile"),
        ("Mozilla/5.0 (iPad; CPU OS 17_0 like Mac OS X) Mobile/15E148", "tablet"),
        ("Mozilla/5.0 (Linux; Android 13; SM-X700) Safari/537.36", "tablet"),
    ],
)
def test_parse_device_type(user_agent: str | None, expected: str) -> None:
    assert parse_device_type(user_agent) == expected


@pytest.mark.anyio
async def test_register_list_and_revoke_device(tmp_path: Path) -> None:
    settings.database_url = f"sqlite:///{tmp_path / 'devices.db'}"
    reset_engine_cache()
    await init_db()
    await _create_user("u_dev", "tok-dev")

    async with _make_async_client() as client:
        r = await client.post(
            "/api/v1/devices",
            json={"device_name": "Work laptop", "device_type": "laptop"},
            headers=_bearer("tok-dev"),
        )
        assert r.status_code == 201
        laptop = r.json()
        assert laptop["device_type"] == "laptop"
        assert laptop["revoked"] is False
        assert laptop["last_seen_at"] > 0

        r = await client.post(
            "/api/v1/devices",
            json={"device_name": "Phone"},
            headers={**_bearer("tok-dev"), "User-Agent": "Mozilla/5.0 (iPhone) Mobile"},
        )
        assert r.status_code == 201
        phone = r.json()
        assert phone["device_type"] == "mobile"

        r = await client.get("/api/v1/devices", headers=_bearer("tok-dev"))
        assert r.status_code == 200
        assert {d["id"] for d in r.json()["items"]} == {laptop["id"], phone["id"]}

        r = await client.delete(f"/api/v1/devices/{phone['id']}", headers=_bearer("tok-dev"))
        assert r.status_code == 200
        revoked = r.json()
        assert revoked["revoked"] is True
        assert revoked["revoked_at"] is not None

        # Revoking again is a no-op.
        r = await client.delete(f"/api/v1/devices/{phone['id']}", headers=_bearer("tok-dev"))
        assert r.status_code == 200
        assert r.json()["revoked_at"] == revoked["revoked_at"]

        r = await client.get("/api/v1/devices", headers=_bearer("tok-dev"))
        assert [d["id"] for d in r.json()["items"]] == [laptop["id"]]

        r = await client.get(
            "/api/v1/devices", params={"include_revoked": True}, headers=_bearer("tok-dev")
        )
        assert len(r.json()["items"]) == 2

        r = await client.delete("/api/v1/devices/nope", headers=_bearer("tok-dev"))
        assert r.status_code == 404
        assert r.json()["error"] == "not_found"


@pytest.mark.anyio
async def test_heartbeat_moves_last_seen_until_revoked(tmp_path: Path) -> None:
    settings.database_url = f"sqlite:///{tmp_path / 'devices-heartbeat.db'}"
    reset_engine_cache()
    await init_db()
    user_id = await _create_user("u_hb", "tok-hb")

    async with session_scope() as session:
        session.add(
            Device(
                id="dev-1",
                user_id=user_id,
                name="desk",
                device_type="desktop",
                last_seen_at=1,
                created_at=1,
            )
        )
        await session.commit()

    async with _make_async_client() as client:
        r = await client.post("/api/v1/devices/dev-1/heartbeat", headers=_bearer("tok-hb"))
        assert r.status_code == 200
        seen = r.json()["last_seen_at"]
        assert seen > 1

        r = await client.delete("/api/v1/devices/dev-1", headers=_bearer("tok-hb"))
        assert r.status_code == 200

        r = await client.post("/api/v1/devices/dev-1/heartbeat", headers=_bearer("tok-hb"))
        assert r.status_code == 403
        assert r.json()["error"] == "forbidden"

        r = await client.post("/api/v1/devices/unknown/heartbeat", headers=_bearer("tok-hb"))
        assert r.status_code == 404

    async with session_scope() as session:
        device = (await session.exec(select(Device).where(Device.id == "dev-1"))).one()
        assert device.revoked is True
        assert device.last_seen_at == seen


@pytest.mark.anyio
async def test_devices_are_scoped_to_their_owner(tmp_path: Path) -> None:
    settings.database_url = f"sqlite:///{tmp_path / 'devices-owner.db'}"
    reset_engine_cache()
    await init_db()
    await _create_user("u_owner", "tok-owner")
    await _create_user("u_intruder", "tok-intruder")

    async with _make_async_client() as client:
        r = await client.post(
            "/api/v1/devices", json={"device_name": "mine"}, headers=_bearer("tok-owner")
        )
        device_id = r.json()["id"]

        r = await client.delete(f"/api/v1/devices/{device_id}", headers=_bearer("tok-intruder"))
        assert r.status_code == 404

        r = await client.get("/api/v1/devices", headers=_bearer("tok-intruder"))
        assert r.json()["items"] == []


@pytest.mark.anyio
async def test_login_with_device_name_registers_new_device_each_time(tmp_path: Path) -> None:
    settings.database_url = f"sqlite:///{tmp_path / 'devices-login.db'}"
    reset_engine_cache()
    await init_db()
    user_id = await _create_user("u_login_dev", "tok-login-dev", password="pass1234")

    async with _make_async_client() as client:
        ids = []
        for _ in range(2):
            r = await client.post(
                "/api/v1/auth/login",
                json={"username": "u_login_dev", "password": "pass1234", "device_name": "Tab"},
                headers={"User-Agent": "Mozilla/5.0 (iPad; CPU OS 17_0)"},
            )
            assert r.status_code == 200, r.text
            ids.append(r.json()["device_id"])
        assert ids[0] and ids[1] and ids[0] != ids[1]

    async with session_scope() as session:
        rows = (await session.exec(select(Device).where(Device.user_id == user_id))).all()
        assert len(rows) == 2
        assert {d.device_type for d in rows} == {"tablet"}


@pytest.mark.anyio
async def test_sync_device_gate_rejects_user_without_id() -> None:
    request = Request({"type": "http", "headers": [(b"x-device-id", b"dev-1")]})
    unsaved = User(username="ghost", password_hash="x")

    with pytest.raises(HTTPException) as excinfo:
        await get_sync_device(request, user=unsaved, session=None)  # type: ignore[arg-type]
    assert excinfo.value.status_code == 500
