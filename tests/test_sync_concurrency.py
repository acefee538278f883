from __future__ import annotations

import asyncio
from pathlib import Path

import pytest
from sqlmodel import select

from notesync_backend.config import settings
from notesync_backend.db import init_db, reset_engine_cache, session_scope
from notesync_backend.models import Note, User
from notesync_backend.repositories import sync_repo
from notesync_backend.schemas_sync import NoteEntity, SyncPushRequest
from notesync_backend.services import sync_service


async def _setup_user(tmp_path: Path, name: str) -> int:
    settings.database_url = f"sqlite:///{tmp_path / name}"
    reset_engine_cache()
    await init_db()

    async with session_scope() as session:
        user = User(username="u_race", password_hash="x", api_token="tok-race", is_active=True)
        session.add(user)
        await session.commit()
        await session.refresh(user)
        assert user.id is not None
        return int(user.id)


async def _push_note(user_id: int, device_id: str, note: NoteEntity, strategy: str):
    async with session_scope() as session:
        return await sync_service.push(
            session=session,
            user_id=user_id,
            device_id=device_id,
            req=SyncPushRequest(strategy=strategy, notes=[note]),
        )


@pytest.mark.anyio
async def test_compare_and_swap_only_one_writer_wins(tmp_path: Path) -> None:
    user_id = await _setup_user(tmp_path, "cas.db")

    async with session_scope() as session:
        session.add(Note(user_id=user_id, id="n1", server_version=1, title="t", content="c"))
        await session.commit()

    async with session_scope() as first, session_scope() as second:
        assert await sync_repo.compare_and_swap(
            first,
            Note,
            user_id=user_id,
            entity_id="n1",
            expected_version=1,
            values={"content": "first"},
        )
        await first.commit()

        assert not await sync_repo.compare_and_swap(
            second,
            Note,
            user_id=user_id,
            entity_id="n1",
            expected_version=1,
            values={"content": "second"},
        )
        await second.commit()

    async with session_scope() as session:
        row = (await session.exec(select(Note).where(Note.id == "n1"))).one()
        assert row.server_version == 2
        assert row.content == "first"


@pytest.mark.anyio
async def test_concurrent_pushes_with_same_base_never_both_apply(tmp_path: Path) -> None:
    user_id = await _setup_user(tmp_path, "race-update.db")

    await _push_note(user_id, "dev-a", NoteEntity(id="n1", content="base"), "server_wins")

    results = await asyncio.gather(
        _push_note(
            user_id, "dev-a", NoteEntity(id="n1", server_version=1, content="a"), "server_wins"
        ),
        _push_note(
            user_id, "dev-b", NoteEntity(id="n1", server_version=1, content="b"), "server_wins"
        ),
    )

    applied = [r for r in results if r.notes]
    conflicted = [r for r in results if r.conflicts]
    assert len(applied) == 1
    assert len(conflicted) == 1
    assert conflicted[0].conflicts[0].local_version == 1
    assert conflicted[0].conflicts[0].server_version == 2

    async with session_scope() as session:
        row = (await session.exec(select(Note).where(Note.id == "n1"))).one()
        assert row.server_version == 2
        assert row.content == applied[0].notes[0].content


@pytest.mark.anyio
async def test_concurrent_creates_of_same_id_yield_one_row(tmp_path: Path) -> None:
    user_id = await _setup_user(tmp_path, "race-create.db")

    results = await asyncio.gather(
        _push_note(user_id, "dev-a", NoteEntity(id="n1", content="a"), "server_wins"),
        _push_note(user_id, "dev-b", NoteEntity(id="n1", content="b"), "server_wins"),
    )

    assert sorted(len(r.notes) for r in results) == [0, 1]
    assert sorted(len(r.conflicts) for r in results) == [0, 1]

    async with session_scope() as session:
        rows = (await session.exec(select(Note).where(Note.user_id == user_id))).all()
        assert len(rows) == 1
        assert rows[0].server_version == 1


@pytest.mark.anyio
async def test_users_do_not_share_entity_ids(tmp_path: Path) -> None:
    user_id = await _setup_user(tmp_path, "race-users.db")
    async with session_scope() as session:
        other = User(username="u_other", password_hash="x", api_token="tok-other", is_active=True)
        session.add(other)
        await session.commit()
        await session.refresh(other)
        assert other.id is not None
        other_id = int(other.id)

    await _push_note(user_id, "dev-a", NoteEntity(id="shared", content="mine"), "server_wins")
    resp = await _push_note(
        other_id, "dev-x", NoteEntity(id="shared", content="theirs"), "server_wins"
    )
    assert resp.conflicts == []
    assert resp.notes[0].server_version == 1

    async with session_scope() as session:
        pulled = await sync_service.pull(session=session, user_id=user_id, last_sync_at=None)
        assert [n.content for n in pulled.notes] == ["mine"]


@pytest.mark.anyio
async def test_pull_during_open_push_does_not_skip_its_rows(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, fake_clock
) -> None:
    user_id = await _setup_user(tmp_path, "race-checkpoint.db")
    await _push_note(user_id, "dev-a", NoteEntity(id="n0", content="first"), "server_wins")

    inserted = asyncio.Event()
    release = asyncio.Event()
    original_insert = sync_repo.insert_if_absent

    async def held_insert(*args, **kwargs):
        created = await original_insert(*args, **kwargs)
        inserted.set()
        await release.wait()
        return created

    monkeypatch.setattr(sync_repo, "insert_if_absent", held_insert)
    pending = asyncio.create_task(
        _push_note(user_id, "dev-a", NoteEntity(id="n1", content="late"), "server_wins")
    )
    await inserted.wait()

    # Another device pulls while the push is written but not committed.
    async with session_scope() as session:
        snapshot = await sync_service.pull(session=session, user_id=user_id, last_sync_at=None)
    assert [n.id for n in snapshot.notes] == ["n0"]

    release.set()
    pushed = await pending
    assert pushed.server_time > snapshot.server_time

    async with session_scope() as session:
        delta = await sync_service.pull(
            session=session, user_id=user_id, last_sync_at=snapshot.server_time
        )
    assert [n.id for n in delta.notes] == ["n1"]

    async with session_scope() as session:
        after = await sync_service.pull(
            session=session, user_id=user_id, last_sync_at=delta.server_time
        )
    assert after.notes == []
