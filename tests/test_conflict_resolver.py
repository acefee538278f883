from __future__ import annotations

import pytest

from notesync_backend.domain.conflict_resolver import (
    ServerRowSnapshot,
    conflict_copy_title,
    is_conflict,
    parse_strategy,
    plan_push,
)


def _server(version: int, content: bytes = b"server", deleted: bool = False) -> ServerRowSnapshot:
    return ServerRowSnapshot(entity_id="n1", server_version=version, content=content, deleted=deleted)


@pytest.mark.parametrize(
    "case",
    [
        {
            "name": "no server row creates",
            "server": None,
            "base": 0,
            "content": b"local",
            "deleted": False,
            "strategy": "create_conflict_copy",
            "kind": "create",
            "resolution": None,
            "expected_version": None,
        },
        {
            "name": "matching base applies",
            "server": _server(3),
            "base": 3,
            "content": b"local",
            "deleted": False,
            "strategy": "create_conflict_copy",
            "kind": "apply",
            "resolution": None,
            "expected_version": 3,
        },
        {
            "name": "identical content never conflicts even with stale base",
            "server": _server(3, b"same"),
            "base": 1,
            "content": b"same",
            "deleted": False,
            "strategy": "server_wins",
            "kind": "unchanged",
            "resolution": None,
            "expected_version": None,
        },
        {
            "name": "stale base with different content conflicts (server_wins)",
            "server": _server(3),
            "base": 2,
            "content": b"local",
            "deleted": False,
            "strategy": "server_wins",
            "kind": "conflict",
            "resolution": "server_wins",
            "expected_version": None,
        },
        {
            "name": "client_wins targets the current server version",
            "server": _server(3),
            "base": 2,
            "content": b"local",
            "deleted": False,
            "strategy": "client_wins",
            "kind": "conflict",
            "resolution": "client_wins",
            "expected_version": 3,
        },
        {
            "name": "newer base than server still conflicts",
            "server": _server(3),
            "base": 5,
            "content": b"local",
            "deleted": False,
            "strategy": "manual_merge",
            "kind": "conflict",
            "resolution": "manual_merge",
            "expected_version": None,
        },
        {
            "name": "conflicting tombstone keeps the server copy instead of copying",
            "server": _server(3),
            "base": 2,
            "content": b"local-deleted",
            "deleted": True,
            "strategy": "create_conflict_copy",
            "kind": "conflict",
            "resolution": "server_wins",
            "expected_version": None,
        },
        {
            "name": "conflicting edit under default strategy creates a copy",
            "server": _server(3),
            "base": 2,
            "content": b"local",
            "deleted": False,
            "strategy": "create_conflict_copy",
            "kind": "conflict",
            "resolution": "create_conflict_copy",
            "expected_version": None,
        },
    ],
    ids=lambda c: c["name"],
)
def test_plan_push_cases(case: dict[str, object]) -> None:
    plan = plan_push(
        entity_id="n1",
        base_version=case["base"],  # pyright: ignore[reportArgumentType]
        incoming_content=case["content"],  # pyright: ignore[reportArgumentType]
        incoming_deleted=case["deleted"],  # pyright: ignore[reportArgumentType]
        server_row=case["server"],  # pyright: ignore[reportArgumentType]
        strategy=case["strategy"],  # pyright: ignore[reportArgumentType]
    )
    assert plan.kind == case["kind"]
    assert plan.resolution == case["resolution"]
    assert plan.expected_version == case["expected_version"]
    assert plan.entity_id == "n1"


def test_conflict_plan_carries_both_versions() -> None:
    plan = plan_push(
        entity_id="n1",
        base_version=2,
        incoming_content=b"local",
        incoming_deleted=False,
        server_row=_server(3),
        strategy="server_wins",
    )
    assert (plan.local_version, plan.server_version) == (2, 3)


def test_is_conflict_requires_both_version_and_content_divergence() -> None:
    assert is_conflict(base_version=2, server_version=3, incoming_content=b"a", server_content=b"b")
    assert not is_conflict(
        base_version=3, server_version=3, incoming_content=b"a", server_content=b"b"
    )
    assert not is_conflict(
        base_version=2, server_version=3, incoming_content=b"a", server_content=b"a"
    )


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        (None, "create_conflict_copy"),
        ("", "create_conflict_copy"),
        ("server_wins", "server_wins"),
        (" Client_Wins ", "client_wins"),
        ("manual_merge", "manual_merge"),
    ],
)
def test_parse_strategy(raw: str | None, expected: str) -> None:
    assert parse_strategy(raw, default="create_conflict_copy") == expected


def test_parse_strategy_rejects_unknown() -> None:
    with pytest.raises(ValueError):
        parse_strategy("last_writer_wins", default="create_conflict_copy")


def test_conflict_copy_title() -> None:
    assert conflict_copy_title("Plan", "2026-01-02 03:04") == "Plan (conflict copy 2026-01-02 03:04)"
    assert conflict_copy_title("   ", "2026-01-02 03:04").startswith("Untitled (conflict copy")
