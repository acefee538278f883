from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, cast

from notesync_backend.config import CONFLICT_STRATEGIES


ConflictStrategy = Literal["server_wins", "client_wins", "create_conflict_copy", "manual_merge"]
PlanKind = Literal["create", "unchanged", "apply", "conflict"]


@dataclass(frozen=True)
class ServerRowSnapshot:
    entity_id: str
    server_version: int
    # canonical_content() of the stored row
    content: bytes
    deleted: bool


@dataclass(frozen=True)
class PushPlan:
    kind: PlanKind
    entity_id: str
    # apply: the version the conditional update must still observe.
    # conflict + client_wins: the server version being overridden.
    expected_version: int | None = None
    resolution: ConflictStrategy | None = None
    local_version: int | None = None
    server_version: int | None = None


def parse_strategy(value: str | None, *, default: str) -> ConflictStrategy:
    v = (value or "").strip().lower() or default
    if v not in CONFLICT_STRATEGIES:
        raise ValueError(f"unknown conflict strategy: {value}")
    return cast(ConflictStrategy, v)


def is_conflict(
    *, base_version: int, server_version: int, incoming_content: bytes, server_content: bytes
) -> bool:
    # Version mismatch alone is not enough: identical content short-circuits.
    return server_version != base_version and incoming_content != server_content


def plan_push(
    *,
    entity_id: str,
    base_version: int,
    incoming_content: bytes,
    incoming_deleted: bool,
    server_row: ServerRowSnapshot | None,
    strategy: ConflictStrategy,
) -> PushPlan:
    """Pure push planner for one versioned entity.

    - No DB/network/time.
    - Deterministic.
    """

    if server_row is None:
        return PushPlan(kind="create", entity_id=entity_id)

    if incoming_content == server_row.content:
        return PushPlan(
            kind="unchanged", entity_id=entity_id, server_version=server_row.server_version
        )

    if not is_conflict(
        base_version=base_version,
        server_version=server_row.server_version,
        incoming_content=incoming_content,
        server_content=server_row.content,
    ):
        return PushPlan(kind="apply", entity_id=entity_id, expected_version=base_version)

    resolution: ConflictStrategy = strategy
    if strategy == "create_conflict_copy" and incoming_deleted:
        # A tombstoned copy would be invisible; keep the live server row instead.
        resolution = "server_wins"

    return PushPlan(
        kind="conflict",
        entity_id=entity_id,
        expected_version=server_row.server_version if resolution == "client_wins" else None,
        resolution=resolution,
        local_version=base_version,
        server_version=server_row.server_version,
    )


def conflict_copy_title(title: str, stamp: str) -> str:
    base = title.strip() or "Untitled"
    return f"{base} (conflict copy {stamp})"
