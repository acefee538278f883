"""Client-side sync orchestration: push, then pull, then one report.

State lives in an explicit `SyncSession` owned by the caller, so independent
sessions (one per workspace, per account, ...) never share a global status.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Protocol

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from notesync_backend.config import settings
from notesync_backend.errors import SyncError, ValidationError
from notesync_backend.schemas_sync import (
    ConflictInfo,
    FolderEntity,
    NoteEntity,
    NoteTagLink,
    SnapshotEntity,
    SyncPullResponse,
    SyncPushRequest,
    SyncPushResponse,
    SyncReport,
    TagEntity,
    VersionedEntity,
    WorkspaceEntity,
)
from notesync_backend.sync_utils import now_ms

logger = logging.getLogger(__name__)

ENTITY_KINDS: dict[str, type[VersionedEntity]] = {
    "workspaces": WorkspaceEntity,
    "folders": FolderEntity,
    "tags": TagEntity,
    "notes": NoteEntity,
    "snapshots": SnapshotEntity,
}

_KIND_BY_ENTITY_TYPE = {
    "workspace": "workspaces",
    "folder": "folders",
    "tag": "tags",
    "note": "notes",
    "snapshot": "snapshots",
}


class SyncTransport(Protocol):
    async def push(self, req: SyncPushRequest) -> SyncPushResponse: ...

    async def pull(self, last_sync_at: int | None) -> SyncPullResponse: ...

    async def append_history(self, report: SyncReport, *, sync_type: str = "full") -> None: ...


@dataclass
class PendingBatch:
    request: SyncPushRequest
    # (kind, id) -> generation observed when the batch was collected.
    generations: dict[tuple[str, str], int]
    link_generations: dict[tuple[str, str], int]

    @property
    def count(self) -> int:
        return self.request.entity_count()


class ChangeTracker(Protocol):
    def collect(
        self, *, strategy: str | None = None, batch_size: int | None = None
    ) -> list[PendingBatch]: ...

    def mark_pushed(self, batch: PendingBatch, resp: SyncPushResponse) -> list[ConflictInfo]: ...

    def apply_remote(self, resp: SyncPullResponse) -> int: ...


def _validate_local(
    schema: type[BaseModel], data: dict[str, Any], kind: str, entity_id: str
) -> BaseModel:
    try:
        return schema.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError(
            f"invalid local {kind} record {entity_id}: {e.error_count()} field error(s)",
            details={
                "kind": kind,
                "entity_id": entity_id,
                "errors": e.errors(include_url=False, include_context=False),
            },
        ) from e


@dataclass
class _Record:
    data: dict[str, Any]
    base_version: int = 0
    dirty: bool = False
    # Bumped on every local mutation; a push only clears the marker it saw.
    generation: int = 0


@dataclass
class _LinkRecord:
    data: dict[str, Any]
    dirty: bool = False
    generation: int = 0


class InMemoryChangeTracker:
    """Local replica with explicit per-mutation dirty markers.

    Timestamps are never used to decide what is dirty, so an edit landing in the
    same millisecond as a sync is still pushed next time.
    """

    def __init__(self) -> None:
        self._records: dict[tuple[str, str], _Record] = {}
        self._links: dict[tuple[str, str], _LinkRecord] = {}

    def get(self, kind: str, entity_id: str) -> dict[str, Any] | None:
        rec = self._records.get((kind, entity_id))
        return dict(rec.data) if rec else None

    def base_version(self, kind: str, entity_id: str) -> int:
        rec = self._records.get((kind, entity_id))
        return rec.base_version if rec else 0

    def is_dirty(self, kind: str, entity_id: str) -> bool:
        rec = self._records.get((kind, entity_id))
        return bool(rec and rec.dirty)

    def ids(self, kind: str) -> list[str]:
        return sorted(entity_id for (k, entity_id) in self._records if k == kind)

    def upsert(self, kind: str, data: dict[str, Any]) -> None:
        if kind not in ENTITY_KINDS:
            raise ValueError(f"unknown entity kind: {kind}")
        entity_id = str(data["id"])
        now = now_ms()
        rec = self._records.get((kind, entity_id))
        if rec is None:
            rec = _Record(data={"created_at": now})
            self._records[(kind, entity_id)] = rec
        rec.data = {**rec.data, **data, "updated_at": now}
        rec.data.pop("server_version", None)
        rec.dirty = True
        rec.generation += 1

    def delete(self, kind: str, entity_id: str) -> None:
        rec = self._records.get((kind, entity_id))
        if rec is None:
            raise KeyError(entity_id)
        now = now_ms()
        self.upsert(kind, {**rec.data, "is_deleted": True, "deleted_at": now})

    def link(self, note_id: str, tag_id: str, *, deleted: bool = False) -> None:
        now = now_ms()
        rec = self._links.get((note_id, tag_id))
        if rec is None:
            rec = _LinkRecord(data={"note_id": note_id, "tag_id": tag_id, "created_at": now})
            self._links[(note_id, tag_id)] = rec
        rec.data.update(
            {"is_deleted": deleted, "deleted_at": now if deleted else None, "updated_at": now}
        )
        rec.dirty = True
        rec.generation += 1

    def resolve_merge(self, conflict: ConflictInfo, merged: dict[str, Any]) -> None:
        """Adopt a caller-merged result; it is pushed on top of the server version."""

        kind = _KIND_BY_ENTITY_TYPE[conflict.entity_type]
        self.upsert(kind, {**merged, "id": conflict.entity_id})
        self._records[(kind, conflict.entity_id)].base_version = conflict.server_version

    def collect(
        self, *, strategy: str | None = None, batch_size: int | None = None
    ) -> list[PendingBatch]:
        """Snapshot every dirty record into push batches of at most `batch_size` items.

        Batches follow dependency order (workspaces first, note-tag links last),
        so parents are committed before the children that name them. There is
        always at least one batch, possibly empty.
        """

        size = max(1, batch_size or settings.sync_max_batch_size)
        items: list[tuple[str, tuple[str, str], int, BaseModel]] = []
        for kind, schema in ENTITY_KINDS.items():
            for (rec_kind, entity_id), rec in self._records.items():
                if rec_kind != kind or not rec.dirty:
                    continue
                entity = _validate_local(
                    schema, {**rec.data, "server_version": rec.base_version}, kind, entity_id
                )
                items.append((kind, (kind, entity_id), rec.generation, entity))
        for key, link in self._links.items():
            if link.dirty:
                entity = _validate_local(NoteTagLink, link.data, "note_tags", "/".join(key))
                items.append(("note_tags", key, link.generation, entity))

        batches: list[PendingBatch] = []
        for start in range(0, max(len(items), 1), size):
            payload: dict[str, list[Any]] = {kind: [] for kind in (*ENTITY_KINDS, "note_tags")}
            generations: dict[tuple[str, str], int] = {}
            link_generations: dict[tuple[str, str], int] = {}
            for kind, key, generation, entity in items[start : start + size]:
                payload[kind].append(entity)
                if kind == "note_tags":
                    link_generations[key] = generation
                else:
                    generations[key] = generation
            try:
                req = SyncPushRequest(strategy=strategy, **payload)
            except PydanticValidationError as e:
                raise ValidationError(f"invalid push batch: {e}") from e
            batches.append(
                PendingBatch(
                    request=req, generations=generations, link_generations=link_generations
                )
            )
        return batches

    def _accept(self, kind: str, entity: VersionedEntity, seen_generation: int | None) -> None:
        key = (kind, entity.id)
        rec = self._records.get(key)
        if rec is None:
            # Server-created (e.g. a conflict copy): adopt as a clean record.
            data = entity.model_dump()
            data.pop("server_version", None)
            self._records[key] = _Record(data=data, base_version=entity.server_version)
            return
        rec.base_version = entity.server_version
        if seen_generation is not None and rec.generation == seen_generation:
            rec.dirty = False

    def mark_pushed(self, batch: PendingBatch, resp: SyncPushResponse) -> list[ConflictInfo]:
        """Clear dirty markers for what the server settled; return deferred merges."""

        for kind in ENTITY_KINDS:
            for entity in getattr(resp, kind):
                self._accept(kind, entity, batch.generations.get((kind, entity.id)))

        pending: list[ConflictInfo] = []
        for conflict in resp.conflicts:
            kind = _KIND_BY_ENTITY_TYPE[conflict.entity_type]
            key = (kind, conflict.entity_id)
            if conflict.resolution == "manual_merge":
                # Stays dirty until resolve_merge() and a later push.
                pending.append(conflict)
                continue
            if conflict.resolution == "client_wins":
                continue
            # server_wins / create_conflict_copy: the server copy stands and the
            # next pull overwrites ours (base stays stale so it differs).
            rec = self._records.get(key)
            if rec is not None and rec.generation == batch.generations.get(key):
                rec.dirty = False

        for key, generation in batch.link_generations.items():
            link = self._links.get(key)
            if link is not None and link.generation == generation:
                link.dirty = False
        return pending

    def apply_remote(self, resp: SyncPullResponse) -> int:
        applied = 0
        for kind in ENTITY_KINDS:
            for entity in getattr(resp, kind):
                key = (kind, entity.id)
                rec = self._records.get(key)
                if rec is not None and rec.dirty:
                    # Unpushed local edit wins locally; the next push arbitrates.
                    continue
                data = entity.model_dump()
                data.pop("server_version", None)
                if (
                    rec is not None
                    and rec.base_version == entity.server_version
                    and rec.data == data
                ):
                    continue
                self._records[key] = _Record(data=data, base_version=entity.server_version)
                applied += 1

        for link in resp.note_tags:
            key = (link.note_id, link.tag_id)
            existing = self._links.get(key)
            if existing is not None and existing.dirty:
                continue
            self._links[key] = _LinkRecord(data=link.model_dump())
        return applied


@dataclass
class SyncSession:
    last_sync_at: int | None = None
    in_progress: bool = False
    last_report: SyncReport | None = None
    # (entity_type, entity_id) -> conflict awaiting a caller merge.
    pending_merges: dict[tuple[str, str], ConflictInfo] = field(default_factory=dict)


class SyncCoordinator:
    def __init__(
        self,
        transport: SyncTransport,
        tracker: ChangeTracker,
        session: SyncSession | None = None,
        *,
        strategy: str | None = None,
        batch_size: int | None = None,
    ) -> None:
        self.transport = transport
        self.tracker = tracker
        self.session = session if session is not None else SyncSession()
        self.strategy = strategy
        # None: the server's limit (settings.sync_max_batch_size) at collect time.
        self.batch_size = batch_size

    async def _push_batch(self, batch: PendingBatch) -> SyncPushResponse:
        resp = await self.transport.push(batch.request)
        for entity_type, kind in _KIND_BY_ENTITY_TYPE.items():
            for entity in getattr(resp, kind):
                self.session.pending_merges.pop((entity_type, entity.id), None)
        for conflict in self.tracker.mark_pushed(batch, resp):
            self.session.pending_merges[(conflict.entity_type, conflict.entity_id)] = conflict
        return resp

    async def _push_all(self) -> tuple[int, SyncPushResponse]:
        """Push every collected batch in order; returns (entities sent, merged response).

        A failure stops at that batch. Earlier batches stay committed and marked.
        """

        batches = self.tracker.collect(strategy=self.strategy, batch_size=self.batch_size)
        merged: SyncPushResponse | None = None
        sent = 0
        for batch in batches:
            resp = await self._push_batch(batch)
            sent += batch.count
            if merged is None:
                merged = resp
                continue
            merged = SyncPushResponse(
                workspaces=[*merged.workspaces, *resp.workspaces],
                folders=[*merged.folders, *resp.folders],
                tags=[*merged.tags, *resp.tags],
                notes=[*merged.notes, *resp.notes],
                snapshots=[*merged.snapshots, *resp.snapshots],
                conflicts=[*merged.conflicts, *resp.conflicts],
                server_time=resp.server_time,
            )
        if merged is None:
            raise SyncError("change tracker returned no push batch")
        return sent, merged

    async def push(self) -> SyncPushResponse:
        _, resp = await self._push_all()
        return resp

    async def pull(self) -> SyncPullResponse:
        resp = await self.transport.pull(self.session.last_sync_at)
        self.tracker.apply_remote(resp)
        self.session.last_sync_at = resp.server_time
        return resp

    async def full_sync(self) -> SyncReport:
        """Push then pull; never raises, every failure becomes success=False."""

        started = time.monotonic()
        if self.session.in_progress:
            return SyncReport(success=False, error="sync already in progress")

        self.session.in_progress = True
        try:
            pushed_count, pushed = await self._push_all()
            pulled = await self.pull()
            report = SyncReport(
                success=True,
                pushed_count=pushed_count,
                pulled_count=pulled.entity_count(),
                conflict_count=len(pushed.conflicts),
                duration_ms=int((time.monotonic() - started) * 1000),
            )
        except SyncError as e:
            logger.warning("full sync failed: %s", e.message)
            report = SyncReport(
                success=False,
                error=e.message,
                duration_ms=int((time.monotonic() - started) * 1000),
            )
        finally:
            self.session.in_progress = False

        self.session.last_report = report
        await self._append_history_best_effort(report)
        return report

    async def _append_history_best_effort(self, report: SyncReport) -> None:
        try:
            await self.transport.append_history(report, sync_type="full")
        except SyncError:
            logger.warning("sync history append failed", exc_info=True)
