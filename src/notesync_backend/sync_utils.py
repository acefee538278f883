from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone
from typing import Mapping


def now_ms() -> int:
    return int(datetime.now(timezone.utc).timestamp() * 1000)


def new_entity_id() -> str:
    return str(uuid.uuid4())


def canonical_content(values: Mapping[str, object]) -> bytes:
    """Stable byte encoding of an entity's content fields.

    Two payloads are "identical content" iff these bytes are equal.
    """
    return json.dumps(
        dict(values), sort_keys=True, separators=(",", ":"), ensure_ascii=False
    ).encode("utf-8")


def format_conflict_stamp(ms: int) -> str:
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).strftime("%Y-%m-%d %H:%M")
