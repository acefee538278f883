from __future__ import annotations

from collections.abc import Awaitable, Callable


ParentLookup = Callable[[str], Awaitable[str | None]]


async def creates_cycle(
    *, entity_id: str, new_parent_id: str | None, parent_of: ParentLookup
) -> bool:
    """Walk the ancestor chain of `new_parent_id` looking for `entity_id`.

    No depth limit. A chain that revisits a node is also treated as a cycle;
    a missing ancestor ends the walk (parents may arrive in a later push).
    """

    if new_parent_id is None:
        return False

    visited: set[str] = set()
    current: str | None = new_parent_id
    while current is not None:
        if current == entity_id:
            return True
        if current in visited:
            return True
        visited.add(current)
        current = await parent_of(current)
    return False


def collect_descendants(root_id: str, children_by_parent: dict[str, list[str]]) -> list[str]:
    """Breadth-first ids under `root_id` (excluding the root itself)."""

    out: list[str] = []
    seen: set[str] = {root_id}
    queue = [root_id]
    while queue:
        parent = queue.pop(0)
        for child in children_by_parent.get(parent, []):
            if child in seen:
                continue
            seen.add(child)
            out.append(child)
            queue.append(child)
    return out
