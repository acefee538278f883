from __future__ import annotations

import inspect
from collections.abc import AsyncGenerator, Callable

import pytest

from notesync_backend.db import dispose_engine_cache, get_engine
from notesync_backend.services import sync_service


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture(autouse=True)
async def _dispose_engine_cache_per_test(  # pyright: ignore[reportUnusedFunction]
    anyio_backend: object,  # noqa: ARG001
) -> AsyncGenerator[None, None]:
    _ = anyio_backend
    yield

    try:
        engine = get_engine()
    except Exception:
        engine = None

    if engine is not None:
        try:
            result = engine.dispose()
            if inspect.isawaitable(result):
                await result
        except Exception:
            pass

    dispose_engine_cache()

    get_engine.cache_clear()


@pytest.fixture
def fake_clock(monkeypatch: pytest.MonkeyPatch) -> Callable[[], int]:
    """Strictly increasing server clock for push/pull, so checkpoints never tie."""

    state = {"now": 1_760_000_000_000}

    def _now() -> int:
        state["now"] += 10
        return state["now"]

    monkeypatch.setattr(sync_service, "now_ms", _now)
    return _now


def pytest_sessionfinish(session: object, exitstatus: int) -> None:  # noqa: ARG001
    _ = session, exitstatus
    dispose_engine_cache()
