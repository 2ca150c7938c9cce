from __future__ import annotations

from collections.abc import Generator
from datetime import UTC, datetime, timedelta
from pathlib import Path

import fakeredis
import pytest
from fastapi.testclient import TestClient

from geopuzzle.catalog.registry import Catalog, load_catalog


@pytest.fixture(scope="session")
def catalog() -> Catalog:
    """Catalog loaded from `tests/assets` with the fallback forbidden.

    This keeps tests hermetic and prevents coupling to the repo's real catalog.
    """

    test_root = Path(__file__).resolve().parent
    return load_catalog(root=test_root, strict=True)


class FakeClock:
    """Manually advanced clock for Session tests."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 1, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


class FakeTimer:
    """HintTimer that records schedule/cancel calls and fires on demand."""

    def __init__(self) -> None:
        self.callback = None
        self.delay: float | None = None
        self.scheduled = 0
        self.cancelled = 0

    def schedule(self, delay_seconds, callback) -> None:  # type: ignore[no-untyped-def]
        self.delay = delay_seconds
        self.callback = callback
        self.scheduled += 1

    def cancel(self) -> None:
        if self.callback is not None:
            self.cancelled += 1
        self.callback = None

    def fire(self) -> None:
        cb, self.callback = self.callback, None
        if cb is not None:
            cb()


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def timer() -> FakeTimer:
    return FakeTimer()


@pytest.fixture()
def client_and_redis(catalog: Catalog) -> Generator[tuple[TestClient, fakeredis.FakeRedis], None, None]:
    """FastAPI TestClient wired to fakeredis and the fixture catalog."""

    from geopuzzle.api.deps import get_catalog, get_redis
    from geopuzzle.main import app

    r = fakeredis.FakeRedis(decode_responses=True)

    def _override_redis() -> Generator[fakeredis.FakeRedis, None, None]:
        yield r

    app.dependency_overrides[get_redis] = _override_redis
    app.dependency_overrides[get_catalog] = lambda: catalog
    with TestClient(app) as c:
        yield c, r
    app.dependency_overrides.clear()
