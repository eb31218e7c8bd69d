"""Shared fixtures: a controllable clock, an isolated store, a mock-mode compiler."""

from datetime import UTC, datetime, timedelta

import pytest
from httpx import ASGITransport, AsyncClient

from concierge.storage.memory import InMemoryStore
from concierge.workflows.concierge_session import DesignCompiler

START = datetime(2026, 3, 2, 15, 0, tzinfo=UTC)


class FakeClock:
    """Callable clock that only moves when a test advances it."""

    def __init__(self, now: datetime = START) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> None:
        self.now += timedelta(**delta)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def compiler(store, clock):
    """Compiler that renders with the deterministic provider unless a test flips the flag."""
    return DesignCompiler(store, clock=clock, default_mock=True)


@pytest.fixture
async def session_id(compiler):
    view = await compiler.create_session("ws-1", "conv-1")
    return view.session.id


@pytest.fixture
async def client(compiler):
    """HTTP client over the ASGI app, sharing the test's compiler."""
    from concierge.main import app

    app.state.compiler = compiler
    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.state.compiler = None
