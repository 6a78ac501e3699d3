"""Test fixtures: a fresh app, in-memory SQLite, fake sockets.

Learn: Testing pattern for async SQLAlchemy + FastAPI:

1. Each test gets its own in-memory SQLite engine (aiosqlite). StaticPool
   keeps one connection alive so every session sees the same database.
2. get_db is overridden to hand that session to the routes.
3. Each test builds its own app with create_app(), so every test has an
   empty RealtimeHub and events from one test never leak into another.

Fake sockets stand in for Starlette WebSockets when we only care about
what the publisher sends. They expose no client_state, which the
registry treats as "open".
"""

import json
import os

# Must be set before snapserve.config is imported anywhere.
os.environ.setdefault("SNAPSERVE_DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("SNAPSERVE_ANTHROPIC_API_KEY", "")

from decimal import Decimal

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.pool import StaticPool

from snapserve.ai.sentiment import SentimentAnalysis
from snapserve.api.feedback import get_analyzer
from snapserve.auth.jwt import create_access_token
from snapserve.db.engine import get_db
from snapserve.db.models import Base, MenuItem
from snapserve.main import create_app


TEST_DB_URL = "sqlite+aiosqlite://"


class FakeSocket:
    """Records every text frame sent to it. Set fail=True to make sends raise."""

    def __init__(self, fail: bool = False):
        self.sent: list[str] = []
        self.fail = fail
        self.closed_with = None

    async def send_text(self, data: str) -> None:
        if self.fail:
            raise ConnectionResetError("peer went away")
        self.sent.append(data)

    async def close(self, code: int = 1000) -> None:
        self.closed_with = code

    @property
    def messages(self) -> list[dict]:
        return [json.loads(s) for s in self.sent]


class StubAnalyzer:
    """Sentiment analyzer returning a fixed verdict, recording what it saw."""

    def __init__(self, verdict: SentimentAnalysis = None):
        self.verdict = verdict or SentimentAnalysis()
        self.seen: list[str] = []

    async def analyze(self, text: str) -> SentimentAnalysis:
        self.seen.append(text)
        return self.verdict.model_copy()


def auth_headers(user_id: int, role: str) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user_id, role)}"}


# ─── App and realtime ────────────────────────────────────


@pytest.fixture()
def app():
    return create_app()


@pytest.fixture()
def hub(app):
    return app.state.realtime


@pytest.fixture()
def connect_socket(hub):
    """Register a FakeSocket in the hub, optionally with an identity."""

    def _connect(role=None, user_id=None, fail=False):
        socket = FakeSocket(fail=fail)
        connection_id = hub.registry.register(socket)
        if role is not None:
            hub.registry.set_identity(connection_id, user_id or 1, role)
        return socket

    return _connect


# ─── Database ────────────────────────────────────────────


@pytest_asyncio.fixture()
async def db_session():
    """Per-test in-memory database with the full schema."""
    engine = create_async_engine(
        TEST_DB_URL,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session = AsyncSession(bind=engine, expire_on_commit=False)
    try:
        yield session
    finally:
        await session.close()
        await engine.dispose()


@pytest_asyncio.fixture()
async def menu(db_session):
    """Two dishes: burger 12.50 and fries 4.00."""
    burger = MenuItem(name="Burger", price=Decimal("12.50"))
    fries = MenuItem(name="Fries", price=Decimal("4.00"))
    db_session.add_all([burger, fries])
    await db_session.commit()
    return {"burger": burger, "fries": fries}


# ─── HTTP client ─────────────────────────────────────────


@pytest.fixture()
def analyzer():
    return StubAnalyzer()


@pytest_asyncio.fixture()
async def client(app, db_session, analyzer):
    """HTTP client with get_db and the sentiment analyzer overridden.

    Learn: Auth is NOT overridden. Tests send real JWTs (see the *_headers
    fixtures) so the role gate is exercised end to end.
    """

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_analyzer] = lambda: analyzer

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture()
def staff_headers():
    return auth_headers(10, "staff")


@pytest.fixture()
def admin_headers():
    return auth_headers(20, "admin")


@pytest.fixture()
def customer_headers():
    return auth_headers(30, "customer")
