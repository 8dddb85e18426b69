"""Async test fixtures for sync tests using SQLite."""

from __future__ import annotations

from datetime import timedelta
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from crm_sync.api.client import ApiError
from crm_sync.config import settings
from crm_sync.database import enable_sqlite_savepoints, get_db
from crm_sync.models import Base, Connection
from crm_sync.models.base import utcnow
from crm_sync.sync.sync_engine import SyncOrchestrator

USER_ID = "user-1"
API_TOKEN = "test-api-token"
AUTH_HEADERS = {"Authorization": f"Bearer {API_TOKEN}"}


def contact(external_id: str, first: str = "Ada", last: str = "Lovelace", **extra) -> dict:
    record = {
        "id": external_id,
        "first_name": first,
        "last_name": last,
        "emails": [{"type": "primary", "email": f"{first.lower()}@example.com"}],
    }
    record.update(extra)
    return record


def deal(external_id: str, title: str = "Website redesign", **extra) -> dict:
    record = {
        "id": external_id,
        "title": title,
        "estimated_value": {"amount": 1500, "currency": "EUR"},
    }
    record.update(extra)
    return record


class FakeTeamleaderClient:
    """In-memory stand-in for TeamleaderClient.

    ``records`` maps a resource name to the full ordered record list; pages are
    sliced from it. ``errors`` maps (resource, page_number) to an exception.
    """

    def __init__(self, records: dict[str, list[dict]] | None = None):
        self.records: dict[str, list[dict]] = records or {}
        self.errors: dict[tuple[str, int], Exception] = {}
        self.add_error: Exception | None = None
        self.calls: list[tuple[str, int, int]] = []
        self.filters_seen: list[tuple[str, dict | None]] = []
        self.added: list[dict] = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        return None

    async def list(self, resource, page_size, page_number=1, filters=None):
        self.calls.append((resource, page_size, page_number))
        self.filters_seen.append((resource, filters))
        error = self.errors.get((resource, page_number))
        if error is not None:
            raise error
        items = self.records.get(resource, [])
        start = (page_number - 1) * page_size
        return {"data": items[start:start + page_size], "meta": {"matches": len(items)}}

    async def add_contact(self, payload):
        self.added.append(payload)
        if self.add_error is not None:
            raise self.add_error
        return f"tl-new-{len(self.added)}"

    def pages_requested(self, resource: str) -> list[int]:
        return [number for name, _, number in self.calls if name == resource]


@pytest.fixture(scope="session")
def anyio_backend():
    return "asyncio"


@pytest_asyncio.fixture
async def engine():
    eng = enable_sqlite_savepoints(create_async_engine("sqlite+aiosqlite:///:memory:", echo=False))
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def connection(db: AsyncSession):
    conn = Connection(
        user_id=USER_ID,
        access_token="access-1",
        refresh_token="refresh-1",
        token_expires_at=utcnow() + timedelta(hours=1),
        is_active=True,
    )
    db.add(conn)
    await db.commit()
    return conn


@pytest.fixture
def fake_client():
    return FakeTeamleaderClient()


@pytest.fixture
def api_error():
    return ApiError("Internal server error", status_code=500)


@pytest.fixture
def orchestrator(db, fake_client):
    return SyncOrchestrator(db, client_factory=lambda token: fake_client, sleep=AsyncMock())


@pytest_asyncio.fixture
async def client(session_factory, fake_client, monkeypatch):
    """HTTPX async test client against the sync app."""
    from crm_sync.app import app
    from crm_sync.deps import get_orchestrator

    monkeypatch.setattr(settings, "api_tokens", f"{USER_ID}:{API_TOKEN}")

    async def override_get_db():
        async with session_factory() as session:
            yield session

    async def override_get_orchestrator():
        async with session_factory() as session:
            yield SyncOrchestrator(session, client_factory=lambda token: fake_client, sleep=AsyncMock())

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_orchestrator] = override_get_orchestrator

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c

    app.dependency_overrides.clear()
