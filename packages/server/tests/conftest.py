"""
Shared fixtures.

Tests run against an in-memory SQLite database (aiosqlite, one shared
connection) with every table created from the SQLModel metadata and the
notification action types seeded.
"""

from __future__ import annotations

import uuid
from typing import Optional

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel

import app.models  # noqa: F401
from app.core.database import get_session
from app.main import app as fastapi_app
from app.models.contractor import Contractor
from app.models.contractor_role import ContractorMemberRole, ContractorRole
from app.models.user import User
from app.services import contractors as contractor_service
from app.services.delivery import DeliveryReport
from app.services.notifications import ensure_action_types
from contractor_hub_shared.schemas.contractors import ContractorCreateRequest


# ---------------------------------------------------------------------------
# Fixtures - in-memory SQLite for fast tests
# ---------------------------------------------------------------------------

@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def session(engine):
    factory = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as session:
        await ensure_action_types(session)
        yield session


@pytest.fixture
async def client(session):
    """HTTP client whose requests share the test session."""

    async def _override_session():
        yield session

    fastapi_app.dependency_overrides[get_session] = _override_session
    async with AsyncClient(transport=ASGITransport(app=fastapi_app), base_url="http://test") as ac:
        yield ac
    fastapi_app.dependency_overrides.clear()


@pytest.fixture
def make_user(session):
    async def _make(username: Optional[str] = None, role: str = "user", banned: bool = False) -> User:
        user = User(username=username or f"user-{uuid.uuid4().hex[:8]}", role=role, banned=banned)
        session.add(user)
        await session.flush()
        return user

    return _make


@pytest.fixture
def make_contractor(session):
    async def _make(owner: User, spectrum_id: Optional[str] = None) -> Contractor:
        req = ContractorCreateRequest(spectrum_id=spectrum_id or f"ORG{uuid.uuid4().hex[:6]}")
        return await contractor_service.create_contractor(session, req, owner.id)

    return _make


@pytest.fixture
def make_role(session):
    async def _make(contractor: Contractor, name: str, position: int, **flags) -> ContractorRole:
        role = ContractorRole(contractor_id=contractor.id, name=name, position=position, **flags)
        session.add(role)
        await session.flush()
        return role

    return _make


@pytest.fixture
def grant(session):
    async def _grant(user: User, *roles: ContractorRole) -> None:
        for role in roles:
            session.add(ContractorMemberRole(user_id=user.id, role_id=role.id))
        await session.flush()

    return _grant


def auth(user: User) -> dict[str, str]:
    """Bearer UUID auth (local development mode)."""
    return {"Authorization": f"Bearer {user.id}"}


# ---------------------------------------------------------------------------
# Delivery fakes
# ---------------------------------------------------------------------------

class FakePush:
    """Records push deliveries; can be told to fail."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls: list[tuple[list[uuid.UUID], object, Optional[str]]] = []

    async def deliver(self, user_ids, payload, action):
        self.calls.append((list(user_ids), payload, action))
        if self.fail:
            raise RuntimeError("push service unavailable")
        return DeliveryReport(attempted=len(user_ids), succeeded=list(user_ids))


class FakeWebhooks:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls: list[tuple[uuid.UUID, str, object]] = []

    async def deliver(self, contractor_id, action, payload):
        self.calls.append((contractor_id, action, payload))
        if self.fail:
            raise RuntimeError("webhook receiver down")
        return 1


@pytest.fixture
def fake_push():
    return FakePush()


@pytest.fixture
def fake_webhooks():
    return FakeWebhooks()
