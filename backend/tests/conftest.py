"""Pytest configuration and fixtures for HR Portal tests.

Each test gets a fresh in-memory SQLite database (aiosqlite) with the
schema created from the models, the default catalog, and two seeded
tenants. The shared Redis permission cache is disabled unless a test
opts in with the `fake_redis` fixture.
"""

import fnmatch
import os
import uuid

os.environ.setdefault("PERMISSION_CACHE_TTL", "0")

from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import hrportal.models  # noqa: F401 — register all models
from hrportal.auth.jwt import create_access_token
from hrportal.database import Base, get_db
from hrportal.main import app
from hrportal.models.role import Role, UserRoleAssignment
from hrportal.models.user import User
from hrportal.permissions.seed import seed_tenant
from hrportal.utils import cache

TENANT_A = "acme"
TENANT_B = "globex"


# ── Test Database Setup ──────────────────────────────────────────

@pytest_asyncio.fixture
async def test_engine():
    """In-memory SQLite engine shared by every connection of one test."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(test_engine) -> AsyncGenerator[AsyncSession, None]:
    async_session = async_sessionmaker(
        test_engine, class_=AsyncSession, expire_on_commit=False
    )
    async with async_session() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture
async def seeded(db_session: AsyncSession) -> dict[str, dict[str, Role]]:
    """Catalog plus system roles for two tenants: {tenant_id: {role_code: Role}}."""
    return {
        TENANT_A: await seed_tenant(db_session, TENANT_A),
        TENANT_B: await seed_tenant(db_session, TENANT_B),
    }


@pytest_asyncio.fixture
async def client(db_session) -> AsyncGenerator[AsyncClient, None]:
    """Test client with the database dependency bound to the test session."""

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


# ── Test Data Fixtures ───────────────────────────────────────────

async def create_user(
    session: AsyncSession,
    tenant_id: str,
    *roles: Role,
    email: str | None = None,
) -> User:
    """Create a user in `tenant_id` holding `roles`."""
    user = User(
        tenant_id=tenant_id,
        email=email or f"{uuid.uuid4().hex[:8]}@{tenant_id}.test",
        full_name="Test User",
        is_active=True,
    )
    session.add(user)
    await session.flush()
    for role in roles:
        session.add(UserRoleAssignment(user_id=user.id, tenant_id=tenant_id, role_id=role.id))
    await session.flush()
    return user


@pytest.fixture
def make_user(db_session):
    async def _make(tenant_id: str, *roles: Role, email: str | None = None) -> User:
        return await create_user(db_session, tenant_id, *roles, email=email)

    return _make


def auth_headers_for(user: User) -> dict:
    token = create_access_token(user_id=user.id, tenant_id=user.tenant_id)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def headers_for():
    return auth_headers_for


@pytest_asyncio.fixture
async def admin_user(db_session, seeded) -> User:
    return await create_user(
        db_session, TENANT_A, seeded[TENANT_A]["admin"], email="admin@acme.test"
    )


@pytest_asyncio.fixture
async def employee_user(db_session, seeded) -> User:
    return await create_user(
        db_session, TENANT_A, seeded[TENANT_A]["employee"], email="employee@acme.test"
    )


@pytest.fixture
def admin_headers(admin_user: User) -> dict:
    return auth_headers_for(admin_user)


@pytest.fixture
def employee_headers(employee_user: User) -> dict:
    return auth_headers_for(employee_user)


# ── Redis Fixtures ───────────────────────────────────────────────

class FakeRedis:
    """Dict-backed stand-in for the handful of redis.asyncio calls the cache uses."""

    def __init__(self, fail: bool = False):
        self.store: dict[str, str] = {}
        self.fail = fail

    def _check(self):
        if self.fail:
            raise RedisConnectionError("redis down")

    async def get(self, key):
        self._check()
        return self.store.get(key)

    async def setex(self, key, ttl, value):
        self._check()
        self.store[key] = value

    async def set(self, key, value):
        self._check()
        self.store[key] = value

    async def delete(self, *keys):
        self._check()
        return sum(1 for k in keys if self.store.pop(k, None) is not None)

    async def scan_iter(self, match=None):
        self._check()
        for key in list(self.store):
            if match is None or fnmatch.fnmatchcase(key, match):
                yield key

    async def ping(self):
        self._check()
        return True

    async def aclose(self):
        pass


@pytest.fixture
def fake_redis(monkeypatch) -> FakeRedis:
    """Enable the shared permission cache against an in-memory fake."""
    fake = FakeRedis()
    monkeypatch.setattr(cache.settings, "permission_cache_ttl", 300)
    monkeypatch.setattr(cache, "_redis_client", fake)
    return fake


@pytest.fixture
def demo_enabled(monkeypatch):
    from hrportal.config import settings

    monkeypatch.setattr(settings, "demo_mode_enabled", True)


# ── Test Markers ─────────────────────────────────────────────────

def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "api: HTTP endpoint tests")
    config.addinivalue_line("markers", "cache: Shared Redis cache tests")
