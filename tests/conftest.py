"""Shared test fixtures — async SQLite in-memory DB, fake Redis + test client."""

import os
from collections.abc import AsyncGenerator

from cryptography.fernet import Fernet

# Settings are read at import time
os.environ.setdefault("JWT_SECRET_KEY", "test-jwt-secret-do-not-use-in-production")
os.environ.setdefault("ENCRYPTION_KEY", Fernet.generate_key().decode())

import fakeredis.aioredis  # noqa: E402
import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlmodel import SQLModel  # noqa: E402

# Import all models so metadata is populated
import app.models  # noqa: E402, F401
from app.core.database import get_session  # noqa: E402
from app.core.redis import get_redis  # noqa: E402
from app.main import app  # noqa: E402


@pytest.fixture
async def engine():
    eng = create_async_engine("sqlite+aiosqlite://", echo=False)
    async with eng.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def test_session_factory(engine):
    """Session factory bound to the test SQLite engine."""
    return sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def session(test_session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with test_session_factory() as sess:
        yield sess
        await sess.rollback()


@pytest.fixture
def fake_server() -> fakeredis.FakeServer:
    """Set ``fake_server.connected = False`` to simulate a Redis outage."""
    return fakeredis.FakeServer()


@pytest.fixture
async def redis(fake_server) -> AsyncGenerator[fakeredis.aioredis.FakeRedis, None]:
    client = fakeredis.aioredis.FakeRedis(server=fake_server, decode_responses=True)
    yield client
    fake_server.connected = True
    await client.aclose()


@pytest.fixture
async def client(session, redis) -> AsyncGenerator[AsyncClient, None]:
    """HTTPX async test client with DB session + Redis overrides."""

    async def _override_session():
        yield session

    app.dependency_overrides[get_session] = _override_session
    app.dependency_overrides[get_redis] = lambda: redis

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def make_tenant(client: AsyncClient):
    """Register (and by default verify) a tenant; returns the registration body."""

    async def _make(tenant_id: str = "acme", *, verify: bool = True, origins: list[str] | None = None) -> dict:
        resp = await client.post(
            "/tenants/register",
            json={
                "tenantId": tenant_id,
                "name": f"{tenant_id.title()} Inc",
                "domain": f"{tenant_id}.com",
                "allowedOrigins": origins if origins is not None else [f"https://{tenant_id}.com"],
                "adminEmail": f"admin@{tenant_id}.com",
            },
        )
        assert resp.status_code == 201, resp.text
        data = resp.json()
        if verify:
            resp = await client.post(
                "/tenants/verify",
                json={"tenantId": tenant_id, "verificationCode": data["verification_code"]},
            )
            assert resp.status_code == 200, resp.text
        return data

    return _make


@pytest.fixture
def make_user(client: AsyncClient):
    """Register a local user and log in; returns user, tokens and auth headers."""

    async def _make(
        tenant_id: str = "acme",
        username: str = "alice",
        password: str = "supersecret123",
        remember_me: bool = False,
    ) -> dict:
        resp = await client.post(
            "/auth/register",
            json={
                "tenant_id": tenant_id,
                "email": f"{username}@{tenant_id}.com",
                "username": username,
                "password": password,
                "display_name": username.title(),
            },
        )
        assert resp.status_code == 201, resp.text
        user = resp.json()

        resp = await client.post(
            "/auth/login",
            json={
                "tenant_id": tenant_id,
                "identifier": username,
                "password": password,
                "remember_me": remember_me,
            },
        )
        assert resp.status_code == 200, resp.text
        tokens = resp.json()
        return {
            "user": user,
            "tokens": tokens,
            "headers": {"Authorization": f"Bearer {tokens['access_token']}"},
        }

    return _make
