"""Tests for local accounts, login, refresh rotation and sessions."""

import base64
import hashlib
import hmac
import json
from datetime import timedelta
from unittest.mock import patch

import pytest
from httpx import AsyncClient

from app.core.security import create_jwt
from app.services.session_issuer import SessionIssuer


@pytest.fixture
async def acme(make_tenant) -> dict:
    return await make_tenant("acme")


@pytest.mark.asyncio
async def test_register_and_login(client: AsyncClient, acme, make_user):
    alice = await make_user("acme", "alice")
    assert alice["user"]["tenant_id"] == "acme"
    assert alice["user"]["external_id"] is None
    assert "password_hash" not in alice["user"]

    tokens = alice["tokens"]
    assert tokens["token_type"] == "bearer"
    assert tokens["access_token_expires_in"] == 15 * 60
    assert tokens["refresh_token_expires_in"] == 7 * 24 * 3600

    resp = await client.get("/auth/me", headers=alice["headers"])
    assert resp.status_code == 200
    assert resp.json()["user"]["username"] == "alice"
    assert resp.json()["tenant"]["id"] == "acme"


@pytest.mark.asyncio
async def test_login_with_email(client: AsyncClient, acme, make_user):
    await make_user("acme", "alice")
    resp = await client.post("/auth/login", json={
        "tenant_id": "acme", "identifier": "ALICE@acme.com", "password": "supersecret123",
    })
    assert resp.status_code == 200
    assert resp.json()["user"]["username"] == "alice"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "tenant_id, identifier, password",
    [
        ("acme", "alice", "wrong-password"),
        ("acme", "nobody", "supersecret123"),
        ("ghost", "alice", "supersecret123"),
    ],
)
async def test_bad_credentials(client: AsyncClient, acme, make_user, tenant_id, identifier, password):
    await make_user("acme", "alice")
    resp = await client.post("/auth/login", json={
        "tenant_id": tenant_id, "identifier": identifier, "password": password,
    })
    assert resp.status_code == 401
    assert resp.json()["detail"] == "Invalid credentials"


@pytest.mark.asyncio
async def test_users_are_per_tenant(client: AsyncClient, acme, make_tenant, make_user):
    await make_tenant("globex")
    await make_user("acme", "alice")

    # Same username in another tenant is fine
    await make_user("globex", "alice")

    # ...but alice of acme cannot log into globex with acme's password
    resp = await client.post("/auth/login", json={
        "tenant_id": "globex", "identifier": "alice", "password": "wrong-password",
    })
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_duplicate_username_in_tenant(client: AsyncClient, acme, make_user):
    await make_user("acme", "alice")
    resp = await client.post("/auth/register", json={
        "tenant_id": "acme",
        "email": "other@acme.com",
        "username": "alice",
        "password": "supersecret123",
    })
    assert resp.status_code == 409


@pytest.mark.asyncio
async def test_register_requires_verified_tenant(client: AsyncClient, make_tenant):
    await make_tenant("acme", verify=False)
    resp = await client.post("/auth/register", json={
        "tenant_id": "acme",
        "email": "alice@acme.com",
        "username": "alice",
        "password": "supersecret123",
    })
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_refresh_rotates_token(client: AsyncClient, acme, make_user):
    alice = await make_user("acme", "alice")
    old_refresh = alice["tokens"]["refresh_token"]

    resp = await client.post("/auth/refresh", json={"refresh_token": old_refresh})
    assert resp.status_code == 200, resp.text
    rotated = resp.json()
    assert rotated["refresh_token"] != old_refresh
    assert rotated["user"]["id"] == alice["user"]["id"]

    # The consumed token is gone
    resp = await client.post("/auth/refresh", json={"refresh_token": old_refresh})
    assert resp.status_code == 401

    resp = await client.get("/auth/me", headers={"Authorization": f"Bearer {rotated['access_token']}"})
    assert resp.status_code == 200


@pytest.mark.asyncio
async def test_refresh_token_is_consumed_only_once(client: AsyncClient, session, acme, make_user):
    alice = await make_user("acme", "alice")
    raw = alice["tokens"]["refresh_token"]

    # Both rotations read the row before either consumes it
    stale = await SessionIssuer(session)._find_valid(raw)
    with patch.object(SessionIssuer, "_find_valid", return_value=stale):
        first = await client.post("/auth/refresh", json={"refresh_token": raw})
        second = await client.post("/auth/refresh", json={"refresh_token": raw})

    assert first.status_code == 200, first.text
    assert second.status_code == 401

    resp = await client.get(
        "/auth/sessions", headers={"Authorization": f"Bearer {first.json()['access_token']}"}
    )
    assert len(resp.json()) == 1


@pytest.mark.asyncio
async def test_remember_me_survives_rotation(client: AsyncClient, acme, make_user):
    alice = await make_user("acme", "alice", remember_me=True)
    assert alice["tokens"]["refresh_token_expires_in"] == 30 * 24 * 3600

    resp = await client.post("/auth/refresh", json={"refresh_token": alice["tokens"]["refresh_token"]})
    assert resp.json()["refresh_token_expires_in"] == 30 * 24 * 3600


@pytest.mark.asyncio
async def test_unknown_refresh_token(client: AsyncClient):
    resp = await client.post("/auth/refresh", json={"refresh_token": "never-issued"})
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_logout_deletes_refresh_token(client: AsyncClient, acme, make_user):
    alice = await make_user("acme", "alice")
    refresh = alice["tokens"]["refresh_token"]

    resp = await client.post("/auth/logout", json={"refresh_token": refresh})
    assert resp.status_code == 204
    # Idempotent
    resp = await client.post("/auth/logout", json={"refresh_token": refresh})
    assert resp.status_code == 204

    resp = await client.post("/auth/refresh", json={"refresh_token": refresh})
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_sessions_listing(client: AsyncClient, acme, make_user):
    alice = await make_user("acme", "alice")
    await client.post(
        "/auth/login",
        json={"tenant_id": "acme", "identifier": "alice", "password": "supersecret123"},
        headers={"User-Agent": "pytest-browser/1.0"},
    )

    resp = await client.get("/auth/sessions", headers=alice["headers"])
    assert resp.status_code == 200
    sessions = resp.json()
    assert len(sessions) == 2
    assert "pytest-browser/1.0" in {s["user_agent"] for s in sessions}
    assert all("token_hash" not in s for s in sessions)


@pytest.mark.asyncio
async def test_federated_user_cannot_password_login(client: AsyncClient, acme):
    token = base64.b64encode(json.dumps({
        "tenantId": "acme", "tenantUserId": "ext-9", "email": "fed@acme.com", "externalSystem": "wnp",
    }).encode()).decode()
    signature = hmac.new(acme["shared_secret"].encode(), token.encode(), hashlib.sha256).hexdigest()
    resp = await client.post(
        "/tenants/sso/init",
        json={"token": token, "signature": signature},
        headers={"Origin": "https://acme.com"},
    )
    assert resp.status_code == 200
    username = resp.json()["user"]["username"]

    for identifier in ("fed@acme.com", username):
        resp = await client.post("/auth/login", json={
            "tenant_id": "acme", "identifier": identifier, "password": "",
        })
        assert resp.status_code == 401


@pytest.mark.asyncio
@pytest.mark.parametrize("header", [None, "Bearer not-a-jwt", "Basic abc"])
async def test_protected_routes_reject_bad_tokens(client: AsyncClient, header):
    headers = {"Authorization": header} if header else {}
    resp = await client.get("/auth/me", headers=headers)
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_expired_access_token(client: AsyncClient, acme, make_user):
    alice = await make_user("acme", "alice")
    token = create_jwt(
        subject=alice["user"]["id"],
        tenant_id="acme",
        expires_delta=timedelta(seconds=-5),
        extra_claims={"typ": "access"},
    )
    resp = await client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_token_with_foreign_tenant_claim(client: AsyncClient, acme, make_tenant, make_user):
    """A user id presented under another tenant's claim is not found."""
    await make_tenant("globex")
    alice = await make_user("acme", "alice")
    forged = create_jwt(subject=alice["user"]["id"], tenant_id="globex", extra_claims={"typ": "access"})

    resp = await client.get("/auth/me", headers={"Authorization": f"Bearer {forged}"})
    assert resp.status_code == 401
