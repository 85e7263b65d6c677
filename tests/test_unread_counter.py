"""Tests for the Redis-backed unread counter engine."""

import asyncio
import uuid

import pytest

from app.core.tenancy import TenantContextMissingError, tenant_scope
from app.models.conversation import ConversationKind
from app.services.unread_counter import UnreadCounterEngine, UnreadCounterError

DM = ConversationKind.DIRECT
CHANNEL = ConversationKind.CHANNEL


@pytest.fixture
def engine(redis) -> UnreadCounterEngine:
    return UnreadCounterEngine(redis, ttl_seconds=3600)


@pytest.fixture
def ids() -> dict:
    return {
        "alice": uuid.uuid4(),
        "bob": uuid.uuid4(),
        "carol": uuid.uuid4(),
        "conv": uuid.uuid4(),
        "channel": uuid.uuid4(),
    }


@pytest.mark.asyncio
async def test_increment_is_monotonic_until_read(engine, ids):
    with tenant_scope("acme"):
        for expected in range(1, 4):
            await engine.increment(DM, ids["conv"], ids["alice"], [ids["alice"], ids["bob"]])
            assert await engine.get(ids["bob"], DM, ids["conv"]) == expected

        await engine.mark_as_read(ids["bob"], DM, ids["conv"])
        assert await engine.get(ids["bob"], DM, ids["conv"]) == 0


@pytest.mark.asyncio
async def test_sender_is_never_counted(engine, ids):
    with tenant_scope("acme"):
        touched = await engine.increment(
            CHANNEL, ids["channel"], ids["alice"], [ids["alice"], ids["bob"], ids["carol"]]
        )
        assert touched == 2
        assert await engine.get(ids["alice"], CHANNEL, ids["channel"]) == 0
        assert await engine.get(ids["carol"], CHANNEL, ids["channel"]) == 1


@pytest.mark.asyncio
async def test_duplicate_recipients_counted_once(engine, ids):
    with tenant_scope("acme"):
        await engine.increment(DM, ids["conv"], ids["alice"], [ids["bob"], ids["bob"], str(ids["bob"])])
        assert await engine.get(ids["bob"], DM, ids["conv"]) == 1


@pytest.mark.asyncio
async def test_only_sender_touches_nothing(engine, ids, redis):
    with tenant_scope("acme"):
        assert await engine.increment(DM, ids["conv"], ids["alice"], [ids["alice"]]) == 0
    assert await redis.keys("*") == []


@pytest.mark.asyncio
async def test_keys_are_tenant_prefixed_and_expire(engine, ids, redis):
    with tenant_scope("acme"):
        await engine.increment(DM, ids["conv"], ids["alice"], [ids["bob"]])

    key = f"tenant:acme:unread:dm:{ids['bob']}:{ids['conv']}"
    assert await redis.keys("*") == [key]
    ttl = await redis.ttl(key)
    assert 0 < ttl <= 3600


@pytest.mark.asyncio
async def test_tenants_never_share_counters(engine, ids):
    with tenant_scope("acme"):
        await engine.increment(DM, ids["conv"], ids["alice"], [ids["bob"]])
    with tenant_scope("globex"):
        assert await engine.get(ids["bob"], DM, ids["conv"]) == 0
        assert (await engine.get_all(ids["bob"])).total == 0
        await engine.mark_as_read(ids["bob"], DM, ids["conv"])
    with tenant_scope("acme"):
        assert await engine.get(ids["bob"], DM, ids["conv"]) == 1


@pytest.mark.asyncio
async def test_get_all_groups_by_kind(engine, ids):
    with tenant_scope("acme"):
        await engine.increment(DM, ids["conv"], ids["alice"], [ids["bob"]])
        await engine.increment(DM, ids["conv"], ids["alice"], [ids["bob"]])
        await engine.increment(CHANNEL, ids["channel"], ids["carol"], [ids["bob"]])

        counts = await engine.get_all(ids["bob"])
        total = await engine.get_total(ids["bob"])

    assert counts.direct_messages == {str(ids["conv"]): 2}
    assert counts.channels == {str(ids["channel"]): 1}
    assert counts.total == 3
    assert total == 3


@pytest.mark.asyncio
async def test_get_all_reads_vanished_keys_as_zero(engine, ids, redis, monkeypatch):
    with tenant_scope("acme"):
        await engine.increment(DM, ids["conv"], ids["alice"], [ids["bob"]])

    original_mget = redis.mget

    async def mget_after_expiry(keys):
        # Key expires between SCAN and MGET
        await redis.delete(*keys)
        return await original_mget(keys)

    monkeypatch.setattr(redis, "mget", mget_after_expiry)
    with tenant_scope("acme"):
        counts = await engine.get_all(ids["bob"])
    assert counts.direct_messages == {str(ids["conv"]): 0}
    assert counts.total == 0


@pytest.mark.asyncio
async def test_concurrent_increments_are_not_lost(engine, ids):
    with tenant_scope("acme"):
        await asyncio.gather(
            *(engine.increment(DM, ids["conv"], ids["alice"], [ids["bob"]]) for _ in range(20))
        )
        assert await engine.get(ids["bob"], DM, ids["conv"]) == 20


@pytest.mark.asyncio
async def test_reads_fail_open_when_store_is_down(engine, ids, fake_server):
    with tenant_scope("acme"):
        await engine.increment(DM, ids["conv"], ids["alice"], [ids["bob"]])
        fake_server.connected = False

        assert await engine.get(ids["bob"], DM, ids["conv"]) == 0
        counts = await engine.get_all(ids["bob"])
        assert counts.direct_messages == {} and counts.channels == {}
        # No exception
        await engine.mark_as_read(ids["bob"], DM, ids["conv"])


@pytest.mark.asyncio
async def test_increment_failure_raises_single_error(engine, ids, fake_server):
    fake_server.connected = False
    with tenant_scope("acme"):
        with pytest.raises(UnreadCounterError):
            await engine.increment(DM, ids["conv"], ids["alice"], [ids["bob"], ids["carol"]])


@pytest.mark.asyncio
async def test_counters_require_tenant_context(engine, ids):
    with pytest.raises(TenantContextMissingError):
        await engine.increment(DM, ids["conv"], ids["alice"], [ids["bob"]])
    with pytest.raises(TenantContextMissingError):
        await engine.get(ids["bob"], DM, ids["conv"])
