"""Unread counters — per recipient, per conversation, kept in Redis.

Counters are a best-effort cache, not a ledger: a missing key means
"nothing unread", reads fail open to zero, and every key expires after a
period of inactivity. All keys are prefixed with the active tenant::

    tenant:{tenant_id}:unread:{dm|channel}:{recipient_id}:{conversation_id}
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable
from dataclasses import dataclass, field

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from app.core.tenancy import current_tenant_id
from app.models.conversation import ConversationKind

logger = logging.getLogger(__name__)

DEFAULT_TTL = 30 * 24 * 3600  # 30 days

_KIND_SEGMENT: dict[ConversationKind, str] = {
    ConversationKind.DIRECT: "dm",
    ConversationKind.CHANNEL: "channel",
}


class UnreadCounterError(Exception):
    """A batched increment could not be applied."""


@dataclass
class UnreadCounts:
    direct_messages: dict[str, int] = field(default_factory=dict)
    channels: dict[str, int] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return sum(self.direct_messages.values()) + sum(self.channels.values())


def _to_int(value) -> int:
    if value is None:
        return 0
    try:
        return max(int(value), 0)
    except (TypeError, ValueError):
        return 0


def _as_str(value) -> str:
    return value.decode() if isinstance(value, bytes) else str(value)


class UnreadCounterEngine:
    """Tenant-scoped unread counters backed by Redis.

    The tenant is read from the ambient context on every call, so a caller
    can only ever address its own tenant's keys.
    """

    def __init__(self, redis: aioredis.Redis, ttl_seconds: int = DEFAULT_TTL) -> None:
        self._redis = redis
        self._ttl = ttl_seconds

    def _prefix(self, kind: ConversationKind | str, recipient_id: uuid.UUID | str) -> str:
        segment = _KIND_SEGMENT[ConversationKind(kind)]
        return f"tenant:{current_tenant_id()}:unread:{segment}:{recipient_id}:"

    def _key(
        self,
        kind: ConversationKind | str,
        recipient_id: uuid.UUID | str,
        conversation_id: uuid.UUID | str,
    ) -> str:
        return f"{self._prefix(kind, recipient_id)}{conversation_id}"

    # ── Writes ──────────────────────────────────────────────────

    async def increment(
        self,
        kind: ConversationKind | str,
        conversation_id: uuid.UUID | str,
        sender_id: uuid.UUID | str,
        recipient_ids: Iterable[uuid.UUID | str],
    ) -> int:
        """Bump every recipient's counter except the sender's.

        All INCR + EXPIRE commands go out in one MULTI/EXEC round trip.
        Returns the number of counters touched; raises ``UnreadCounterError``
        if the batch fails.
        """
        sender = str(sender_id)
        recipients = sorted({str(r) for r in recipient_ids} - {sender})
        if not recipients:
            return 0

        keys = [self._key(kind, r, conversation_id) for r in recipients]
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                for key in keys:
                    pipe.incr(key)
                    pipe.expire(key, self._ttl)
                await pipe.execute()
        except RedisError as exc:
            logger.warning(
                "Unread increment failed for %s %s (%d recipients)",
                kind, conversation_id, len(recipients),
            )
            raise UnreadCounterError(str(exc)) from exc

        return len(recipients)

    async def mark_as_read(
        self,
        recipient_id: uuid.UUID | str,
        kind: ConversationKind | str,
        conversation_id: uuid.UUID | str,
    ) -> None:
        """Drop the counter. Absent keys and store errors are not reported."""
        key = self._key(kind, recipient_id, conversation_id)
        try:
            await self._redis.delete(key)
        except RedisError:
            logger.warning("Unread reset failed for %s %s", kind, conversation_id)

    # ── Reads (fail open to zero) ───────────────────────────────

    async def get(
        self,
        recipient_id: uuid.UUID | str,
        kind: ConversationKind | str,
        conversation_id: uuid.UUID | str,
    ) -> int:
        key = self._key(kind, recipient_id, conversation_id)
        try:
            value = await self._redis.get(key)
        except RedisError:
            logger.warning("Unread read failed for %s %s", kind, conversation_id)
            return 0
        return _to_int(value)

    async def get_all(self, recipient_id: uuid.UUID | str) -> UnreadCounts:
        counts = UnreadCounts()
        targets = {
            ConversationKind.DIRECT: counts.direct_messages,
            ConversationKind.CHANNEL: counts.channels,
        }
        prefixes = {kind: self._prefix(kind, recipient_id) for kind in targets}

        try:
            for kind, prefix in prefixes.items():
                keys = [_as_str(k) async for k in self._redis.scan_iter(match=f"{prefix}*", count=500)]
                if not keys:
                    continue
                # Keys may expire between SCAN and MGET; those read as None -> 0
                values = await self._redis.mget(keys)
                for key, value in zip(keys, values):
                    targets[kind][key[len(prefix):]] = _to_int(value)
        except RedisError:
            logger.warning("Unread enumeration failed for recipient %s", recipient_id)
            return UnreadCounts()

        return counts

    async def get_total(self, recipient_id: uuid.UUID | str) -> int:
        return (await self.get_all(recipient_id)).total
