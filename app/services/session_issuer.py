"""Session issuance — signed access tokens plus persisted refresh tokens.

Used by both the password login path and SSO federation.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import timedelta

from jose import JWTError
from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.config import Settings, get_settings
from app.core.errors import UnauthorizedError
from app.core.security import (
    create_jwt,
    decode_jwt,
    generate_refresh_token,
    hash_lookup_token,
)
from app.core.tenancy import tenant_scope
from app.models.base import utcnow
from app.models.refresh_token import RefreshToken
from app.models.user import User

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    access_token_expires_in: int  # seconds
    refresh_token_expires_in: int  # seconds
    token_type: str = "bearer"


@dataclass(frozen=True)
class AccessClaims:
    user_id: uuid.UUID
    tenant_id: str


def _clip(value: str | None, limit: int) -> str | None:
    return value[:limit] if value else value


class SessionIssuer:
    def __init__(self, session: AsyncSession, settings: Settings | None = None) -> None:
        self.session = session
        self.settings = settings or get_settings()

    # ── Access tokens (stateless) ───────────────────────────────

    @property
    def access_token_ttl(self) -> timedelta:
        return timedelta(minutes=self.settings.access_token_expire_minutes)

    def refresh_token_ttl(self, remember_me: bool) -> timedelta:
        days = (
            self.settings.refresh_token_remember_days
            if remember_me
            else self.settings.refresh_token_expire_days
        )
        return timedelta(days=days)

    def create_access_token(self, user: User) -> str:
        return create_jwt(
            subject=str(user.id),
            tenant_id=user.tenant_id,
            expires_delta=self.access_token_ttl,
            extra_claims={"typ": "access", "email": user.email, "username": user.username},
        )

    @staticmethod
    def verify_access_token(token: str) -> AccessClaims:
        """Signature + expiry check only, no I/O."""
        try:
            payload = decode_jwt(token)
        except JWTError as exc:
            raise UnauthorizedError("Invalid or expired access token") from exc

        if payload.get("typ") != "access":
            raise UnauthorizedError("Invalid or expired access token")
        try:
            return AccessClaims(user_id=uuid.UUID(payload["sub"]), tenant_id=str(payload["tid"]))
        except (KeyError, ValueError) as exc:
            raise UnauthorizedError("Malformed access token") from exc

    # ── Token pairs ─────────────────────────────────────────────

    async def generate_token_pair(
        self,
        user: User,
        remember_me: bool = False,
        device_info: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> TokenPair:
        raw_refresh = generate_refresh_token()
        refresh_ttl = self.refresh_token_ttl(remember_me)

        self.session.add(
            RefreshToken(
                token_hash=hash_lookup_token(raw_refresh),
                user_id=user.id,
                tenant_id=user.tenant_id,
                device_info=_clip(device_info, 500),
                ip_address=_clip(ip_address, 45),
                user_agent=_clip(user_agent, 1000),
                remember_me=remember_me,
                expires_at=utcnow() + refresh_ttl,
            )
        )
        await self.session.commit()

        logger.info("Issued session for user %s (remember_me=%s)", user.id, remember_me)
        return TokenPair(
            access_token=self.create_access_token(user),
            refresh_token=raw_refresh,
            access_token_expires_in=int(self.access_token_ttl.total_seconds()),
            refresh_token_expires_in=int(refresh_ttl.total_seconds()),
        )

    # ── Refresh tokens ──────────────────────────────────────────

    async def _find_valid(self, raw_token: str) -> RefreshToken:
        """Unknown, expired and revoked tokens are indistinguishable."""
        stmt = select(RefreshToken).where(
            RefreshToken.token_hash == hash_lookup_token(raw_token),
            RefreshToken.expires_at > utcnow(),
        )
        result = await self.session.execute(stmt)
        stored = result.scalar_one_or_none()
        if stored is None:
            raise UnauthorizedError("Invalid refresh token")
        return stored

    async def refresh(
        self,
        raw_token: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> tuple[TokenPair, User]:
        """Consume a refresh token and rotate it into a fresh pair."""
        stored = await self._find_valid(raw_token)

        with tenant_scope(stored.tenant_id):
            result = await self.session.execute(select(User).where(User.id == stored.user_id))
            user = result.scalar_one_or_none()
            if user is None or not user.is_active:
                raise UnauthorizedError("Invalid refresh token")

            remember_me, device_info = stored.remember_me, stored.device_info
            ip_address = ip_address or stored.ip_address
            user_agent = user_agent or stored.user_agent

            # A token is consumed by exactly one rotation
            consumed = await self.session.execute(
                delete(RefreshToken).where(
                    RefreshToken.id == stored.id,
                    RefreshToken.expires_at > utcnow(),
                )
            )
            if consumed.rowcount != 1:
                logger.warning("Refresh token for user %s was already consumed", user.id)
                await self.session.rollback()
                raise UnauthorizedError("Invalid refresh token")

            pair = await self.generate_token_pair(
                user,
                remember_me=remember_me,
                device_info=device_info,
                ip_address=ip_address,
                user_agent=user_agent,
            )

        logger.info("Rotated refresh token for user %s", user.id)
        return pair, user

    async def revoke(self, raw_token: str) -> None:
        """Delete one refresh token. Unknown tokens are ignored."""
        await self.session.execute(
            delete(RefreshToken).where(RefreshToken.token_hash == hash_lookup_token(raw_token))
        )
        await self.session.commit()

    async def revoke_all(self, user_id: uuid.UUID) -> int:
        result = await self.session.execute(
            delete(RefreshToken).where(RefreshToken.user_id == user_id)
        )
        await self.session.commit()
        logger.info("Revoked %d sessions for user %s", result.rowcount, user_id)
        return result.rowcount

    async def list_active_sessions(self, user_id: uuid.UUID) -> list[RefreshToken]:
        stmt = (
            select(RefreshToken)
            .where(RefreshToken.user_id == user_id, RefreshToken.expires_at > utcnow())
            .order_by(RefreshToken.last_used_at.desc())  # type: ignore[union-attr]
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())
