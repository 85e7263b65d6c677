"""Periodic job — purge refresh tokens that are past their expiry."""

from __future__ import annotations

import logging

from sqlalchemy import delete

from app.core.database import async_session_factory
from app.models.base import utcnow
from app.models.refresh_token import RefreshToken

logger = logging.getLogger(__name__)


async def purge_expired_refresh_tokens(ctx: dict) -> dict:
    """Delete expired refresh tokens across all tenants.

    Expired tokens are already rejected on use; this only keeps the table
    small. Tests inject a session factory via ``ctx["session_factory"]``.
    """
    session_factory = ctx.get("session_factory", async_session_factory)

    async with session_factory() as session:
        result = await session.execute(
            delete(RefreshToken).where(RefreshToken.expires_at <= utcnow())
        )
        await session.commit()

    purged = result.rowcount or 0
    logger.info("Purged %d expired refresh tokens", purged)
    return {"purged": purged}
