"""FastAPI dependencies for authentication, tenant scope and services."""

import uuid
from collections.abc import AsyncGenerator
from typing import Annotated

import redis.asyncio as aioredis
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.config import get_settings
from app.core.database import get_session
from app.core.errors import UnauthorizedError
from app.core.redis import get_redis
from app.core.tenancy import tenant_scope
from app.models.user import User
from app.services.messaging import MessagingService
from app.services.session_issuer import SessionIssuer
from app.services.sso import SSOFederationHandler
from app.services.tenant_directory import TenantDirectory
from app.services.unread_counter import UnreadCounterEngine

bearer_scheme = HTTPBearer(auto_error=False)


class AuthContext:
    """Resolved identity carried through a request."""

    __slots__ = ("tenant_id", "user_id", "user")

    def __init__(self, tenant_id: str, user_id: uuid.UUID, user: User) -> None:
        self.tenant_id = tenant_id
        self.user_id = user_id
        self.user = user


Session = Annotated[AsyncSession, Depends(get_session)]


async def get_auth_context(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
    session: Session,
) -> AsyncGenerator[AuthContext, None]:
    """Resolve a bearer JWT and hold its tenant scope for the whole request.

    The route body, and every query it runs, executes inside the scope.
    """
    if credentials is None:
        raise UnauthorizedError("Not authenticated")
    claims = SessionIssuer.verify_access_token(credentials.credentials)

    with tenant_scope(claims.tenant_id):
        result = await session.execute(select(User).where(User.id == claims.user_id))
        user = result.scalar_one_or_none()
        if user is None or not user.is_active:
            raise UnauthorizedError("Account not found or disabled")
        yield AuthContext(tenant_id=claims.tenant_id, user_id=user.id, user=user)


# Typed shorthand for use in route signatures
Auth = Annotated[AuthContext, Depends(get_auth_context)]


def get_unread_counter(
    redis: Annotated[aioredis.Redis, Depends(get_redis)],
) -> UnreadCounterEngine:
    return UnreadCounterEngine(redis, ttl_seconds=get_settings().unread_ttl_seconds)


Unread = Annotated[UnreadCounterEngine, Depends(get_unread_counter)]


def get_messaging(session: Session, unread: Unread) -> MessagingService:
    return MessagingService(session, unread)


Messaging = Annotated[MessagingService, Depends(get_messaging)]


def get_tenant_directory(session: Session, messaging: Messaging) -> TenantDirectory:
    return TenantDirectory(session, on_verified=messaging.provision_default_channels)


Directory = Annotated[TenantDirectory, Depends(get_tenant_directory)]


def get_session_issuer(session: Session) -> SessionIssuer:
    return SessionIssuer(session)


Issuer = Annotated[SessionIssuer, Depends(get_session_issuer)]


def get_sso_handler(
    session: Session,
    directory: Directory,
    issuer: Issuer,
    messaging: Messaging,
) -> SSOFederationHandler:
    return SSOFederationHandler(
        session, directory, issuer, on_user_created=messaging.join_default_channels
    )
