"""SSO federation — exchange a parent-app signed assertion for a session.

The parent application posts ``{"token": <base64 JSON>, "signature": <hex>}``
where ``signature = HMAC-SHA256(tenant shared secret, token)``. The decoded
token carries ``tenantId``, ``tenantUserId``, ``email``, ``externalSystem``
and optionally ``name``, ``avatarUrl`` and ``exp`` (unix seconds).

The handler is terminal: every outcome, including unexpected failures, is
rendered as a JSON response here. Nothing propagates to the framework.
"""

from __future__ import annotations

import base64
import json
import logging
import math
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from fastapi import Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.errors import (
    AppError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from app.core.security import constant_time_equals, sign_payload
from app.core.tenancy import tenant_scope
from app.models.base import utcnow
from app.models.tenant import Tenant, TenantStatus
from app.models.user import User
from app.services.session_issuer import SessionIssuer, TokenPair
from app.services.tenant_directory import TenantDirectory

logger = logging.getLogger(__name__)

OnUserCreated = Callable[[User], Awaitable[None]]


@dataclass(frozen=True)
class FederatedIdentity:
    """Validated contents of an SSO token."""

    tenant_id: str
    external_id: str
    email: str
    external_system: str
    name: str | None = None
    avatar_url: str | None = None
    exp: int | None = None


def _required_str(payload: dict, key: str) -> str:
    value = payload.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("Invalid token payload")
    return value.strip()


def _optional_str(payload: dict, key: str) -> str | None:
    value = payload.get(key)
    if not isinstance(value, str):
        return None
    return value.strip() or None


def decode_sso_token(token: str) -> FederatedIdentity:
    """Base64-decode and validate the token body (no signature check)."""
    try:
        payload = json.loads(base64.b64decode(token, validate=True).decode("utf-8"))
    except ValueError as exc:
        raise ValidationError("Invalid token format") from exc
    if not isinstance(payload, dict):
        raise ValidationError("Invalid token format")

    exp = payload.get("exp")
    if exp is not None and (
        isinstance(exp, bool)
        or not isinstance(exp, (int, float))
        or (isinstance(exp, float) and not math.isfinite(exp))
    ):
        raise ValidationError("Invalid token payload")

    return FederatedIdentity(
        tenant_id=_required_str(payload, "tenantId").lower(),
        external_id=_required_str(payload, "tenantUserId"),
        email=_required_str(payload, "email").lower(),
        external_system=_required_str(payload, "externalSystem"),
        name=_optional_str(payload, "name"),
        avatar_url=_optional_str(payload, "avatarUrl"),
        exp=int(exp) if exp is not None else None,
    )


def derive_username(email: str, external_id: str) -> str:
    """Human-readable username, e.g. ``alice_ext123``."""
    local = email.split("@", 1)[0]
    return f"{local}_{external_id[:6]}"[:64]


def origin_allowed(origin: str | None, allowed_origins: list[str]) -> bool:
    if not origin:
        return False
    return any(origin.startswith(allowed) for allowed in allowed_origins if allowed)


class SSOFederationHandler:
    def __init__(
        self,
        session: AsyncSession,
        directory: TenantDirectory,
        issuer: SessionIssuer,
        on_user_created: OnUserCreated | None = None,
    ) -> None:
        self.session = session
        self.directory = directory
        self.issuer = issuer
        self._on_user_created = on_user_created

    async def __call__(self, request: Request) -> JSONResponse:
        try:
            return await self._handle(request)
        except AppError as exc:
            logger.info("SSO init rejected: %s (%d)", exc.detail, exc.status_code)
            return exc.to_response()
        except Exception:
            logger.exception("SSO init failed")
            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content={"detail": "Authentication failed", "code": "internal_error"},
            )

    async def _handle(self, request: Request) -> JSONResponse:
        try:
            body = await request.json()
        except ValueError as exc:
            raise ValidationError("Missing token or signature") from exc
        if not isinstance(body, dict):
            raise ValidationError("Missing token or signature")

        token = body.get("token")
        signature = body.get("signature")
        if not token or not signature or not isinstance(token, str) or not isinstance(signature, str):
            raise ValidationError("Missing token or signature")

        identity = decode_sso_token(token)

        if identity.exp is not None and identity.exp < int(time.time()):
            raise UnauthorizedError("Token expired")

        credentials = await self.directory.get_with_secret(identity.tenant_id)
        if credentials is None:
            raise NotFoundError("Tenant not found")
        tenant, shared_secret = credentials
        if not tenant.is_active or tenant.status != TenantStatus.VERIFIED:
            raise ForbiddenError("Tenant not active")

        if not constant_time_equals(sign_payload(shared_secret, token), signature):
            logger.warning("Invalid SSO signature for tenant %s", tenant.id)
            raise UnauthorizedError("Invalid signature")

        origin = request.headers.get("origin") or request.headers.get("referer")
        if not origin_allowed(origin, tenant.allowed_origins):
            logger.warning("SSO origin %r not allowed for tenant %s", origin, tenant.id)
            raise ForbiddenError("Origin not allowed")

        user_agent = request.headers.get("user-agent")
        with tenant_scope(tenant.id):
            user = await self._provision_user(identity)
            pair = await self.issuer.generate_token_pair(
                user,
                remember_me=False,
                device_info=user_agent or "Unknown Device",
                ip_address=request.client.host if request.client else None,
                user_agent=user_agent,
            )

        logger.info(
            "SSO authenticated user %s (%s/%s)",
            user.id, identity.external_system, identity.external_id,
        )
        return JSONResponse(content=_session_payload(pair, user, tenant))

    async def _find_federated(self, identity: FederatedIdentity) -> User | None:
        stmt = select(User).where(
            User.external_id == identity.external_id,
            User.external_system == identity.external_system,
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def _provision_user(self, identity: FederatedIdentity) -> User:
        """Create the federated user on first sight, refresh it afterwards."""
        user = await self._find_federated(identity)
        display_name = identity.name or identity.email.split("@", 1)[0]
        created = user is None

        if user is None:
            user = User(
                email=identity.email,
                username=derive_username(identity.email, identity.external_id),
                display_name=display_name,
                avatar_url=identity.avatar_url,
                external_id=identity.external_id,
                external_system=identity.external_system,
                email_verified=True,
                is_active=True,
            )
        else:
            # The parent application is the source of truth for these
            user.display_name = display_name
            user.email = identity.email
            user.avatar_url = identity.avatar_url
            user.is_active = True
            user.updated_at = utcnow()
        self.session.add(user)

        try:
            await self.session.commit()
        except IntegrityError as exc:
            await self.session.rollback()
            if not created:
                logger.warning(
                    "Profile refresh for %s user %s conflicts with an existing user",
                    identity.external_system,
                    identity.external_id,
                )
                raise ConflictError("Account conflicts with an existing user") from exc
            # A concurrent exchange may have created the same identity
            existing = await self._find_federated(identity)
            if existing is None:
                raise ConflictError("Account conflicts with an existing user") from exc
            return existing

        await self.session.refresh(user)
        if created:
            logger.info("Provisioned federated user %s", user.id)
            if self._on_user_created is not None:
                await self._on_user_created(user)
        return user


def _session_payload(pair: TokenPair, user: User, tenant: Tenant) -> dict:
    return {
        "success": True,
        "access_token": pair.access_token,
        "refresh_token": pair.refresh_token,
        "token_type": pair.token_type,
        "access_token_expires_in": pair.access_token_expires_in,
        "refresh_token_expires_in": pair.refresh_token_expires_in,
        "user": {
            "id": str(user.id),
            "email": user.email,
            "username": user.username,
            "display_name": user.display_name,
            "avatar_url": user.avatar_url,
            "external_id": user.external_id,
            "external_system": user.external_system,
        },
        "tenant": {"id": tenant.id, "name": tenant.name},
    }
