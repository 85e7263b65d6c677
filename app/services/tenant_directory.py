"""Tenant directory — registration, verification, status and secret lookup."""

from __future__ import annotations

import logging
import re
from collections.abc import Awaitable, Callable
from typing import NamedTuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.errors import ConflictError, NotFoundError, UnauthorizedError, ValidationError
from app.core.security import (
    constant_time_equals,
    decrypt_value,
    encrypt_value,
    generate_shared_secret,
    generate_verification_code,
    hash_lookup_token,
)
from app.core.tenancy import run_in_tenant_context
from app.models.base import utcnow
from app.models.tenant import Tenant, TenantStatus

logger = logging.getLogger(__name__)

TENANT_ID_PATTERN = re.compile(r"^[a-z0-9_-]{3,64}$")

OnVerified = Callable[[Tenant], Awaitable[None]]


class RegisteredTenant(NamedTuple):
    tenant: Tenant
    shared_secret: str
    verification_code: str


class TenantCredentials(NamedTuple):
    tenant: Tenant
    shared_secret: str


def normalize_tenant_id(tenant_id: str) -> str:
    return tenant_id.strip().lower()


def _clean_origins(origins: list[str]) -> list[str]:
    return [o.strip() for o in origins if o and o.strip()]


class TenantDirectory:
    """Registry of tenant records.

    ``on_verified`` is awaited inside the tenant's own context the first
    time a tenant becomes verified (default resource provisioning).
    """

    def __init__(self, session: AsyncSession, on_verified: OnVerified | None = None) -> None:
        self.session = session
        self._on_verified = on_verified

    async def register(
        self,
        tenant_id: str,
        name: str,
        domain: str,
        allowed_origins: list[str],
        admin_email: str,
    ) -> RegisteredTenant:
        """Create a pending tenant. The secret and code are only returned here."""
        tenant_id = normalize_tenant_id(tenant_id)
        if not TENANT_ID_PATTERN.match(tenant_id):
            raise ValidationError(
                "Invalid tenant id: use 3-64 lowercase letters, digits, dashes or underscores"
            )

        if await self.get_by_id(tenant_id) is not None:
            raise ConflictError(f"Tenant '{tenant_id}' already exists")

        shared_secret = generate_shared_secret()
        verification_code = generate_verification_code()
        tenant = Tenant(
            id=tenant_id,
            name=name.strip(),
            domain=domain.strip().lower(),
            admin_email=admin_email.strip().lower(),
            allowed_origins=_clean_origins(allowed_origins),
            encrypted_secret=encrypt_value(shared_secret),
            verification_code_hash=hash_lookup_token(verification_code),
        )
        self.session.add(tenant)
        try:
            await self.session.commit()
        except IntegrityError as exc:
            await self.session.rollback()
            raise ConflictError(f"Tenant '{tenant_id}' already exists") from exc
        await self.session.refresh(tenant)

        logger.info("Registered tenant %s (%s)", tenant.id, tenant.domain)
        return RegisteredTenant(tenant, shared_secret, verification_code)

    async def verify(self, tenant_id: str, verification_code: str) -> Tenant:
        """pending -> verified. Idempotent for already-verified tenants."""
        tenant = await self.get_by_id(tenant_id)
        if tenant is None:
            raise NotFoundError("Tenant not found")

        if not constant_time_equals(
            tenant.verification_code_hash, hash_lookup_token(verification_code)
        ):
            logger.warning("Rejected verification code for tenant %s", tenant.id)
            raise UnauthorizedError("Invalid verification code")

        if tenant.status == TenantStatus.VERIFIED:
            return tenant
        if tenant.status == TenantStatus.SUSPENDED:
            raise ConflictError("Tenant is suspended")

        tenant.status = TenantStatus.VERIFIED
        tenant.is_active = True
        tenant.verified_at = utcnow()
        tenant.updated_at = utcnow()
        self.session.add(tenant)
        await self.session.commit()
        await self.session.refresh(tenant)
        logger.info("Tenant %s verified", tenant.id)

        if self._on_verified is not None:
            await run_in_tenant_context(tenant.id, self._on_verified, tenant)

        return tenant

    async def get_by_id(self, tenant_id: str) -> Tenant | None:
        return await self.session.get(Tenant, normalize_tenant_id(tenant_id))

    async def get_with_secret(self, tenant_id: str) -> TenantCredentials | None:
        """Privileged accessor for SSO signature checks only."""
        tenant = await self.get_by_id(tenant_id)
        if tenant is None:
            return None
        return TenantCredentials(tenant, decrypt_value(tenant.encrypted_secret))

    async def set_status(self, tenant_id: str, status: TenantStatus) -> Tenant:
        """verified <-> suspended. ``is_active`` follows the status."""
        if status not in (TenantStatus.VERIFIED, TenantStatus.SUSPENDED):
            raise ValidationError("Status must be 'verified' or 'suspended'")

        tenant = await self.get_by_id(tenant_id)
        if tenant is None:
            raise NotFoundError("Tenant not found")
        if tenant.status == TenantStatus.PENDING:
            raise ConflictError("Tenant has not completed verification")

        tenant.status = status
        tenant.is_active = status == TenantStatus.VERIFIED
        tenant.updated_at = utcnow()
        self.session.add(tenant)
        await self.session.commit()
        await self.session.refresh(tenant)

        logger.info("Tenant %s status -> %s", tenant.id, status)
        return tenant

    async def update(
        self,
        tenant_id: str,
        name: str | None = None,
        allowed_origins: list[str] | None = None,
    ) -> Tenant:
        tenant = await self.get_by_id(tenant_id)
        if tenant is None:
            raise NotFoundError("Tenant not found")

        if name:
            tenant.name = name.strip()
        if allowed_origins is not None:
            # Reassign so the JSON column is flagged dirty
            tenant.allowed_origins = _clean_origins(allowed_origins)
        tenant.updated_at = utcnow()
        self.session.add(tenant)
        await self.session.commit()
        await self.session.refresh(tenant)
        return tenant

    async def list_active(self) -> list[Tenant]:
        stmt = (
            select(Tenant)
            .where(
                Tenant.is_active.is_(True),  # type: ignore[union-attr]
                Tenant.status == TenantStatus.VERIFIED,
            )
            .order_by(Tenant.id)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())
