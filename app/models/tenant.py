"""Tenant model — top-level isolation boundary."""

from datetime import datetime
from enum import StrEnum

from sqlalchemy import JSON
from sqlmodel import Column, Field, SQLModel

from app.models.base import TimestampMixin


class TenantStatus(StrEnum):
    PENDING = "pending"
    VERIFIED = "verified"
    SUSPENDED = "suspended"


class Tenant(TimestampMixin, SQLModel, table=True):
    __tablename__ = "tenants"

    # Externally chosen, e.g. "acme"
    id: str = Field(primary_key=True, max_length=64)
    name: str = Field(max_length=255, nullable=False)
    domain: str = Field(max_length=255, nullable=False, index=True)
    admin_email: str = Field(max_length=320, nullable=False)

    # Prefix-matched against the Origin / Referer of SSO requests
    allowed_origins: list[str] = Field(
        default_factory=list, sa_column=Column(JSON, nullable=False)
    )

    # Fernet ciphertext of the HMAC shared secret; plaintext is shown once
    encrypted_secret: str = Field(nullable=False)

    # SHA-256 of the one-time domain verification code
    verification_code_hash: str = Field(nullable=False)

    status: TenantStatus = Field(default=TenantStatus.PENDING, index=True)
    is_active: bool = Field(default=True, index=True)
    verified_at: datetime | None = Field(default=None)


# ── Pydantic schemas ─────────────────────────────────────────

class TenantRead(SQLModel):
    """Public view, safe to return to anyone."""
    id: str
    name: str
    domain: str
    status: TenantStatus
    is_active: bool


class TenantDetail(TenantRead):
    """Returned to members of the tenant."""
    admin_email: str
    allowed_origins: list[str]
    created_at: datetime
    verified_at: datetime | None


class TenantRegistered(SQLModel):
    """Returned exactly once at registration, with the raw secrets."""
    tenant: TenantDetail
    shared_secret: str
    verification_code: str
