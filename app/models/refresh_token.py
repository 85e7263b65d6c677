"""Refresh token model — persisted half of a session.

Looked up by token hash before any tenant is known, so this table is not
tenant-scoped; ``tenant_id`` is recorded to re-establish the context.
"""

import uuid
from datetime import datetime

from sqlmodel import Field, SQLModel

from app.models.base import new_uuid, utcnow


class RefreshToken(SQLModel, table=True):
    __tablename__ = "refresh_tokens"

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)

    # SHA-256 of the raw token; raw value is returned only at issuance
    token_hash: str = Field(nullable=False, unique=True, index=True)

    user_id: uuid.UUID = Field(foreign_key="users.id", nullable=False, index=True)
    tenant_id: str = Field(foreign_key="tenants.id", max_length=64, nullable=False)

    device_info: str | None = Field(default=None, max_length=500)
    ip_address: str | None = Field(default=None, max_length=45)
    user_agent: str | None = Field(default=None, max_length=1000)

    remember_me: bool = Field(default=False)
    expires_at: datetime = Field(nullable=False, index=True)
    created_at: datetime = Field(default_factory=utcnow, nullable=False)
    last_used_at: datetime = Field(default_factory=utcnow, nullable=False)


# ── Pydantic schemas ─────────────────────────────────────────

class SessionRead(SQLModel):
    """Active session listing. Never includes the token."""
    id: uuid.UUID
    device_info: str | None
    ip_address: str | None
    user_agent: str | None
    remember_me: bool
    expires_at: datetime
    created_at: datetime
    last_used_at: datetime
