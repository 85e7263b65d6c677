"""User model — belongs to a tenant."""

import uuid
from datetime import datetime

from sqlalchemy import CheckConstraint, UniqueConstraint
from sqlmodel import Field, SQLModel

from app.models.base import TenantScopedMixin, TimestampMixin, new_uuid


class User(TenantScopedMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "users"
    __table_args__ = (
        UniqueConstraint("tenant_id", "email", name="uq_users_tenant_email"),
        UniqueConstraint("tenant_id", "username", name="uq_users_tenant_username"),
        UniqueConstraint(
            "tenant_id", "external_id", "external_system", name="uq_users_tenant_external"
        ),
        CheckConstraint(
            "(external_id IS NULL) = (external_system IS NULL)",
            name="ck_users_external_pair",
        ),
    )

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)
    email: str = Field(max_length=320, nullable=False, index=True)
    username: str = Field(max_length=64, nullable=False)
    display_name: str = Field(default="", max_length=255)
    avatar_url: str | None = Field(default=None, max_length=2048)

    # Absent for federated users
    password_hash: str | None = Field(default=None)

    # Identity in the parent application (both set or both null)
    external_id: str | None = Field(default=None, max_length=255)
    external_system: str | None = Field(default=None, max_length=64)

    email_verified: bool = Field(default=False)
    is_active: bool = Field(default=True)

    @property
    def is_federated(self) -> bool:
        return self.external_id is not None


# ── Pydantic schemas ─────────────────────────────────────────

class UserCreate(SQLModel):
    tenant_id: str = Field(max_length=64)
    email: str = Field(max_length=320)
    username: str = Field(min_length=3, max_length=64)
    password: str = Field(min_length=8, max_length=128)
    display_name: str = Field(default="", max_length=255)


class UserRead(SQLModel):
    id: uuid.UUID
    tenant_id: str
    email: str
    username: str
    display_name: str
    avatar_url: str | None
    external_id: str | None
    external_system: str | None
    email_verified: bool
    is_active: bool
    created_at: datetime
