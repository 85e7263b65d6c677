"""Conversation model — a direct message thread or a group channel."""

import uuid
from datetime import datetime
from enum import StrEnum

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel

from app.models.base import TenantScopedMixin, TimestampMixin, new_uuid


class ConversationKind(StrEnum):
    DIRECT = "direct"
    CHANNEL = "channel"


class Conversation(TenantScopedMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "conversations"

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)
    kind: ConversationKind = Field(nullable=False)
    name: str = Field(default="", max_length=255)

    # Default channels are created at tenant verification and auto-joined
    is_default: bool = Field(default=False)
    created_by: uuid.UUID | None = Field(default=None, foreign_key="users.id")


class ConversationMember(TenantScopedMixin, SQLModel, table=True):
    __tablename__ = "conversation_members"
    __table_args__ = (
        UniqueConstraint("conversation_id", "user_id", name="uq_conversation_members"),
    )

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)
    conversation_id: uuid.UUID = Field(
        foreign_key="conversations.id", nullable=False, index=True
    )
    user_id: uuid.UUID = Field(foreign_key="users.id", nullable=False, index=True)


# ── Pydantic schemas ─────────────────────────────────────────

class ConversationCreate(SQLModel):
    kind: ConversationKind
    name: str = Field(default="", max_length=255)
    member_ids: list[uuid.UUID] = Field(default_factory=list)


class ConversationRead(SQLModel):
    id: uuid.UUID
    kind: ConversationKind
    name: str
    is_default: bool
    member_ids: list[uuid.UUID] = Field(default_factory=list)
    unread_count: int = 0
    created_at: datetime
