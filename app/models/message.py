"""Message model — a single post in a Conversation."""

import uuid
from datetime import datetime

from sqlalchemy import Text
from sqlmodel import Column, Field, SQLModel

from app.models.base import TenantScopedMixin, TimestampMixin, new_uuid


class Message(TenantScopedMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "messages"

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)
    conversation_id: uuid.UUID = Field(
        foreign_key="conversations.id", nullable=False, index=True
    )
    sender_id: uuid.UUID = Field(foreign_key="users.id", nullable=False, index=True)
    content: str = Field(sa_column=Column(Text, nullable=False))


# ── Pydantic schemas ─────────────────────────────────────────

class MessageCreate(SQLModel):
    content: str = Field(min_length=1, max_length=10_000)


class MessageRead(SQLModel):
    id: uuid.UUID
    conversation_id: uuid.UUID
    sender_id: uuid.UUID
    content: str
    created_at: datetime
