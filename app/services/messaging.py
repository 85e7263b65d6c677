"""Messaging — conversations, membership and message posting.

Every query here relies on session-level tenant scoping; none of them
filter by tenant explicitly.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime

from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.errors import NotFoundError, ValidationError
from app.models.base import utcnow
from app.models.conversation import Conversation, ConversationKind, ConversationMember
from app.models.message import Message
from app.models.tenant import Tenant
from app.models.user import User
from app.services.unread_counter import UnreadCounterEngine, UnreadCounterError

logger = logging.getLogger(__name__)

DEFAULT_CHANNELS = ("general", "random")


class MessagingService:
    def __init__(self, session: AsyncSession, unread: UnreadCounterEngine | None = None) -> None:
        self.session = session
        self.unread = unread

    # ── Provisioning ────────────────────────────────────────────

    async def provision_default_channels(self, tenant: Tenant) -> None:
        """Create the tenant's default channels (skips ones that exist)."""
        result = await self.session.execute(
            select(Conversation.name).where(Conversation.is_default.is_(True))  # type: ignore[union-attr]
        )
        existing = set(result.scalars().all())

        for name in DEFAULT_CHANNELS:
            if name not in existing:
                self.session.add(
                    Conversation(kind=ConversationKind.CHANNEL, name=name, is_default=True)
                )
        await self.session.commit()
        logger.info("Provisioned default channels for tenant %s", tenant.id)

    async def join_default_channels(self, user: User) -> None:
        result = await self.session.execute(
            select(Conversation.id).where(Conversation.is_default.is_(True))  # type: ignore[union-attr]
        )
        channel_ids = set(result.scalars().all())
        if not channel_ids:
            return

        joined = await self.session.execute(
            select(ConversationMember.conversation_id).where(
                ConversationMember.user_id == user.id,
                ConversationMember.conversation_id.in_(channel_ids),  # type: ignore[attr-defined]
            )
        )
        for channel_id in channel_ids - set(joined.scalars().all()):
            self.session.add(ConversationMember(conversation_id=channel_id, user_id=user.id))
        await self.session.commit()

    # ── Conversations ───────────────────────────────────────────

    async def create_conversation(
        self,
        creator: User,
        kind: ConversationKind,
        name: str,
        member_ids: list[uuid.UUID],
    ) -> tuple[Conversation, list[uuid.UUID]]:
        members = set(member_ids) | {creator.id}

        result = await self.session.execute(
            select(User.id).where(
                User.id.in_(members),  # type: ignore[attr-defined]
                User.is_active.is_(True),  # type: ignore[union-attr]
            )
        )
        if set(result.scalars().all()) != members:
            # Includes ids that belong to other tenants
            raise NotFoundError("User not found")

        if kind == ConversationKind.DIRECT:
            if len(members) != 2:
                raise ValidationError("Direct conversations need exactly one other member")
            existing = await self._find_direct(members)
            if existing is not None:
                return existing, sorted(members)
        elif not name.strip():
            raise ValidationError("Channels need a name")

        conversation = Conversation(kind=kind, name=name.strip(), created_by=creator.id)
        self.session.add(conversation)
        await self.session.flush()
        for user_id in members:
            self.session.add(ConversationMember(conversation_id=conversation.id, user_id=user_id))
        await self.session.commit()
        await self.session.refresh(conversation)

        logger.info("Created %s conversation %s", kind, conversation.id)
        return conversation, sorted(members)

    async def _find_direct(self, members: set[uuid.UUID]) -> Conversation | None:
        stmt = (
            select(Conversation)
            .join(ConversationMember, ConversationMember.conversation_id == Conversation.id)
            .where(
                Conversation.kind == ConversationKind.DIRECT,
                ConversationMember.user_id.in_(members),  # type: ignore[attr-defined]
            )
            .group_by(Conversation.id)
            .having(func.count(ConversationMember.id) == len(members))
        )
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def get_for_member(self, user: User, conversation_id: uuid.UUID) -> Conversation:
        """Non-members (and other tenants) see 404."""
        stmt = (
            select(Conversation)
            .join(ConversationMember, ConversationMember.conversation_id == Conversation.id)
            .where(Conversation.id == conversation_id, ConversationMember.user_id == user.id)
        )
        result = await self.session.execute(stmt)
        conversation = result.scalar_one_or_none()
        if conversation is None:
            raise NotFoundError("Conversation not found")
        return conversation

    async def member_ids(self, conversation_id: uuid.UUID) -> list[uuid.UUID]:
        result = await self.session.execute(
            select(ConversationMember.user_id).where(
                ConversationMember.conversation_id == conversation_id
            )
        )
        return sorted(result.scalars().all())

    async def members_by_conversation(
        self, conversation_ids: list[uuid.UUID]
    ) -> dict[uuid.UUID, list[uuid.UUID]]:
        members: dict[uuid.UUID, list[uuid.UUID]] = {cid: [] for cid in conversation_ids}
        if not conversation_ids:
            return members
        result = await self.session.execute(
            select(ConversationMember.conversation_id, ConversationMember.user_id).where(
                ConversationMember.conversation_id.in_(conversation_ids)  # type: ignore[attr-defined]
            )
        )
        for conversation_id, user_id in result.all():
            members[conversation_id].append(user_id)
        return {cid: sorted(ids) for cid, ids in members.items()}

    async def list_conversations(self, user: User) -> list[Conversation]:
        stmt = (
            select(Conversation)
            .join(ConversationMember, ConversationMember.conversation_id == Conversation.id)
            .where(ConversationMember.user_id == user.id)
            .order_by(Conversation.updated_at.desc())  # type: ignore[union-attr]
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    # ── Messages ────────────────────────────────────────────────

    async def send_message(self, sender: User, conversation_id: uuid.UUID, content: str) -> Message:
        """Persist a message, then bump unread counters (never fails the send)."""
        conversation = await self.get_for_member(sender, conversation_id)

        message = Message(conversation_id=conversation.id, sender_id=sender.id, content=content)
        conversation.updated_at = utcnow()
        self.session.add(message)
        self.session.add(conversation)
        await self.session.commit()
        await self.session.refresh(message)

        if self.unread is not None:
            recipients = await self.member_ids(conversation.id)
            try:
                await self.unread.increment(conversation.kind, conversation.id, sender.id, recipients)
            except UnreadCounterError:
                logger.warning("Unread counters not updated for message %s", message.id)

        return message

    async def list_messages(
        self,
        user: User,
        conversation_id: uuid.UUID,
        limit: int = 50,
        before: datetime | None = None,
    ) -> list[Message]:
        conversation = await self.get_for_member(user, conversation_id)
        stmt = select(Message).where(Message.conversation_id == conversation.id)
        if before is not None:
            stmt = stmt.where(Message.created_at < before)
        stmt = stmt.order_by(Message.created_at.desc()).limit(limit)  # type: ignore[union-attr]
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def mark_read(self, user: User, conversation_id: uuid.UUID) -> None:
        conversation = await self.get_for_member(user, conversation_id)
        if self.unread is not None:
            await self.unread.mark_as_read(user.id, conversation.kind, conversation.id)
