"""Conversation endpoints — channels, direct messages and unread counts."""

import uuid

from fastapi import APIRouter, Query, Response, status
from pydantic import BaseModel

from app.api.deps import Auth, Messaging, Unread
from app.models.conversation import (
    Conversation,
    ConversationCreate,
    ConversationKind,
    ConversationRead,
)
from app.models.message import MessageCreate, MessageRead

router = APIRouter(tags=["conversations"])


class UnreadSummary(BaseModel):
    direct_messages: dict[str, int]
    channels: dict[str, int]
    total: int


def _read(conversation: Conversation, member_ids: list[uuid.UUID], unread: int = 0) -> ConversationRead:
    return ConversationRead(
        id=conversation.id,
        kind=conversation.kind,
        name=conversation.name,
        is_default=conversation.is_default,
        member_ids=member_ids,
        unread_count=unread,
        created_at=conversation.created_at,
    )


@router.post("/conversations", response_model=ConversationRead, status_code=status.HTTP_201_CREATED)
async def create_conversation(body: ConversationCreate, auth: Auth, messaging: Messaging) -> ConversationRead:
    """Open a direct conversation (exactly one other member) or a channel."""
    conversation, member_ids = await messaging.create_conversation(
        auth.user, kind=body.kind, name=body.name, member_ids=body.member_ids
    )
    return _read(conversation, member_ids)


@router.get("/conversations", response_model=list[ConversationRead])
async def list_conversations(auth: Auth, messaging: Messaging, unread: Unread) -> list[ConversationRead]:
    conversations = await messaging.list_conversations(auth.user)
    members = await messaging.members_by_conversation([c.id for c in conversations])
    counts = await unread.get_all(auth.user_id)

    out = []
    for conversation in conversations:
        bucket = counts.direct_messages if conversation.kind == ConversationKind.DIRECT else counts.channels
        out.append(
            _read(conversation, members[conversation.id], bucket.get(str(conversation.id), 0))
        )
    return out


@router.post(
    "/conversations/{conversation_id}/messages",
    response_model=MessageRead,
    status_code=status.HTTP_201_CREATED,
)
async def send_message(
    conversation_id: uuid.UUID, body: MessageCreate, auth: Auth, messaging: Messaging
) -> MessageRead:
    message = await messaging.send_message(auth.user, conversation_id, body.content)
    return MessageRead.model_validate(message)


@router.get("/conversations/{conversation_id}/messages", response_model=list[MessageRead])
async def list_messages(
    conversation_id: uuid.UUID,
    auth: Auth,
    messaging: Messaging,
    limit: int = Query(default=50, ge=1, le=200),
) -> list[MessageRead]:
    """Newest first."""
    messages = await messaging.list_messages(auth.user, conversation_id, limit=limit)
    return [MessageRead.model_validate(m) for m in messages]


@router.post("/conversations/{conversation_id}/read", status_code=status.HTTP_204_NO_CONTENT)
async def mark_read(conversation_id: uuid.UUID, auth: Auth, messaging: Messaging) -> Response:
    await messaging.mark_read(auth.user, conversation_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/unread", response_model=UnreadSummary)
async def unread_summary(auth: Auth, unread: Unread) -> UnreadSummary:
    counts = await unread.get_all(auth.user_id)
    return UnreadSummary(
        direct_messages=counts.direct_messages,
        channels=counts.channels,
        total=counts.total,
    )
