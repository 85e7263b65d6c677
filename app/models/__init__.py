"""Import all models so SQLModel.metadata picks them up."""

from app.models.conversation import (
    Conversation,
    ConversationCreate,
    ConversationKind,
    ConversationMember,
    ConversationRead,
)
from app.models.message import Message, MessageCreate, MessageRead
from app.models.refresh_token import RefreshToken, SessionRead
from app.models.tenant import Tenant, TenantDetail, TenantRead, TenantRegistered, TenantStatus
from app.models.user import User, UserCreate, UserRead

__all__ = [
    "Conversation",
    "ConversationCreate",
    "ConversationKind",
    "ConversationMember",
    "ConversationRead",
    "Message",
    "MessageCreate",
    "MessageRead",
    "RefreshToken",
    "SessionRead",
    "Tenant",
    "TenantDetail",
    "TenantRead",
    "TenantRegistered",
    "TenantStatus",
    "User",
    "UserCreate",
    "UserRead",
]
