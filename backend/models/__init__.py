"""Data models for Chat Hub backend."""
from .conversation import (
    User,
    Message,
    Conversation,
    ConversationDetail,
    Turn,
    Exchange,
    USER_ROLE,
    MODEL_ROLE,
)
from .session import (
    DraftConversation,
    DurableConversation,
    LocalMessage,
    new_draft_id,
    is_draft_id,
    reconcile,
)
from .api import (
    RegisterRequest,
    LoginRequest,
    AvatarRequest,
    UserResponse,
    NewChatRequest,
    ChatRequest,
    ChatResponse,
    MessageResponse,
    ConversationSummary,
    ConversationDetailResponse,
    DeleteResponse,
)

__all__ = [
    "User",
    "Message",
    "Conversation",
    "ConversationDetail",
    "Turn",
    "Exchange",
    "USER_ROLE",
    "MODEL_ROLE",
    "DraftConversation",
    "DurableConversation",
    "LocalMessage",
    "new_draft_id",
    "is_draft_id",
    "reconcile",
    "RegisterRequest",
    "LoginRequest",
    "AvatarRequest",
    "UserResponse",
    "NewChatRequest",
    "ChatRequest",
    "ChatResponse",
    "MessageResponse",
    "ConversationSummary",
    "ConversationDetailResponse",
    "DeleteResponse",
]
