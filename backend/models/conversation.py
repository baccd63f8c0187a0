"""Conversation data models."""
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from config import TITLE_MAX_LENGTH, TITLE_ELLIPSIS

USER_ROLE = "user"
MODEL_ROLE = "model"
ROLES = (USER_ROLE, MODEL_ROLE)


@dataclass
class User:
    """An account that owns conversations."""
    id: int
    name: str
    email: str
    avatar: Optional[str] = None
    created_at: Optional[datetime] = None


@dataclass
class Message:
    """A single immutable message in a conversation transcript."""
    id: int
    conversation_id: int
    role: str
    content: str
    created_at: datetime


@dataclass
class Conversation:
    """Durable conversation record (summary, without messages)."""
    id: int
    user_id: int
    title: str
    model: str
    created_at: datetime


@dataclass
class ConversationDetail:
    """Conversation together with its ordered transcript."""
    conversation: Conversation
    messages: List[Message] = field(default_factory=list)


@dataclass
class Turn:
    """One role-tagged unit of history sent to the completion provider."""
    role: str
    content: str


@dataclass
class Exchange:
    """Result of a user message answered by the model."""
    conversation: Conversation
    user_message: Message
    reply: Message


def derive_title(text: str, max_length: int = TITLE_MAX_LENGTH) -> str:
    """
    Derive a display title from the first user message.

    Text longer than ``max_length`` characters is cut and suffixed with an
    ellipsis; shorter text is returned unchanged.
    """
    if len(text) > max_length:
        return text[:max_length] + TITLE_ELLIPSIS
    return text
