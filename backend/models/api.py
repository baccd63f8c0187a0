"""API request/response models."""
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class RegisterRequest(BaseModel):
    """Request model for account registration."""
    name: str
    email: str
    password: str


class LoginRequest(BaseModel):
    """Request model for login."""
    email: str
    password: str


class AvatarRequest(BaseModel):
    """Request model for changing the avatar."""
    avatar: Optional[str] = None


class UserResponse(BaseModel):
    """Public view of a user (never includes the credential)."""
    id: int
    name: str
    email: str
    avatar: Optional[str] = None
    created_at: Optional[datetime] = None


class NewChatRequest(BaseModel):
    """Request model for explicitly creating a conversation."""
    title: Optional[str] = None
    model: Optional[str] = None


class ChatRequest(BaseModel):
    """Request model for sending a chat message.

    ``chat_id`` is absent for the first message of a new conversation.
    Draft identifiers are client-only and are rejected here.
    """
    message: str
    chat_id: Optional[int] = None
    model: Optional[str] = None


class ChatResponse(BaseModel):
    """Response model for an answered chat message."""
    response: str
    chat_id: int
    title: str
    message_id: int


class MessageResponse(BaseModel):
    """Response model for a single message."""
    id: int
    role: str
    content: str
    timestamp: datetime


class ConversationSummary(BaseModel):
    """Response model for conversation list entries."""
    id: int
    title: str
    model: str
    created_at: datetime


class ConversationDetailResponse(ConversationSummary):
    """Response model for a conversation with its messages."""
    messages: List[MessageResponse] = Field(default_factory=list)


class DeleteResponse(BaseModel):
    """Response model for conversation deletion."""
    success: bool = True
    deleted: bool
