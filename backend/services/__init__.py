"""Services for Chat Hub backend."""
from .errors import (
    ChatError,
    ValidationError,
    AuthorizationError,
    NotFoundError,
    ConflictError,
    StoreError,
    UpstreamError,
)
from .transcript_store import TranscriptStore
from .completion_gateway import CompletionGateway, CompletionResult
from .context_builder import build_context
from .conversation_manager import ConversationManager
from .auth_service import AuthService
from .session_view import SessionView

__all__ = ['ChatError', 'ValidationError', 'AuthorizationError', 'NotFoundError', 'ConflictError', 'StoreError', 'UpstreamError', 'TranscriptStore', 'CompletionGateway', 'CompletionResult', 'build_context', 'ConversationManager', 'AuthService', 'SessionView']
