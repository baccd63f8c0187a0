"""Error taxonomy shared by the store, the gateway and the conversation manager."""
from typing import Any, Dict, Optional


class ChatError(Exception):
    """Base class for errors with a machine code and structured details."""

    code = "CHAT_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}


class ValidationError(ChatError):
    """Malformed or empty required input; raised before any durable write."""

    code = "VALIDATION_ERROR"


class AuthorizationError(ChatError):
    """The actor lacks rights over the target entity."""

    code = "AUTHORIZATION_ERROR"


class NotFoundError(ChatError):
    """Referenced conversation or user is absent."""

    code = "NOT_FOUND"


class ConflictError(ChatError):
    """A completion is already outstanding for the conversation."""

    code = "CONFLICT"


class StoreError(ChatError):
    """The transcript store could not complete the operation."""

    code = "STORE_UNAVAILABLE"


class UpstreamError(ChatError):
    """
    The completion provider failed or is not configured.

    ``code`` is overridden per instance so callers can tell a rate limit from
    a timeout. ``conversation_id`` is set once the failure is attached to a
    durable conversation, so the client can resume it.
    """

    code = "UPSTREAM_ERROR"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        conversation_id: Optional[int] = None,
    ):
        super().__init__(message, details)
        if code:
            self.code = code
        self.conversation_id = conversation_id
