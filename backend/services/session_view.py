"""
Session view: the client's working set of conversations.

Holds the conversation summaries of the signed-in user and the transcript of
the active conversation, talking to the Chat Hub HTTP API through ``httpx``.
The server is the single source of truth; local state is a read-through
projection except for optimistic drafts and messages, which stay marked as
provisional until the server confirms them.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

import httpx

from models.conversation import USER_ROLE, MODEL_ROLE
from models.session import (
    ConversationEntry,
    DraftConversation,
    DurableConversation,
    LocalMessage,
    is_draft_id,
    mark_unanswered,
    new_draft_id,
    reconcile,
)
from models.conversation import derive_title
from services.errors import (
    ChatError,
    AuthorizationError,
    ConflictError,
    NotFoundError,
    StoreError,
    UpstreamError,
    ValidationError,
)
from config import DEFAULT_MODEL

logger = logging.getLogger(__name__)

USER_HEADER = "X-User-Id"

SEND_FAILED_NOTE = "No reply was received. Send the message again to retry."
CREATE_FAILED_NOTE = "The conversation could not be created. Try again."

ERRORS_BY_STATUS = {
    400: ValidationError,
    401: AuthorizationError,
    403: AuthorizationError,
    404: NotFoundError,
    409: ConflictError,
    422: ValidationError,
}

# Refused by the server before anything was written
REJECTED_BEFORE_WRITE = (ValidationError, AuthorizationError, NotFoundError, ConflictError)

ConversationId = Union[int, str]


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_time(value: Optional[str]) -> datetime:
    if not value:
        return _now()
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


class SessionView:
    """Client-side projection of one user's conversations."""

    def __init__(self, client: httpx.Client, model: str = DEFAULT_MODEL):
        """
        Args:
            client: HTTP client whose base URL points at the Chat Hub API
            model: Model selector used for new conversations
        """
        self.client = client
        self.model = model
        self.current_user: Optional[Dict[str, Any]] = None
        self.conversations: List[ConversationEntry] = []
        self.active_id: Optional[ConversationId] = None

    # Authentication

    def register(self, name: str, email: str, password: str) -> Dict[str, Any]:
        data = self._request("POST", "/api/auth/register", json={
            "name": name,
            "email": email,
            "password": password,
        })
        return self._sign_in(data)

    def login(self, email: str, password: str) -> Dict[str, Any]:
        data = self._request("POST", "/api/auth/login", json={"email": email, "password": password})
        return self._sign_in(data)

    def resume(self, user_id: int) -> Dict[str, Any]:
        """Restore a session from a remembered user id."""
        self.client.headers[USER_HEADER] = str(user_id)
        try:
            data = self._request("GET", "/api/user")
        except AuthorizationError:
            self.logout()
            raise
        return self._sign_in(data)

    def logout(self) -> None:
        self.client.headers.pop(USER_HEADER, None)
        self.current_user = None
        self.conversations = []
        self.active_id = None

    # Projection

    @property
    def active(self) -> Optional[ConversationEntry]:
        if self.active_id is None:
            return None
        return self.find(self.active_id)

    def find(self, conversation_id: ConversationId) -> Optional[ConversationEntry]:
        for entry in self.conversations:
            if entry.id == conversation_id:
                return entry
        return None

    def refresh(self) -> List[ConversationEntry]:
        """
        Reload conversation summaries from the server.

        Unresolved drafts stay in front of the durable entries. Durable
        entries are rebuilt from the fresh list; only the active one keeps
        its loaded transcript.
        """
        self._require_user()
        summaries = self._request("GET", "/api/chats")

        cached = {
            entry.id: entry
            for entry in self.conversations
            if isinstance(entry, DurableConversation) and entry.loaded and entry.id == self.active_id
        }
        drafts = [entry for entry in self.conversations if isinstance(entry, DraftConversation)]
        durable = []
        for summary in summaries:
            entry = self._durable_from_summary(summary)
            if entry.id in cached:
                entry.messages = cached[entry.id].messages
                entry.loaded = True
            durable.append(entry)

        self.conversations = drafts + durable
        if self.active_id is not None and self.find(self.active_id) is None:
            self.active_id = None
        return self.conversations

    def new_chat(self) -> None:
        """Return to the welcome state; the next message starts a new conversation."""
        self.active_id = None

    def activate(self, conversation_id: ConversationId) -> ConversationEntry:
        """
        Make a conversation active.

        Drafts are local only. Durable conversations are reloaded from the
        server and their transcript replaces whatever was cached.
        """
        entry = self.find(conversation_id)
        if is_draft_id(conversation_id):
            if entry is None:
                raise NotFoundError(f"Draft {conversation_id} not found")
            self.active_id = conversation_id
            return entry

        data = self._request("GET", f"/api/chat/{conversation_id}")
        fresh = self._durable_from_summary(data)
        fresh.messages = mark_unanswered([
            LocalMessage(
                id=message["id"],
                role=message["role"],
                content=message["content"],
                timestamp=_parse_time(message.get("timestamp")),
            )
            for message in data.get("messages", [])
        ])
        for message in fresh.messages:
            if message.unanswered:
                message.error = SEND_FAILED_NOTE
        fresh.loaded = True

        if entry is None:
            self.conversations.insert(self._first_durable_index(), fresh)
        else:
            self._replace(entry, fresh)
        self.active_id = fresh.id
        return fresh

    # Intents

    def start_conversation(self, text: str, model: Optional[str] = None) -> ConversationEntry:
        """
        Start a new conversation from its first message.

        A draft is shown immediately. When the server confirms the
        conversation, the draft is replaced by the durable entry from a
        fresh list and that conversation is activated. If creation fails
        without a durable conversation, the draft stays with ``error`` set.
        """
        self._require_user()
        text = (text or "").strip()
        if not text:
            raise ValidationError("Message cannot be empty")

        created_at = _now()
        draft = DraftConversation(
            draft_id=new_draft_id(),
            title=derive_title(text),
            model=model or self.model,
            created_at=created_at,
            messages=[LocalMessage(role=USER_ROLE, content=text, timestamp=created_at, pending=True)],
        )
        self.conversations.insert(0, draft)
        self.active_id = draft.draft_id

        return self._submit_draft(draft)

    def retry_draft(self, draft_id: str) -> ConversationEntry:
        """Submit a failed draft again with its original text."""
        draft = self.find(draft_id)
        if not isinstance(draft, DraftConversation):
            raise NotFoundError(f"Draft {draft_id} not found")

        draft.error = None
        draft.messages = [message for message in draft.messages if message.role == USER_ROLE][:1]
        for message in draft.messages:
            message.pending = True
        self.active_id = draft.draft_id
        return self._submit_draft(draft)

    def send(self, text: str) -> LocalMessage:
        """
        Send a message in the active durable conversation.

        The user message is shown immediately. On success the reply is
        appended; on provider failure the user message is marked unanswered
        and returned, so the failure stays attached to the conversation.
        A request the server refused before writing anything is rolled back
        locally; any other failure reloads the transcript from the server
        and re-raises.

        Returns:
            The reply, or the unanswered user message on provider failure
        """
        entry = self.active
        if entry is None:
            raise ValidationError("No active conversation; start a new one instead")
        if isinstance(entry, DraftConversation):
            raise ValidationError("The conversation has not been created yet")

        text = (text or "").strip()
        if not text:
            raise ValidationError("Message cannot be empty")

        user_message = LocalMessage(role=USER_ROLE, content=text, timestamp=_now(), pending=True)
        entry.messages.append(user_message)

        try:
            data = self._request("POST", "/api/chat", json={
                "message": text,
                "chat_id": entry.id,
                "model": entry.model,
            })
        except UpstreamError as e:
            user_message.pending = False
            user_message.unanswered = True
            user_message.error = SEND_FAILED_NOTE
            logger.warning(f"Reply failed in conversation {entry.id}: {e.message}")
            return user_message
        except REJECTED_BEFORE_WRITE:
            entry.messages.remove(user_message)
            raise
        except ChatError as e:
            # The exchange may be partly or fully stored; show what the server holds
            logger.warning(f"Send in conversation {entry.id} failed, reloading transcript: {e.message}")
            user_message.pending = False
            user_message.error = SEND_FAILED_NOTE
            self.activate(entry.id)
            raise

        user_message.pending = False
        entry.title = data.get("title", entry.title)
        reply = LocalMessage(
            id=data["message_id"],
            role=MODEL_ROLE,
            content=data["response"],
            timestamp=_now(),
        )
        entry.messages.append(reply)
        return reply

    def delete(self, conversation_id: ConversationId) -> None:
        """
        Delete a conversation.

        Drafts are dropped locally. Durable conversations are deleted on
        the server first and removed from the projection after it confirms.
        """
        if not is_draft_id(conversation_id):
            self._request("DELETE", f"/api/chat/{conversation_id}")

        entry = self.find(conversation_id)
        if entry is not None:
            self.conversations.remove(entry)
        if self.active_id == conversation_id:
            self.active_id = None

    # Helpers

    def _submit_draft(self, draft: DraftConversation) -> ConversationEntry:
        try:
            data = self._request("POST", "/api/chat", json={
                "message": draft.first_message_text,
                "model": draft.model,
            })
            chat_id = data["chat_id"]
        except UpstreamError as e:
            if e.conversation_id is None:
                return self._fail_draft(draft, e)
            # The conversation and its user message were stored; only the reply failed
            chat_id = e.conversation_id
        except ChatError as e:
            return self._fail_draft(draft, e)

        return self._resolve_draft(draft, chat_id)

    def _resolve_draft(self, draft: DraftConversation, chat_id: int) -> ConversationEntry:
        try:
            summaries = self._request("GET", "/api/chats")
        except ChatError as e:
            logger.warning(f"Could not reload conversation list: {e.message}")
            summaries = []
        if not any(summary["id"] == chat_id for summary in summaries):
            logger.warning(f"Conversation {chat_id} missing from the conversation list, loading it directly")
            return self._activate_in_place_of(draft, chat_id)

        drafts = [
            entry for entry in self.conversations
            if isinstance(entry, DraftConversation) and entry is not draft
        ]
        durable = []
        for summary in summaries:
            entry = self._durable_from_summary(summary)
            if entry.id == chat_id:
                entry = reconcile(draft, entry)
            durable.append(entry)
        self.conversations = drafts + durable

        logger.info(f"Draft {draft.draft_id} reconciled to conversation {chat_id}")
        return self.activate(chat_id)

    def _activate_in_place_of(self, draft: DraftConversation, chat_id: int) -> ConversationEntry:
        try:
            entry = self.activate(chat_id)
        except ChatError as e:
            return self._fail_draft(draft, e)
        self.conversations.remove(draft)
        return entry

    def _fail_draft(self, draft: DraftConversation, error: ChatError) -> DraftConversation:
        logger.warning(f"Draft {draft.draft_id} was not created: {error.message}")
        draft.error = CREATE_FAILED_NOTE
        for message in draft.messages:
            message.pending = False
        return draft

    def _replace(self, old: ConversationEntry, new: ConversationEntry) -> None:
        index = self.conversations.index(old)
        self.conversations[index] = new

    def _first_durable_index(self) -> int:
        for index, entry in enumerate(self.conversations):
            if isinstance(entry, DurableConversation):
                return index
        return len(self.conversations)

    def _durable_from_summary(self, summary: Dict[str, Any]) -> DurableConversation:
        return DurableConversation(
            id=summary["id"],
            title=summary["title"],
            model=summary.get("model") or self.model,
            created_at=_parse_time(summary.get("created_at")),
        )

    def _sign_in(self, user: Dict[str, Any]) -> Dict[str, Any]:
        self.current_user = user
        self.client.headers[USER_HEADER] = str(user["id"])
        self.refresh()
        return user

    def _require_user(self) -> None:
        if self.current_user is None:
            raise AuthorizationError("Sign in first")

    def _request(self, method: str, path: str, **kwargs) -> Any:
        try:
            response = self.client.request(method, path, **kwargs)
        except httpx.RequestError as e:
            logger.error(f"Request {method} {path} failed: {e}")
            raise StoreError(f"Chat service unreachable: {e}") from e

        if response.is_success:
            return response.json()
        raise self._error_from_response(response)

    @staticmethod
    def _error_from_response(response: httpx.Response) -> ChatError:
        try:
            detail = response.json().get("detail")
        except ValueError:
            detail = None

        error: Dict[str, Any] = {}
        chat_id = None
        if isinstance(detail, dict):
            error = detail.get("error") or {}
            chat_id = detail.get("chat_id")
        message = error.get("message") or f"Request failed with status {response.status_code}"
        details = error.get("details") or {}

        if response.status_code == 503 and error.get("code") != StoreError.code:
            return UpstreamError(message, code=error.get("code"), details=details, conversation_id=chat_id)
        error_class = ERRORS_BY_STATUS.get(response.status_code, StoreError)
        return error_class(message, details)
