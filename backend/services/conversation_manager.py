"""Conversation manager: lifecycle and message orchestration."""
import logging
import threading
from contextlib import contextmanager
from typing import List, Optional, Set

from models.conversation import (
    Conversation,
    ConversationDetail,
    Exchange,
    Message,
    User,
    USER_ROLE,
    MODEL_ROLE,
    derive_title,
)
from services.completion_gateway import CompletionGateway, CompletionResult
from services.context_builder import build_context
from services.errors import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    StoreError,
    UpstreamError,
    ValidationError,
)
from services.transcript_store import TranscriptStore
from config import DEFAULT_MODEL, DEFAULT_CHAT_TITLE

logger = logging.getLogger(__name__)


class ConversationManager:
    """
    Owns the conversation lifecycle and the send flow.

    The send flow always writes the user message before calling the
    completion provider, so user input survives provider failures. At most
    one completion may be outstanding per conversation; a concurrent send
    against the same conversation raises ``ConflictError``.
    """

    def __init__(self, store: TranscriptStore, gateway: CompletionGateway):
        """
        Initialize the manager.

        Args:
            store: Transcript store (single source of truth)
            gateway: Completion gateway for model replies
        """
        self.store = store
        self.gateway = gateway
        self._in_flight: Set[int] = set()
        self._lock = threading.Lock()
        logger.info("ConversationManager initialized")

    def create_from_first_message(
        self,
        user: Optional[User],
        text: Optional[str],
        model: Optional[str] = None,
    ) -> Exchange:
        """
        Create a durable conversation from its first message and answer it.

        Args:
            user: Authenticated owner
            text: First user message
            model: Model selector stored on the conversation

        Returns:
            Exchange with the new conversation, the stored user message and the reply

        Raises:
            ValidationError: If the user is absent or the text is blank
            UpstreamError: If the completion fails; ``conversation_id`` is set
                and the user message stays persisted
            StoreError: If the conversation or its first message cannot be
                stored; a conversation row without its first message is removed
        """
        if user is None:
            raise ValidationError("An authenticated user is required to start a conversation")
        text = self._clean_text(text)

        conversation = self.store.create_conversation(
            user_id=user.id,
            title=derive_title(text),
            model=model or DEFAULT_MODEL,
        )
        logger.info(
            f"Started conversation {conversation.id} for user {user.id}",
            extra={"conversation_id": conversation.id, "user_id": user.id},
        )

        with self._completion_slot(conversation.id):
            user_message = self._append_first_message(conversation, text)
            reply = self._answer(conversation)

        return Exchange(conversation=conversation, user_message=user_message, reply=reply)

    def send_message(self, conversation_id: int, text: Optional[str], user: User) -> Exchange:
        """
        Append a user message to an existing conversation and answer it.

        Args:
            conversation_id: Durable conversation id
            text: User message
            user: Acting user, who must own the conversation

        Returns:
            Exchange with the conversation as stored after the send, the
            stored user message and the stored reply

        Raises:
            ValidationError: If the text is blank
            NotFoundError: If the conversation does not exist
            AuthorizationError: If the user does not own the conversation
            ConflictError: If a completion is already outstanding
            UpstreamError: If the completion fails; the user message stays persisted
        """
        text = self._clean_text(text)
        conversation = self._owned_conversation(conversation_id, user)

        with self._completion_slot(conversation.id):
            if conversation.title == DEFAULT_CHAT_TITLE and not self.store.get_messages(conversation.id):
                conversation = self.store.update_title(conversation.id, derive_title(text))

            user_message = self.store.append_message(conversation.id, USER_ROLE, text)
            reply = self._answer(conversation)

        return Exchange(conversation=conversation, user_message=user_message, reply=reply)

    def create_conversation(
        self,
        user: Optional[User],
        title: Optional[str] = None,
        model: Optional[str] = None,
    ) -> Conversation:
        """Explicitly create an empty conversation titled ``New Chat`` unless given a title."""
        if user is None:
            raise ValidationError("An authenticated user is required to create a conversation")

        title = (title or "").strip()
        return self.store.create_conversation(
            user_id=user.id,
            title=derive_title(title) if title else DEFAULT_CHAT_TITLE,
            model=model or DEFAULT_MODEL,
        )

    def list_conversations(self, user: User) -> List[Conversation]:
        return self.store.list_conversations(user.id)

    def get_conversation(self, conversation_id: int, user: User) -> Conversation:
        """Conversation summary, checked for ownership."""
        return self._owned_conversation(conversation_id, user)

    def activate(self, conversation_id: int, user: User) -> ConversationDetail:
        """
        Load the full ordered transcript of a conversation the user owns.

        Raises:
            NotFoundError: If the conversation does not exist
            AuthorizationError: If the user does not own the conversation
        """
        conversation = self._owned_conversation(conversation_id, user)
        messages = self.store.get_messages(conversation.id)
        return ConversationDetail(conversation=conversation, messages=messages)

    def delete_conversation(self, conversation_id: int, acting_user: User) -> bool:
        """
        Delete a conversation and its messages.

        Deleting an unknown or already deleted conversation is a no-op.

        Returns:
            True if a conversation was removed, False if it was already absent

        Raises:
            AuthorizationError: If the acting user does not own the conversation
        """
        try:
            conversation = self.store.get_conversation(conversation_id)
        except NotFoundError:
            logger.info(f"Conversation {conversation_id} already absent, nothing to delete")
            return False

        self._check_owner(conversation, acting_user)

        try:
            self.store.delete_conversation(conversation.id)
        except NotFoundError:
            # Removed between the lookup and the delete
            logger.info(f"Conversation {conversation_id} removed concurrently")
            return False

        logger.info(
            f"Deleted conversation {conversation_id}",
            extra={"conversation_id": conversation_id, "user_id": acting_user.id},
        )
        return True

    def is_in_flight(self, conversation_id: int) -> bool:
        with self._lock:
            return conversation_id in self._in_flight

    def _append_first_message(self, conversation: Conversation, text: str) -> Message:
        """Store the opening user message; drop the conversation row if that fails."""
        try:
            return self.store.append_message(conversation.id, USER_ROLE, text)
        except StoreError:
            logger.warning(
                f"First message of conversation {conversation.id} was not stored, removing the conversation",
                extra={"conversation_id": conversation.id},
            )
            try:
                self.store.delete_conversation(conversation.id)
            except (StoreError, NotFoundError) as cleanup_error:
                logger.error(
                    f"Could not remove empty conversation {conversation.id}: {cleanup_error.message}",
                    extra={"conversation_id": conversation.id, "error_code": cleanup_error.code},
                )
            raise

    def _answer(self, conversation: Conversation) -> Message:
        """Run the completion pipeline and store the model message."""
        try:
            result = self._complete(conversation)
        except UpstreamError as e:
            e.conversation_id = conversation.id
            logger.warning(
                f"Completion failed for conversation {conversation.id}: {e.message}",
                extra={"conversation_id": conversation.id, "error_code": e.code},
            )
            raise

        return self.store.append_message(conversation.id, MODEL_ROLE, result.text)

    def _complete(self, conversation: Conversation) -> CompletionResult:
        messages = self.store.get_messages(conversation.id)
        prior_turns, current_input = build_context(messages)
        return self.gateway.complete(prior_turns, current_input, conversation.model)

    @contextmanager
    def _completion_slot(self, conversation_id: int):
        with self._lock:
            if conversation_id in self._in_flight:
                raise ConflictError(
                    "A reply is still being generated for this conversation",
                    {"conversation_id": conversation_id},
                )
            self._in_flight.add(conversation_id)
        try:
            yield
        finally:
            with self._lock:
                self._in_flight.discard(conversation_id)

    def _owned_conversation(self, conversation_id: int, user: User) -> Conversation:
        conversation = self.store.get_conversation(conversation_id)
        self._check_owner(conversation, user)
        return conversation

    @staticmethod
    def _check_owner(conversation: Conversation, user: Optional[User]) -> None:
        if user is None or conversation.user_id != user.id:
            raise AuthorizationError(
                f"Conversation {conversation.id} does not belong to this user",
                {"conversation_id": conversation.id},
            )

    @staticmethod
    def _clean_text(text: Optional[str]) -> str:
        text = (text or "").strip()
        if not text:
            raise ValidationError("Message cannot be empty")
        return text
