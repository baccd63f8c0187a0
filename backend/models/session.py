"""
Client-side projection models for the session view.

A conversation shown to the user is either a ``DraftConversation`` (exists
only locally, identified by a ``draft_`` string) or a ``DurableConversation``
(identified by the integer id assigned by the transcript store). Drafts are
never sent to the server; once the server confirms creation the draft is
discarded and replaced by a durable entry built by ``reconcile``.
"""
import itertools
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Union

from models.conversation import MODEL_ROLE, USER_ROLE

DRAFT_PREFIX = "draft_"

_draft_sequence = itertools.count(1)


def new_draft_id() -> str:
    """Generate a time-based draft identifier, e.g. ``draft_1760812800000_1``."""
    return f"{DRAFT_PREFIX}{int(time.time() * 1000)}_{next(_draft_sequence)}"


def is_draft_id(conversation_id) -> bool:
    """Durable ids are integers, so only prefixed strings are drafts."""
    return isinstance(conversation_id, str) and conversation_id.startswith(DRAFT_PREFIX)


@dataclass
class LocalMessage:
    """A message as displayed by the client."""
    role: str
    content: str
    timestamp: datetime
    id: Optional[int] = None
    pending: bool = False
    unanswered: bool = False
    error: Optional[str] = None


@dataclass
class DraftConversation:
    """Optimistic conversation that has not been confirmed by the store."""
    draft_id: str
    title: str
    model: str
    created_at: datetime
    messages: List[LocalMessage] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def id(self) -> str:
        return self.draft_id

    @property
    def first_message_text(self) -> str:
        for message in self.messages:
            if message.role == USER_ROLE:
                return message.content
        return ""


@dataclass
class DurableConversation:
    """Conversation known to the transcript store."""
    id: int
    title: str
    model: str
    created_at: datetime
    messages: List[LocalMessage] = field(default_factory=list)
    loaded: bool = False


ConversationEntry = Union[DraftConversation, DurableConversation]


def reconcile(draft: DraftConversation, summary: DurableConversation) -> DurableConversation:
    """
    Replace a draft with the authoritative entry for the conversation it became.

    The draft is discarded wholesale: nothing from it is merged into the
    durable entry, whose transcript is loaded separately on activation.
    """
    return DurableConversation(
        id=summary.id,
        title=summary.title,
        model=summary.model,
        created_at=summary.created_at,
        messages=[],
        loaded=False,
    )


def mark_unanswered(messages: List[LocalMessage]) -> List[LocalMessage]:
    """Flag every user message that has no model message after it."""
    answered = False
    for message in reversed(messages):
        if message.role == MODEL_ROLE:
            answered = True
        elif message.role == USER_ROLE:
            message.unanswered = not answered
            answered = False
    return messages
