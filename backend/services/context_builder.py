"""Context assembly: turn a stored transcript into provider input."""
import logging
from typing import List, Tuple

from models.conversation import Message, Turn, USER_ROLE

logger = logging.getLogger(__name__)


def build_context(messages: List[Message]) -> Tuple[List[Turn], str]:
    """
    Split a transcript into prior turns and the current input.

    Every message except the newest is mapped to a ``Turn`` in stored order;
    the newest message must be the user message just appended and becomes
    the current input. Orphaned user turns (left by earlier failed
    completions) are kept as they are so the provider sees the conversation
    exactly as it happened.

    Args:
        messages: Transcript in insertion order

    Returns:
        Tuple of (prior turns oldest first, current input text)

    Raises:
        ValueError: If the transcript is empty or does not end with a user message
    """
    if not messages:
        raise ValueError("Cannot build context from an empty transcript")

    current = messages[-1]
    if current.role != USER_ROLE:
        raise ValueError(
            f"Transcript must end with a user message, got {current.role!r} "
            f"(message {current.id})"
        )

    prior_turns = [Turn(role=message.role, content=message.content) for message in messages[:-1]]

    logger.debug(f"Built context: {len(prior_turns)} prior turns")
    return prior_turns, current.content
