"""Transcript store backed by Supabase PostgreSQL."""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from supabase import create_client, Client

from models.conversation import Conversation, Message, User, ROLES
from services.errors import NotFoundError, StoreError, ValidationError
from config import SUPABASE_URL, SUPABASE_KEY

logger = logging.getLogger(__name__)


class TranscriptStore:
    """
    Durable keyed storage of users, conversations and ordered messages.

    Tables (see ``migrations/001_create_chat_tables.sql``):
        users:         id, name, email, password_hash, avatar, created_at
        conversations: id, user_id, title, model, created_at
        messages:      id, conversation_id, role, content, created_at

    Every backend failure is raised as ``StoreError``; lookups by id raise
    ``NotFoundError`` when the row is absent.
    """

    USERS = "users"
    CONVERSATIONS = "conversations"
    MESSAGES = "messages"

    def __init__(
        self,
        supabase_url: Optional[str] = SUPABASE_URL,
        supabase_key: Optional[str] = SUPABASE_KEY,
        client: Optional[Client] = None,
    ):
        """
        Initialize the store with a Supabase client.

        Args:
            supabase_url: Supabase project URL
            supabase_key: Supabase API key
            client: Pre-built client; skips credential checks when given

        Raises:
            ValueError: If no client is given and credentials are missing
        """
        if client is None:
            if not supabase_url or not supabase_key:
                raise ValueError("SUPABASE_URL and SUPABASE_KEY must be set in environment variables")
            client = create_client(supabase_url, supabase_key)

        self.client = client
        logger.info("TranscriptStore initialized with Supabase")

    # Users

    def create_user(self, name: str, email: str, password_hash: str) -> User:
        row = self._insert(self.USERS, {
            "name": name,
            "email": email,
            "password_hash": password_hash,
            "avatar": None,
        })
        logger.info(f"Created user {row['id']}")
        return self._to_user(row)

    def get_user_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        """
        Return the raw user row (including ``password_hash``) or None.

        The raw row is returned because the auth service needs the stored
        hash; every other caller works with ``User``.
        """
        rows = self._select(self.USERS, "email", email)
        return rows[0] if rows else None

    def get_user_by_id(self, user_id: int) -> User:
        rows = self._select(self.USERS, "id", user_id)
        if not rows:
            raise NotFoundError(f"User {user_id} not found", {"user_id": user_id})
        return self._to_user(rows[0])

    def update_avatar(self, user_id: int, avatar: Optional[str]) -> User:
        rows = self._execute(
            f"update avatar of user {user_id}",
            lambda: self.client.table(self.USERS).update({"avatar": avatar}).eq("id", user_id).execute(),
        )
        if not rows:
            raise NotFoundError(f"User {user_id} not found", {"user_id": user_id})
        return self._to_user(rows[0])

    # Conversations

    def create_conversation(self, user_id: int, title: str, model: str) -> Conversation:
        row = self._insert(self.CONVERSATIONS, {
            "user_id": user_id,
            "title": title,
            "model": model,
        })
        logger.info(f"Created conversation {row['id']} for user {user_id}")
        return self._to_conversation(row)

    def list_conversations(self, user_id: int) -> List[Conversation]:
        """List a user's conversations, most recent first."""
        rows = self._execute(
            f"list conversations of user {user_id}",
            lambda: (
                self.client.table(self.CONVERSATIONS)
                .select("*")
                .eq("user_id", user_id)
                .order("created_at", desc=True)
                .order("id", desc=True)
                .execute()
            ),
        )
        return [self._to_conversation(row) for row in rows]

    def get_conversation(self, conversation_id: int) -> Conversation:
        rows = self._select(self.CONVERSATIONS, "id", conversation_id)
        if not rows:
            raise NotFoundError(
                f"Conversation {conversation_id} not found",
                {"conversation_id": conversation_id},
            )
        return self._to_conversation(rows[0])

    def update_title(self, conversation_id: int, title: str) -> Conversation:
        rows = self._execute(
            f"update title of conversation {conversation_id}",
            lambda: (
                self.client.table(self.CONVERSATIONS)
                .update({"title": title})
                .eq("id", conversation_id)
                .execute()
            ),
        )
        if not rows:
            raise NotFoundError(
                f"Conversation {conversation_id} not found",
                {"conversation_id": conversation_id},
            )
        return self._to_conversation(rows[0])

    def delete_conversation(self, conversation_id: int) -> int:
        """
        Delete a conversation; its messages go with it through ON DELETE CASCADE.

        A single delete request keeps the cascade atomic: either the
        conversation and its transcript are gone, or both remain.

        Returns:
            Number of conversation rows removed

        Raises:
            NotFoundError: If no conversation row was removed
        """
        rows = self._execute(
            f"delete conversation {conversation_id}",
            lambda: self.client.table(self.CONVERSATIONS).delete().eq("id", conversation_id).execute(),
        )
        if not rows:
            raise NotFoundError(
                f"Conversation {conversation_id} not found",
                {"conversation_id": conversation_id},
            )
        logger.info(f"Deleted conversation {conversation_id}")
        return len(rows)

    # Messages

    def append_message(self, conversation_id: int, role: str, content: str) -> Message:
        if role not in ROLES:
            raise ValidationError(f"Unknown message role: {role}", {"role": role})

        row = self._insert(self.MESSAGES, {
            "conversation_id": conversation_id,
            "role": role,
            "content": content,
        })
        logger.debug(f"Appended {role} message {row['id']} to conversation {conversation_id}")
        return self._to_message(row)

    def get_messages(self, conversation_id: int) -> List[Message]:
        """
        Retrieve the transcript of a conversation in insertion order.

        Ordered by the identity column rather than the timestamp, which can
        tie for messages written within the same clock tick.
        """
        rows = self._execute(
            f"get messages of conversation {conversation_id}",
            lambda: (
                self.client.table(self.MESSAGES)
                .select("*")
                .eq("conversation_id", conversation_id)
                .order("id", desc=False)
                .execute()
            ),
        )
        return [self._to_message(row) for row in rows]

    # Helpers

    def _select(self, table: str, column: str, value: Any) -> List[Dict[str, Any]]:
        return self._execute(
            f"select from {table} where {column}={value}",
            lambda: self.client.table(table).select("*").eq(column, value).limit(1).execute(),
        )

    def _insert(self, table: str, record: Dict[str, Any]) -> Dict[str, Any]:
        rows = self._execute(
            f"insert into {table}",
            lambda: self.client.table(table).insert(record).execute(),
        )
        if not rows:
            raise StoreError(f"Insert into {table} returned no row", {"table": table})
        return rows[0]

    def _execute(self, description: str, operation) -> List[Dict[str, Any]]:
        try:
            result = operation()
        except Exception as e:
            logger.error(f"Error during {description}: {e}")
            raise StoreError(f"Transcript store unavailable: {e}", {"operation": description}) from e
        return result.data or []

    def _to_user(self, row: Dict[str, Any]) -> User:
        return User(
            id=row["id"],
            name=row["name"],
            email=row["email"],
            avatar=row.get("avatar"),
            created_at=self._parse_timestamp(row.get("created_at")),
        )

    def _to_conversation(self, row: Dict[str, Any]) -> Conversation:
        return Conversation(
            id=row["id"],
            user_id=row["user_id"],
            title=row.get("title") or "",
            model=row.get("model") or "",
            created_at=self._parse_timestamp(row.get("created_at")),
        )

    def _to_message(self, row: Dict[str, Any]) -> Message:
        return Message(
            id=row["id"],
            conversation_id=row["conversation_id"],
            role=row["role"],
            content=row["content"],
            created_at=self._parse_timestamp(row.get("created_at")),
        )

    @staticmethod
    def _parse_timestamp(timestamp_str: Optional[str]) -> Optional[datetime]:
        """
        Parse timestamp string from Supabase, handling various formats.

        Supabase can return timestamps with varying microsecond precision,
        which fromisoformat() does not accept on every Python version. The
        fractional part is normalized to six digits.
        """
        if timestamp_str is None:
            return None
        if isinstance(timestamp_str, datetime):
            return timestamp_str

        timestamp_str = timestamp_str.replace("Z", "+00:00")

        # Format: 2026-02-21T02:08:26.18976+00:00
        if "." in timestamp_str:
            head, fraction = timestamp_str.split(".", 1)
            tz = ""
            for sign in ("+", "-"):
                if sign in fraction:
                    fraction, offset = fraction.split(sign, 1)
                    tz = f"{sign}{offset}"
                    break
            fraction = fraction[:6].ljust(6, "0")
            timestamp_str = f"{head}.{fraction}{tz}"

        return datetime.fromisoformat(timestamp_str)
