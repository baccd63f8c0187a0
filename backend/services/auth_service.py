"""Authentication collaborator: registration, login and user lookup."""
import hashlib
import hmac
import logging
import secrets
from typing import Optional

from models.conversation import User
from services.errors import AuthorizationError, NotFoundError, ValidationError
from services.transcript_store import TranscriptStore
from config import PASSWORD_HASH_ITERATIONS

logger = logging.getLogger(__name__)

HASH_ALGORITHM = "pbkdf2_sha256"


def hash_password(password: str, iterations: int = PASSWORD_HASH_ITERATIONS) -> str:
    """Hash a password as ``pbkdf2_sha256$<iterations>$<salt>$<hex digest>``."""
    salt = secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt.encode("utf-8"), iterations)
    return f"{HASH_ALGORITHM}${iterations}${salt}${digest.hex()}"


def verify_password(password: str, stored_hash: Optional[str]) -> bool:
    """Check a password against a stored hash in constant time."""
    if not stored_hash:
        return False
    try:
        algorithm, iterations, salt, expected = stored_hash.split("$", 3)
        iterations = int(iterations)
    except ValueError:
        logger.warning("Malformed password hash encountered")
        return False
    if algorithm != HASH_ALGORITHM:
        return False

    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt.encode("utf-8"), iterations)
    return hmac.compare_digest(digest.hex(), expected)


class AuthService:
    """Registers users and resolves credentials to a user identity."""

    def __init__(self, store: TranscriptStore, iterations: int = PASSWORD_HASH_ITERATIONS):
        self.store = store
        self.iterations = iterations

    def register(self, name: str, email: str, password: str) -> User:
        """
        Create an account.

        Raises:
            ValidationError: If a field is missing or the email is already in use
        """
        name = (name or "").strip()
        email = (email or "").strip().lower()
        if not name or not email or not password:
            raise ValidationError("All fields are required")

        if self.store.get_user_by_email(email) is not None:
            raise ValidationError("Email already in use", {"email": email})

        user = self.store.create_user(name, email, hash_password(password, self.iterations))
        logger.info(f"Registered user {user.id}", extra={"user_id": user.id})
        return user

    def login(self, email: str, password: str) -> User:
        """
        Resolve credentials to a user.

        Raises:
            AuthorizationError: If the email is unknown or the password does not match
        """
        row = self.store.get_user_by_email((email or "").strip().lower())
        if row is None or not verify_password(password or "", row.get("password_hash")):
            logger.info("Rejected login attempt")
            raise AuthorizationError("Invalid email or password")

        return self.store.get_user_by_id(row["id"])

    def get_user(self, user_id: Optional[int]) -> User:
        """
        Resolve a user id presented by the client.

        Raises:
            AuthorizationError: If no id is given or the user does not exist
        """
        if user_id is None:
            raise AuthorizationError("No user ID provided")
        try:
            return self.store.get_user_by_id(user_id)
        except NotFoundError as e:
            raise AuthorizationError("Unknown user", {"user_id": user_id}) from e

    def update_avatar(self, user: User, avatar: Optional[str]) -> User:
        return self.store.update_avatar(user.id, avatar)
