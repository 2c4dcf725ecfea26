"""
User store: identity lookups and credential checks.

Password hashes never leave this module; User carries only public fields.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from werkzeug.security import check_password_hash, generate_password_hash

logger = logging.getLogger(__name__)

# Compared against when the username is unknown so both paths cost one hash check
_DUMMY_HASH = generate_password_hash("citizen-timing-equaliser")


@dataclass(frozen=True)
class User:
    """User identity from database (immutable)."""
    id: int
    username: str
    email: Optional[str]
    created_at: Optional[str]

    def to_dict(self) -> dict:
        return {
            "user_id": self.id,
            "username": self.username,
            "email": self.email,
            "created_at": self.created_at,
        }


def _row_to_user(row) -> User:
    return User(
        id=row["id"],
        username=row["username"],
        email=row["email"],
        created_at=str(row["created_at"]) if row["created_at"] is not None else None,
    )


class UserStore:
    """SQL-backed user lookups."""

    def __init__(self, db):
        self._db = db

    def get_user(self, user_id: int) -> Optional[User]:
        with self._db.connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT id, username, email, created_at FROM users WHERE id = ?",
                (user_id,),
            )
            row = cursor.fetchone()
        return _row_to_user(row) if row else None

    def get_user_by_username(self, username: str) -> Optional[User]:
        with self._db.connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT id, username, email, created_at FROM users WHERE username = ?",
                (username,),
            )
            row = cursor.fetchone()
        return _row_to_user(row) if row else None

    def verify_credentials(self, username: str, password: str) -> Optional[User]:
        """Return the user when the password matches, else None."""
        with self._db.connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT id, username, email, created_at, password_hash FROM users WHERE username = ?",
                (username,),
            )
            row = cursor.fetchone()

        if row is None:
            check_password_hash(_DUMMY_HASH, password)
            return None
        if not check_password_hash(row["password_hash"], password):
            return None
        return _row_to_user(row)

    def create_user(self, username: str, password: str, email: Optional[str] = None) -> User:
        with self._db.connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "INSERT INTO users (username, password_hash, email) VALUES (?, ?, ?)",
                (username, generate_password_hash(password), email),
            )
            user_id = cursor.lastrowid
        logger.info(f"User created: {username}")
        return self.get_user(user_id)

    def delete_user(self, user_id: int) -> bool:
        with self._db.connect() as conn:
            cursor = conn.cursor()
            cursor.execute("DELETE FROM users WHERE id = ?", (user_id,))
            return cursor.rowcount > 0
