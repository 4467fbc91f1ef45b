"""Identity gateway: credential pairs, sessions and session-change signals.

Passwords are stored as salted PBKDF2-SHA256 hashes with the configured secret
key mixed in as a pepper.  Session tokens come from ``secrets`` and live in the
``sessions`` table until sign-out.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from dataclasses import dataclass
from typing import Callable, List, Optional

from book_request import to_iso, utcnow
from database import new_id, read_connection, transaction
from errors import AuthenticationError, ValidationError
from validators import TextValidator

logger = logging.getLogger(__name__)

SessionListener = Callable[[Optional[str]], None]

MIN_PASSWORD_LENGTH = 6
HASH_ITERATIONS = 120_000


@dataclass
class Session:
    token: str
    uid: str


class IdentityGateway:

    def __init__(self, db_file: str, secret_key: str, iterations: int = HASH_ITERATIONS) -> None:
        self.db_file = db_file
        self._pepper = secret_key.encode("utf-8")
        self._iterations = iterations
        self._listeners: List[SessionListener] = []

    def _hash_password(self, password: str, salt: str) -> str:
        digest = hashlib.pbkdf2_hmac(
            "sha256", password.encode("utf-8"), bytes.fromhex(salt) + self._pepper, self._iterations
        )
        return digest.hex()

    # ------------------------- Registration ------------------------- #
    def register(self, email: str, password: str) -> str:
        """Create a credential pair and return its uid."""
        email = (email or "").strip().lower()
        if not TextValidator.is_email(email):
            raise ValidationError({"email": "Invalid email address."})
        if password is None or len(password) < MIN_PASSWORD_LENGTH:
            raise ValidationError({"password": "Password is too weak. Please use a stronger password."})

        uid = new_id()
        salt = secrets.token_hex(16)
        with transaction(self.db_file) as conn:
            taken = conn.execute("SELECT 1 FROM identities WHERE email = ?", (email,)).fetchone()
            if taken:
                raise AuthenticationError("Email is already in use. Please use a different email or login.")
            conn.execute(
                "INSERT INTO identities (uid, email, password_hash, salt, created_at) VALUES (?, ?, ?, ?, ?)",
                (uid, email, self._hash_password(password, salt), salt, to_iso(utcnow())),
            )
        return uid

    def delete(self, uid: str) -> None:
        """Remove a credential pair (and its sessions). Used to undo a half-finished registration."""
        with transaction(self.db_file) as conn:
            conn.execute("DELETE FROM identities WHERE uid = ?", (uid,))

    # ------------------------- Sessions ------------------------- #
    def sign_in(self, email: str, password: str) -> Session:
        email = (email or "").strip().lower()
        with read_connection(self.db_file) as conn:
            row = conn.execute(
                "SELECT uid, password_hash, salt FROM identities WHERE email = ?", (email,)
            ).fetchone()
        if row is None or not hmac.compare_digest(
            row["password_hash"], self._hash_password(password or "", row["salt"])
        ):
            raise AuthenticationError("Invalid email or password.")

        token = secrets.token_hex(24)
        with transaction(self.db_file) as conn:
            conn.execute(
                "INSERT INTO sessions (token, uid, created_at) VALUES (?, ?, ?)",
                (token, row["uid"], to_iso(utcnow())),
            )
        self._notify(row["uid"])
        return Session(token=token, uid=row["uid"])

    def sign_out(self, token: str) -> bool:
        with transaction(self.db_file) as conn:
            cursor = conn.execute("DELETE FROM sessions WHERE token = ?", (token,))
            removed = cursor.rowcount > 0
        if removed:
            self._notify(None)
        return removed

    def resolve(self, token: Optional[str]) -> Optional[str]:
        """Return the uid a session token belongs to, or None."""
        if not token:
            return None
        with read_connection(self.db_file) as conn:
            row = conn.execute("SELECT uid FROM sessions WHERE token = ?", (token,)).fetchone()
        return row["uid"] if row else None

    # ------------------------- Change signals ------------------------- #
    def on_session_change(self, listener: SessionListener) -> Callable[[], None]:
        """Subscribe to sign-in/sign-out. Returns a function that unsubscribes."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, uid: Optional[str]) -> None:
        for listener in list(self._listeners):
            try:
                listener(uid)
            except Exception as e:
                logger.error(f"Session listener failed: {e}")
