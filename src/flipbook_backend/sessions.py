import hashlib
import secrets
import sqlite3
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

import bcrypt

from .exceptions import InvalidCredentialsError
from .models import Session

# bcrypt only looks at the first 72 bytes and newer releases reject longer input
MAX_PASSWORD_BYTES = 72


class SessionManager:
    """
    Email/password sign-in and bearer sessions, stored in SQLite.

    Passwords are hashed with bcrypt. Session tokens are only ever stored as
    their SHA-256 hash; the raw token is returned once, at sign-in.
    """

    def __init__(self, db_path: str | Path = "data/flipbook.db", session_ttl_seconds: int = 86400):
        self.db_path = Path(db_path)
        self.session_ttl = timedelta(seconds=session_ttl_seconds)
        self._init_db()

    def _get_conn(self) -> sqlite3.Connection:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self):
        """Initialize the database schema if it doesn't exist."""
        with self._get_conn() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS users (
                    email TEXT PRIMARY KEY,
                    password_hash TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS sessions (
                    token_hash TEXT PRIMARY KEY,
                    email TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    expires_at TEXT NOT NULL
                )
            """)
            conn.commit()

    def _hash_token(self, token: str) -> str:
        """SHA-256 hash of a session token."""
        return hashlib.sha256(token.encode()).hexdigest()

    def ensure_user(self, email: str, password: str) -> None:
        """Create the account, or reset its password if it already exists."""
        encoded = password.encode()
        if len(encoded) > MAX_PASSWORD_BYTES:
            raise ValueError(f"Passwords are limited to {MAX_PASSWORD_BYTES} bytes")
        password_hash = bcrypt.hashpw(encoded, bcrypt.gensalt()).decode()

        with self._get_conn() as conn:
            conn.execute("""
                INSERT INTO users (email, password_hash, created_at) VALUES (?, ?, ?)
                ON CONFLICT(email) DO UPDATE SET password_hash = excluded.password_hash
            """, (email.lower(), password_hash, datetime.now(timezone.utc).isoformat()))
            conn.commit()

    def sign_in(self, email: str, password: str) -> Session:
        """
        Check credentials and open a new session.

        Raises:
            InvalidCredentialsError: Unknown email or wrong password
        """
        encoded = password.encode()
        with self._get_conn() as conn:
            row = conn.execute(
                "SELECT password_hash FROM users WHERE email = ?", (email.lower(),)
            ).fetchone()

        if (
            not row
            or len(encoded) > MAX_PASSWORD_BYTES
            or not bcrypt.checkpw(encoded, row["password_hash"].encode())
        ):
            raise InvalidCredentialsError()

        token = secrets.token_urlsafe(32)
        created_at = datetime.now(timezone.utc)
        expires_at = created_at + self.session_ttl

        with self._get_conn() as conn:
            conn.execute("""
                INSERT INTO sessions (token_hash, email, created_at, expires_at)
                VALUES (?, ?, ?, ?)
            """, (self._hash_token(token), email.lower(), created_at.isoformat(), expires_at.isoformat()))
            conn.commit()

        return Session(token=token, email=email.lower(), created_at=created_at, expires_at=expires_at)

    def get_session(self, token: Optional[str]) -> Optional[Session]:
        """Return the live session for ``token``, or None if unknown or expired."""
        if not token:
            return None

        with self._get_conn() as conn:
            row = conn.execute(
                "SELECT * FROM sessions WHERE token_hash = ?", (self._hash_token(token),)
            ).fetchone()

        if not row:
            return None

        expires_at = datetime.fromisoformat(row["expires_at"])
        if expires_at <= datetime.now(timezone.utc):
            self.sign_out(token)
            return None

        return Session(
            token=token,
            email=row["email"],
            created_at=datetime.fromisoformat(row["created_at"]),
            expires_at=expires_at,
        )

    def sign_out(self, token: Optional[str]) -> bool:
        """End a session. Signing out twice is not an error."""
        if not token:
            return False
        with self._get_conn() as conn:
            cursor = conn.execute(
                "DELETE FROM sessions WHERE token_hash = ?", (self._hash_token(token),)
            )
            conn.commit()
            return cursor.rowcount > 0
