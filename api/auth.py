"""
Identity gate for the API.

Local user accounts with PBKDF2-hashed passwords and opaque bearer tokens.
Only the SHA-256 hash of a token is stored, so a copy of the database does
not hand out live sessions.

Every /api/v1 router except /auth/login depends on get_current_user.
"""

import base64
import hashlib
import hmac
import logging
import secrets
import sqlite3
from datetime import datetime, timedelta, timezone
from typing import Any, Optional, Tuple

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from api.database import get_db
from utils.common import to_utc_iso, utc_now

logger = logging.getLogger("referral_intake.auth")

PBKDF2_ITERATIONS = 310_000
MIN_PASSWORD_LENGTH = 8

bearer_scheme = HTTPBearer(auto_error=False)


def hash_password(password: str, salt_b64: Optional[str] = None) -> Tuple[str, str]:
    """Return (hash_b64, salt_b64); a fresh 16-byte salt unless one is given."""
    salt = base64.b64decode(salt_b64) if salt_b64 else secrets.token_bytes(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, PBKDF2_ITERATIONS)
    return base64.b64encode(digest).decode("utf-8"), base64.b64encode(salt).decode("utf-8")


def verify_password(password: str, expected_hash: str, salt_b64: str) -> bool:
    computed, _ = hash_password(password, salt_b64)
    return hmac.compare_digest(computed, expected_hash)


def token_hash(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def get_user_by_email(conn: sqlite3.Connection, email: str) -> Optional[sqlite3.Row]:
    return conn.execute(
        "SELECT * FROM users WHERE email = ?", (normalize_email(email),)
    ).fetchone()


def create_user(conn: sqlite3.Connection, email: str, password: str) -> int:
    """Create an active user and return its id.

    Raises:
        ValueError: If the email is blank or taken, or the password is too short.
    """
    email = normalize_email(email)
    if "@" not in email:
        raise ValueError("A valid email address is required")
    if len(password or "") < MIN_PASSWORD_LENGTH:
        raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if get_user_by_email(conn, email) is not None:
        raise ValueError(f"User {email} already exists")
    pw_hash, salt = hash_password(password)
    with conn:
        cur = conn.execute(
            "INSERT INTO users (email, password_hash, password_salt, is_active, created_at) "
            "VALUES (?, ?, ?, 1, ?)",
            (email, pw_hash, salt, utc_now()),
        )
    logger.info("created user %s", email)
    return cur.lastrowid


def authenticate(conn: sqlite3.Connection, email: str, password: str) -> Optional[sqlite3.Row]:
    """Return the active user matching the credentials, else None."""
    user = get_user_by_email(conn, email)
    if user is None or not user["is_active"]:
        return None
    if not verify_password(password, user["password_hash"], user["password_salt"]):
        return None
    return user


def create_session(conn: sqlite3.Connection, user_id: int,
                   ttl_hours: float = 12) -> Tuple[str, str]:
    """Issue a bearer token for *user_id*.

    Returns:
        (raw_token, expires_at). Only the hash of raw_token is stored.
    """
    raw_token = secrets.token_urlsafe(32)
    now = datetime.now(timezone.utc)
    expires_at = to_utc_iso(now + timedelta(hours=ttl_hours))
    with conn:
        conn.execute("DELETE FROM sessions WHERE expires_at <= ?", (to_utc_iso(now),))
        conn.execute(
            "INSERT INTO sessions (user_id, token_hash, created_at, expires_at) VALUES (?, ?, ?, ?)",
            (user_id, token_hash(raw_token), to_utc_iso(now), expires_at),
        )
    return raw_token, expires_at


def delete_session(conn: sqlite3.Connection, token: str) -> None:
    """Remove the session for *token*; unknown tokens are ignored."""
    with conn:
        conn.execute("DELETE FROM sessions WHERE token_hash = ?", (token_hash(token),))


def user_for_token(conn: sqlite3.Connection, token: str) -> Optional[dict[str, Any]]:
    row = conn.execute(
        """
        SELECT u.id, u.email
        FROM sessions s
        JOIN users u ON u.id = s.user_id
        WHERE s.token_hash = ? AND s.expires_at > ? AND u.is_active = 1
        """,
        (token_hash(token), utc_now()),
    ).fetchone()
    return dict(row) if row else None


def bootstrap_admin(conn: sqlite3.Connection, email: str, password: str) -> bool:
    """Create the configured admin account if it does not exist yet.

    Returns True when a user was created.
    """
    if not email or not password:
        return False
    if get_user_by_email(conn, email) is not None:
        return False
    create_user(conn, email, password)
    return True


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    conn: sqlite3.Connection = Depends(get_db),
) -> dict[str, Any]:
    """FastAPI dependency: resolve the bearer token to ``{"id", "email"}``.

    Raises HTTP 401 when the header is missing or the token is unknown or
    expired.
    """
    if credentials is None or not credentials.credentials:
        raise _unauthorized("Not authenticated")
    user = user_for_token(conn, credentials.credentials)
    if user is None:
        raise _unauthorized("Invalid or expired session")
    return user
