"""Password hashing and cookie session helpers.

Passwords are stored as ``pbkdf2_sha256$<iterations>$<salt hex>$<hash hex>``.
Session tokens are opaque random strings kept in the ``sessions`` table; the
client only ever sees them as a cookie.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

from budgetpro.db.dal import Database

logger = logging.getLogger("budgetpro.auth")

PBKDF2_ITERATIONS = 240_000
_SCHEME = "pbkdf2_sha256"


def hash_password(password: str, *, salt: Optional[bytes] = None) -> str:
    salt = salt or secrets.token_bytes(16)
    digest = hashlib.pbkdf2_hmac(
        "sha256", password.encode("utf-8"), salt, PBKDF2_ITERATIONS
    )
    return f"{_SCHEME}${PBKDF2_ITERATIONS}${salt.hex()}${digest.hex()}"


def verify_password(password: str, stored: str) -> bool:
    try:
        scheme, iterations, salt_hex, digest_hex = stored.split("$")
    except ValueError:
        return False
    if scheme != _SCHEME:
        return False
    digest = hashlib.pbkdf2_hmac(
        "sha256", password.encode("utf-8"), bytes.fromhex(salt_hex), int(iterations)
    )
    return hmac.compare_digest(digest.hex(), digest_hex)


def register_user(db: Database, username: str, password: str) -> int:
    """Create a user; ValueError when the username is taken."""
    user_id = db.create_user(username, hash_password(password))
    logger.info("user registered", extra={"user_id": user_id})
    return user_id


def authenticate(db: Database, username: str, password: str) -> Optional[int]:
    user = db.get_user_by_username(username)
    if not user or not verify_password(password, user["password_hash"]):
        return None
    return int(user["id"])


def open_session(db: Database, user_id: int, ttl_hours: int) -> str:
    db.purge_expired_sessions()
    token = secrets.token_urlsafe(32)
    db.create_session(
        token, user_id, datetime.now(timezone.utc) + timedelta(hours=ttl_hours)
    )
    return token


def close_session(db: Database, token: Optional[str]) -> None:
    if token:
        db.delete_session(token)
