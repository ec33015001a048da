"""
Password hashing and cookie sessions.

Sessions live in the sessions table; the cookie carries a random token and
only its SHA-256 hash is stored.
"""

import hashlib
import logging
import secrets
from typing import Optional

import bcrypt
from fastapi import Depends, Request
from sqlalchemy.orm import Session

from chatroom.config import settings
from chatroom.errors import AuthError
from chatroom.storage import create_session, get_db, get_session_user_id, get_user_by_email

logger = logging.getLogger(__name__)

# Compared against when the email is unknown so both failure paths cost a bcrypt check
_DUMMY_PASSWORD_HASH = bcrypt.hashpw(b"chatroom-dummy-password", bcrypt.gensalt()).decode("utf-8")


def hash_password(password: str) -> str:
    """Hash a password using bcrypt."""
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against its hash."""
    return bcrypt.checkpw(plain_password.encode("utf-8"), hashed_password.encode("utf-8"))


def hash_token(token: str) -> str:
    """Hash a session token (SHA-256) for storage."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def authenticate(db: Session, email: str, password: str):
    """
    Check credentials.

    Raises:
        AuthError: unknown email or wrong password
    """
    user = get_user_by_email(db, email)
    if user is None:
        verify_password(password, _DUMMY_PASSWORD_HASH)
        logger.info("Login rejected: unknown email")
        raise AuthError("Invalid email or password")
    if not verify_password(password, user.password_hash):
        logger.info(f"Login rejected: wrong password for user {user.id}")
        raise AuthError("Invalid email or password")
    return user


def start_session(db: Session, user_id: int) -> str:
    """Create a session for user_id and return the raw cookie token."""
    token = secrets.token_urlsafe(32)
    create_session(db, user_id, hash_token(token), settings.SESSION_TTL_SECONDS)
    return token


def get_current_user_id(request: Request, db: Session = Depends(get_db)) -> int:
    """
    Dependency resolving the session cookie to the caller's user id.

    Raises:
        AuthError: cookie missing, unknown or expired
    """
    token: Optional[str] = request.cookies.get(settings.SESSION_COOKIE_NAME)
    if not token:
        raise AuthError()
    user_id = get_session_user_id(db, hash_token(token))
    if user_id is None:
        raise AuthError(details="Session expired, please log in again")
    return user_id
