"""
core/security.py
----------------
Password hashing and session token utilities.

Design decisions:
  - bcrypt work factor 12.
  - The JWT carries sub (user_id), sid (server-side session id) and role.
    The token alone never authorises a request: the session row and the
    user row are re-read on every request (see services/identity_service.py),
    so logout and deactivation take effect immediately.
"""

import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import jwt
from passlib.context import CryptContext

from propertypro.core.config import settings

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=12)


# ── Password Utilities ────────────────────────────────────────────────────────

def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the plain-text password."""
    return pwd_context.hash(plain)


def verify_password(plain: str, hashed: str) -> bool:
    """Constant-time comparison of plain password against stored hash."""
    return pwd_context.verify(plain, hashed)


# ── Session Tokens ────────────────────────────────────────────────────────────

def new_session_id() -> str:
    return secrets.token_urlsafe(32)


def session_expiry(expires_delta: Optional[timedelta] = None) -> datetime:
    return datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    )


def create_access_token(
    subject: str,
    session_id: str,
    role: str,
    expires_at: datetime,
) -> str:
    """
    Mint a JWT bound to a server-side session.

    Args:
        subject: User UUID (stored in 'sub' claim).
        session_id: Id of the user_sessions row backing this token.
        role: 'IT' | 'ADMIN' | 'TENANT' (informational; storage is authoritative).
        expires_at: Same expiry as the session row.

    Returns:
        Signed JWT string.
    """
    payload: Dict[str, Any] = {
        "sub": subject,
        "sid": session_id,
        "role": role,
        "exp": expires_at,
        "iat": datetime.now(timezone.utc),
    }
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_access_token(token: str) -> Dict[str, Any]:
    """
    Decode and validate a JWT access token.

    Raises:
        JWTError: If the token is invalid, expired, or tampered with.
    """
    return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
