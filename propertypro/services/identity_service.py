"""
services/identity_service.py
----------------------------
Identity & role resolution: bearer token → Principal.

The token is only a pointer. Every resolution re-reads the session row and
the user row, so a logged-out session or a deactivated account fails on its
next request rather than at its next login. Nothing here is cached.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError

from propertypro.core.errors import PrincipalNotFound, Unauthenticated
from propertypro.core.logging import get_logger
from propertypro.core.security import (
    create_access_token,
    decode_access_token,
    new_session_id,
    session_expiry,
    verify_password,
)
from propertypro.models.user import User, UserRole, UserSession
from propertypro.storage.base import Storage

logger = get_logger(__name__)


@dataclass(frozen=True)
class Principal:
    """The acting identity for one request. Built fresh per request, never stored."""

    id: str
    role: UserRole
    display_name: str
    property_id: Optional[str] = None
    linked_record_id: Optional[str] = None
    session_id: Optional[str] = None

    @classmethod
    def from_user(cls, user: User, session_id: Optional[str] = None) -> "Principal":
        return cls(
            id=user.id,
            role=UserRole(user.role),
            display_name=user.display_name,
            property_id=user.property_id,
            linked_record_id=user.owner_id,
            session_id=session_id,
        )


@dataclass(frozen=True)
class IssuedSession:
    token: str
    expires_in: int
    user: User


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


class IdentityResolver:

    def __init__(self, storage: Storage) -> None:
        self.storage = storage

    async def resolve(self, token: Optional[str]) -> Principal:
        """
        Resolve a bearer token to a Principal.

        Raises:
            Unauthenticated: missing/invalid token, unknown or expired
                session, or a deactivated account.
            PrincipalNotFound: the session's user no longer exists.
        """
        if not token:
            raise Unauthenticated()

        try:
            payload = decode_access_token(token)
        except JWTError as exc:
            logger.warning("Token decode failed", error=str(exc))
            raise Unauthenticated("Could not validate credentials")

        user_id = payload.get("sub")
        session_id = payload.get("sid")
        if not user_id or not session_id:
            raise Unauthenticated("Could not validate credentials")

        session = await self.storage.get_session(session_id)
        if session is None or session.user_id != user_id:
            raise Unauthenticated("Session expired or revoked")
        if _as_utc(session.expires_at) <= datetime.now(timezone.utc):
            raise Unauthenticated("Session expired or revoked")

        user = await self.storage.get_user(user_id)
        if user is None:
            logger.warning("Session references a missing user", user_id=user_id)
            raise PrincipalNotFound()
        if not user.is_active:
            logger.info("Rejected session of deactivated user", user_id=user_id)
            raise Unauthenticated("Account is deactivated")

        return Principal.from_user(user, session_id=session_id)

    async def authenticate(self, username: str, password: str) -> Optional[User]:
        """Return the active user matching the credentials, else None."""
        user = await self.storage.get_user_by_username(username)
        if user is None or not user.is_active:
            return None
        if not verify_password(password, user.hashed_password):
            return None
        return user

    async def open_session(
        self, user: User, expires_delta: Optional[timedelta] = None
    ) -> IssuedSession:
        expires_at = session_expiry(expires_delta)
        session = await self.storage.create_session(
            UserSession(id=new_session_id(), user_id=user.id, expires_at=expires_at)
        )
        user = await self.storage.update_user(
            user.id, {"last_login": datetime.now(timezone.utc)}
        ) or user

        token = create_access_token(
            subject=user.id,
            session_id=session.id,
            role=user.role,
            expires_at=expires_at,
        )
        logger.info("Session opened", user_id=user.id, role=user.role)
        return IssuedSession(
            token=token,
            expires_in=int((expires_at - datetime.now(timezone.utc)).total_seconds()),
            user=user,
        )

    async def close_session(self, principal: Principal) -> None:
        if principal.session_id is not None:
            await self.storage.delete_session(principal.session_id)
            logger.info("Session closed", user_id=principal.id)
