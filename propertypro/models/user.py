"""
models/user.py
--------------
User ORM model with roles and property binding, plus login sessions.

Role design:
  - 'IT':     Unrestricted. IT accounts are provisioned out of band only
              (create_tables.py --it-username), never through the API.
  - 'ADMIN':  Manages one property (property_id is required).
  - 'TENANT': Resident/owner account; owner_id links the owner or tenant
              record the account speaks for.

The hashed_password column stores bcrypt hashes only.
"""

from datetime import datetime, timezone
from enum import Enum as PyEnum
from typing import Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from propertypro.db.base import Base, TimestampMixin, generate_uuid


class UserRole(str, PyEnum):
    it = "IT"
    admin = "ADMIN"
    tenant = "TENANT"


class User(Base, TimestampMixin):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    username: Mapped[str] = mapped_column(
        String(150), unique=True, nullable=False, index=True
    )
    hashed_password: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(
        String(20), nullable=False, default=UserRole.tenant.value
    )
    email: Mapped[Optional[str]] = mapped_column(String(320), nullable=True)
    full_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    property_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("properties.id", ondelete="SET NULL"), nullable=True, index=True
    )
    # Owner or tenant record this account represents (TENANT role)
    owner_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    last_login: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_by: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)

    sessions: Mapped[list["UserSession"]] = relationship(
        "UserSession", back_populates="user", cascade="all, delete-orphan"
    )

    @property
    def display_name(self) -> str:
        return self.full_name or self.username

    def __repr__(self) -> str:
        return f"<User id={self.id} username={self.username} role={self.role}>"


class UserSession(Base):
    """
    Server-side half of a login. The bearer token names a session id; deleting
    the row (logout) invalidates the token even before it expires.
    """

    __tablename__ = "user_sessions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )

    user: Mapped["User"] = relationship("User", back_populates="sessions")

    def __repr__(self) -> str:
        return f"<UserSession user_id={self.user_id} expires_at={self.expires_at}>"
