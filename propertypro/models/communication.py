"""
models/communication.py
-----------------------
Communication (message) rows.

A thread is every row sharing thread_id; the earliest row is the root and is
authoritative for subject, category and property. status is a thread-level
value denormalised onto every row, so a status change must be fanned out to
the whole thread (services/thread_service.py).

row_seq is a database-assigned insertion sequence. Rows written in one
transaction share created_at, and row_seq keeps root selection deterministic.
"""

from enum import Enum as PyEnum
from typing import Optional

from sqlalchemy import JSON, BigInteger, Identity, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from propertypro.db.base import Base, TimestampMixin, generate_uuid


class CommunicationStatus(str, PyEnum):
    open = "open"
    pending = "pending"
    resolved = "resolved"


class CommunicationCategory(str, PyEnum):
    inquiry = "inquiry"
    billing = "billing"
    maintenance = "maintenance"
    bug = "bug"
    general = "general"


class Communication(Base, TimestampMixin):
    __tablename__ = "communications"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    row_seq: Mapped[int] = mapped_column(
        BigInteger, Identity(always=False), unique=True, nullable=False
    )
    thread_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    # Owner/tenant record id for TENANT senders, user id for IT/ADMIN senders
    sender_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    sender_name: Mapped[str] = mapped_column(String(255), nullable=False)
    sender_role: Mapped[str] = mapped_column(String(20), nullable=False)

    subject: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=CommunicationStatus.open.value, index=True
    )
    # Copied from the thread root so property-scoped reads need no join
    property_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)
    attachments: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)

    def __repr__(self) -> str:
        return f"<Communication id={self.id} thread_id={self.thread_id}>"
