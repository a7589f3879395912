"""
schemas/communication.py
------------------------
Pydantic models for communication threads.

Naming convention:
  CommunicationCreate → opens a new thread
  ReplyCreate         → appends to an existing thread
  ThreadSummary       → list view row (no messages)
  ThreadDetail        → one thread with its ordered messages
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from propertypro.models.communication import CommunicationCategory, CommunicationStatus


class CommunicationCreate(BaseModel):
    subject: str = Field(..., min_length=1, max_length=255)
    message: str = Field(..., min_length=1, max_length=8000)
    category: CommunicationCategory = CommunicationCategory.general
    status: CommunicationStatus = CommunicationStatus.open
    attachments: list[str] = Field(default_factory=list)
    property_id: Optional[str] = Field(
        None, description="Only honoured for IT senders; others use their own property"
    )


class ReplyCreate(BaseModel):
    message: str = Field(..., min_length=1, max_length=8000)
    status: Optional[CommunicationStatus] = None
    attachments: list[str] = Field(default_factory=list)


class CommunicationUpdate(BaseModel):
    status: Optional[CommunicationStatus] = None
    subject: Optional[str] = Field(None, min_length=1, max_length=255)
    category: Optional[CommunicationCategory] = None


class CommunicationRead(BaseModel):
    id: str
    thread_id: str
    sender_id: str
    sender_name: str
    sender_role: str
    subject: Optional[str] = None
    message: str
    category: Optional[str] = None
    status: str
    property_id: Optional[str] = None
    attachments: list[str] = []
    created_at: datetime

    model_config = {"from_attributes": True}


class ThreadSummary(BaseModel):
    id: str  # root message id
    thread_id: str
    subject: Optional[str] = None
    category: Optional[str] = None
    status: str
    property_id: Optional[str] = None
    root: CommunicationRead
    message_count: int
    last_activity_at: datetime

    @classmethod
    def from_thread(cls, thread) -> "ThreadSummary":
        return cls(
            id=thread.root.id,
            thread_id=thread.thread_id,
            subject=thread.subject,
            category=thread.category,
            status=thread.status,
            property_id=thread.property_id,
            root=CommunicationRead.model_validate(thread.root),
            message_count=len(thread.messages),
            last_activity_at=thread.last_activity_at,
        )


class ThreadDetail(ThreadSummary):
    messages: list[CommunicationRead]

    @classmethod
    def from_thread(cls, thread) -> "ThreadDetail":
        summary = ThreadSummary.from_thread(thread)
        return cls(
            **summary.model_dump(),
            messages=[CommunicationRead.model_validate(m) for m in thread.messages],
        )
