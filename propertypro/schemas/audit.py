"""
schemas/audit.py
----------------
Pydantic models for the audit log views.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field


class AuditLogRead(BaseModel):
    id: str
    user_id: Optional[str] = None
    user_name: str = "System"
    action: str
    entity_type: str
    entity_id: Optional[str] = None
    old_values: Optional[Any] = None
    new_values: Optional[Any] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    metadata: Optional[dict] = Field(None, validation_alias="request_metadata")
    created_at: datetime

    model_config = {"from_attributes": True, "populate_by_name": True}


class AuditLogListResponse(BaseModel):
    total: int
    items: list[AuditLogRead]


class UserActionCountRead(BaseModel):
    user_id: Optional[str] = None
    user_name: str
    count: int

    model_config = {"from_attributes": True}


class AuditLogStatsResponse(BaseModel):
    total_actions: int
    actions_by_type: dict[str, int]
    actions_by_user: list[UserActionCountRead]
    recent_actions: list[AuditLogRead]
