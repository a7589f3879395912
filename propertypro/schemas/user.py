"""
schemas/user.py
---------------
Pydantic models for login, sessions and user management.

Security note:
  - hashed_password is NEVER included in any response schema.
  - role and property_id are validated against the caller's scope in the
    service layer, not here.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

from propertypro.models.user import UserRole


class LoginRequest(BaseModel):
    username: str = Field(..., min_length=1, max_length=150)
    password: str = Field(..., min_length=1, max_length=128)


class UserCreate(BaseModel):
    """Used by IT/ADMIN to create an account."""
    username: str = Field(..., min_length=3, max_length=150)
    password: str = Field(..., min_length=8, max_length=128)
    role: UserRole = UserRole.tenant
    email: Optional[EmailStr] = None
    full_name: Optional[str] = Field(None, max_length=255)
    property_id: Optional[str] = None
    owner_id: Optional[str] = Field(
        None, description="Owner/tenant record this account represents"
    )

    @field_validator("username")
    @classmethod
    def strip_username(cls, v: str) -> str:
        return v.strip()


class UserUpdate(BaseModel):
    email: Optional[EmailStr] = None
    full_name: Optional[str] = Field(None, max_length=255)
    password: Optional[str] = Field(None, min_length=8, max_length=128)
    role: Optional[UserRole] = None
    property_id: Optional[str] = None
    owner_id: Optional[str] = None
    is_active: Optional[bool] = None


class UserRead(BaseModel):
    id: str
    username: str
    role: str
    email: Optional[str] = None
    full_name: Optional[str] = None
    property_id: Optional[str] = None
    owner_id: Optional[str] = None
    is_active: bool
    last_login: Optional[datetime] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int  # seconds
    user: UserRead
