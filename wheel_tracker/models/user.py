"""
User models: User, RefreshToken
"""

from sqlmodel import SQLModel, Field
from pydantic import field_validator
from typing import Optional
from datetime import datetime
from uuid import UUID, uuid4

from wheel_tracker.models.common import CamelModel, utcnow


# ============================================================================
# USER MODEL
# ============================================================================

class User(SQLModel, table=True):
    """Account and profile record"""

    __tablename__ = "users"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    email: Optional[str] = Field(default=None, unique=True, index=True, max_length=255)
    username: str = Field(unique=True, index=True, max_length=50)
    password_hash: str = Field(max_length=255)

    first_name: Optional[str] = Field(default=None, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)
    bio: Optional[str] = Field(default=None, max_length=500)
    avatar_url: Optional[str] = None

    is_admin: bool = Field(default=False)

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    last_login: Optional[datetime] = None


# ============================================================================
# REFRESH TOKEN MODEL
# ============================================================================

class RefreshToken(SQLModel, table=True):
    """JWT refresh tokens for session management"""

    __tablename__ = "refresh_tokens"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: UUID = Field(foreign_key="users.id", ondelete="CASCADE", index=True)
    token: str = Field(unique=True, max_length=500)
    expires_at: datetime
    revoked: bool = Field(default=False)
    created_at: datetime = Field(default_factory=utcnow)


# ============================================================================
# REQUEST/RESPONSE MODELS
# ============================================================================

class UserSignup(CamelModel):
    """Signup request"""
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    email: str = Field(min_length=3, max_length=255)
    username: str = Field(min_length=1, max_length=50)
    password: str = Field(min_length=1, max_length=100)


class UserLogin(CamelModel):
    """Login request"""
    username: str = Field(min_length=1, max_length=50)
    password: str = Field(min_length=1, max_length=128)


class UserResponse(CamelModel):
    """User response (without sensitive data)"""
    id: UUID
    username: str
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    bio: Optional[str] = None
    avatar_url: Optional[str] = None
    is_admin: bool
    created_at: datetime


class ProfileUpdate(CamelModel):
    """Profile update request; every field optional"""
    first_name: Optional[str] = Field(default=None, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)
    avatar_url: Optional[str] = None
    email: Optional[str] = Field(default=None, max_length=255)
    bio: Optional[str] = Field(default=None, max_length=500)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.strip().lower()
        if not v:
            raise ValueError("Email cannot be blank")
        return v


class ProfileResponse(CamelModel):
    id: UUID
    username: str
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    avatar_url: Optional[str] = None
    bio: Optional[str] = None


class PasswordChange(CamelModel):
    current_password: str
    new_password: str


class TokenResponse(CamelModel):
    """JWT token response"""
    access_token: str
    token_type: str = "bearer"
    expires_in: int  # seconds
