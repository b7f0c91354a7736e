"""User and UserSettings entities - accounts owned by the auth layer."""

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, Column, DateTime
from sqlmodel import Field, SQLModel

from flockcount.core.timezone import utcnow_aware


class User(SQLModel, table=True):
    """User account. Password hashing and sessions are handled by the auth layer."""

    __tablename__ = "users"  # type: ignore[assignment]

    id: Optional[int] = Field(default=None, primary_key=True)
    username: str = Field(unique=True, index=True)
    password: str  # Opaque hash produced by the auth layer
    role: str = Field(default="user")
    email: Optional[str] = Field(default=None)
    created_at: Optional[datetime] = Field(default_factory=utcnow_aware, sa_column=Column(DateTime(timezone=True)))
    last_login_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    is_active: bool = Field(default=True)


class UserSettings(SQLModel, table=True):
    """Per-user preferences (one row per user)."""

    __tablename__ = "user_settings"  # type: ignore[assignment]

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(index=True)
    openai_api_key: Optional[str] = Field(default=None)
    theme: str = Field(default="light")
    notifications_enabled: bool = Field(default=True)
    preferences: dict = Field(default_factory=dict, sa_column=Column(JSON))
    updated_at: Optional[datetime] = Field(default_factory=utcnow_aware, sa_column=Column(DateTime(timezone=True)))
