"""User and ownership grant models."""

import secrets
from datetime import datetime, timezone
from typing import Optional

from sqlmodel import Field, SQLModel

from buttonhub.config import table_name


class User(SQLModel, table=True):
    __tablename__ = table_name("users")

    user_id: str = Field(default_factory=lambda: f"usr_{secrets.token_hex(4)}", primary_key=True)
    subject: str = Field(unique=True, index=True)  # verified token subject
    email: str = Field(index=True)
    full_name: str = ""
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class OwnershipGrant(SQLModel, table=True):
    __tablename__ = table_name("device_users")

    device_id: str = Field(primary_key=True)
    user_id: str = Field(primary_key=True, index=True)
    notifications_permission: bool = Field(default=True)
    settings_permission: bool = Field(default=False)
    notifications_enabled: bool = Field(default=True)
    device_nickname: Optional[str] = None
    invited_by: str
    invited_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    accepted_at: Optional[datetime] = None
    is_active: bool = Field(default=True)
