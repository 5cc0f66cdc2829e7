"""Invitation model."""

import secrets
from datetime import datetime, timezone
from typing import Optional

from sqlmodel import Field, SQLModel

from buttonhub.config import table_name


class Invitation(SQLModel, table=True):
    __tablename__ = table_name("invitations")

    invitation_id: str = Field(default_factory=lambda: f"inv_{secrets.token_hex(4)}", primary_key=True)
    device_id: str = Field(index=True)
    invited_email: str = Field(index=True)
    invited_by: str
    invitation_token: str = Field(default_factory=lambda: secrets.token_urlsafe(24), unique=True)
    expires_at: datetime
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    accepted_at: Optional[datetime] = None
    is_accepted: bool = Field(default=False)
