"""Device identity and settings models."""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Index, text
from sqlmodel import Field, SQLModel

from buttonhub.config import table_name

DEVICES_TABLE = table_name("devices")


class DeviceIdentity(SQLModel, table=True):
    __tablename__ = DEVICES_TABLE
    __table_args__ = (
        # at most one active identity per serial number
        Index(
            f"ix_{DEVICES_TABLE}_active_serial",
            "serial_number",
            unique=True,
            sqlite_where=text("is_active = 1"),
        ),
    )

    device_id: str = Field(primary_key=True)
    device_instance_id: str  # rotated by firmware on every factory reset
    serial_number: str = Field(index=True)
    mac_address: str
    device_name: str
    owner_user_id: str = Field(index=True)
    credential_ref: Optional[str] = None
    identity_ref: Optional[str] = None  # authority-side identity object name
    firmware_version: Optional[str] = None
    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    last_reset_at: Optional[datetime] = None


class DeviceSettings(SQLModel, table=True):
    __tablename__ = table_name("device_settings")

    device_id: str = Field(primary_key=True)
    sound_enabled: bool = Field(default=True)
    sound_volume: int = Field(default=5)  # 1-10
    led_brightness: int = Field(default=5)  # 1-10
    notification_cooldown: int = Field(default=30)  # seconds, 0-300
    quiet_hours_enabled: bool = Field(default=False)
    quiet_hours_start: str = Field(default="22:00")  # HH:MM
    quiet_hours_end: str = Field(default="07:00")  # HH:MM
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
