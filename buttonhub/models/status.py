"""Device status snapshot model."""

from datetime import datetime, timezone
from typing import Optional

from sqlmodel import Field, SQLModel

from buttonhub.config import table_name

STATUS_TYPES = ("CURRENT", "HEALTH", "CONNECTIVITY")


class DeviceStatusRecord(SQLModel, table=True):
    __tablename__ = table_name("device_status")

    device_id: str = Field(primary_key=True)
    status_type: str = Field(primary_key=True)  # one of STATUS_TYPES
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    is_online: bool = Field(default=False)
    signal_strength: int = 0
    memory_usage: Optional[int] = None
    cpu_temperature: Optional[float] = None
    uptime: Optional[int] = None
    error_count: Optional[int] = None
    last_error_message: Optional[str] = None
    firmware_version: Optional[str] = None
