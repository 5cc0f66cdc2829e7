"""Device registration request/response schemas."""

import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, Field, ValidationInfo, field_validator

from buttonhub.services.reset_validator import DeviceState

# Patterns are compiled by pydantic-core, where ``$`` only matches at the end of input
DEVICE_ID_PATTERN = r"^[a-zA-Z0-9\-_]+$"
DEVICE_NAME_PATTERN = r"^[a-zA-Z0-9\s\-_.]+$"
SERIAL_NUMBER_PATTERN = r"^[A-Z0-9][A-Z0-9\-]*$"
MAC_ADDRESS_PATTERN = r"^([0-9A-Fa-f]{2}[:-]){5}([0-9A-Fa-f]{2})$"


class DeviceRegistrationRequest(BaseModel):
    device_id: str = Field(min_length=1, max_length=64, pattern=DEVICE_ID_PATTERN)
    device_instance_id: str  # canonical lowercase UUID
    device_name: str = Field(min_length=1, max_length=50, pattern=DEVICE_NAME_PATTERN)
    serial_number: str = Field(min_length=1, max_length=50, pattern=SERIAL_NUMBER_PATTERN)
    mac_address: str = Field(pattern=MAC_ADDRESS_PATTERN)
    device_state: DeviceState
    # must follow device_state: its validator reads the validated state
    reset_timestamp: Optional[datetime] = Field(default=None, validate_default=True)

    @field_validator("device_instance_id")
    @classmethod
    def _canonical_uuid(cls, value: str) -> str:
        try:
            return str(uuid.UUID(value))
        except ValueError:
            raise ValueError("device_instance_id must be a UUID") from None

    @field_validator("mac_address")
    @classmethod
    def _normalize_mac(cls, value: str) -> str:
        return value.upper().replace("-", ":")

    @field_validator("reset_timestamp", mode="before")
    @classmethod
    def _only_for_factory_reset(cls, value: Any, info: ValidationInfo) -> Any:
        if info.data.get("device_state") is not DeviceState.FACTORY_RESET:
            return None
        if value is None or value == "":
            raise ValueError("reset_timestamp is required for a factory reset")
        return value

    @field_validator("reset_timestamp")
    @classmethod
    def _assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class CertificateBundle(BaseModel):
    device_certificate: str
    private_key: str  # returned once, never retrievable again
    iot_endpoint: str


class DeviceRegistrationResponse(BaseModel):
    device_id: str
    device_instance_id: str
    device_name: str
    serial_number: str
    mac_address: str
    owner_id: str
    registered_at: str
    last_reset_at: Optional[str]
    status: str = "active"
    ownership_transferred: bool
    certificates: CertificateBundle


class RegistrationEnvelope(BaseModel):
    data: DeviceRegistrationResponse
    request_id: str
