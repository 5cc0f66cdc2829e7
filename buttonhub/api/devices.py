"""Device registration API endpoint."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, status

from buttonhub.api.deps import get_caller_subject, get_coordinator, get_request_id
from buttonhub.api.responses import success_body
from buttonhub.schemas.registration import (
    CertificateBundle,
    DeviceRegistrationRequest,
    DeviceRegistrationResponse,
    RegistrationEnvelope,
)
from buttonhub.services.registration_service import RegistrationCoordinator, RegistrationResult

logger = logging.getLogger(__name__)

router = APIRouter(tags=["devices"])


def _to_response(result: RegistrationResult) -> DeviceRegistrationResponse:
    device = result.device
    return DeviceRegistrationResponse(
        device_id=device.device_id,
        device_instance_id=device.device_instance_id,
        device_name=device.device_name,
        serial_number=device.serial_number,
        mac_address=device.mac_address,
        owner_id=device.owner_user_id,
        registered_at=result.registered_at.isoformat(),
        last_reset_at=device.last_reset_at.isoformat() if device.last_reset_at else None,
        ownership_transferred=result.ownership_transferred,
        certificates=CertificateBundle(
            device_certificate=result.credentials.certificate_pem,
            private_key=result.credentials.private_key_pem,
            iot_endpoint=result.endpoint,
        ),
    )


@router.post(
    "/devices/register",
    response_model=RegistrationEnvelope,
    status_code=status.HTTP_201_CREATED,
)
def register_device(
    payload: DeviceRegistrationRequest,
    subject: Optional[str] = Depends(get_caller_subject),
    request_id: str = Depends(get_request_id),
    coordinator: RegistrationCoordinator = Depends(get_coordinator),
):
    """Register a receiver, or transfer it to the caller after a factory reset.

    Field validation runs before authentication so every offending field is
    reported even for anonymous callers.
    """
    result = coordinator.register(payload, subject)
    return success_body(_to_response(result), request_id)
