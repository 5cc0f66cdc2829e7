"""Response envelopes and error mapping shared by all endpoints."""

from typing import Any

from fastapi import status

from buttonhub.services.errors import ErrorKind, RegistrationError

ERROR_STATUS = {
    ErrorKind.VALIDATION: status.HTTP_400_BAD_REQUEST,
    ErrorKind.AUTH: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.CONFLICT: status.HTTP_409_CONFLICT,
    ErrorKind.CREDENTIAL_ISSUANCE: status.HTTP_500_INTERNAL_SERVER_ERROR,
    ErrorKind.PERSISTENCE: status.HTTP_500_INTERNAL_SERVER_ERROR,
}

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
    "X-API-Version": "1.0",
}


def success_body(data: Any, request_id: str) -> dict:
    return {"data": data, "request_id": request_id}


def error_body(error: RegistrationError, request_id: str) -> dict:
    return {
        "error": error.kind.value,
        "message": error.message,
        "request_id": request_id,
        **error.payload(),
    }
