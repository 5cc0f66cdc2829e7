"""Common API dependencies: caller subject, request id, collaborators."""

import logging
import secrets
from functools import lru_cache
from typing import Optional

import jwt
from fastapi import Depends, Header, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from buttonhub.config import settings
from buttonhub.database import engine
from buttonhub.services.compensator import CleanupCompensator
from buttonhub.services.credential_authority import LocalCredentialAuthority
from buttonhub.services.registration_service import RegistrationCoordinator
from buttonhub.services.registry import SqlOwnershipRegistry
from buttonhub.utils.pki import CertificateAuthority
from buttonhub.utils.security import decode_token

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def get_caller_subject(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Optional[str]:
    """Subject of the verified bearer token, or None.

    Missing or bad tokens are not rejected here; registration validates its
    fields first and then reports the auth failure itself.
    """
    if credentials is None:
        return None
    try:
        payload = decode_token(credentials.credentials)
    except jwt.PyJWTError as e:
        logger.info("Rejected bearer token: %s", e)
        return None
    if payload.get("token_use") != "access":
        logger.info("Rejected bearer token of type %r", payload.get("token_use"))
        return None
    return payload.get("sub") or None


def require_internal_token(x_internal_token: Optional[str] = Header(default=None)) -> None:
    """Guard for endpoints fed by the device event pipeline, not by users."""
    if not x_internal_token or not secrets.compare_digest(x_internal_token, settings.internal_api_token):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Internal token required",
        )


def get_request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "unknown")


@lru_cache(maxsize=1)
def get_registry() -> SqlOwnershipRegistry:
    return SqlOwnershipRegistry(engine)


@lru_cache(maxsize=1)
def get_authority() -> LocalCredentialAuthority:
    return LocalCredentialAuthority(engine, CertificateAuthority.load_or_create(settings.ca_dir))


@lru_cache(maxsize=1)
def get_compensator() -> CleanupCompensator:
    return CleanupCompensator(get_authority())


def get_coordinator() -> RegistrationCoordinator:
    return RegistrationCoordinator(get_registry(), get_authority(), get_compensator())
