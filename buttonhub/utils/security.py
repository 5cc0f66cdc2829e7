"""Security utilities: bearer token decoding and issuing."""

from datetime import datetime, timedelta, timezone

import jwt

from buttonhub.config import settings


def create_access_token(subject: str, email: str = "", expires_minutes: int = 60) -> str:
    """Issue an access token the way the upstream identity provider does."""
    expire = datetime.now(timezone.utc) + timedelta(minutes=expires_minutes)
    payload = {
        "sub": subject,
        "email": email,
        "exp": expire,
        "token_use": "access",
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> dict:
    """Decode and validate a JWT token. Raises jwt.PyJWTError on failure."""
    return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
