"""Registration error taxonomy.

Every failure a caller can observe is a ``RegistrationError`` carrying a
closed ``ErrorKind``. The API layer maps kinds to HTTP statuses; nothing
inspects message text.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional


class ErrorKind(str, Enum):
    VALIDATION = "validation_failed"
    AUTH = "unauthorized"
    CONFLICT = "conflict"
    CREDENTIAL_ISSUANCE = "credential_issuance_failed"
    PERSISTENCE = "persistence_failed"


class ConflictReason(str, Enum):
    NO_RESET_PROOF = "no_reset_proof"
    REGISTRATION_WITHOUT_RESET_PROOF = "registration_without_reset_proof"
    CONCURRENT_REGISTRATION = "concurrent_registration"
    DEVICE_ID_IN_USE = "device_id_in_use"


@dataclass(frozen=True)
class FieldError:
    field: str
    message: str


@dataclass(frozen=True)
class Remediation:
    steps: tuple[str, ...]
    support_reference: str

    def to_dict(self) -> dict:
        return {"steps": list(self.steps), "support_reference": self.support_reference}


class RegistrationError(Exception):
    """Base class. ``kind`` is fixed per subclass."""

    kind: ErrorKind

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def payload(self) -> dict[str, Any]:
        """Structured fields added to the error body."""
        return {}


class RegistrationValidationError(RegistrationError):
    kind = ErrorKind.VALIDATION

    def __init__(self, errors: list[FieldError]):
        fields = ", ".join(e.field for e in errors)
        super().__init__(f"Invalid fields: {fields}")
        self.errors = errors

    def payload(self) -> dict[str, Any]:
        return {"validation_errors": [{"field": e.field, "message": e.message} for e in self.errors]}


class AuthError(RegistrationError):
    kind = ErrorKind.AUTH


class ConflictError(RegistrationError):
    kind = ErrorKind.CONFLICT

    def __init__(self, message: str, reason: ConflictReason, remediation: Remediation):
        super().__init__(message)
        self.reason = reason
        self.remediation = remediation

    def payload(self) -> dict[str, Any]:
        return {"reason": self.reason.value, "remediation": self.remediation.to_dict()}


class CredentialIssuanceError(RegistrationError):
    kind = ErrorKind.CREDENTIAL_ISSUANCE

    def __init__(self, message: str, step: str):
        super().__init__(message)
        self.step = step


class PersistenceError(RegistrationError):
    kind = ErrorKind.PERSISTENCE

    def __init__(self, message: str, credential_revoked: bool):
        super().__init__(message)
        self.credential_revoked = credential_revoked


@dataclass(frozen=True)
class CleanupWarning:
    """Non-fatal: the registration is durable but an old credential survived."""

    device_id: str
    credential_ref: str
    detail: str
    alert_id: Optional[str] = None
