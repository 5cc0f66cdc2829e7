"""Credential authority: device certificates and identity objects.

``CredentialAuthority`` is the contract the registration flow consumes.
``LocalCredentialAuthority`` fulfils it with a CA on local disk and its own
tables; it never shares a transaction with the ownership registry.
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Optional, Protocol, TypeVar

from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlmodel import Session, select

from buttonhub.config import iot_endpoint, receiver_policy_name, settings
from buttonhub.models.credential import (
    IdentityObject,
    IssuedCertificate,
    PolicyAttachment,
    ThingPrincipal,
)
from buttonhub.utils.pki import (
    CertificateAuthority,
    certificate_fingerprint,
    certificate_pem,
    generate_device_key,
    private_key_pem,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

CREDENTIAL_REF_PREFIX = "cert/"


class CredentialAuthorityError(Exception):
    pass


class AuthorityUnavailable(CredentialAuthorityError):
    """Transient; safe to retry the same step."""


class ResourceNotFound(CredentialAuthorityError):
    pass


@dataclass(frozen=True)
class CredentialMaterials:
    credential_ref: str
    certificate_pem: str
    private_key_pem: str


class RevokeOutcome(str, Enum):
    COMPLETE = "complete"
    PARTIAL = "partial"  # some resources were already detached or deleted


class CredentialAuthority(Protocol):
    def issue_credential(self) -> CredentialMaterials: ...

    def bind_identity_object(self, device_id: str, attributes: dict[str, str]) -> None: ...

    def authorize(self, credential_ref: str) -> None: ...

    def bind_credential_to_identity(self, device_id: str, credential_ref: str) -> None: ...

    def endpoint(self) -> str: ...

    def revoke(self, credential_ref: str, device_id: Optional[str]) -> RevokeOutcome: ...


def certificate_id(credential_ref: str) -> str:
    cert_id = credential_ref.rsplit("/", 1)[-1]
    if not credential_ref.startswith(CREDENTIAL_REF_PREFIX) or not cert_id:
        raise ResourceNotFound(f"Invalid credential reference: {credential_ref!r}")
    return cert_id


class LocalCredentialAuthority:
    def __init__(
        self,
        bind: Engine,
        ca: CertificateAuthority,
        endpoint: Optional[str] = None,
        policy_name: Optional[str] = None,
        validity_days: int = settings.certificate_validity_days,
    ):
        self._bind = bind
        self._ca = ca
        self._endpoint = endpoint or iot_endpoint()
        self._policy_name = policy_name or receiver_policy_name()
        self._validity_days = validity_days

    def _write(self, fn: Callable[[Session], T]) -> T:
        try:
            with Session(self._bind) as session:
                result = fn(session)
                session.commit()
                return result
        except OperationalError as e:
            raise AuthorityUnavailable(str(e)) from e
        except SQLAlchemyError as e:
            raise CredentialAuthorityError(str(e)) from e

    # --- Issuance ---

    def issue_credential(self) -> CredentialMaterials:
        key = generate_device_key()
        cert = self._ca.sign(key.public_key(), "ButtonHub Receiver", self._validity_days)
        cert_id = certificate_fingerprint(cert)
        pem = certificate_pem(cert)

        def store(session: Session) -> None:
            session.add(IssuedCertificate(certificate_id=cert_id, certificate_pem=pem))

        self._write(store)
        logger.info("Issued certificate %s", cert_id)
        return CredentialMaterials(
            credential_ref=f"{CREDENTIAL_REF_PREFIX}{cert_id}",
            certificate_pem=pem,
            private_key_pem=private_key_pem(key),
        )

    def bind_identity_object(self, device_id: str, attributes: dict[str, str]) -> None:
        encoded = json.dumps(attributes, sort_keys=True)

        def upsert(session: Session) -> None:
            thing = session.get(IdentityObject, device_id)
            if thing is None:
                session.add(IdentityObject(thing_name=device_id, attributes=encoded))
            else:
                thing.attributes = encoded
                thing.updated_at = datetime.now(timezone.utc)
                session.add(thing)

        self._write(upsert)

    def authorize(self, credential_ref: str) -> None:
        cert_id = certificate_id(credential_ref)

        def attach(session: Session) -> None:
            cert = session.get(IssuedCertificate, cert_id)
            if cert is None or cert.status != "ACTIVE":
                raise ResourceNotFound(f"No active certificate {cert_id}")
            key = {"policy_name": self._policy_name, "target": credential_ref}
            if session.get(PolicyAttachment, key) is None:
                session.add(PolicyAttachment(**key))

        self._write(attach)

    def bind_credential_to_identity(self, device_id: str, credential_ref: str) -> None:
        cert_id = certificate_id(credential_ref)

        def attach(session: Session) -> None:
            if session.get(IdentityObject, device_id) is None:
                raise ResourceNotFound(f"No identity object {device_id}")
            if session.get(IssuedCertificate, cert_id) is None:
                raise ResourceNotFound(f"No certificate {cert_id}")
            key = {"thing_name": device_id, "principal": credential_ref}
            if session.get(ThingPrincipal, key) is None:
                session.add(ThingPrincipal(**key))

        self._write(attach)

    def endpoint(self) -> str:
        return self._endpoint

    # --- Revocation ---

    def revoke(self, credential_ref: str, device_id: Optional[str]) -> RevokeOutcome:
        """Detach, unbind, deactivate and delete a credential.

        Resources that are already gone are skipped and the outcome is
        PARTIAL; any other failure propagates.
        """
        cert_id = certificate_id(credential_ref)
        skipped: list[str] = []

        def tolerate(step: str, fn: Callable[[Session], Any]) -> None:
            try:
                self._write(fn)
            except ResourceNotFound as e:
                logger.warning("Revoke %s: %s skipped (%s)", credential_ref, step, e)
                skipped.append(step)

        def detach_policy(session: Session) -> None:
            attachment = session.get(
                PolicyAttachment, {"policy_name": self._policy_name, "target": credential_ref}
            )
            if attachment is None:
                raise ResourceNotFound("policy already detached")
            session.delete(attachment)

        def detach_principal(session: Session) -> None:
            principal = session.get(ThingPrincipal, {"thing_name": device_id, "principal": credential_ref})
            if principal is None:
                raise ResourceNotFound("principal already detached")
            session.delete(principal)

        def delete_identity(session: Session) -> None:
            thing = session.get(IdentityObject, device_id)
            if thing is None:
                raise ResourceNotFound("identity object already deleted")
            remaining = session.exec(
                select(ThingPrincipal).where(ThingPrincipal.thing_name == device_id)
            ).first()
            # still bound to the device's current credential
            if remaining is None:
                session.delete(thing)

        def deactivate(session: Session) -> None:
            cert = session.get(IssuedCertificate, cert_id)
            if cert is None:
                raise ResourceNotFound("certificate already deleted")
            cert.status = "INACTIVE"
            session.add(cert)

        def delete_certificate(session: Session) -> None:
            cert = session.get(IssuedCertificate, cert_id)
            if cert is None:
                raise ResourceNotFound("certificate already deleted")
            session.delete(cert)

        tolerate("detach_policy", detach_policy)
        if device_id:
            tolerate("detach_principal", detach_principal)
            tolerate("delete_identity", delete_identity)
        tolerate("deactivate", deactivate)
        tolerate("delete_certificate", delete_certificate)

        outcome = RevokeOutcome.PARTIAL if skipped else RevokeOutcome.COMPLETE
        logger.info("Revoked %s (%s)", credential_ref, outcome.value)
        return outcome

    # --- Inspection ---

    def is_authorized(self, credential_ref: str) -> bool:
        """True while the credential exists, is active and has the policy."""
        cert_id = certificate_id(credential_ref)
        with Session(self._bind) as session:
            cert = session.get(IssuedCertificate, cert_id)
            attachment = session.get(
                PolicyAttachment, {"policy_name": self._policy_name, "target": credential_ref}
            )
            return cert is not None and cert.status == "ACTIVE" and attachment is not None
