"""Device registration and ownership transfer.

Flow: validate -> resolve caller -> classify against the registry ->
issue credentials -> build one registry transaction -> commit ->
revoke the previous owner's credential after a transfer.

The credential authority and the registry share no transaction. Until
the commit every failure leaves no durable trace (a freshly issued
credential is revoked); after the commit the registration stands and
cleanup problems are reported as warnings plus operator alerts.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Optional

from buttonhub.config import settings
from buttonhub.models.device import DeviceIdentity, DeviceSettings
from buttonhub.models.invite import Invitation
from buttonhub.models.status import DeviceStatusRecord
from buttonhub.models.user import OwnershipGrant, User
from buttonhub.schemas.registration import DeviceRegistrationRequest
from buttonhub.services.compensator import CleanupCompensator
from buttonhub.services.credential_authority import (
    AuthorityUnavailable,
    CredentialAuthority,
    CredentialAuthorityError,
    CredentialMaterials,
)
from buttonhub.services.errors import (
    AuthError,
    CleanupWarning,
    ConflictError,
    ConflictReason,
    CredentialIssuanceError,
    PersistenceError,
    RegistrationError,
    Remediation,
)
from buttonhub.services.registry import OwnershipRegistry, RegistryError, TransactionCanceled
from buttonhub.services.reset_validator import Decision, DecisionKind, classify
from buttonhub.services.transaction import Condition, Transaction
from buttonhub.services.validation import validate_registration
from buttonhub.utils.retry import create_authority_retry_policy

logger = logging.getLogger(__name__)

CONCURRENT_REGISTRATION_STEPS = (
    "Another registration for this receiver completed at the same time.",
    "Retry the registration from the app.",
)

DEVICE_ID_IN_USE_STEPS = (
    "The device identifier sent by the receiver belongs to another registered receiver.",
    "Factory reset the receiver so it generates its identity again, then retry.",
)


def identity_attributes(
    serial_number: str, mac_address: str, owner_user_id: str, device_instance_id: str
) -> dict[str, str]:
    """Attributes stored on the authority-side identity object."""
    return {
        "serial_number": serial_number,
        "mac_address": mac_address,
        "owner_user_id": owner_user_id,
        "device_instance_id": device_instance_id,
    }


class RegistrationState(str, Enum):
    VALIDATING = "validating"
    CLASSIFYING = "classifying"
    ISSUING_CREDENTIAL = "issuing_credential"
    BUILDING_TRANSACTION = "building_transaction"
    COMMITTING = "committing"
    POST_COMMIT_CLEANUP = "post_commit_cleanup"
    DONE = "done"
    ABORTED = "aborted"
    COMMITTED_WITH_CLEANUP_WARNING = "committed_with_cleanup_warning"


@dataclass
class RegistrationProgress:
    """State of one registration attempt."""

    serial_number: str = ""
    state: RegistrationState = RegistrationState.VALIDATING
    history: list[RegistrationState] = field(default_factory=lambda: [RegistrationState.VALIDATING])

    def advance(self, state: RegistrationState) -> None:
        logger.debug("Registration %s: %s -> %s", self.serial_number or "?", self.state.value, state.value)
        self.state = state
        self.history.append(state)


@dataclass
class RegistrationResult:
    device: DeviceIdentity
    credentials: CredentialMaterials
    endpoint: str
    ownership_transferred: bool
    registered_at: datetime
    state: RegistrationState
    warnings: list[CleanupWarning] = field(default_factory=list)


@dataclass
class _Tenancy:
    grants: list[OwnershipGrant]
    invitations: list[Invitation]
    statuses: list[DeviceStatusRecord]


class RegistrationCoordinator:
    def __init__(
        self,
        registry: OwnershipRegistry,
        authority: CredentialAuthority,
        compensator: CleanupCompensator,
        classifier: Callable[..., Decision] = classify,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
        retry_policy=None,
        enumeration_workers: int = settings.enumeration_workers,
    ):
        self._registry = registry
        self._authority = authority
        self._compensator = compensator
        self._classify = classifier
        self._clock = clock
        self._retry = retry_policy or create_authority_retry_policy(AuthorityUnavailable)
        self._workers = max(1, enumeration_workers)

    def register(self, payload: Any, caller_subject: Optional[str]) -> RegistrationResult:
        progress = RegistrationProgress()
        try:
            request = validate_registration(payload)
            progress.serial_number = request.serial_number
            user = self._resolve_caller(caller_subject)

            progress.advance(RegistrationState.CLASSIFYING)
            existing = self._read(self._registry.get_device_by_serial, request.serial_number)
            decision = self._classify(existing, request.device_instance_id, request.device_state)
            if not decision.approved:
                logger.info(
                    "Registration of %s rejected: %s", request.serial_number, decision.reason.value
                )
                raise ConflictError(decision.message, decision.reason, decision.remediation)
            if existing is None:
                self._check_device_id_free(request)

            progress.advance(RegistrationState.ISSUING_CREDENTIAL)
            device_id = existing.device_id if existing else request.device_id
            materials, endpoint = self._issue_credentials(device_id, request, user, existing)
        except RegistrationError:
            progress.advance(RegistrationState.ABORTED)
            raise

        transferred = decision.kind is DecisionKind.OWNERSHIP_TRANSFER
        now = self._clock()

        progress.advance(RegistrationState.BUILDING_TRANSACTION)
        try:
            transaction, identity = self._build_transaction(request, user, existing, materials, now)
        except RegistryError as e:
            progress.advance(RegistrationState.ABORTED)
            cleanup = self._compensate(materials, device_id, existing)
            raise PersistenceError(
                f"Could not read previous tenancy: {e}", credential_revoked=cleanup
            ) from e

        progress.advance(RegistrationState.COMMITTING)
        try:
            self._registry.transact_write(transaction)
        except RegistryError as e:
            logger.error("Registration transaction for %s failed: %s", device_id, e)
            progress.advance(RegistrationState.ABORTED)
            cleanup = self._compensate(materials, device_id, existing)
            if isinstance(e, TransactionCanceled) and e.condition_failed:
                raise ConflictError(
                    "Device registration changed concurrently",
                    ConflictReason.CONCURRENT_REGISTRATION,
                    Remediation(CONCURRENT_REGISTRATION_STEPS, settings.support_reference),
                ) from e
            raise PersistenceError("Failed to save device registration", credential_revoked=cleanup) from e

        warnings: list[CleanupWarning] = []
        if transferred and existing.credential_ref:
            progress.advance(RegistrationState.POST_COMMIT_CLEANUP)
            result = self._compensator.revoke_best_effort(
                existing.credential_ref,
                existing.identity_ref or existing.device_id,
                event="previous_credential_revocation_failed",
            )
            if not result.success:
                warnings.append(
                    CleanupWarning(
                        device_id=device_id,
                        credential_ref=existing.credential_ref,
                        detail=result.alert.detail if result.alert else "revocation failed",
                        alert_id=result.alert.alert_id if result.alert else None,
                    )
                )

        progress.advance(
            RegistrationState.COMMITTED_WITH_CLEANUP_WARNING if warnings else RegistrationState.DONE
        )
        logger.info(
            "Device %s registered to %s (transferred=%s)", device_id, user.user_id, transferred
        )
        return RegistrationResult(
            device=identity,
            credentials=materials,
            endpoint=endpoint,
            ownership_transferred=transferred,
            registered_at=now,
            state=progress.state,
            warnings=warnings,
        )

    # --- Steps ---

    def _read(self, fn, *args):
        try:
            return fn(*args)
        except RegistryError as e:
            raise PersistenceError(f"Registry unavailable: {e}", credential_revoked=False) from e

    def _resolve_caller(self, subject: Optional[str]) -> User:
        if not subject:
            raise AuthError("Valid authentication token required")
        user = self._read(self._registry.get_user_by_subject, subject)
        if user is None:
            raise AuthError("User not found")
        return user

    def _check_device_id_free(self, request: DeviceRegistrationRequest) -> None:
        """A new serial may not claim the identifier of another device."""
        taken = self._read(self._registry.get_device, request.device_id)
        if taken is not None:
            logger.info(
                "Registration of %s rejected: device id %s belongs to %s",
                request.serial_number,
                request.device_id,
                taken.serial_number,
            )
            raise ConflictError(
                "Device identifier is already registered to another receiver",
                ConflictReason.DEVICE_ID_IN_USE,
                Remediation(DEVICE_ID_IN_USE_STEPS, settings.support_reference),
            )

    def _issue_credentials(
        self,
        device_id: str,
        request: DeviceRegistrationRequest,
        user: User,
        existing: Optional[DeviceIdentity],
    ) -> tuple[CredentialMaterials, str]:
        materials: Optional[CredentialMaterials] = None
        step = "issue_credential"
        try:
            materials = self._retry(self._authority.issue_credential)()

            step = "bind_identity_object"
            self._retry(self._authority.bind_identity_object)(
                device_id,
                identity_attributes(
                    request.serial_number, request.mac_address, user.user_id, request.device_instance_id
                ),
            )

            step = "authorize"
            self._retry(self._authority.authorize)(materials.credential_ref)

            step = "bind_credential_to_identity"
            self._retry(self._authority.bind_credential_to_identity)(device_id, materials.credential_ref)

            step = "endpoint"
            endpoint = self._retry(self._authority.endpoint)()
        except CredentialAuthorityError as e:
            logger.error("Credential issuance for %s failed at %s: %s", device_id, step, e)
            if materials is not None:
                self._compensate(materials, device_id, existing)
            raise CredentialIssuanceError(f"Failed to issue device credentials ({step})", step=step) from e

        return materials, endpoint

    def _enumerate_tenancy(self, device_id: str) -> _Tenancy:
        with ThreadPoolExecutor(max_workers=self._workers, thread_name_prefix="tenancy") as pool:
            grants = pool.submit(self._registry.list_device_grants, device_id)
            invitations = pool.submit(self._registry.list_device_invitations, device_id)
            statuses = pool.submit(self._registry.list_device_status, device_id)
            return _Tenancy(grants.result(), invitations.result(), statuses.result())

    def _build_transaction(
        self,
        request: DeviceRegistrationRequest,
        user: User,
        existing: Optional[DeviceIdentity],
        materials: CredentialMaterials,
        now: datetime,
    ) -> tuple[Transaction, DeviceIdentity]:
        transaction = Transaction()
        last_reset_at = request.reset_timestamp

        if existing is None:
            identity = DeviceIdentity(
                device_id=request.device_id,
                device_instance_id=request.device_instance_id,
                serial_number=request.serial_number,
                mac_address=request.mac_address,
                device_name=request.device_name,
                owner_user_id=user.user_id,
                credential_ref=materials.credential_ref,
                identity_ref=request.device_id,
                created_at=now,
                updated_at=now,
                last_reset_at=last_reset_at,
            )
            transaction.put(identity, Condition.not_exists())
        else:
            device_id = existing.device_id
            tenancy = self._enumerate_tenancy(device_id)
            # deletes first: the puts below recreate settings and the owner grant
            for grant in tenancy.grants:
                transaction.delete(OwnershipGrant, device_id=device_id, user_id=grant.user_id)
            for invitation in tenancy.invitations:
                transaction.delete(Invitation, invitation_id=invitation.invitation_id)
            for status in tenancy.statuses:
                transaction.delete(DeviceStatusRecord, device_id=device_id, status_type=status.status_type)
            transaction.delete(DeviceSettings, device_id=device_id)

            identity = DeviceIdentity(
                device_id=device_id,
                device_instance_id=request.device_instance_id,
                serial_number=request.serial_number,
                mac_address=request.mac_address,
                device_name=request.device_name,
                owner_user_id=user.user_id,
                credential_ref=materials.credential_ref,
                identity_ref=device_id,
                firmware_version=existing.firmware_version,
                created_at=existing.created_at,
                updated_at=now,
                last_reset_at=last_reset_at or existing.last_reset_at,
            )
            transaction.put(
                identity,
                Condition.matches(
                    device_instance_id=existing.device_instance_id,
                    credential_ref=existing.credential_ref,
                ),
            )
            logger.info(
                "Ownership transfer of %s: removing %d grants, %d invitations, %d status records",
                device_id,
                len(tenancy.grants),
                len(tenancy.invitations),
                len(tenancy.statuses),
            )

        transaction.put(DeviceSettings(device_id=identity.device_id, updated_at=now))
        transaction.put(
            OwnershipGrant(
                device_id=identity.device_id,
                user_id=user.user_id,
                notifications_permission=True,
                settings_permission=True,
                invited_by=user.user_id,
                invited_at=now,
                accepted_at=now,
            )
        )
        logger.debug("Registration transaction:\n  %s", "\n  ".join(transaction.describe()))
        return transaction, identity

    def _compensate(
        self,
        materials: CredentialMaterials,
        device_id: str,
        previous: Optional[DeviceIdentity] = None,
    ) -> bool:
        """Revoke the new credential; on a transfer also put back the old attributes."""
        result = self._compensator.revoke_best_effort(
            materials.credential_ref, device_id, event="new_credential_cleanup_failed"
        )
        if not result.success:
            logger.warning("New credential %s was not revoked", materials.credential_ref)
        if previous is not None:
            self._restore_identity_object(previous.device_id)
        return result.success

    def _restore_identity_object(self, device_id: str) -> None:
        """Rewrite identity attributes from the committed record.

        The record is re-read because a concurrent registration may have
        replaced the one this attempt started from.
        """
        try:
            current = self._registry.get_device(device_id)
            if current is None:
                return
            self._retry(self._authority.bind_identity_object)(
                current.identity_ref or current.device_id,
                identity_attributes(
                    current.serial_number,
                    current.mac_address,
                    current.owner_user_id,
                    current.device_instance_id,
                ),
            )
        except (RegistryError, CredentialAuthorityError) as e:
            logger.error(
                "Identity object of %s may still carry the aborted owner's attributes: %s",
                device_id,
                e,
            )
