"""Cleanup after a receiver reports a factory reset.

The receiver publishes a ``reset_cleanup`` command carrying the credential
it held before the reset. The credential is revoked and every record of
the device's tenancy is removed, so the next registration of the serial
number takes the new-device path.
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

from buttonhub.models.device import DeviceIdentity, DeviceSettings
from buttonhub.models.invite import Invitation
from buttonhub.models.status import DeviceStatusRecord
from buttonhub.models.user import OwnershipGrant
from buttonhub.services.compensator import CleanupCompensator
from buttonhub.services.registry import OwnershipRegistry, RegistryError
from buttonhub.services.transaction import Condition, Transaction
from buttonhub.services.validation import parse_timestamp

logger = logging.getLogger(__name__)

RESET_REASONS = ("physical_button_reset", "user_initiated", "admin_reset")


class ResetEventError(ValueError):
    pass


@dataclass(frozen=True)
class ResetCleanupEvent:
    device_id: str
    reset_timestamp: datetime
    old_credential_ref: str
    reason: str = "physical_button_reset"


@dataclass
class ResetCleanupResult:
    device_id: str
    credential_revoked: bool = False
    device_deactivated: bool = False
    user_associations_removed: int = 0
    processed_at: str = ""


def parse_reset_event(event: Any) -> ResetCleanupEvent:
    """Accept a raw JSON string, a bare payload, or a ``{topic, payload}`` wrapper."""
    payload = event
    try:
        if isinstance(event, str):
            payload = json.loads(event)
        elif isinstance(event, dict) and "topic" in event and "payload" in event:
            inner = event["payload"]
            payload = json.loads(inner) if isinstance(inner, str) else inner
    except json.JSONDecodeError as e:
        raise ResetEventError(f"Invalid reset event: {e}") from e

    if not isinstance(payload, dict) or payload.get("command") != "reset_cleanup":
        raise ResetEventError("Invalid reset event: missing or invalid command")

    missing = [k for k in ("device_id", "reset_timestamp", "old_credential_ref") if not payload.get(k)]
    if missing:
        raise ResetEventError(f"Invalid reset event: missing required fields ({', '.join(missing)})")

    reason = payload.get("reason") or "physical_button_reset"
    if reason not in RESET_REASONS:
        raise ResetEventError(f"Invalid reset event: unknown reason {reason!r}")

    try:
        reset_at = parse_timestamp(str(payload["reset_timestamp"]))
    except ValueError as e:
        raise ResetEventError("Invalid reset event: reset_timestamp is not ISO-8601") from e

    return ResetCleanupEvent(
        device_id=payload["device_id"],
        reset_timestamp=reset_at,
        old_credential_ref=payload["old_credential_ref"],
        reason=reason,
    )


def process_reset_cleanup(
    event: Any,
    registry: OwnershipRegistry,
    compensator: CleanupCompensator,
) -> ResetCleanupResult:
    """Revoke the pre-reset credential and delete the device's records.

    Failures after parsing are logged, not raised: the receiver has already
    reset, so there is nothing for a retry to recover.
    """
    reset = parse_reset_event(event)
    result = ResetCleanupResult(device_id=reset.device_id)
    logger.info("Processing factory reset for %s (%s)", reset.device_id, reset.reason)

    try:
        device: Optional[DeviceIdentity] = registry.get_device(reset.device_id)
    except RegistryError as e:
        logger.error("Failed to load device %s: %s", reset.device_id, e)
        return _finish(result)

    if device is None:
        logger.warning("Device %s not found, may have been cleaned up already", reset.device_id)
        return _finish(result)

    if device.credential_ref != reset.old_credential_ref:
        # the device re-registered after this reset; its new credential must survive
        logger.warning(
            "Ignoring stale reset event for %s: credential %s is not current",
            reset.device_id,
            reset.old_credential_ref,
        )
        return _finish(result)

    cleanup = compensator.revoke_best_effort(
        reset.old_credential_ref, device.identity_ref or device.device_id, event="reset_credential_revocation_failed"
    )
    result.credential_revoked = cleanup.success

    try:
        grants = registry.list_device_grants(device.device_id)
        invitations = registry.list_device_invitations(device.device_id)
        statuses = registry.list_device_status(device.device_id)

        transaction = Transaction()
        for grant in grants:
            transaction.delete(OwnershipGrant, device_id=device.device_id, user_id=grant.user_id)
        for invitation in invitations:
            transaction.delete(Invitation, invitation_id=invitation.invitation_id)
        for status in statuses:
            transaction.delete(DeviceStatusRecord, device_id=device.device_id, status_type=status.status_type)
        transaction.delete(DeviceSettings, device_id=device.device_id)
        transaction.delete(
            DeviceIdentity,
            Condition.matches(credential_ref=reset.old_credential_ref),
            device_id=device.device_id,
        )
        registry.transact_write(transaction)
    except RegistryError as e:
        logger.error("Failed to clean up records for %s: %s", device.device_id, e)
        logger.warning("Factory reset cleanup completed with errors, manual cleanup may be required")
        return _finish(result)

    result.device_deactivated = True
    result.user_associations_removed = len(grants)
    return _finish(result)


def _finish(result: ResetCleanupResult) -> ResetCleanupResult:
    result.processed_at = datetime.now(timezone.utc).isoformat()
    logger.info(
        "Reset cleanup for %s: revoked=%s deactivated=%s users_removed=%d",
        result.device_id,
        result.credential_revoked,
        result.device_deactivated,
        result.user_associations_removed,
    )
    return result
