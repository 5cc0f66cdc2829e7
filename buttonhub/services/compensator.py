"""Best-effort credential cleanup with operator alerts.

``revoke_best_effort`` always returns a ``CleanupResult``; a failed
revocation becomes an ``OperatorAlert`` for out-of-band follow-up rather
than an exception in the caller's path.
"""

import logging
import secrets
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional

from buttonhub.config import settings
from buttonhub.services.credential_authority import (
    AuthorityUnavailable,
    CredentialAuthority,
    RevokeOutcome,
)
from buttonhub.utils.retry import create_authority_retry_policy

logger = logging.getLogger(__name__)
alert_logger = logging.getLogger("buttonhub.alerts")


@dataclass(frozen=True)
class OperatorAlert:
    event: str
    credential_ref: str
    device_id: Optional[str]
    environment: str
    detail: str
    alert_id: str = field(default_factory=lambda: f"alr_{secrets.token_hex(6)}")
    raised_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


AlertSink = Callable[[OperatorAlert], None]


def log_alert(alert: OperatorAlert) -> None:
    alert_logger.error(
        "OPERATOR ALERT %s: %s for credential %s (device %s, env %s): %s",
        alert.alert_id,
        alert.event,
        alert.credential_ref,
        alert.device_id,
        alert.environment,
        alert.detail,
        extra={"alert": asdict(alert)},
    )


@dataclass(frozen=True)
class CleanupResult:
    success: bool
    outcome: Optional[RevokeOutcome] = None
    alert: Optional[OperatorAlert] = None


class CleanupCompensator:
    def __init__(
        self,
        authority: CredentialAuthority,
        environment: str = settings.environment,
        alert_sink: AlertSink = log_alert,
        retry_policy=None,
    ):
        self._authority = authority
        self._environment = environment
        self._alert_sink = alert_sink
        self._retry = retry_policy or create_authority_retry_policy(AuthorityUnavailable)

    def revoke_best_effort(
        self,
        credential_ref: str,
        identity_ref: Optional[str],
        event: str = "credential_cleanup_failed",
    ) -> CleanupResult:
        try:
            outcome = self._retry(self._authority.revoke)(credential_ref, identity_ref)
        except Exception as e:  # nothing escapes the compensator
            logger.error("Failed to revoke %s: %s", credential_ref, e)
            alert = OperatorAlert(
                event=event,
                credential_ref=credential_ref,
                device_id=identity_ref,
                environment=self._environment,
                detail=f"{type(e).__name__}: {e}",
            )
            self._emit(alert)
            return CleanupResult(success=False, alert=alert)

        return CleanupResult(success=True, outcome=outcome)

    def _emit(self, alert: OperatorAlert) -> None:
        try:
            self._alert_sink(alert)
        except Exception:
            logger.exception("Alert sink failed for %s", alert.alert_id)
