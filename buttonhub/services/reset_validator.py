"""Reset security classification for registration attempts.

The only proof that someone physically holds a receiver is the instance id
its firmware regenerates on every factory reset. A registration against an
existing serial number is therefore accepted only when it presents a *new*
instance id together with an explicit factory-reset claim.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from buttonhub.config import settings
from buttonhub.models.device import DeviceIdentity
from buttonhub.services.errors import ConflictReason, Remediation


class DeviceState(str, Enum):
    NORMAL = "normal"
    FACTORY_RESET = "factory_reset"


class DecisionKind(str, Enum):
    NEW_REGISTRATION = "new_registration"
    OWNERSHIP_TRANSFER = "ownership_transfer"
    REJECTED = "rejected"


RESET_STEPS = (
    "Unplug the receiver and plug it back in.",
    "Within 10 seconds, press and hold the reset button on the back of the receiver "
    "until the status light blinks red (about 10 seconds).",
    "Wait for the status light to blink blue, which means the receiver is in setup mode.",
    "Register the receiver again from the app.",
)

SAME_INSTANCE_STEPS = (
    "This receiver is already registered and has not been reset since.",
    *RESET_STEPS,
)

NO_RESET_PROOF_STEPS = (
    "This receiver is registered to another account.",
    "A factory reset on the physical receiver is required to transfer ownership.",
    *RESET_STEPS,
)

CONFLICT_MESSAGES = {
    ConflictReason.NO_RESET_PROOF: "Device is already registered and no factory reset has occurred",
    ConflictReason.REGISTRATION_WITHOUT_RESET_PROOF: "Device is registered under another account; "
    "a factory reset is required to take ownership",
}


@dataclass(frozen=True)
class Decision:
    kind: DecisionKind
    reason: Optional[ConflictReason] = None
    remediation: Optional[Remediation] = None

    @property
    def approved(self) -> bool:
        return self.kind is not DecisionKind.REJECTED

    @property
    def message(self) -> str:
        return CONFLICT_MESSAGES.get(self.reason, "")


def _rejected(reason: ConflictReason, steps: tuple[str, ...]) -> Decision:
    return Decision(
        kind=DecisionKind.REJECTED,
        reason=reason,
        remediation=Remediation(steps=steps, support_reference=settings.support_reference),
    )


def classify(
    existing: Optional[DeviceIdentity],
    claimed_instance_id: str,
    claimed_state: DeviceState,
) -> Decision:
    if existing is None:
        return Decision(kind=DecisionKind.NEW_REGISTRATION)

    # A replayed instance id never counts as reset proof, whatever state is claimed
    if existing.device_instance_id == claimed_instance_id:
        return _rejected(ConflictReason.NO_RESET_PROOF, SAME_INSTANCE_STEPS)

    if claimed_state is DeviceState.FACTORY_RESET:
        return Decision(kind=DecisionKind.OWNERSHIP_TRANSFER)

    return _rejected(ConflictReason.REGISTRATION_WITHOUT_RESET_PROOF, NO_RESET_PROOF_STEPS)
