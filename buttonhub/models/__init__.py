"""ButtonHub Database Models."""

from buttonhub.models.user import User, OwnershipGrant
from buttonhub.models.device import DeviceIdentity, DeviceSettings
from buttonhub.models.invite import Invitation
from buttonhub.models.status import DeviceStatusRecord
from buttonhub.models.credential import (
    IdentityObject,
    IssuedCertificate,
    PolicyAttachment,
    ThingPrincipal,
)

__all__ = [
    "User",
    "OwnershipGrant",
    "DeviceIdentity",
    "DeviceSettings",
    "Invitation",
    "DeviceStatusRecord",
    "IssuedCertificate",
    "IdentityObject",
    "PolicyAttachment",
    "ThingPrincipal",
]
