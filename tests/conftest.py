"""Shared fixtures. Settings are pointed at temporary directories before
anything from buttonhub is imported."""

import os
import tempfile
import uuid
from datetime import datetime, timedelta, timezone

_ROOT = tempfile.mkdtemp(prefix="buttonhub-test-")
os.environ["BUTTONHUB_ENVIRONMENT"] = "test"
os.environ["BUTTONHUB_DATA_DIR"] = os.path.join(_ROOT, "data")
os.environ["BUTTONHUB_CA_DIR"] = os.path.join(_ROOT, "ca")
os.environ["BUTTONHUB_DB_PATH"] = os.path.join(_ROOT, "data", "app.db")
os.environ["BUTTONHUB_AUTHORITY_RETRY_MIN_WAIT"] = "0"
os.environ["BUTTONHUB_AUTHORITY_RETRY_MAX_WAIT"] = "0"

import pytest  # noqa: E402
from sqlmodel import Session  # noqa: E402

from buttonhub.database import init_db, make_engine  # noqa: E402
from buttonhub.models.invite import Invitation  # noqa: E402
from buttonhub.models.status import DeviceStatusRecord  # noqa: E402
from buttonhub.models.user import OwnershipGrant, User  # noqa: E402
from buttonhub.services.compensator import CleanupCompensator  # noqa: E402
from buttonhub.services.registration_service import RegistrationCoordinator  # noqa: E402
from buttonhub.services.registry import SqlOwnershipRegistry  # noqa: E402

from fakes import FakeCredentialAuthority  # noqa: E402


@pytest.fixture()
def engine(tmp_path):
    bind = make_engine(tmp_path / "registry.db")
    init_db(bind)
    yield bind
    bind.dispose()


@pytest.fixture()
def registry(engine):
    return SqlOwnershipRegistry(engine)


@pytest.fixture()
def authority():
    return FakeCredentialAuthority()


@pytest.fixture()
def alerts():
    return []


@pytest.fixture()
def compensator(authority, alerts):
    return CleanupCompensator(authority, environment="test", alert_sink=alerts.append)


@pytest.fixture()
def coordinator(registry, authority, compensator):
    return RegistrationCoordinator(registry, authority, compensator)


def add_user(engine, subject: str, email: str = "") -> User:
    user = User(subject=subject, email=email or f"{subject}@example.com", full_name=subject.title())
    with Session(engine) as session:
        session.add(user)
        session.commit()
        session.refresh(user)
    return user


@pytest.fixture()
def owner(engine):
    return add_user(engine, "owner-sub")


@pytest.fixture()
def newcomer(engine):
    return add_user(engine, "newcomer-sub")


def registration_payload(**overrides) -> dict:
    payload = {
        "device_id": "acorn-receiver-001",
        "device_instance_id": str(uuid.uuid4()),
        "device_name": "Living Room Receiver",
        "serial_number": "SN-1",
        "mac_address": "AA:BB:CC:DD:EE:FF",
        "device_state": "normal",
    }
    payload.update(overrides)
    return payload


def reset_payload(**overrides) -> dict:
    payload = registration_payload(
        device_instance_id=str(uuid.uuid4()),
        device_state="factory_reset",
        reset_timestamp=datetime.now(timezone.utc).isoformat(),
    )
    payload.update(overrides)
    return payload


def seed_tenancy(engine, device_id: str, owner_id: str, guest_ids: list[str]) -> None:
    """Guest grants, a pending invitation and status rows for a device."""
    now = datetime.now(timezone.utc)
    with Session(engine) as session:
        for guest_id in guest_ids:
            session.add(
                OwnershipGrant(
                    device_id=device_id,
                    user_id=guest_id,
                    notifications_permission=True,
                    settings_permission=False,
                    invited_by=owner_id,
                    accepted_at=now,
                )
            )
        session.add(
            Invitation(
                device_id=device_id,
                invited_email="pending@example.com",
                invited_by=owner_id,
                expires_at=now + timedelta(days=7),
            )
        )
        for status_type in ("CURRENT", "HEALTH"):
            session.add(DeviceStatusRecord(device_id=device_id, status_type=status_type, is_online=True))
        session.commit()
