import uuid

import pytest
from sqlmodel import Session

from buttonhub.models.device import DeviceIdentity
from buttonhub.services.credential_authority import AuthorityUnavailable, CredentialAuthorityError
from buttonhub.services.errors import (
    AuthError,
    ConflictError,
    ConflictReason,
    CredentialIssuanceError,
    PersistenceError,
    RegistrationValidationError,
)
from buttonhub.services.registration_service import RegistrationCoordinator, RegistrationState
from buttonhub.services.registry import RegistryError

from conftest import registration_payload, reset_payload, seed_tenancy
from fakes import FAKE_ENDPOINT, ScriptedRegistry


@pytest.fixture()
def registered(coordinator, owner):
    """SN-1 registered to the owner in normal state."""
    payload = registration_payload()
    result = coordinator.register(payload, owner.subject)
    return payload, result


# --- New registration ---


def test_new_registration(coordinator, registry, authority, owner):
    result = coordinator.register(registration_payload(), owner.subject)

    assert result.state is RegistrationState.DONE
    assert not result.ownership_transferred
    assert result.endpoint == FAKE_ENDPOINT
    assert result.warnings == []

    device = registry.get_device_by_serial("SN-1")
    assert device.owner_user_id == owner.user_id
    assert device.credential_ref == result.credentials.credential_ref
    assert authority.is_authorized(device.credential_ref)

    grants = registry.list_device_grants(device.device_id)
    assert [(g.user_id, g.notifications_permission, g.settings_permission) for g in grants] == [
        (owner.user_id, True, True)
    ]
    settings = registry.get_device_settings(device.device_id)
    assert (settings.sound_volume, settings.led_brightness, settings.notification_cooldown) == (5, 5, 30)


def test_first_registration_may_claim_factory_reset(coordinator, registry, owner):
    result = coordinator.register(reset_payload(), owner.subject)
    assert not result.ownership_transferred
    assert registry.get_device_by_serial("SN-1").last_reset_at is not None


# --- Reset security ---


def test_same_instance_is_rejected(coordinator, authority, registered, owner):
    payload, first = registered
    issued_before = len(authority.called("issue_credential"))

    with pytest.raises(ConflictError) as exc:
        coordinator.register(payload, owner.subject)

    assert exc.value.reason is ConflictReason.NO_RESET_PROOF
    assert exc.value.remediation.steps
    assert len(authority.called("issue_credential")) == issued_before


def test_same_instance_with_reset_claim_is_rejected(coordinator, registered, newcomer):
    payload, _ = registered
    replay = reset_payload(device_instance_id=payload["device_instance_id"])
    with pytest.raises(ConflictError) as exc:
        coordinator.register(replay, newcomer.subject)
    assert exc.value.reason is ConflictReason.NO_RESET_PROOF


def test_new_instance_without_reset_is_rejected(coordinator, registry, registered, owner, newcomer):
    with pytest.raises(ConflictError) as exc:
        coordinator.register(registration_payload(), newcomer.subject)
    assert exc.value.reason is ConflictReason.REGISTRATION_WITHOUT_RESET_PROOF
    assert registry.get_device_by_serial("SN-1").owner_user_id == owner.user_id


def test_ownership_transfer(engine, coordinator, registry, authority, registered, owner, newcomer):
    _, first = registered
    device_id = first.device.device_id
    seed_tenancy(engine, device_id, owner.user_id, ["usr_guest1", "usr_guest2"])
    old_ref = first.credentials.credential_ref

    result = coordinator.register(reset_payload(device_id="some-other-id"), newcomer.subject)

    assert result.ownership_transferred
    assert result.state is RegistrationState.DONE
    # the device keeps its identifier across owners
    assert result.device.device_id == device_id

    device = registry.get_device(device_id)
    assert device.owner_user_id == newcomer.user_id
    assert device.credential_ref == result.credentials.credential_ref
    assert device.created_at == first.device.created_at.replace(tzinfo=None)

    assert [g.user_id for g in registry.list_device_grants(device_id)] == [newcomer.user_id]
    assert registry.list_device_invitations(device_id) == []
    assert registry.list_device_status(device_id) == []
    assert registry.get_device_settings(device_id).sound_volume == 5

    assert not authority.is_authorized(old_ref)
    assert authority.is_authorized(result.credentials.credential_ref)
    assert device_id in authority.identities


def test_previous_owner_cannot_reclaim_with_old_instance(coordinator, registered, owner, newcomer):
    payload, _ = registered
    coordinator.register(reset_payload(), newcomer.subject)
    with pytest.raises(ConflictError):
        coordinator.register(payload, owner.subject)


def test_transfer_survives_failed_old_credential_revocation(
    coordinator, registry, authority, alerts, registered, newcomer
):
    _, first = registered
    authority.fail("revoke", CredentialAuthorityError("access denied"))

    result = coordinator.register(reset_payload(), newcomer.subject)

    assert result.state is RegistrationState.COMMITTED_WITH_CLEANUP_WARNING
    assert registry.get_device_by_serial("SN-1").owner_user_id == newcomer.user_id
    [warning] = result.warnings
    assert warning.credential_ref == first.credentials.credential_ref
    [alert] = alerts
    assert alert.event == "previous_credential_revocation_failed"
    assert warning.alert_id == alert.alert_id


# --- Failures before commit ---


def test_issuance_failure_revokes_partial_credential(coordinator, registry, authority, owner):
    authority.fail("authorize", CredentialAuthorityError("policy missing"))

    with pytest.raises(CredentialIssuanceError) as exc:
        coordinator.register(registration_payload(), owner.subject)

    assert exc.value.step == "authorize"
    assert authority.credentials == {}
    assert authority.identities == {}
    assert registry.get_device_by_serial("SN-1") is None


def test_issue_failure_needs_no_cleanup(coordinator, authority, owner):
    authority.fail("issue_credential", CredentialAuthorityError("quota"))
    with pytest.raises(CredentialIssuanceError) as exc:
        coordinator.register(registration_payload(), owner.subject)
    assert exc.value.step == "issue_credential"
    assert authority.called("revoke") == []


def test_transient_authority_failures_are_retried(coordinator, registry, authority, owner):
    authority.fail("issue_credential", AuthorityUnavailable("throttled"), times=2)
    result = coordinator.register(registration_payload(), owner.subject)
    assert result.state is RegistrationState.DONE
    assert len(authority.called("issue_credential")) == 3


def test_persistence_failure_revokes_new_credential(registry, authority, compensator, owner):
    scripted = ScriptedRegistry(registry, transaction_error=RegistryError("disk I/O error"))
    coordinator = RegistrationCoordinator(scripted, authority, compensator)

    with pytest.raises(PersistenceError) as exc:
        coordinator.register(registration_payload(), owner.subject)

    assert exc.value.credential_revoked
    assert authority.credentials == {}
    assert registry.get_device_by_serial("SN-1") is None


def test_failed_transfer_leaves_previous_owner_intact(
    registry, authority, compensator, registered, owner, newcomer
):
    _, first = registered
    scripted = ScriptedRegistry(registry, transaction_error=RegistryError("disk I/O error"))
    coordinator = RegistrationCoordinator(scripted, authority, compensator)

    with pytest.raises(PersistenceError):
        coordinator.register(reset_payload(), newcomer.subject)

    device = registry.get_device_by_serial("SN-1")
    assert device.owner_user_id == owner.user_id
    assert authority.is_authorized(first.credentials.credential_ref)
    assert len(authority.credentials) == 1


def test_concurrent_change_is_a_conflict(engine, registry, authority, compensator, registered, newcomer):
    _, first = registered

    def rival_reset():
        with Session(engine) as session:
            device = session.get(DeviceIdentity, first.device.device_id)
            device.device_instance_id = str(uuid.uuid4())
            session.add(device)
            session.commit()

    scripted = ScriptedRegistry(registry, before_commit=rival_reset)
    coordinator = RegistrationCoordinator(scripted, authority, compensator)

    with pytest.raises(ConflictError) as exc:
        coordinator.register(reset_payload(), newcomer.subject)

    assert exc.value.reason is ConflictReason.CONCURRENT_REGISTRATION
    assert authority.is_authorized(first.credentials.credential_ref)
    assert len(authority.credentials) == 1


def test_tenancy_read_failure_compensates(registry, authority, compensator, registered, newcomer):
    scripted = ScriptedRegistry(registry)

    def broken(device_id):
        raise RegistryError("timeout")

    scripted.list_device_invitations = broken
    coordinator = RegistrationCoordinator(scripted, authority, compensator)

    with pytest.raises(PersistenceError) as exc:
        coordinator.register(reset_payload(), newcomer.subject)
    assert exc.value.credential_revoked
    assert len(authority.credentials) == 1


# --- Caller and input ---


def test_missing_caller(coordinator):
    with pytest.raises(AuthError):
        coordinator.register(registration_payload(), None)


def test_unknown_caller(coordinator, owner):
    with pytest.raises(AuthError):
        coordinator.register(registration_payload(), "nobody")


def test_validation_is_reported_before_auth(coordinator, authority):
    with pytest.raises(RegistrationValidationError):
        coordinator.register(registration_payload(serial_number="bad serial"), None)
    assert authority.calls == []


def test_device_id_of_another_receiver_is_refused_before_issuance(
    coordinator, registry, authority, registered, owner, newcomer
):
    _, first = registered
    device_id = first.device.device_id
    attributes_before = dict(authority.identities[device_id]["attributes"])
    calls_before = len(authority.calls)

    with pytest.raises(ConflictError) as exc:
        coordinator.register(registration_payload(serial_number="SN-2"), newcomer.subject)

    assert exc.value.reason is ConflictReason.DEVICE_ID_IN_USE
    assert len(authority.calls) == calls_before
    assert authority.identities[device_id]["attributes"] == attributes_before
    assert authority.identities[device_id]["principals"] == {first.credentials.credential_ref}
    assert registry.get_device(device_id).owner_user_id == owner.user_id
    assert registry.get_device_by_serial("SN-2") is None


def test_aborted_transfer_restores_identity_attributes(
    registry, authority, compensator, registered, owner, newcomer
):
    _, first = registered
    device_id = first.device.device_id
    scripted = ScriptedRegistry(registry, transaction_error=RegistryError("disk I/O error"))
    coordinator = RegistrationCoordinator(scripted, authority, compensator)

    with pytest.raises(PersistenceError):
        coordinator.register(reset_payload(), newcomer.subject)

    attributes = authority.identities[device_id]["attributes"]
    assert attributes["owner_user_id"] == owner.user_id
    assert attributes["device_instance_id"] == first.device.device_instance_id


def test_concurrent_conflict_restores_attributes_of_the_winner(
    engine, registry, authority, compensator, registered, newcomer
):
    _, first = registered
    device_id = first.device.device_id
    rival_instance = str(uuid.uuid4())

    def rival_reset():
        with Session(engine) as session:
            device = session.get(DeviceIdentity, device_id)
            device.device_instance_id = rival_instance
            session.add(device)
            session.commit()

    coordinator = RegistrationCoordinator(
        ScriptedRegistry(registry, before_commit=rival_reset), authority, compensator
    )
    with pytest.raises(ConflictError):
        coordinator.register(reset_payload(), newcomer.subject)

    assert authority.identities[device_id]["attributes"]["device_instance_id"] == rival_instance
