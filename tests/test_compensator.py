import logging

from buttonhub.services.compensator import CleanupCompensator, OperatorAlert, log_alert
from buttonhub.services.credential_authority import (
    AuthorityUnavailable,
    CredentialAuthorityError,
    RevokeOutcome,
)


def test_successful_revoke(authority, compensator, alerts):
    materials = authority.issue_credential()
    result = compensator.revoke_best_effort(materials.credential_ref, None)
    assert result.success
    assert result.outcome is RevokeOutcome.PARTIAL  # no identity object was bound
    assert materials.credential_ref not in authority.credentials
    assert alerts == []


def test_failure_raises_alert_instead_of_exception(authority, compensator, alerts):
    authority.fail("revoke", CredentialAuthorityError("access denied"))
    result = compensator.revoke_best_effort("cert/fake0001", "d1", event="previous_credential_revocation_failed")
    assert not result.success
    assert len(alerts) == 1
    alert = alerts[0]
    assert alert is result.alert
    assert alert.event == "previous_credential_revocation_failed"
    assert alert.credential_ref == "cert/fake0001"
    assert alert.device_id == "d1"
    assert alert.environment == "test"
    assert "access denied" in alert.detail


def test_transient_failures_are_retried(authority, compensator, alerts):
    materials = authority.issue_credential()
    authority.fail("revoke", AuthorityUnavailable("throttled"), times=2)
    result = compensator.revoke_best_effort(materials.credential_ref, None)
    assert result.success
    assert len(authority.called("revoke")) == 3
    assert alerts == []


def test_persistent_unavailability_gives_up(authority, compensator, alerts):
    authority.fail("revoke", AuthorityUnavailable("throttled"))
    result = compensator.revoke_best_effort("cert/fake0001", None)
    assert not result.success
    assert len(authority.called("revoke")) == 3
    assert len(alerts) == 1


def test_broken_alert_sink_does_not_escape(authority):
    def sink(alert):
        raise RuntimeError("pager down")

    compensator = CleanupCompensator(authority, environment="test", alert_sink=sink)
    authority.fail("revoke", CredentialAuthorityError("boom"))
    result = compensator.revoke_best_effort("cert/fake0001", None)
    assert not result.success


def test_log_alert(caplog):
    alert = OperatorAlert(
        event="new_credential_cleanup_failed",
        credential_ref="cert/x",
        device_id="d1",
        environment="test",
        detail="boom",
    )
    with caplog.at_level(logging.ERROR, logger="buttonhub.alerts"):
        log_alert(alert)
    record = caplog.records[-1]
    assert record.name == "buttonhub.alerts"
    assert alert.alert_id in record.getMessage()
    assert record.alert["credential_ref"] == "cert/x"
