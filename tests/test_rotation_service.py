"""Tests for the end-to-end rotation workflow."""

from __future__ import annotations

import pytest

from db.database import get_session
from db.models import Certificate
from lib.domain_spec import DomainTargets, parse_domains
from lib.errors import DeleteError, DiscoveryError, RebindError, UploadError
from services import audit_service, config_service
from services.certificate_service import CertificateService
from services.discovery_service import DiscoveryService
from services.polling import PollOutcome, PollSettings
from services.rebind_service import RebindService
from services.rotation_service import (
    DEFAULT_PROPAGATION_DELAY,
    Phase,
    RotationService,
    RotationSettings,
    TimeoutPolicy,
    build_alias,
    merge_old_cert_ids,
)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _rotation(
    ssl_client,
    cdn_client,
    teo_client,
    run_log,
    sleeper,
    settings: RotationSettings | None = None,
    account_id: int | None = None,
) -> RotationService:
    settings = settings or RotationSettings()
    return RotationService(
        certificates=CertificateService(ssl_client, run_log, poll=settings.poll, sleep=sleeper,
                                        account_id=account_id),
        discovery=DiscoveryService(cdn_client, teo_client, run_log, account_id=account_id),
        rebinder=RebindService(ssl_client, run_log, poll=settings.poll, sleep=sleeper,
                               account_id=account_id),
        log=run_log,
        settings=settings,
        sleep=sleeper,
        account_id=account_id,
    )


def _deleted(ssl_client) -> list:
    return [p["CertificateIds"] for action, p in ssl_client.calls if action == "DeleteCertificates"]


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


class TestMergeOldCertIds:
    def test_dedups_across_sources_in_order(self) -> None:
        assert merge_old_cert_ids("new", ["a", "b", None], ["b", "c", "a"]) == ["a", "b", "c"]

    def test_excludes_new_id_and_blanks(self) -> None:
        assert merge_old_cert_ids("new", ["new", "", None, "a"], ["new"]) == ["a"]

    def test_no_sources(self) -> None:
        assert merge_old_cert_ids("new") == []


class TestBuildAlias:
    def test_uses_first_cdn_domain(self) -> None:
        targets = parse_domains("*.example.com b.com\nzone-1 c.com")
        assert build_alias(targets, now=1700000000) == "wildcard-example.com-1700000000"

    def test_falls_back_to_edge_domain(self) -> None:
        assert build_alias(parse_domains("zone-1 c.com"), now=5) == "c.com-5"

    def test_no_domains(self) -> None:
        assert build_alias(DomainTargets(), now=5) == "certificate-5"


# ---------------------------------------------------------------------------
# Workflow
# ---------------------------------------------------------------------------


class TestRotationWorkflow:
    def test_end_to_end_single_cdn_domain(self, ssl_client, cdn_client, teo_client, run_log, sleeper) -> None:
        cdn_client.bindings = {"cdn1.example.com": "old-1"}
        service = _rotation(ssl_client, cdn_client, teo_client, run_log, sleeper)

        report = service.run("CERT", "KEY", parse_domains("cdn1.example.com"))

        assert report.phase is Phase.DONE
        assert service.task.phase is Phase.DONE
        assert report.new_cert_id == "new-1"
        assert report.old_cert_ids == ["old-1"]
        assert ssl_client.rebinds() == [("old-1", "new-1")]
        assert _deleted(ssl_client) == [["old-1"]]
        assert report.deleted == ["old-1"]
        assert report.delete_outcome is PollOutcome.SETTLED
        assert report.fully_settled
        assert DEFAULT_PROPAGATION_DELAY in sleeper.calls
        assert teo_client.calls == []

    def test_action_order(self, ssl_client, cdn_client, teo_client, run_log, sleeper) -> None:
        cdn_client.bindings = {"a.com": "old-1"}
        _rotation(ssl_client, cdn_client, teo_client, run_log, sleeper).run("C", "K", parse_domains("a.com"))
        actions = ssl_client.actions()
        assert actions[0] == "UploadCertificate"
        first_delete = actions.index("DeleteCertificates")
        assert "UpdateCertificateInstance" not in actions[first_delete:]
        # propagation delay sits between the last rebind poll and the delete
        assert sleeper.calls[-2] == DEFAULT_PROPAGATION_DELAY

    def test_no_bindings_short_circuits(self, ssl_client, cdn_client, teo_client, run_log, sleeper) -> None:
        cdn_client.bindings = {"a.com": None}
        report = _rotation(ssl_client, cdn_client, teo_client, run_log, sleeper).run(
            "C", "K", parse_domains("a.com\nzone-1 b.com")
        )
        assert report.phase is Phase.DONE
        assert report.old_cert_ids == []
        assert ssl_client.actions() == ["UploadCertificate"]
        assert sleeper.calls == []
        assert "No existing certificate bindings found for CDN or EdgeOne domains." in run_log.lines

    def test_new_id_is_never_rebound_onto_itself(self, ssl_client, cdn_client, teo_client, run_log, sleeper) -> None:
        cdn_client.bindings = {"a.com": "new-1", "b.com": "old-1"}
        teo_client.zones = {"zone-1": {"c.com": ["new-1"]}}
        report = _rotation(ssl_client, cdn_client, teo_client, run_log, sleeper).run(
            "C", "K", parse_domains("a.com b.com\nzone-1 c.com")
        )
        assert report.old_cert_ids == ["old-1"]
        assert ssl_client.rebinds() == [("old-1", "new-1")]
        assert _deleted(ssl_client) == [["old-1"]]

    def test_rerun_against_current_cert_does_nothing(self, ssl_client, cdn_client, teo_client, run_log, sleeper) -> None:
        cdn_client.bindings = {"a.com": "new-1"}
        report = _rotation(ssl_client, cdn_client, teo_client, run_log, sleeper).run("C", "K", parse_domains("a.com"))
        assert report.old_cert_ids == []
        assert ssl_client.actions() == ["UploadCertificate"]

    def test_id_found_by_both_paths_is_rotated_once(self, ssl_client, cdn_client, teo_client, run_log, sleeper) -> None:
        cdn_client.bindings = {"a.com": "shared", "b.com": "shared"}
        teo_client.zones = {"zone-1": {"c.com": ["shared", "eo-only"]}}
        report = _rotation(ssl_client, cdn_client, teo_client, run_log, sleeper).run(
            "C", "K", parse_domains("a.com b.com\nzone-1 c.com")
        )
        assert report.old_cert_ids == ["shared", "eo-only"]
        assert ssl_client.rebinds() == [("shared", "new-1"), ("eo-only", "new-1")]
        assert _deleted(ssl_client) == [["shared", "eo-only"]]

    def test_rebinds_are_sequential(self, ssl_client, cdn_client, teo_client, run_log, sleeper) -> None:
        cdn_client.bindings = {"a.com": "old-1", "b.com": "old-2"}
        ssl_client.deploy_records = {"old-1": [0, 0, 5], "old-2": [0, 6]}
        _rotation(ssl_client, cdn_client, teo_client, run_log, sleeper).run("C", "K", parse_domains("a.com b.com"))
        olds = [p["OldCertificateId"] for a, p in ssl_client.calls if a == "UpdateCertificateInstance"]
        assert olds == ["old-1", "old-1", "old-1", "old-2", "old-2"]

    def test_edge_only_targets_skip_cdn(self, ssl_client, cdn_client, teo_client, run_log, sleeper) -> None:
        teo_client.zones = {"zone-1": {"w.com": ["eo-1"]}}
        report = _rotation(ssl_client, cdn_client, teo_client, run_log, sleeper).run(
            "C", "K", parse_domains("zone-1 w.com")
        )
        assert cdn_client.calls == []
        assert report.deleted == ["eo-1"]

    def test_empty_targets_only_upload(self, ssl_client, cdn_client, teo_client, run_log, sleeper) -> None:
        report = _rotation(ssl_client, cdn_client, teo_client, run_log, sleeper).run("C", "K", parse_domains(""))
        assert report.phase is Phase.DONE
        assert cdn_client.calls == [] and teo_client.calls == []
        assert ssl_client.actions() == ["UploadCertificate"]

    def test_run_is_audited(self, ssl_client, cdn_client, teo_client, run_log, sleeper) -> None:
        cdn_client.bindings = {"a.com": "old-1"}
        _rotation(ssl_client, cdn_client, teo_client, run_log, sleeper).run("C", "K", parse_domains("a.com"))
        entry = [e for e in audit_service.get_by_resource("certificate", "new-1")
                 if e.operation == "rotate_certificate"][0]
        assert entry.status == "SUCCESS"
        assert entry.details["deleted"] == ["old-1"]


class TestFatalErrors:
    def test_upload_failure_stops_everything(self, ssl_client, cdn_client, teo_client, run_log, sleeper,
                                             make_api_error) -> None:
        ssl_client.upload_error = make_api_error("UploadCertificate")
        cdn_client.bindings = {"a.com": "old-1"}
        service = _rotation(ssl_client, cdn_client, teo_client, run_log, sleeper)
        with pytest.raises(UploadError):
            service.run("C", "K", parse_domains("a.com"))
        assert service.task.phase is Phase.FAILED
        assert cdn_client.calls == []

    def test_discovery_failure_aborts_before_rebind(self, ssl_client, cdn_client, teo_client, run_log, sleeper,
                                                    make_api_error) -> None:
        cdn_client.bindings = {"a.com": "old-1"}
        teo_client.error = make_api_error("DescribeAccelerationDomains")
        service = _rotation(ssl_client, cdn_client, teo_client, run_log, sleeper)
        with pytest.raises(DiscoveryError):
            service.run("C", "K", parse_domains("a.com\nzone-1 b.com"))
        assert service.task.phase is Phase.FAILED
        assert service.task.new_cert_id == "new-1"
        assert ssl_client.actions() == ["UploadCertificate"]

    def test_failure_is_audited(self, ssl_client, cdn_client, teo_client, run_log, sleeper, make_api_error) -> None:
        cdn_client.error = make_api_error("DescribeDomainsConfig")
        with pytest.raises(DiscoveryError):
            _rotation(ssl_client, cdn_client, teo_client, run_log, sleeper).run("C", "K", parse_domains("a.com"))
        entry = [e for e in audit_service.get_by_resource("certificate", "new-1")
                 if e.operation == "rotate_certificate"][0]
        assert entry.status == "FAILURE"


class TestTimeoutPolicies:
    def _targets(self, cdn_client) -> DomainTargets:
        cdn_client.bindings = {"a.com": "slow", "b.com": "fast"}
        return parse_domains("a.com b.com")

    def test_skip_delete_keeps_unconfirmed(self, ssl_client, cdn_client, teo_client, run_log, sleeper) -> None:
        targets = self._targets(cdn_client)
        ssl_client.deploy_records = {"slow": [0]}
        report = _rotation(ssl_client, cdn_client, teo_client, run_log, sleeper).run("C", "K", targets)
        assert report.phase is Phase.DONE
        assert report.rebind_timed_out == ["slow"]
        assert report.rebound == ["fast"]
        assert report.delete_skipped == ["slow"]
        assert _deleted(ssl_client) == [["fast"]]
        assert not report.fully_settled

    def test_delete_anyway_matches_legacy_behaviour(self, ssl_client, cdn_client, teo_client, run_log,
                                                     sleeper) -> None:
        targets = self._targets(cdn_client)
        ssl_client.deploy_records = {"slow": [0]}
        settings = RotationSettings(on_rebind_timeout=TimeoutPolicy.DELETE_ANYWAY)
        report = _rotation(ssl_client, cdn_client, teo_client, run_log, sleeper, settings).run("C", "K", targets)
        assert _deleted(ssl_client) == [["slow", "fast"]]
        assert report.delete_skipped == []

    def test_fail_policy_aborts_before_delete(self, ssl_client, cdn_client, teo_client, run_log, sleeper) -> None:
        targets = self._targets(cdn_client)
        ssl_client.deploy_records = {"slow": [0]}
        settings = RotationSettings(on_rebind_timeout=TimeoutPolicy.FAIL)
        service = _rotation(ssl_client, cdn_client, teo_client, run_log, sleeper, settings)
        with pytest.raises(RebindError):
            service.run("C", "K", targets)
        assert service.task.phase is Phase.FAILED
        assert _deleted(ssl_client) == []

    def test_all_rebinds_timed_out_skips_delay_and_delete(self, ssl_client, cdn_client, teo_client, run_log,
                                                          sleeper) -> None:
        cdn_client.bindings = {"a.com": "slow"}
        ssl_client.deploy_records = {"slow": [0]}
        settings = RotationSettings(poll=PollSettings(attempts=3))
        report = _rotation(ssl_client, cdn_client, teo_client, run_log, sleeper, settings).run(
            "C", "K", parse_domains("a.com")
        )
        assert report.phase is Phase.DONE
        assert _deleted(ssl_client) == []
        assert DEFAULT_PROPAGATION_DELAY not in sleeper.calls

    def test_delete_timeout_is_not_fatal_by_default(self, ssl_client, cdn_client, teo_client, run_log,
                                                    sleeper) -> None:
        cdn_client.bindings = {"a.com": "old-1"}
        ssl_client.delete_polls = [[{"TaskId": "task-old-1", "CertId": "old-1", "Status": 0}]]
        report = _rotation(ssl_client, cdn_client, teo_client, run_log, sleeper).run("C", "K", parse_domains("a.com"))
        assert report.phase is Phase.DONE
        assert report.delete_outcome is PollOutcome.TIMED_OUT

    def test_delete_timeout_can_be_escalated(self, ssl_client, cdn_client, teo_client, run_log, sleeper) -> None:
        cdn_client.bindings = {"a.com": "old-1"}
        ssl_client.delete_polls = [[{"TaskId": "task-old-1", "CertId": "old-1", "Status": 0}]]
        settings = RotationSettings(fail_on_delete_timeout=True, poll=PollSettings(attempts=2))
        service = _rotation(ssl_client, cdn_client, teo_client, run_log, sleeper, settings)
        with pytest.raises(DeleteError):
            service.run("C", "K", parse_domains("a.com"))
        assert service.task.phase is Phase.FAILED

    def test_failed_delete_is_not_reported_as_deleted(self, ssl_client, cdn_client, teo_client, run_log,
                                                      sleeper) -> None:
        cdn_client.bindings = {"cdn1.example.com": "old-1"}
        ssl_client.delete_polls = [[{"TaskId": "task-old-1", "CertId": "old-1", "Status": 4, "Domains": []}]]
        report = _rotation(ssl_client, cdn_client, teo_client, run_log, sleeper).run(
            "C", "K", parse_domains("cdn1.example.com")
        )
        assert report.phase is Phase.DONE
        assert report.delete_outcome is PollOutcome.SETTLED
        assert report.deleted == []
        assert report.delete_failed == ["old-1"]
        assert not report.fully_settled
        entry = [e for e in audit_service.get_by_resource("certificate", "new-1")
                 if e.operation == "rotate_certificate"][0]
        assert entry.status == "FAILURE"
        assert entry.details["deleted"] == []
        assert entry.details["delete_failed"] == ["old-1"]

    def test_shortened_intervals(self, ssl_client, cdn_client, teo_client, run_log, sleeper) -> None:
        cdn_client.bindings = {"a.com": "old-1"}
        settings = RotationSettings(propagation_delay=0.0, poll=PollSettings(attempts=5, interval=0.01))
        _rotation(ssl_client, cdn_client, teo_client, run_log, sleeper, settings).run("C", "K", parse_domains("a.com"))
        assert set(sleeper.calls) == {0.0, 0.01}


class TestCertificateTracking:
    def test_tracks_uploads_for_stored_account(self, ssl_client, cdn_client, teo_client, run_log, sleeper) -> None:
        account = config_service.add_account("prod", "AKID123456", "secret")
        with get_session() as session:
            session.add(Certificate(account_id=account.id, cert_id="old-1", alias="previous"))

        cdn_client.bindings = {"a.com": "old-1"}
        _rotation(ssl_client, cdn_client, teo_client, run_log, sleeper, account_id=account.id).run(
            "C", "K", parse_domains("a.com"), alias="current"
        )

        with get_session() as session:
            rows = {c.cert_id: c for c in session.query(Certificate).all()}
            assert rows["new-1"].alias == "current"
            assert rows["new-1"].domains == ["a.com"]
            assert rows["new-1"].is_active
            assert not rows["old-1"].is_active
            assert rows["old-1"].replaced_by_id == rows["new-1"].id

    def test_failed_delete_keeps_old_certificate_active(self, ssl_client, cdn_client, teo_client, run_log,
                                                        sleeper) -> None:
        account = config_service.add_account("prod", "AKID123456", "secret")
        with get_session() as session:
            session.add(Certificate(account_id=account.id, cert_id="old-1", alias="previous"))

        cdn_client.bindings = {"a.com": "old-1"}
        ssl_client.delete_polls = [[{"TaskId": "task-old-1", "CertId": "old-1", "Status": 4, "Domains": []}]]
        _rotation(ssl_client, cdn_client, teo_client, run_log, sleeper, account_id=account.id).run(
            "C", "K", parse_domains("a.com")
        )

        with get_session() as session:
            old = session.query(Certificate).filter_by(cert_id="old-1").one()
            assert old.is_active
            assert old.replaced_by_id is None

    def test_no_tracking_without_account(self, ssl_client, cdn_client, teo_client, run_log, sleeper) -> None:
        _rotation(ssl_client, cdn_client, teo_client, run_log, sleeper).run("C", "K", parse_domains("a.com"))
        with get_session() as session:
            assert session.query(Certificate).count() == 0
