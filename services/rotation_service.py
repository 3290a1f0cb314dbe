"""Certificate rotation workflow.

Composes the certificate store, binding discovery and rebind services into
one run:

1. Upload the new certificate
2. Discover old certificate ids bound to the CDN domains and EdgeOne zones
3. Merge them into one deduplicated list, never including the new id
4. Rebind each old id to the new one, strictly one at a time
5. Wait for the change to propagate
6. Delete the superseded certificates and wait for the deletion tasks

Any fatal error (upload, discovery, API failure) stops the run in the FAILED
phase and propagates. The uploaded certificate is never rolled back.
Polling timeouts are returned as values and handled by RotationSettings.
"""

import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, List, Optional

from db.database import get_session
from db.models import Certificate
from lib.domain_spec import DomainTargets
from lib.errors import DeleteError, RebindError
from lib.run_log import RunLog
from services import audit_service
from services.certificate_service import CertificateService
from services.discovery_service import DiscoveryService
from services.polling import PollOutcome, PollSettings
from services.rebind_service import RebindService

DEFAULT_PROPAGATION_DELAY = 60.0  # seconds between the last rebind and the delete


class Phase(Enum):
    UPLOADING = "uploading"
    DISCOVERING = "discovering"
    ROTATING = "rotating"
    DELAYING = "delaying"
    DELETING = "deleting"
    DONE = "done"
    FAILED = "failed"


class TimeoutPolicy(Enum):
    """What to do with an old certificate whose rebind timed out."""

    SKIP_DELETE = "skip-delete"      # keep it; only delete confirmed rebinds
    DELETE_ANYWAY = "delete-anyway"  # delete it regardless (legacy behaviour)
    FAIL = "fail"                    # abort the run before deleting anything


@dataclass
class RotationSettings:
    propagation_delay: float = DEFAULT_PROPAGATION_DELAY
    poll: PollSettings = field(default_factory=PollSettings)
    on_rebind_timeout: TimeoutPolicy = TimeoutPolicy.SKIP_DELETE
    fail_on_delete_timeout: bool = False


@dataclass
class RotationTask:
    new_cert_id: Optional[str] = None
    old_cert_ids: List[str] = field(default_factory=list)
    phase: Phase = Phase.UPLOADING


@dataclass
class RotationReport:
    new_cert_id: Optional[str]
    phase: Phase
    old_cert_ids: List[str] = field(default_factory=list)
    rebound: List[str] = field(default_factory=list)
    rebind_timed_out: List[str] = field(default_factory=list)
    deleted: List[str] = field(default_factory=list)
    delete_skipped: List[str] = field(default_factory=list)
    delete_failed: List[str] = field(default_factory=list)
    delete_outcome: Optional[PollOutcome] = None

    @property
    def fully_settled(self) -> bool:
        return (
            not self.rebind_timed_out
            and not self.delete_failed
            and self.delete_outcome is not PollOutcome.TIMED_OUT
        )


def _rotation_status(report: RotationReport) -> str:
    if report.delete_failed:
        return audit_service.FAILURE
    return audit_service.SUCCESS if report.fully_settled else audit_service.TIMEOUT


def merge_old_cert_ids(new_cert_id: str, *sources: List[Optional[str]]) -> List[str]:
    """Union the ids from every source, dropping blanks and the new id itself."""
    merged: Dict[str, None] = {}
    for source in sources:
        for cert_id in source:
            if cert_id and cert_id != new_cert_id:
                merged.setdefault(cert_id, None)
    return list(merged)


def build_alias(targets: DomainTargets, now: Optional[float] = None) -> str:
    """Name shown in the SSL console for the uploaded certificate."""
    first = next(iter(targets.cdn_domains), None)
    if first is None:
        first = next((d for domains in targets.edge_entries.values() for d in domains), "certificate")
    stamp = int(time.time() if now is None else now)
    return f"{first.replace('*.', 'wildcard-')}-{stamp}"


class RotationService:
    def __init__(
        self,
        certificates: CertificateService,
        discovery: DiscoveryService,
        rebinder: RebindService,
        log: RunLog,
        settings: Optional[RotationSettings] = None,
        sleep: Callable[[float], None] = time.sleep,
        account_id: Optional[int] = None,
    ):
        self.certificates = certificates
        self.discovery = discovery
        self.rebinder = rebinder
        self.log = log
        self.settings = settings or RotationSettings()
        self.sleep = sleep
        self.account_id = account_id
        self.task = RotationTask()

    # ------------------------------------------------------------------
    # Certificate rotation (primary workflow)
    # ------------------------------------------------------------------

    def run(
        self,
        cert_pem: str,
        key_pem: str,
        targets: DomainTargets,
        alias: Optional[str] = None,
    ) -> RotationReport:
        """Rotate *targets* onto the certificate in *cert_pem*/*key_pem*.

        Returns a RotationReport on success (including the nothing-to-rotate
        case). Raises the underlying CertRotateError on a fatal failure, with
        ``self.task.phase`` left at FAILED.
        """
        self.task = RotationTask()
        report = RotationReport(new_cert_id=None, phase=Phase.UPLOADING)
        try:
            self._run(cert_pem, key_pem, targets, alias, report)
        except Exception as e:
            self._enter(Phase.FAILED, report)
            audit_service.log(
                product="SSL",
                operation="rotate_certificate",
                action="UPDATE",
                status=audit_service.FAILURE,
                account_id=self.account_id,
                resource_type=audit_service.CERTIFICATE,
                resource_id=self.task.new_cert_id,
                details={"old_cert_ids": self.task.old_cert_ids},
                error_message=str(e),
            )
            raise
        return report

    def _run(self, cert_pem, key_pem, targets: DomainTargets, alias, report: RotationReport) -> None:
        # Step 1: upload new cert
        alias = alias or build_alias(targets)
        new_cert_id = self.certificates.upload(cert_pem, key_pem, alias)
        self.task.new_cert_id = report.new_cert_id = new_cert_id
        self._record_certificate(new_cert_id, alias, targets)

        # Step 2: discover bindings
        self._enter(Phase.DISCOVERING, report)
        cdn_ids: List[Optional[str]] = []
        if targets.cdn_domains:
            cdn_ids = [b.cert_id for b in self.discovery.query_cdn_bindings(targets.cdn_domains)]
        edge_ids: List[str] = []
        if targets.has_edge_domains:
            edge_ids = self.discovery.query_edge_bindings(targets.edge_entries)

        old_ids = merge_old_cert_ids(new_cert_id, cdn_ids, edge_ids)
        self.task.old_cert_ids = report.old_cert_ids = old_ids

        if not old_ids:
            self.log.info("No existing certificate bindings found for CDN or EdgeOne domains.")
            self._finish(report)
            return

        self.log.info(f"Old certificate ids to rotate: {', '.join(old_ids)}")

        # Step 3: rebind, one old certificate at a time
        self._enter(Phase.ROTATING, report)
        for old_id in old_ids:
            result = self.rebinder.rebind(old_id, new_cert_id)
            if result.settled:
                report.rebound.append(old_id)
                continue
            report.rebind_timed_out.append(old_id)
            if self.settings.on_rebind_timeout is TimeoutPolicy.FAIL:
                raise RebindError(f"Rebinding {old_id} -> {new_cert_id} did not complete in time")

        to_delete = self._select_for_delete(report)
        if not to_delete:
            self.log.warning("No rebind was confirmed; old certificates are left in place.")
            self._finish(report)
            return

        # Step 4: let the rebinding propagate
        self._enter(Phase.DELAYING, report)
        self.log.info(f"Waiting {self.settings.propagation_delay:g} seconds before deleting old certificates...")
        self.sleep(self.settings.propagation_delay)

        # Step 5: delete superseded certs
        self._enter(Phase.DELETING, report)
        delete_result = self.certificates.delete(to_delete)
        report.delete_outcome = delete_result.outcome
        report.delete_failed = list(delete_result.failed)
        report.deleted = [c for c in to_delete if c not in report.delete_failed]
        self._mark_certificates_replaced(report.deleted, new_cert_id)
        if not delete_result.settled and self.settings.fail_on_delete_timeout:
            raise DeleteError("Deleting old certificates did not complete in time")

        self._finish(report)

    def _select_for_delete(self, report: RotationReport) -> List[str]:
        if not report.rebind_timed_out:
            return list(report.old_cert_ids)
        if self.settings.on_rebind_timeout is TimeoutPolicy.DELETE_ANYWAY:
            self.log.warning(
                "Deleting certificates whose rebind timed out: " + ", ".join(report.rebind_timed_out)
            )
            return list(report.old_cert_ids)
        report.delete_skipped = list(report.rebind_timed_out)
        self.log.warning(
            "Keeping certificates whose rebind timed out: " + ", ".join(report.delete_skipped)
        )
        return list(report.rebound)

    def _enter(self, phase: Phase, report: RotationReport) -> None:
        self.task.phase = report.phase = phase

    def _finish(self, report: RotationReport) -> None:
        self._enter(Phase.DONE, report)
        audit_service.log(
            product="SSL",
            operation="rotate_certificate",
            action="UPDATE",
            status=_rotation_status(report),
            account_id=self.account_id,
            resource_type=audit_service.CERTIFICATE,
            resource_id=report.new_cert_id,
            details={
                "old_cert_ids": report.old_cert_ids,
                "rebound": report.rebound,
                "rebind_timed_out": report.rebind_timed_out,
                "deleted": report.deleted,
                "delete_skipped": report.delete_skipped,
                "delete_failed": report.delete_failed,
                "delete_outcome": report.delete_outcome.value if report.delete_outcome else None,
            },
        )

    # ------------------------------------------------------------------
    # Certificate tracking
    # ------------------------------------------------------------------

    def _record_certificate(self, cert_id: str, alias: str, targets: DomainTargets) -> None:
        if self.account_id is None:
            return
        try:
            with get_session() as session:
                session.add(Certificate(
                    account_id=self.account_id,
                    cert_id=cert_id,
                    alias=alias,
                    domains=targets.render().splitlines(),
                    uploaded_at=datetime.utcnow(),
                ))
        except Exception:
            pass  # DB tracking is best-effort; never fail the rotation

    def _mark_certificates_replaced(self, old_ids: List[str], new_id: str) -> None:
        if self.account_id is None:
            return
        try:
            with get_session() as session:
                new = session.query(Certificate).filter_by(
                    account_id=self.account_id, cert_id=new_id
                ).first()
                olds = session.query(Certificate).filter(
                    Certificate.account_id == self.account_id,
                    Certificate.cert_id.in_(old_ids),
                    Certificate.is_active.is_(True),
                ).all()
                for old in olds:
                    old.is_active = False
                    if new:
                        old.replaced_by_id = new.id
        except Exception:
            pass
