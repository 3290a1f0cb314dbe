"""Certificate store operations: upload the new certificate, delete old ones.

Deletion is submitted once for every id and then polled until each
per-certificate task settles. A task that settles as a failure (statuses 2-5)
still counts as settled; its certificate is logged with the reason and
returned in DeleteResult.failed instead of being treated as deleted.
"""

import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from lib.errors import DeleteError, TencentCloudAPIError, UploadError
from lib.run_log import RunLog
from lib.ssl_client import SSLClient
from services import audit_service
from services.polling import PollOutcome, PollResult, PollSettings, poll_until

DELETE_IN_PROGRESS = 0
DELETE_COMPLETED = 1

DELETE_STATUS: Dict[int, str] = {
    0: "In progress",
    1: "Completed",
    2: "Failed",
    3: "Unauthorized, need SSL_QCSLinkedRoleInReplaceLoadCertificate role",
    4: "Failed because the certificate is in use by other resources",
    5: "Internal timeout",
}


def describe_delete_status(status) -> str:
    """Human-readable description of a delete task status code."""
    return DELETE_STATUS.get(status, str(status))


def format_delete_task(task: Dict) -> str:
    return "\t".join([
        str(task.get("TaskId", "")),
        str(task.get("CertId", "")),
        describe_delete_status(task.get("Status")),
        task.get("Error") or "",
        ",".join(task.get("Domains") or []),
    ])


def all_tasks_settled(tasks: List[Dict]) -> bool:
    return all(t.get("Status") != DELETE_IN_PROGRESS for t in tasks)


@dataclass
class DeleteResult(PollResult):
    failed: List[str] = field(default_factory=list)  # CertIds whose task settled unsuccessfully


class CertificateService:
    def __init__(
        self,
        client: SSLClient,
        log: RunLog,
        poll: Optional[PollSettings] = None,
        sleep: Callable[[float], None] = time.sleep,
        account_id: Optional[int] = None,
    ):
        self.client = client
        self.log = log
        self.poll = poll or PollSettings()
        self.sleep = sleep
        self.account_id = account_id

    # ------------------------------------------------------------------
    # Upload
    # ------------------------------------------------------------------

    def upload(self, cert_pem: str, key_pem: str, alias: Optional[str] = None) -> str:
        """Upload the certificate pair and return its CertificateId.

        Raises UploadError on any API failure or when no id comes back.
        """
        with self.log.group("Uploading certificate to Tencent SSL service..."):
            try:
                resp = self.client.upload_certificate(cert_pem, key_pem, alias)
            except TencentCloudAPIError as e:
                self.log.error(f"UploadCertificate failed: {e}")
                self._audit_upload(audit_service.FAILURE, alias=alias, error=str(e))
                raise UploadError(str(e)) from e

            cert_id = resp.get("CertificateId")
            if not cert_id:
                self.log.error("UploadCertificate did not return a CertificateId")
                self._audit_upload(audit_service.FAILURE, alias=alias, error="no CertificateId in response")
                raise UploadError("UploadCertificate did not return a CertificateId")

            self.log.info(f"Uploaded certificate, CertificateId={cert_id}")
            self._audit_upload(audit_service.SUCCESS, cert_id=cert_id, alias=alias)
            return cert_id

    def _audit_upload(self, status: str, cert_id=None, alias=None, error=None) -> None:
        audit_service.log(
            product="SSL",
            operation="upload_certificate",
            action="CREATE",
            status=status,
            account_id=self.account_id,
            resource_type=audit_service.CERTIFICATE,
            resource_id=cert_id,
            resource_name=alias,
            error_message=error,
        )

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    def delete(self, cert_ids: List[str]) -> DeleteResult:
        """Delete *cert_ids* and wait for every deletion task to settle.

        Returns TIMED_OUT (after logging an error) if tasks are still in
        progress when the polling budget runs out. Certificates whose task
        settled with any status other than completed come back in
        ``failed`` and are audited as failures. Raises DeleteError only when
        the API itself fails.
        """
        cert_ids = list(cert_ids)
        with self.log.group("Deleting certificates: " + ", ".join(cert_ids)):
            try:
                resp = self.client.delete_certificates(cert_ids, is_sync=True)
            except TencentCloudAPIError as e:
                self.log.error(str(e))
                self._audit_delete(cert_ids, audit_service.FAILURE, error=str(e))
                raise DeleteError(str(e)) from e

            self.log.info("Success: DeleteCertificates")
            self.log.echo_json(resp)

            cert_tasks = resp.get("CertTaskIds") or []
            self.log.echo_json(cert_tasks)
            task_ids = [t["TaskId"] for t in cert_tasks if t.get("TaskId")]

            if not task_ids:
                self.log.info("DeleteCertificates returned no tasks to wait for")
                self._audit_delete(cert_ids, audit_service.SUCCESS, details={"task_ids": []})
                return DeleteResult(PollOutcome.SETTLED, 0)

            last_tasks: List[Dict] = []

            def check() -> bool:
                try:
                    data = self.client.describe_delete_certificates_task_result(task_ids)
                except TencentCloudAPIError as e:
                    self.log.error(str(e))
                    raise DeleteError(str(e)) from e
                self.log.info("Success: DescribeDeleteCertificatesTaskResult")
                self.log.echo_json(data)

                tasks = data.get("DeleteTaskResult") or []
                self.log.info("\n".join(format_delete_task(t) for t in tasks))
                last_tasks[:] = tasks
                return all_tasks_settled(tasks)

            result = poll_until(
                check,
                self.poll,
                sleep=self.sleep,
                on_attempt=lambda i, n: self.log.info(f"Waiting for delete task to complete... ({i}/{n})"),
            )

            details = {"task_ids": task_ids}
            if not result.settled:
                self.log.error("Delete task timeout")
                self._audit_delete(cert_ids, audit_service.TIMEOUT, details=details)
                return DeleteResult(result.outcome, result.attempts)

            failed: List[str] = []
            for task in last_tasks:
                if task.get("Status") == DELETE_COMPLETED:
                    continue
                cert_id = task.get("CertId")
                reason = describe_delete_status(task.get("Status"))
                if task.get("Error"):
                    reason += f" ({task['Error']})"
                self.log.warning(f"Certificate {cert_id} not deleted: {reason}")
                self._audit_delete([cert_id], audit_service.FAILURE, details=details, error=reason)
                failed.append(cert_id)

            self.log.info("Delete task completed")
            self._audit_delete([c for c in cert_ids if c not in failed], audit_service.SUCCESS, details=details)
            return DeleteResult(result.outcome, result.attempts, failed=failed)

    def _audit_delete(self, cert_ids: List[str], status: str, details=None, error=None) -> None:
        for cert_id in cert_ids:
            audit_service.log(
                product="SSL",
                operation="delete_certificate",
                action="DELETE",
                status=status,
                account_id=self.account_id,
                resource_type=audit_service.CERTIFICATE,
                resource_id=cert_id,
                details=details,
                error_message=error,
            )
