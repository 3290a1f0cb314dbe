"""Rebind every resource using an old certificate onto the new one.

UpdateCertificateInstance is re-entrant, so the same request doubles as the
status poll: it is reissued once per interval until the response carries a
non-zero DeployRecordId.

Callers must rebind one old certificate at a time. Concurrent rebinds
multiply the API rate and interleave the poll output of different
certificates in the run log.
"""

import time
from typing import Callable, Dict, Optional, Sequence

from lib.errors import RebindError, TencentCloudAPIError
from lib.run_log import RunLog
from lib.ssl_client import SSLClient
from services import audit_service
from services.polling import PollResult, PollSettings, poll_until

RESOURCE_TYPES = ("cdn", "teo")


def deployment_recorded(resp: Dict) -> bool:
    return bool(resp.get("DeployRecordId"))


class RebindService:
    def __init__(
        self,
        client: SSLClient,
        log: RunLog,
        poll: Optional[PollSettings] = None,
        sleep: Callable[[float], None] = time.sleep,
        resource_types: Sequence[str] = RESOURCE_TYPES,
        account_id: Optional[int] = None,
    ):
        self.client = client
        self.log = log
        self.poll = poll or PollSettings()
        self.sleep = sleep
        self.resource_types = list(resource_types)
        self.account_id = account_id

    def rebind(self, old_cert_id: str, new_cert_id: str) -> PollResult:
        """Move *old_cert_id*'s CDN/EdgeOne bindings to *new_cert_id*.

        Returns TIMED_OUT (after logging an error) when no deploy record
        appears within the polling budget. Raises RebindError on API errors.
        """
        with self.log.group(f"Updating certificate binding: {old_cert_id} -> {new_cert_id}"):
            self._update(old_cert_id, new_cert_id)

            result = poll_until(
                lambda: deployment_recorded(self._update(old_cert_id, new_cert_id)),
                self.poll,
                sleep=self.sleep,
                on_attempt=lambda i, n: self.log.info(f"Waiting for update task to complete... ({i}/{n})"),
            )

            if result.settled:
                self.log.info("Update task completed")
                status = audit_service.SUCCESS
            else:
                self.log.error("Update task timeout")
                status = audit_service.TIMEOUT

            audit_service.log(
                product="SSL",
                operation="rebind_certificate",
                action="UPDATE",
                status=status,
                account_id=self.account_id,
                resource_type=audit_service.CERTIFICATE,
                resource_id=old_cert_id,
                details={"new_cert_id": new_cert_id, "attempts": result.attempts,
                         "resource_types": self.resource_types},
            )
            return result

    def _update(self, old_cert_id: str, new_cert_id: str) -> Dict:
        try:
            resp = self.client.update_certificate_instance(
                old_cert_id,
                new_cert_id,
                self.resource_types,
                expiring_notification=True,
            )
        except TencentCloudAPIError as e:
            self.log.error(str(e))
            audit_service.log(
                product="SSL",
                operation="rebind_certificate",
                action="UPDATE",
                status=audit_service.FAILURE,
                account_id=self.account_id,
                resource_type=audit_service.CERTIFICATE,
                resource_id=old_cert_id,
                details={"new_cert_id": new_cert_id},
                error_message=str(e),
            )
            raise RebindError(str(e)) from e
        self.log.echo_json(resp)
        return resp
