from typing import Dict, List, Optional

from tencentcloud.ssl.v20191205 import models, ssl_client

from .tencent_client import TencentCloudClient


class SSLClient(TencentCloudClient):
    """SDK adapter for the Tencent Cloud SSL Certificate service (ssl/2019-12-05)."""

    SERVICE = "ssl"
    ENDPOINT = "ssl.tencentcloudapi.com"
    SDK_CLIENT = ssl_client.SslClient
    MODELS = models

    # ------------------------------------------------------------------
    # Certificates
    # ------------------------------------------------------------------

    def upload_certificate(self, public_key: str, private_key: str, alias: Optional[str] = None) -> Dict:
        """Upload a certificate chain + private key. Response carries CertificateId."""
        params = {
            "CertificatePublicKey": public_key,
            "CertificatePrivateKey": private_key,
        }
        if alias:
            params["Alias"] = alias
        return self._call("UploadCertificate", params)

    def update_certificate_instance(
        self,
        old_cert_id: str,
        new_cert_id: str,
        resource_types: List[str],
        expiring_notification: bool = True,
    ) -> Dict:
        """Point every resource of *resource_types* using *old_cert_id* at *new_cert_id*.

        Re-entrant: reissuing the identical request reports progress through
        DeployRecordId instead of starting a second deployment.
        """
        return self._call("UpdateCertificateInstance", {
            "OldCertificateId": old_cert_id,
            "CertificateId": new_cert_id,
            "ResourceTypes": list(resource_types),
            "ExpiringNotificationSwitch": 1 if expiring_notification else 0,
        })

    # ------------------------------------------------------------------
    # Deletion
    # ------------------------------------------------------------------

    def delete_certificates(self, cert_ids: List[str], is_sync: bool = True) -> Dict:
        return self._call("DeleteCertificates", {
            "CertificateIds": list(cert_ids),
            "IsSync": is_sync,
        })

    def describe_delete_certificates_task_result(self, task_ids: List[str]) -> Dict:
        return self._call("DescribeDeleteCertificatesTaskResult", {"TaskIds": list(task_ids)})
