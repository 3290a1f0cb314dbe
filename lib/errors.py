"""Exception hierarchy shared by the lib, services and CLI layers.

Fatal conditions are exceptions; polling timeouts are not (see
services/polling.py), so callers decide whether a slow remote task is worth
failing the run for.
"""

from typing import Optional


class CertRotateError(Exception):
    """Base class for every error that should abort a rotation run."""


class ConfigurationError(CertRotateError):
    """A required input (credential, file path, domains) is missing."""


class CertificateFileError(CertRotateError):
    """The certificate chain or private key file could not be read."""


class TencentCloudAPIError(CertRotateError):
    """A Tencent Cloud API call failed.

    Wraps every TencentCloudSDKException: network failures raised by the SDK
    and the API-level ``Response.Error`` it surfaces, with code and RequestId.
    """

    def __init__(
        self,
        action: str,
        message: str,
        code: Optional[str] = None,
        request_id: Optional[str] = None,
    ):
        self.action = action
        self.code = code
        self.request_id = request_id
        detail = f"{action} failed"
        if code:
            detail += f" [{code}]"
        detail += f": {message}"
        if request_id:
            detail += f" (RequestId={request_id})"
        super().__init__(detail)


class UploadError(CertRotateError):
    """The new certificate could not be uploaded, or no id came back."""


class DiscoveryError(CertRotateError):
    """A CDN or EdgeOne binding query failed."""


class RebindError(CertRotateError):
    """UpdateCertificateInstance failed, or a rebind timeout was escalated."""


class DeleteError(CertRotateError):
    """Submitting or polling the certificate deletion failed."""
