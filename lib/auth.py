from typing import Optional

from tencentcloud.common import credential
from tencentcloud.common.profile.client_profile import ClientProfile
from tencentcloud.common.profile.http_profile import HttpProfile

SIGN_METHOD = "TC3-HMAC-SHA256"


class TencentAuth:
    """Tencent Cloud credential shared across the SSL, CDN and TEO clients.

    Build one instance at process start and pass it to every product client.
    Each client gets the same ``credential.Credential`` object and a
    ClientProfile pointing at its own endpoint; signing is left to the SDK.
    """

    def __init__(
        self,
        secret_id: str,
        secret_key: str,
        region: str = "",
        token: Optional[str] = None,
        timeout: int = 30,
    ):
        self.credential = credential.Credential(secret_id, secret_key, token)
        self.region = region
        self.timeout = timeout

    def __repr__(self) -> str:
        return f"<TencentAuth secret_id={self.credential.secret_id[:6]}... region={self.region!r}>"

    def client_profile(self, endpoint: str) -> ClientProfile:
        """ClientProfile for one product endpoint, English error messages."""
        http_profile = HttpProfile()
        http_profile.endpoint = endpoint
        http_profile.reqMethod = "POST"
        http_profile.reqTimeout = self.timeout
        return ClientProfile(signMethod=SIGN_METHOD, httpProfile=http_profile, language="en-US")
