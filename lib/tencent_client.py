import json
from typing import Any, Dict, Optional

from tencentcloud.common.exception.tencent_cloud_sdk_exception import TencentCloudSDKException

from .auth import TencentAuth
from .errors import TencentCloudAPIError
from .rate_limiter import DEFAULT_LIMITER, ActionRateLimiter


def _to_dict(response) -> Dict[str, Any]:
    if response is None:
        return {}
    return json.loads(response.to_json_string())


class TencentCloudClient:
    """SDK adapter base for one Tencent Cloud product.

    Subclasses name the SDK client class and models module for their API
    version and expose one method per action taking and returning plain
    dicts. The SDK signs and sends; this layer rate-limits per action and
    turns TencentCloudSDKException into TencentCloudAPIError. Business logic
    lives in services/.
    """

    SERVICE = ""
    ENDPOINT = ""
    SDK_CLIENT: Any = None
    MODELS: Any = None

    def __init__(
        self,
        auth: TencentAuth,
        endpoint: Optional[str] = None,
        limiter: Optional[ActionRateLimiter] = None,
    ):
        self.auth = auth
        self.endpoint = endpoint or self.ENDPOINT
        self.limiter = limiter or DEFAULT_LIMITER
        self._client = self.SDK_CLIENT(auth.credential, auth.region, auth.client_profile(self.endpoint))

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _call(self, action: str, params: Dict[str, Any]) -> Dict[str, Any]:
        """Send *action* with *params* through the SDK and return the response as a dict."""
        request = getattr(self.MODELS, f"{action}Request")()
        request.from_json_string(json.dumps(params))

        self.limiter.acquire(action)
        try:
            response = getattr(self._client, action)(request)
        except TencentCloudSDKException as e:
            raise TencentCloudAPIError(
                action,
                e.get_message() or "unknown error",
                code=e.get_code(),
                request_id=e.get_request_id(),
            ) from e
        return _to_dict(response)
