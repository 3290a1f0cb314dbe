from typing import Dict, List

from tencentcloud.cdn.v20180606 import cdn_client, models

from .tencent_client import TencentCloudClient


class CDNClient(TencentCloudClient):
    """SDK adapter for the Tencent Cloud CDN service (cdn/2018-06-06)."""

    SERVICE = "cdn"
    ENDPOINT = "cdn.tencentcloudapi.com"
    SDK_CLIENT = cdn_client.CdnClient
    MODELS = models

    def describe_domains_config(self, domains: List[str], offset: int = 0, limit: int = 1000) -> Dict:
        """Return the full configuration of the CDN domains named in *domains*."""
        return self._call("DescribeDomainsConfig", {
            "Offset": offset,
            "Limit": limit,
            "Filters": [{"Name": "domain", "Value": list(domains)}],
        })
