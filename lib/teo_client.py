from typing import Dict, List

from tencentcloud.teo.v20220901 import models, teo_client

from .tencent_client import TencentCloudClient


class TEOClient(TencentCloudClient):
    """SDK adapter for Tencent Cloud EdgeOne (teo/2022-09-01)."""

    SERVICE = "teo"
    ENDPOINT = "teo.tencentcloudapi.com"
    SDK_CLIENT = teo_client.TeoClient
    MODELS = models

    def describe_acceleration_domains(
        self, zone_id: str, domains: List[str], offset: int = 0, limit: int = 200
    ) -> Dict:
        """Return the acceleration domains of *zone_id* whose name is in *domains*."""
        return self._call("DescribeAccelerationDomains", {
            "ZoneId": zone_id,
            "Offset": offset,
            "Limit": limit,
            "Filters": [{"Name": "domain-name", "Values": list(domains)}],
        })
