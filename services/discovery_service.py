"""Binding discovery: which certificate ids are bound to the requested domains.

Two independent query paths, CDN domains and EdgeOne zones. Any API error
aborts discovery; rotating against a partial view of the bindings could
delete a certificate that is still serving traffic.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional

from lib.cdn_client import CDNClient
from lib.errors import DiscoveryError, TencentCloudAPIError
from lib.run_log import RunLog
from lib.teo_client import TEOClient
from services import audit_service


@dataclass
class CdnBinding:
    domain: str
    cert_id: Optional[str]


class DiscoveryService:
    def __init__(
        self,
        cdn: CDNClient,
        teo: TEOClient,
        log: RunLog,
        account_id: Optional[int] = None,
    ):
        self.cdn = cdn
        self.teo = teo
        self.log = log
        self.account_id = account_id

    # ------------------------------------------------------------------
    # CDN
    # ------------------------------------------------------------------

    def query_cdn_bindings(self, domains: List[str]) -> List[CdnBinding]:
        """Return the HTTPS certificate bound to each CDN domain (None if plain HTTP).

        Single page of up to 1000 domains; there is no pagination loop.
        """
        with self.log.group("Querying CDN domain certificate bindings..."):
            try:
                data = self.cdn.describe_domains_config(list(domains), offset=0, limit=1000)
            except TencentCloudAPIError as e:
                self.log.error(str(e))
                self._audit("CDN", "query_cdn_bindings", audit_service.FAILURE, "cdn_domain",
                            details={"domains": list(domains)}, error=str(e))
                raise DiscoveryError(str(e)) from e

            self.log.info("Success: DescribeDomainsConfig")
            self.log.echo_json(data)

            bindings = [
                CdnBinding(
                    domain=record.get("Domain"),
                    cert_id=((record.get("Https") or {}).get("CertInfo") or {}).get("CertId") or None,
                )
                for record in data.get("Domains") or []
            ]
            self.log.echo_json([{"domain": b.domain, "certId": b.cert_id} for b in bindings])
            self._audit("CDN", "query_cdn_bindings", audit_service.SUCCESS, "cdn_domain",
                        details={"bindings": {b.domain: b.cert_id for b in bindings}})
            return bindings

    # ------------------------------------------------------------------
    # EdgeOne
    # ------------------------------------------------------------------

    def query_edge_bindings(self, entries: Dict[str, List[str]]) -> List[str]:
        """Return the distinct certificate ids used by the requested EdgeOne domains.

        One query per zone; zones without an id or without domains are
        skipped. Ids are unioned across zones, in discovery order.
        """
        found: Dict[str, None] = {}
        with self.log.group("Querying EdgeOne domain certificate bindings..."):
            try:
                for zone_id, domains in entries.items():
                    if not zone_id or not domains:
                        continue
                    self._query_zone(zone_id, list(domains), found)
            finally:
                self.log.info(f"EdgeOne-related old certificate ids: {', '.join(found) or '(none)'}")
        return list(found)

    def _query_zone(self, zone_id: str, domains: List[str], found: Dict[str, None]) -> None:
        self.log.info(f"Querying DescribeAccelerationDomains for zone {zone_id} ({len(domains)} domains)")
        try:
            resp = self.teo.describe_acceleration_domains(zone_id, domains)
        except TencentCloudAPIError as e:
            self.log.error(str(e))
            self._audit("TEO", "query_edge_bindings", audit_service.FAILURE, "edge_zone",
                        resource_id=zone_id, details={"domains": domains}, error=str(e))
            raise DiscoveryError(str(e)) from e

        self.log.info("Success: DescribeAccelerationDomains")
        self.log.echo_json(resp)

        zone_certs: List[str] = []
        for record in resp.get("AccelerationDomains") or []:
            name = record.get("DomainName") or record.get("Domain")
            if not name or name not in domains:
                continue
            for cert in (record.get("Certificate") or {}).get("List") or []:
                if cert_id := cert.get("CertId"):
                    found.setdefault(cert_id, None)
                    zone_certs.append(cert_id)

        self._audit("TEO", "query_edge_bindings", audit_service.SUCCESS, "edge_zone",
                    resource_id=zone_id, details={"domains": domains, "cert_ids": zone_certs})

    def _audit(self, product, operation, status, resource_type, resource_id=None, details=None, error=None):
        audit_service.log(
            product=product,
            operation=operation,
            action="READ",
            status=status,
            account_id=self.account_id,
            resource_type=resource_type,
            resource_id=resource_id,
            details=details,
            error_message=error,
        )
