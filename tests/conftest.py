"""Shared fixtures: isolated database, quiet run log, in-memory cloud fakes."""

from __future__ import annotations

import io
from typing import Any, Dict, List, Optional

import pytest
from cryptography.fernet import Fernet
from rich.console import Console

from db.database import init_db
from lib.errors import TencentCloudAPIError
from lib.run_log import RunLog

_ENV_TO_CLEAR = [
    "GITHUB_ACTIONS",
    "GITHUB_OUTPUT",
    "TENCENTCLOUD_SECRET_ID",
    "TENCENTCLOUD_SECRET_KEY",
    "TENCENTCLOUD_REGION",
    "CERT_FULLCHAIN_PATH",
    "CERT_KEY_PATH",
    "TC_CERT_DOMAINS",
    "INPUT_SECRET-ID",
    "INPUT_SECRET-KEY",
    "INPUT_FULLCHAIN-FILE",
    "INPUT_KEY-FILE",
    "INPUT_DOMAINS",
]


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    for name in _ENV_TO_CLEAR:
        monkeypatch.delenv(name, raising=False)
    db_url = f"sqlite:///{tmp_path / 'tc-cert.db'}"
    monkeypatch.setenv("TC_CERT_DB_URL", db_url)
    monkeypatch.setenv("TC_CERT_SECRET_KEY", Fernet.generate_key().decode())
    monkeypatch.setenv("TC_CERT_KEY_FILE", str(tmp_path / "secret.key"))
    init_db(db_url)
    yield


@pytest.fixture
def run_log() -> RunLog:
    return RunLog(console=Console(file=io.StringIO(), width=200), github_actions=False)


class SleepRecorder:
    """Stands in for time.sleep; records every requested delay."""

    def __init__(self) -> None:
        self.calls: List[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def sleeper() -> SleepRecorder:
    return SleepRecorder()


# ---------------------------------------------------------------------------
# Cloud fakes
# ---------------------------------------------------------------------------


def _next(sequence: List[Any]) -> Any:
    """Pop the next scripted value; the last one repeats forever."""
    return sequence.pop(0) if len(sequence) > 1 else sequence[0]


class FakeSSLClient:
    """In-memory SSL service.

    ``deploy_records`` maps an old certificate id to the DeployRecordId values
    returned by successive UpdateCertificateInstance calls (first call first).
    ``delete_polls`` holds the DeleteTaskResult lists returned by successive
    DescribeDeleteCertificatesTaskResult calls; ``None`` means "every task
    completed".
    """

    def __init__(self) -> None:
        self.calls: List[tuple] = []
        self.new_cert_id: Optional[str] = "new-1"
        self.upload_error: Optional[Exception] = None
        self.update_error: Optional[Exception] = None
        self.delete_error: Optional[Exception] = None
        self.describe_error: Optional[Exception] = None
        self.deploy_records: Dict[str, List[int]] = {}
        self.default_deploy_records: List[int] = [0, 1001]
        self.delete_polls: Optional[List[List[Dict]]] = None

    def upload_certificate(self, public_key, private_key, alias=None):
        self.calls.append(("UploadCertificate", {"alias": alias}))
        if self.upload_error:
            raise self.upload_error
        resp = {"RequestId": "req-upload"}
        if self.new_cert_id:
            resp["CertificateId"] = self.new_cert_id
        return resp

    def update_certificate_instance(self, old_cert_id, new_cert_id, resource_types, expiring_notification=True):
        self.calls.append(("UpdateCertificateInstance", {
            "OldCertificateId": old_cert_id,
            "CertificateId": new_cert_id,
            "ResourceTypes": list(resource_types),
            "ExpiringNotificationSwitch": 1 if expiring_notification else 0,
        }))
        if self.update_error:
            raise self.update_error
        records = self.deploy_records.setdefault(old_cert_id, list(self.default_deploy_records))
        return {"DeployRecordId": _next(records), "RequestId": "req-update"}

    def delete_certificates(self, cert_ids, is_sync=True):
        self.calls.append(("DeleteCertificates", {"CertificateIds": list(cert_ids), "IsSync": is_sync}))
        if self.delete_error:
            raise self.delete_error
        self._deleting = list(cert_ids)
        return {
            "CertTaskIds": [{"CertId": c, "TaskId": f"task-{c}"} for c in cert_ids],
            "RequestId": "req-delete",
        }

    def describe_delete_certificates_task_result(self, task_ids):
        self.calls.append(("DescribeDeleteCertificatesTaskResult", {"TaskIds": list(task_ids)}))
        if self.describe_error:
            raise self.describe_error
        if self.delete_polls is None:
            tasks = [
                {"TaskId": f"task-{c}", "CertId": c, "Status": 1, "Domains": []}
                for c in self._deleting
            ]
        else:
            tasks = _next(self.delete_polls)
        return {"DeleteTaskResult": tasks, "RequestId": "req-describe"}

    def actions(self) -> List[str]:
        return [action for action, _ in self.calls]

    def rebinds(self) -> List[tuple]:
        """Distinct (old, new) pairs that UpdateCertificateInstance was issued for."""
        pairs: List[tuple] = []
        for action, params in self.calls:
            if action == "UpdateCertificateInstance":
                pair = (params["OldCertificateId"], params["CertificateId"])
                if pair not in pairs:
                    pairs.append(pair)
        return pairs


class FakeCDNClient:
    """In-memory CDN service; ``bindings`` maps domain -> cert id (or None)."""

    def __init__(self, bindings: Optional[Dict[str, Optional[str]]] = None) -> None:
        self.bindings = bindings or {}
        self.calls: List[Dict] = []
        self.error: Optional[Exception] = None

    def describe_domains_config(self, domains, offset=0, limit=1000):
        self.calls.append({"domains": list(domains), "offset": offset, "limit": limit})
        if self.error:
            raise self.error
        records = []
        for domain in domains:
            if domain not in self.bindings:
                continue
            cert_id = self.bindings[domain]
            https = {"Switch": "on", "CertInfo": {"CertId": cert_id}} if cert_id else {"Switch": "off"}
            records.append({"Domain": domain, "Https": https})
        return {"Domains": records, "TotalNumber": len(records)}


class FakeTEOClient:
    """In-memory EdgeOne service; ``zones`` maps zone id -> {domain: [cert ids]}."""

    def __init__(self, zones: Optional[Dict[str, Dict[str, List[str]]]] = None) -> None:
        self.zones = zones or {}
        self.calls: List[Dict] = []
        self.error: Optional[Exception] = None

    def describe_acceleration_domains(self, zone_id, domains, offset=0, limit=200):
        self.calls.append({"zone_id": zone_id, "domains": list(domains)})
        if self.error:
            raise self.error
        records = [
            {
                "DomainName": name,
                "Certificate": {"Mode": "sslcert", "List": [{"CertId": c} for c in certs]},
            }
            for name, certs in self.zones.get(zone_id, {}).items()
        ]
        return {"AccelerationDomains": records, "TotalCount": len(records)}


def api_error(action: str = "SomeAction", code: str = "InternalError") -> TencentCloudAPIError:
    return TencentCloudAPIError(action, "boom", code=code, request_id="req-err")


@pytest.fixture
def ssl_client() -> FakeSSLClient:
    return FakeSSLClient()


@pytest.fixture
def cdn_client() -> FakeCDNClient:
    return FakeCDNClient()


@pytest.fixture
def teo_client() -> FakeTEOClient:
    return FakeTEOClient()


@pytest.fixture
def make_api_error():
    return api_error
