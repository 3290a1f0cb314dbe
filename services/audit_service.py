"""Audit trail for rotation runs.

Each remote call a rotation makes lands in ``audit_logs``, so a failed or
half-finished run can be pieced together afterwards: which certificate went
up, which old ids were rebound, which deletions never settled.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Query

from db.database import get_session
from db.models import AuditLog

SUCCESS = "SUCCESS"
FAILURE = "FAILURE"
TIMEOUT = "TIMEOUT"

CERTIFICATE = "certificate"


def log(
    product: str,
    operation: str,
    action: str,
    status: str,
    account_id: Optional[int] = None,
    resource_type: Optional[str] = None,
    resource_id: Optional[str] = None,
    resource_name: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
    error_message: Optional[str] = None,
) -> None:
    """Record one operation. Never raises: a broken audit database must not
    abort a rotation that is already touching live bindings."""
    entry = AuditLog(
        account_id=account_id,
        timestamp=datetime.utcnow(),
        product=product,
        operation=operation,
        action=action,
        status=status,
        resource_type=resource_type,
        resource_id=str(resource_id) if resource_id else None,
        resource_name=str(resource_name) if resource_name else None,
        details=details,
        error_message=error_message,
    )
    try:
        with get_session() as session:
            session.add(entry)
    except Exception:
        pass


def _newest_first(q: Query, account_id: Optional[int]) -> Query:
    if account_id is not None:
        q = q.filter(AuditLog.account_id == account_id)
    # Same-second entries keep insertion order through the id tiebreak.
    return q.order_by(AuditLog.timestamp.desc(), AuditLog.id.desc())


def get_recent(
    account_id: Optional[int] = None,
    product: Optional[str] = None,
    limit: int = 100,
) -> List[AuditLog]:
    with get_session() as session:
        q = session.query(AuditLog)
        if product is not None:
            q = q.filter(AuditLog.product == product)
        return _newest_first(q, account_id).limit(limit).all()


def get_by_resource(
    resource_type: str,
    resource_id: str,
    account_id: Optional[int] = None,
) -> List[AuditLog]:
    """Every entry touching one resource, e.g. all operations on a certificate id."""
    with get_session() as session:
        q = session.query(AuditLog).filter_by(resource_type=resource_type, resource_id=resource_id)
        return _newest_first(q, account_id).all()


def get_failures(account_id: Optional[int] = None, limit: int = 20) -> List[AuditLog]:
    """Entries that did not succeed (failed or timed out), newest first."""
    with get_session() as session:
        q = session.query(AuditLog).filter(AuditLog.status.in_([FAILURE, TIMEOUT]))
        return _newest_first(q, account_id).limit(limit).all()
