# Overview: Append-only Sync Log writes and reads.

"""
Registry Sync Log

Every orchestrated sync attempt, and every link/unlink/import, appends one
RegistrySyncLog row after the attempt concludes. Rows are never updated
(see the ORM guard on the model).
"""

from ..extensions import db
from ..models import RegistrySyncLog


DIRECTION_PULL = "registry_to_internal"
DIRECTION_PUSH = "internal_to_registry"

STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"


def join_errors(errors: list[str] | None) -> str | None:
    if not errors:
        return None
    return "; ".join(errors)


def record_sync(
    *,
    org_id: int,
    site_id: int | None,
    sync_type: str,
    direction: str,
    operation: str,
    success: bool,
    started_at,
    completed_at,
    payload: dict | None = None,
    errors: list[str] | None = None,
    user_id: int | None = None,
    commit: bool = True,
) -> RegistrySyncLog:
    """
    Append one sync log entry.

    commit=False lets link/import operations write the entry inside their
    own transaction.
    """
    entry = RegistrySyncLog(
        org_id=org_id,
        site_id=site_id,
        sync_type=sync_type,
        direction=direction,
        operation=operation,
        status=STATUS_COMPLETED if success else STATUS_FAILED,
        started_at=started_at,
        completed_at=completed_at,
        response_payload=payload,
        error_message=join_errors(errors),
        initiated_by=user_id,
    )
    db.session.add(entry)
    if commit:
        db.session.commit()
    else:
        db.session.flush()
    return entry


def list_sync_logs(
    org_id: int,
    *,
    site_id: int | None = None,
    sync_type: str | None = None,
    status: str | None = None,
    limit: int = 50,
) -> list[RegistrySyncLog]:
    query = db.session.query(RegistrySyncLog).filter_by(org_id=org_id)
    if site_id is not None:
        query = query.filter_by(site_id=site_id)
    if sync_type:
        query = query.filter_by(sync_type=sync_type)
    if status:
        query = query.filter_by(status=status)
    return query.order_by(RegistrySyncLog.started_at.desc(), RegistrySyncLog.id.desc()).limit(limit).all()
