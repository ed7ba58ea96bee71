from __future__ import annotations

from sqlalchemy.orm import Session

from permithub.models import AuditLog
from permithub.services.record_store import RecordStore


def log_audit(
    db: Session,
    *,
    actor_id: str | None,
    action: str,
    permit_id: str | None = None,
    ip: str | None = None,
    metadata: dict | None = None,
) -> None:
    db.add(
        AuditLog(
            actor_id=actor_id,
            action=action,
            permit_id=permit_id,
            ip=ip,
            meta=metadata or {},
        )
    )


async def record_permit_audit(
    store: RecordStore,
    *,
    permit_id: str,
    action: str,
    actor_id: str | None,
    note: str | None = None,
) -> None:
    await store.insert(
        'permit_audit',
        [{'permit_id': permit_id, 'action': action, 'actor_id': actor_id, 'note': note}],
    )
