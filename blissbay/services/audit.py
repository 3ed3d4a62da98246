from typing import Optional

from sqlalchemy.orm import Session

from blissbay.models import ActivityLog


def log_activity(
    db: Session,
    entity_type: str,
    entity_id: str,
    action: str,
    performed_by: Optional[str],
    details: Optional[dict] = None,
) -> ActivityLog:
    """Stage an audit entry in the caller's transaction."""
    entry = ActivityLog(
        entity_type=entity_type,
        entity_id=str(entity_id),
        action=action,
        performed_by=performed_by,
        details=details or {},
    )
    db.add(entry)
    return entry


def serialize_activity(entry: ActivityLog) -> dict:
    return {
        "id": entry.id,
        "entity_type": entry.entity_type,
        "entity_id": entry.entity_id,
        "action": entry.action,
        "performed_by": entry.performed_by,
        "details": entry.details,
        "created_at": entry.created_at,
    }
