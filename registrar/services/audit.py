from typing import Any, Dict, Optional

from sqlmodel import Session

from ..models import AuditLog


def record_audit(
    session: Session,
    entity_type: str,
    action: str,
    description: str,
    entity_id: Optional[Any] = None,
    user_id: Optional[int] = None,
    details: Optional[Dict[str, Any]] = None,
) -> AuditLog:
    """Add an audit row to the current transaction (the caller commits)."""
    entry = AuditLog(
        entity_type=entity_type,
        entity_id=str(entity_id) if entity_id is not None else None,
        action=action,
        description=description,
        user_id=user_id,
        details=details,
    )
    session.add(entry)
    return entry
