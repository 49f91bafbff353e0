"""Audit trail writes, always inside the caller's transaction"""

from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from rbi_access.models.audit import AuditLog


def record_audit(
    db: Session,
    table_name: str,
    record_id: str,
    action: str,
    user_id: Optional[str] = None,
    old_values: Optional[Dict[str, Any]] = None,
    new_values: Optional[Dict[str, Any]] = None,
    reason: Optional[str] = None,
) -> AuditLog:
    entry = AuditLog(
        table_name=table_name,
        record_id=record_id,
        action=action,
        user_id=user_id,
        old_values=old_values,
        new_values=new_values,
        reason=reason,
    )
    db.add(entry)
    return entry
