"""Audit trail for propagation writes and attribution repairs"""

import uuid
from datetime import datetime

from sqlalchemy import Column, String, DateTime, Text, JSON, Index

from rbi_access.database import Base


class AuditLog(Base):
    """One audited change to a household or resident row"""

    __tablename__ = "audit_logs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    table_name = Column(String(50), nullable=False)
    record_id = Column(String(50), nullable=False)
    action = Column(String(30), nullable=False)  # INSERT, UPDATE, RELOCATE, REASSIGN, DEACTIVATE, REPAIR
    old_values = Column(JSON, nullable=True)
    new_values = Column(JSON, nullable=True)
    user_id = Column(String(100), nullable=True)
    reason = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("idx_audit_logs_table", "table_name"),
        Index("idx_audit_logs_record", "record_id"),
        Index("idx_audit_logs_user", "user_id"),
        Index("idx_audit_logs_created", "created_at"),
    )

    def __repr__(self):
        return f"<AuditLog(table='{self.table_name}', record='{self.record_id}', action='{self.action}')>"
