"""Fee audit log: immutable financial change tracking for audit safety."""

import uuid
from datetime import datetime

from sqlalchemy import JSON, Column, DateTime, ForeignKey, String, Uuid
from sqlalchemy.orm import relationship

from app.db.session import Base


class FeeAuditLog(Base):
    """Immutable audit trail for invoice and payment changes."""

    __tablename__ = "fee_audit_logs"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    school_id = Column(Uuid(as_uuid=True), ForeignKey("schools.id", ondelete="CASCADE"), nullable=False, index=True)
    reference_table = Column(String(50), nullable=False)
    reference_id = Column(Uuid(as_uuid=True), nullable=False)
    action_type = Column(String(30), nullable=False)  # CREATE, UPDATE, DELETE, CANCEL, MARK_PAID, MARK_UNPAID, ALLOCATE
    old_value = Column(JSON, nullable=True)
    new_value = Column(JSON, nullable=True)
    changed_by = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    changed_by_user = relationship("User", foreign_keys=[changed_by])
