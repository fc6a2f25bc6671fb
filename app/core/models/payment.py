"""Payment: append-only ledger entry against one invoice."""

import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Numeric, String, Text, Uuid
from sqlalchemy.orm import relationship

from app.db.session import Base


class Payment(Base):
    """Payment against an invoice. Supports partial payments; several may settle one invoice over time."""

    __tablename__ = "payments"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    school_id = Column(Uuid(as_uuid=True), ForeignKey("schools.id", ondelete="CASCADE"), nullable=False, index=True)
    invoice_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("invoices.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    amount = Column(Numeric(12, 2), nullable=False)
    method = Column(String(30), nullable=False)  # CASH, BANK_TRANSFER, ONLINE, CHEQUE
    transaction_id = Column(String(100), nullable=True)
    remarks = Column(Text, nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=False)
    collected_by = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    invoice = relationship("Invoice", backref="payments")
    collected_by_user = relationship("User", foreign_keys=[collected_by])
