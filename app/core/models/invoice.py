"""Invoice and invoice line items. Invoices are never physically deleted; CANCELLED is terminal-by-convention."""

import uuid
from datetime import datetime

from sqlalchemy import (
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
    Uuid,
    text,
)
from sqlalchemy.orm import relationship

from app.db.session import Base


class Invoice(Base):
    """
    Billing document for one student and one period (month, year).
    status mirrors paid_amount vs total_amount unless CANCELLED.
    At most one non-cancelled invoice per (student, month, year), enforced by a partial unique index.
    """

    __tablename__ = "invoices"
    __table_args__ = (
        UniqueConstraint("school_id", "invoice_no", name="uq_invoice_school_invoice_no"),
        Index(
            "uq_invoice_student_open_period",
            "student_id",
            "month",
            "year",
            unique=True,
            postgresql_where=text("status <> 'CANCELLED'"),
            sqlite_where=text("status <> 'CANCELLED'"),
        ),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    school_id = Column(Uuid(as_uuid=True), ForeignKey("schools.id", ondelete="CASCADE"), nullable=False, index=True)
    student_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True)
    invoice_no = Column(String(64), nullable=False)
    month = Column(Integer, nullable=False)
    year = Column(Integer, nullable=False)
    due_date = Column(Date, nullable=False)
    total_amount = Column(Numeric(12, 2), nullable=False)
    paid_amount = Column(Numeric(12, 2), nullable=False, default=0)
    status = Column(String(20), nullable=False, default="UNPAID")  # UNPAID, PARTIAL, PAID, CANCELLED, OVERDUE
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    student = relationship("User", foreign_keys=[student_id])


class InvoiceItem(Base):
    """Line per fee head. amount = original_amount - discount_amount, floored at zero. Immutable after create."""

    __tablename__ = "invoice_items"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    invoice_id = Column(Uuid(as_uuid=True), ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True)
    fee_head_id = Column(Uuid(as_uuid=True), ForeignKey("fee_heads.id", ondelete="RESTRICT"), nullable=False)
    original_amount = Column(Numeric(12, 2), nullable=False)
    discount_amount = Column(Numeric(12, 2), nullable=False, default=0)
    amount = Column(Numeric(12, 2), nullable=False)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    invoice = relationship("Invoice", backref="items")
    fee_head = relationship("FeeHead")
