"""Discount master and per-student discount assignment."""

import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Numeric, String, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship

from app.db.session import Base


class Discount(Base):
    """PERCENTAGE or FLAT reduction applied to exactly one fee head."""

    __tablename__ = "discounts"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    school_id = Column(Uuid(as_uuid=True), ForeignKey("schools.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    value = Column(Numeric(12, 2), nullable=False)
    type = Column(String(20), nullable=False)  # PERCENTAGE, FLAT
    fee_head_id = Column(Uuid(as_uuid=True), ForeignKey("fee_heads.id", ondelete="CASCADE"), nullable=False)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    fee_head = relationship("FeeHead")


class StudentDiscount(Base):
    """Assignment of a discount to a student user. At most one per (student, fee head), enforced on assign."""

    __tablename__ = "student_discounts"
    __table_args__ = (
        UniqueConstraint("student_id", "discount_id", name="uq_student_discount"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    student_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    discount_id = Column(Uuid(as_uuid=True), ForeignKey("discounts.id", ondelete="CASCADE"), nullable=False)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    discount = relationship("Discount")
