"""Per-student fee structure snapshot. Overrides the class default when it has items."""

import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Numeric, Uuid
from sqlalchemy.orm import relationship

from app.db.session import Base


class StudentFeeStructure(Base):
    __tablename__ = "student_fee_structures"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    student_record_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("student_records.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    school_id = Column(Uuid(as_uuid=True), ForeignKey("schools.id", ondelete="CASCADE"), nullable=False, index=True)
    class_id = Column(Uuid(as_uuid=True), ForeignKey("classes.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    student_record = relationship("StudentRecord", backref="fee_structure")


class StudentFeeStructureItem(Base):
    __tablename__ = "student_fee_structure_items"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    student_fee_structure_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("student_fee_structures.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    fee_head_id = Column(Uuid(as_uuid=True), ForeignKey("fee_heads.id", ondelete="RESTRICT"), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    fee_head = relationship("FeeHead")
