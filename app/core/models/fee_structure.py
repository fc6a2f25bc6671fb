"""Class fee structure: default amount per fee head per class."""

import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Numeric, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship

from app.db.session import Base


class FeeStructure(Base):
    """One row per (fee head, class). Read at invoice-generation time."""

    __tablename__ = "fee_structures"
    __table_args__ = (
        UniqueConstraint("fee_head_id", "class_id", name="uq_fee_structure_head_class"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    school_id = Column(Uuid(as_uuid=True), ForeignKey("schools.id", ondelete="CASCADE"), nullable=False, index=True)
    class_id = Column(Uuid(as_uuid=True), ForeignKey("classes.id", ondelete="CASCADE"), nullable=False)
    fee_head_id = Column(Uuid(as_uuid=True), ForeignKey("fee_heads.id", ondelete="RESTRICT"), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    school_class = relationship("SchoolClass", foreign_keys=[class_id])
    fee_head = relationship("FeeHead")
