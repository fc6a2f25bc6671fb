"""Grading system: named, non-overlapping percentage bands."""

import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Numeric, String, Text, Uuid
from sqlalchemy.orm import relationship

from app.db.session import Base


class GradeSystem(Base):
    __tablename__ = "grade_systems"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    school_id = Column(Uuid(as_uuid=True), ForeignKey("schools.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)


class GradeRange(Base):
    """Band [min_percent, max_percent] mapped to a grade name (A+, B, ...)."""

    __tablename__ = "grade_ranges"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    grade_system_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("grade_systems.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name = Column(String(20), nullable=False)
    min_percent = Column(Numeric(5, 2), nullable=False)
    max_percent = Column(Numeric(5, 2), nullable=False)
    grade_point = Column(Numeric(4, 2), nullable=False, default=0)

    grade_system = relationship("GradeSystem", backref="ranges")
