"""Parent records and kinship links to students (family billing)."""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, String, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship

from app.db.session import Base


class ParentRecord(Base):
    __tablename__ = "parent_records"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True)
    school_id = Column(Uuid(as_uuid=True), ForeignKey("schools.id", ondelete="CASCADE"), nullable=False, index=True)
    cnic = Column(String(20), nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    user = relationship("User", foreign_keys=[user_id])


class Kinship(Base):
    """Parent-student link. Many-to-many; a family is all students linked to one parent."""

    __tablename__ = "kinships"
    __table_args__ = (
        UniqueConstraint("parent_record_id", "student_record_id", name="uq_kinship_parent_student"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    parent_record_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("parent_records.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    student_record_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("student_records.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    relationship_type = Column(String(20), nullable=False, default="GUARDIAN")  # FATHER, MOTHER, GUARDIAN, OTHER
    is_primary = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    parent_record = relationship("ParentRecord", backref="kinships")
    student_record = relationship("StudentRecord", backref="kinships")
