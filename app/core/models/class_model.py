"""School-scoped classes (e.g. Nursery, 1st, 10th). Model named SchoolClass to avoid Python 'class' keyword."""
import uuid
from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship

from app.db.session import Base


class SchoolClass(Base):
    """School-scoped class master. Soft delete via is_active. grade_system_id drives gazette grades."""

    __tablename__ = "classes"
    __table_args__ = (
        UniqueConstraint("school_id", "name", name="uq_class_school_name"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    school_id = Column(Uuid(as_uuid=True), ForeignKey("schools.id"), nullable=False, index=True)
    name = Column(String(50), nullable=False)
    display_order = Column(Integer, nullable=True)
    grade_system_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("grade_systems.id", ondelete="SET NULL"),
        nullable=True,
    )
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    school = relationship("School", backref="school_classes")
