import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, String, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship

from app.db.session import Base


class StudentRecord(Base):
    """
    Student enrollment. One record per student user; class_id is the current class.
    admission_number is the human-readable key used in invoice numbers.
    """

    __tablename__ = "student_records"
    __table_args__ = (
        UniqueConstraint("school_id", "admission_number", name="uq_student_record_school_admission"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True)
    school_id = Column(Uuid(as_uuid=True), ForeignKey("schools.id", ondelete="CASCADE"), nullable=False, index=True)
    class_id = Column(Uuid(as_uuid=True), ForeignKey("classes.id"), nullable=True)
    admission_number = Column(String(50), nullable=False)
    roll_number = Column(String(50), nullable=True)
    status = Column(String(20), nullable=False, default="ACTIVE")  # ACTIVE | LEFT | GRADUATED
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    user = relationship("User", backref="student_record")
    school_class = relationship("SchoolClass", foreign_keys=[class_id])
