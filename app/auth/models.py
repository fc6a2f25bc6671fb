import uuid
from datetime import datetime

from sqlalchemy import JSON, Column, DateTime, ForeignKey, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship

from app.db.session import Base


class User(Base):
    """User within a school: staff, parents and students all live here; role decides access."""

    __tablename__ = "users"
    __table_args__ = (
        # Email must be unique per school
        UniqueConstraint("school_id", "email", name="uq_user_school_email"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    # Owning school; null only for platform-level SUPER_ADMIN accounts
    school_id = Column(Uuid(as_uuid=True), ForeignKey("schools.id"), nullable=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=False)
    phone = Column(String(50), nullable=True)
    gender = Column(String(20), nullable=True)
    password_hash = Column(Text, nullable=True)
    # SUPER_ADMIN, ADMIN, ACCOUNTANT, TEACHER, PARENT, STUDENT
    role = Column(String(50), nullable=False)
    status = Column(String(20), nullable=False, default="ACTIVE")
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    school = relationship("School", back_populates="users")


class Role(Base):
    """School-scoped role with JSON permissions."""

    __tablename__ = "roles"
    __table_args__ = (
        # Role name must be unique within a school
        UniqueConstraint("school_id", "name", name="uq_role_school_name"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    school_id = Column(Uuid(as_uuid=True), ForeignKey("schools.id"), nullable=False)
    name = Column(String(100), nullable=False)
    # Example shape:
    # {
    #   "finance": {"create": true, "read": true, "update": false},
    #   "exams": {"read": true}
    # }
    permissions = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
