"""School: the tenant boundary. Every billing row carries school_id."""

import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, String, Uuid
from sqlalchemy.orm import relationship

from app.db.session import Base


class School(Base):
    """
    Tenant (school) in the multi-tenant platform.

    - id: internal primary key, used for all FKs and tenant scoping.
    - code: public human-readable identifier (e.g. SCH-A3K9). Never used as a foreign key.
    """

    __tablename__ = "schools"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    code = Column(String(20), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    status = Column(String(20), nullable=False, default="ACTIVE")
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    users = relationship("User", back_populates="school", cascade="all, delete-orphan")
