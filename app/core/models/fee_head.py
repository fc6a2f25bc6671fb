"""Fee head master (Tuition, Transport, Arrears). School-scoped."""

import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, String, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship

from app.db.session import Base


class FeeHead(Base):
    """Named category of charge. type is RECURRING or ONE_TIME (optional)."""

    __tablename__ = "fee_heads"
    __table_args__ = (
        UniqueConstraint("school_id", "name", name="uq_fee_head_school_name"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    school_id = Column(Uuid(as_uuid=True), ForeignKey("schools.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    type = Column(String(20), nullable=True)
    # Ledger line this fee posts to
    account_sub_head_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("account_sub_heads.id", ondelete="SET NULL"),
        nullable=True,
    )
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    school = relationship("School", backref="fee_heads")
