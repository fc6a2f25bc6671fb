"""Chart of accounts: account heads and the sub-heads fee heads post to. School-scoped."""

import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, String, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship

from app.db.session import Base


class AccountHead(Base):
    __tablename__ = "account_heads"
    __table_args__ = (
        UniqueConstraint("school_id", "name", name="uq_account_head_school_name"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    school_id = Column(Uuid(as_uuid=True), ForeignKey("schools.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)


class AccountSubHead(Base):
    """Ledger line under an account head (e.g. Income > Tuition Income)."""

    __tablename__ = "account_sub_heads"
    __table_args__ = (
        UniqueConstraint("head_id", "name", name="uq_account_sub_head_head_name"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    school_id = Column(Uuid(as_uuid=True), ForeignKey("schools.id", ondelete="CASCADE"), nullable=False, index=True)
    head_id = Column(Uuid(as_uuid=True), ForeignKey("account_heads.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    head = relationship("AccountHead", backref="sub_heads")
