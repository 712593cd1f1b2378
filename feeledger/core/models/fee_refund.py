"""Fee refund: append-only reversal of money already collected on a record."""

import uuid
from datetime import datetime

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Numeric, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from feeledger.db.session import Base


class FeeRefund(Base):
    __tablename__ = "fee_refunds"
    __table_args__ = (
        CheckConstraint("amount > 0", name="chk_fee_refund_amount_positive"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    coaching_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    record_id = Column(
        UUID(as_uuid=True),
        ForeignKey("fee_records.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    payment_id = Column(
        UUID(as_uuid=True),
        ForeignKey("fee_payments.id", ondelete="RESTRICT"),
        nullable=True,
    )
    amount = Column(Numeric(12, 2), nullable=False)
    mode = Column(String(30), nullable=False, default="CASH")
    reason = Column(Text, nullable=True)
    refunded_at = Column(DateTime(timezone=True), nullable=False)
    processed_by = Column(UUID(as_uuid=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    record = relationship("FeeRecord", backref="refunds")
