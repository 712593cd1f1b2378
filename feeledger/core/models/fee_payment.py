"""Fee payment: append-only money received against a fee record."""

import uuid
from datetime import datetime

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Numeric, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from feeledger.db.session import Base


class FeePayment(Base):
    """Payment against a fee record. Supports partial payments. Never updated."""

    __tablename__ = "fee_payments"
    __table_args__ = (
        CheckConstraint("amount > 0", name="chk_fee_payment_amount_positive"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    coaching_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    record_id = Column(
        UUID(as_uuid=True),
        ForeignKey("fee_records.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    amount = Column(Numeric(12, 2), nullable=False)
    mode = Column(String(30), nullable=False)  # CASH, ONLINE, UPI, BANK_TRANSFER, CHEQUE, OTHER
    transaction_ref = Column(String(200), nullable=True)
    receipt_no = Column(String(50), nullable=False, unique=True)
    notes = Column(Text, nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=False)
    recorded_by = Column(UUID(as_uuid=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    record = relationship("FeeRecord", backref="payments")
