"""Fee record: one billable instance (cycle or installment) of an assignment."""

import uuid
from datetime import datetime

from sqlalchemy import CheckConstraint, Column, Date, DateTime, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from feeledger.core.enums import FeeRecordStatus
from feeledger.db.session import Base


class FeeRecord(Base):
    """
    final_amount = base_amount - discount_amount - scholarship_amount + exclusive tax.
    paid_amount is net of refunds. OVERDUE is derived on read from due_date.
    """

    __tablename__ = "fee_records"
    __table_args__ = (
        CheckConstraint(
            "status IN ('PENDING','PARTIALLY_PAID','PAID','OVERDUE','WAIVED')",
            name="chk_fee_record_status",
        ),
        CheckConstraint("final_amount >= 0", name="chk_fee_record_final_non_negative"),
        CheckConstraint("paid_amount >= 0", name="chk_fee_record_paid_non_negative"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    coaching_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    assignment_id = Column(
        UUID(as_uuid=True),
        ForeignKey("fee_assignments.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    member_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    installment_no = Column(Integer, nullable=True)
    due_date = Column(Date, nullable=False, index=True)

    base_amount = Column(Numeric(12, 2), nullable=False)
    discount_amount = Column(Numeric(12, 2), nullable=False, default=0)
    credit_amount = Column(Numeric(12, 2), nullable=False, default=0)  # part of discount_amount
    scholarship_amount = Column(Numeric(12, 2), nullable=False, default=0)
    tax_amount = Column(Numeric(12, 2), nullable=False, default=0)
    fine_amount = Column(Numeric(12, 2), nullable=False, default=0)
    final_amount = Column(Numeric(12, 2), nullable=False)
    paid_amount = Column(Numeric(12, 2), nullable=False, default=0)

    status = Column(String(20), nullable=False, default=FeeRecordStatus.PENDING.value)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    receipt_no = Column(String(50), nullable=True)
    notes = Column(Text, nullable=True)
    reminder_sent_at = Column(DateTime(timezone=True), nullable=True)
    reminder_count = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    assignment = relationship("FeeAssignment", backref="records")
