"""Fee assignment: binding of a fee structure to one member, with pricing overrides."""

import uuid
from datetime import datetime

from sqlalchemy import CheckConstraint, Column, Date, DateTime, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from feeledger.core.enums import AssignmentStatus
from feeledger.db.session import Base


class FeeAssignment(Base):
    """
    One live (ACTIVE or PAUSED) assignment per member per coaching.
    The rule is enforced by the assignment service under a member lock; version is
    bumped on every status change and checked when an assignment is superseded.
    """

    __tablename__ = "fee_assignments"
    __table_args__ = (
        CheckConstraint(
            "status IN ('ACTIVE','PAUSED','REMOVED')",
            name="chk_fee_assignment_status",
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    coaching_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    member_id = Column(
        UUID(as_uuid=True),
        ForeignKey("coaching_members.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    fee_structure_id = Column(
        UUID(as_uuid=True),
        ForeignKey("fee_structures.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    custom_amount = Column(Numeric(12, 2), nullable=True)  # NULL => inherit structure amount
    discount_amount = Column(Numeric(12, 2), nullable=False, default=0)
    discount_reason = Column(Text, nullable=True)
    scholarship_tag = Column(String(100), nullable=True)
    scholarship_amount = Column(Numeric(12, 2), nullable=False, default=0)
    carried_credit = Column(Numeric(12, 2), nullable=False, default=0)

    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=True)

    status = Column(String(20), nullable=False, default=AssignmentStatus.ACTIVE.value)
    paused_at = Column(DateTime(timezone=True), nullable=True)
    pause_note = Column(Text, nullable=True)
    version = Column(Integer, nullable=False, default=1)

    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    fee_structure = relationship("FeeStructure", lazy="joined")
    member = relationship("CoachingMember")
