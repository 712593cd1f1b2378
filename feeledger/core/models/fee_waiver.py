"""Fee waiver: append-only write-off of a record's remaining balance."""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Numeric, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from feeledger.db.session import Base


class FeeWaiver(Base):
    """Written manually by an admin or automatically when an assignment is superseded."""

    __tablename__ = "fee_waivers"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    coaching_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    record_id = Column(
        UUID(as_uuid=True),
        ForeignKey("fee_records.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    waived_amount = Column(Numeric(12, 2), nullable=False)
    reason = Column(Text, nullable=True)
    actor_id = Column(UUID(as_uuid=True), nullable=True)
    is_automatic = Column(Boolean, nullable=False, default=False)
    waived_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    record = relationship("FeeRecord", backref="waivers")
