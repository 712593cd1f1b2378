"""Coaching member: roster row owned by the membership service. Read-only here."""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, String
from sqlalchemy.dialects.postgresql import UUID

from feeledger.db.session import Base


class CoachingMember(Base):
    """Student (or ward) enrolled in a coaching. Fees are always keyed by member id."""

    __tablename__ = "coaching_members"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    coaching_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    name = Column(String(200), nullable=True)
    email = Column(String(255), nullable=True)
    phone = Column(String(30), nullable=True)
    # Login that owns this membership, and the parent login for a ward.
    user_id = Column(UUID(as_uuid=True), nullable=True, index=True)
    parent_user_id = Column(UUID(as_uuid=True), nullable=True, index=True)
    role = Column(String(30), nullable=False, default="STUDENT")
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
