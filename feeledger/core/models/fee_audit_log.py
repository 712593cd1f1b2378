"""Fee audit log: immutable financial change tracking for audit safety."""

import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Index, String, Text
from sqlalchemy.dialects.postgresql import UUID

from feeledger.core.enums import ActorType
from feeledger.db.session import Base
from feeledger.db.types import JSONType


class FeeAuditLog(Base):
    """Immutable audit trail for fee-related financial changes. before/after/meta hold AuditValue maps."""

    __tablename__ = "fee_audit_logs"
    __table_args__ = (
        Index("ix_fee_audit_logs_coaching_entity_type", "coaching_id", "entity_type"),
        Index("ix_fee_audit_logs_coaching_created_at", "coaching_id", "created_at"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    coaching_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    entity_type = Column(String(30), nullable=False)
    entity_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    member_id = Column(UUID(as_uuid=True), nullable=True, index=True)
    fee_structure_id = Column(
        UUID(as_uuid=True),
        ForeignKey("fee_structures.id", ondelete="SET NULL"),
        nullable=True,
    )
    event = Column(String(50), nullable=False)
    actor_type = Column(String(20), nullable=False, default=ActorType.ADMIN.value)
    actor_id = Column(UUID(as_uuid=True), nullable=True)
    before = Column(JSONType, nullable=True)
    after = Column(JSONType, nullable=True)
    meta = Column(JSONType, nullable=True)
    note = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
