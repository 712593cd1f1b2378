"""
Audit writer for fee mutations. Call once per mutation, after the mutated rows are flushed.

Audit is best-effort: the entry is written inside a SAVEPOINT so a failing insert is
rolled back on its own and the caller's transaction still commits. Caller must commit.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Mapping, Optional
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from feeledger.core.enums import ActorType, AuditEntityType, AuditEvent
from feeledger.core.models import FeeAuditLog

from .diff import to_audit_map

logger = logging.getLogger(__name__)


async def log_fee_audit(
    db: AsyncSession,
    coaching_id: UUID,
    entity_type: AuditEntityType,
    entity_id: UUID,
    event: AuditEvent,
    *,
    before: Optional[Mapping[str, Any]] = None,
    after: Optional[Mapping[str, Any]] = None,
    meta: Optional[Mapping[str, Any]] = None,
    member_id: Optional[UUID] = None,
    fee_structure_id: Optional[UUID] = None,
    actor_id: Optional[UUID] = None,
    actor_type: ActorType = ActorType.ADMIN,
    note: Optional[str] = None,
) -> Optional[FeeAuditLog]:
    """Append one audit entry. Returns None (and logs) when the write fails."""
    entry = FeeAuditLog(
        coaching_id=coaching_id,
        entity_type=entity_type.value,
        entity_id=entity_id,
        member_id=member_id,
        fee_structure_id=fee_structure_id,
        event=event.value,
        actor_type=actor_type.value,
        actor_id=actor_id,
        before=to_audit_map(before),
        after=to_audit_map(after),
        meta=to_audit_map(meta),
        note=note,
        created_at=datetime.now(timezone.utc),
    )
    # Pending primary changes must fail here, not inside the savepoint.
    await db.flush()
    try:
        async with db.begin_nested():
            db.add(entry)
    except SQLAlchemyError:
        logger.exception(
            "Fee audit write failed: event=%s entity=%s:%s coaching=%s",
            event.value,
            entity_type.value,
            entity_id,
            coaching_id,
        )
        return None
    return entry
