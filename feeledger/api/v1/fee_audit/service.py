"""Fee audit log listing: paginated, filterable, each entry rendered through the diff engine."""

from typing import Optional
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from feeledger.core.enums import AuditEvent
from feeledger.core.models import FeeAuditLog

from .diff import diff
from .schemas import AuditLogFilters, FeeAuditLogPage, FeeAuditLogResponse

ASSIGNMENT_SETTINGS_EVENTS = (
    AuditEvent.ASSIGNMENT_CREATED.value,
    AuditEvent.ASSIGNMENT_UPDATED.value,
)


def _to_response(log: FeeAuditLog) -> FeeAuditLogResponse:
    return FeeAuditLogResponse(
        id=log.id,
        coaching_id=log.coaching_id,
        entity_type=log.entity_type,
        entity_id=log.entity_id,
        member_id=log.member_id,
        fee_structure_id=log.fee_structure_id,
        event=log.event,
        actor_type=log.actor_type,
        actor_id=log.actor_id,
        before=log.before,
        after=log.after,
        meta=log.meta,
        note=log.note,
        created_at=log.created_at,
        changes=diff(log.before, log.after, log.meta),
    )


async def list_audit_log(
    db: AsyncSession,
    coaching_id: UUID,
    filters: AuditLogFilters,
    page: int = 1,
    limit: int = 50,
) -> FeeAuditLogPage:
    conditions = [FeeAuditLog.coaching_id == coaching_id]
    if filters.entity_type is not None:
        conditions.append(FeeAuditLog.entity_type == filters.entity_type.value)
    if filters.entity_id is not None:
        conditions.append(FeeAuditLog.entity_id == filters.entity_id)
    if filters.event is not None:
        conditions.append(FeeAuditLog.event == filters.event.value)
    if filters.member_id is not None:
        conditions.append(FeeAuditLog.member_id == filters.member_id)
    if filters.from_date is not None:
        conditions.append(FeeAuditLog.created_at >= filters.from_date)
    if filters.to_date is not None:
        conditions.append(FeeAuditLog.created_at <= filters.to_date)

    total = (
        await db.execute(select(func.count()).select_from(FeeAuditLog).where(*conditions))
    ).scalar() or 0
    result = await db.execute(
        select(FeeAuditLog)
        .where(*conditions)
        .order_by(FeeAuditLog.created_at.desc(), FeeAuditLog.id)
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return FeeAuditLogPage(
        logs=[_to_response(log) for log in result.scalars().all()],
        total=total,
        page=page,
        limit=limit,
    )


async def get_last_assignment_log(
    db: AsyncSession,
    coaching_id: UUID,
    member_id: UUID,
) -> Optional[FeeAuditLog]:
    """Most recent ASSIGNMENT_CREATED/UPDATED entry for a member."""
    result = await db.execute(
        select(FeeAuditLog)
        .where(
            FeeAuditLog.coaching_id == coaching_id,
            FeeAuditLog.member_id == member_id,
            FeeAuditLog.event.in_(ASSIGNMENT_SETTINGS_EVENTS),
        )
        .order_by(FeeAuditLog.created_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()
