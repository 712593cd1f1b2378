"""
Read access used by the ledger and settlement engines.

The engines depend on the narrow Protocols below, not on a session, so they can be
driven from any source of rows. FeeRepository is the SQLAlchemy implementation.
"""

from typing import List, Optional, Protocol, Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from feeledger.api.v1.fee_audit.service import get_last_assignment_log
from feeledger.core.enums import LIVE_ASSIGNMENT_STATUSES, LIVE_RECORD_STATUSES
from feeledger.core.models import (
    FeeAssignment,
    FeeAuditLog,
    FeePayment,
    FeeRecord,
    FeeRefund,
    FeeWaiver,
)


class LedgerReader(Protocol):
    async def records_for_member(self, coaching_id: UUID, member_id: UUID) -> Sequence[FeeRecord]: ...

    async def payments_for_records(self, coaching_id: UUID, record_ids: Sequence[UUID]) -> Sequence[FeePayment]: ...

    async def refunds_for_records(self, coaching_id: UUID, record_ids: Sequence[UUID]) -> Sequence[FeeRefund]: ...

    async def waivers_for_records(self, coaching_id: UUID, record_ids: Sequence[UUID]) -> Sequence[FeeWaiver]: ...


class SettlementReader(Protocol):
    async def live_assignment(self, coaching_id: UUID, member_id: UUID) -> Optional[FeeAssignment]: ...

    async def open_records(self, coaching_id: UUID, assignment_id: UUID) -> Sequence[FeeRecord]: ...

    async def last_assignment_log(self, coaching_id: UUID, member_id: UUID) -> Optional[FeeAuditLog]: ...


class FeeRepository:
    """Implements LedgerReader and SettlementReader over one AsyncSession."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def records_for_member(self, coaching_id: UUID, member_id: UUID) -> List[FeeRecord]:
        result = await self.db.execute(
            select(FeeRecord)
            .where(FeeRecord.coaching_id == coaching_id, FeeRecord.member_id == member_id)
            .order_by(FeeRecord.due_date, FeeRecord.created_at, FeeRecord.id)
        )
        return list(result.scalars().all())

    async def payments_for_records(self, coaching_id: UUID, record_ids: Sequence[UUID]) -> List[FeePayment]:
        if not record_ids:
            return []
        result = await self.db.execute(
            select(FeePayment)
            .where(FeePayment.coaching_id == coaching_id, FeePayment.record_id.in_(record_ids))
            .order_by(FeePayment.paid_at, FeePayment.created_at, FeePayment.id)
        )
        return list(result.scalars().all())

    async def refunds_for_records(self, coaching_id: UUID, record_ids: Sequence[UUID]) -> List[FeeRefund]:
        if not record_ids:
            return []
        result = await self.db.execute(
            select(FeeRefund)
            .where(FeeRefund.coaching_id == coaching_id, FeeRefund.record_id.in_(record_ids))
            .order_by(FeeRefund.refunded_at, FeeRefund.created_at, FeeRefund.id)
        )
        return list(result.scalars().all())

    async def waivers_for_records(self, coaching_id: UUID, record_ids: Sequence[UUID]) -> List[FeeWaiver]:
        if not record_ids:
            return []
        result = await self.db.execute(
            select(FeeWaiver)
            .where(FeeWaiver.coaching_id == coaching_id, FeeWaiver.record_id.in_(record_ids))
            .order_by(FeeWaiver.waived_at, FeeWaiver.created_at, FeeWaiver.id)
        )
        return list(result.scalars().all())

    async def live_assignment(self, coaching_id: UUID, member_id: UUID) -> Optional[FeeAssignment]:
        result = await self.db.execute(
            select(FeeAssignment)
            .where(
                FeeAssignment.coaching_id == coaching_id,
                FeeAssignment.member_id == member_id,
                FeeAssignment.status.in_(LIVE_ASSIGNMENT_STATUSES),
            )
            .order_by(FeeAssignment.created_at.desc())
            .limit(1)
        )
        return result.unique().scalar_one_or_none()

    async def open_records(self, coaching_id: UUID, assignment_id: UUID) -> List[FeeRecord]:
        result = await self.db.execute(
            select(FeeRecord)
            .where(
                FeeRecord.coaching_id == coaching_id,
                FeeRecord.assignment_id == assignment_id,
                FeeRecord.status.in_(LIVE_RECORD_STATUSES),
            )
            .order_by(FeeRecord.due_date, FeeRecord.created_at, FeeRecord.id)
        )
        return list(result.scalars().all())

    async def last_assignment_log(self, coaching_id: UUID, member_id: UUID) -> Optional[FeeAuditLog]:
        return await get_last_assignment_log(self.db, coaching_id, member_id)
