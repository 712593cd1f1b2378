"""Fees service: assignments, records, payments, refunds, waivers, reminders. Financial logic with audit."""

import logging
from collections import defaultdict
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, Tuple
from uuid import UUID

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from feeledger.api.v1.fee_audit.audit_service import log_fee_audit
from feeledger.core.config import settings
from feeledger.core.enums import (
    LIVE_RECORD_STATUSES,
    ActorType,
    AssignmentStatus,
    AuditEntityType,
    AuditEvent,
    BillingCycle,
    FeeRecordStatus,
    SupersededBalancePolicy,
)
from feeledger.core.exceptions import ConflictError, NotFoundError, ServiceError, ValidationError
from feeledger.core.locks import member_locks
from feeledger.core.models import (
    CoachingMember,
    FeeAssignment,
    FeePayment,
    FeeRecord,
    FeeRefund,
    FeeStructure,
    FeeWaiver,
)

from . import ledger as ledger_builder
from .billing import (
    ZERO,
    PlannedRecord,
    cycle_title,
    days_overdue,
    effective_status,
    generate_receipt_no,
    money,
    next_cycle_due,
    plan_records,
    price_record,
    record_status,
    uses_installments,
)
from .notifications import ReminderNotice
from .repository import FeeRepository
from .schemas import (
    AssignFeeResult,
    AssignmentOverrides,
    AssignmentResponse,
    AssignmentUpdate,
    AssignmentWithRecords,
    BulkRemindRequest,
    FeeRecordPage,
    FeeRecordResponse,
    FeeSummary,
    MemberFeeProfile,
    MemberSummary,
    MyFees,
    MyMemberFees,
    PauseRequest,
    PaymentCreate,
    PaymentResponse,
    PaymentResult,
    RecordFilters,
    RefundCreate,
    RefundResponse,
    RefundResult,
    RemindResult,
    SettlementPreview,
    StudentLedger,
    WaiveRequest,
    WaiverResponse,
    WaiveResult,
)
from .settlement import preview_reassignment, settlement_fingerprint

logger = logging.getLogger(__name__)

REMOVAL_WAIVER_REASON = "Fee assignment removed"
PROFILE_RECENT_RECORDS = 12


def _to_decimal(val) -> Decimal:
    if val is None:
        return Decimal("0")
    return val if isinstance(val, Decimal) else Decimal(str(val))


def _now() -> datetime:
    return datetime.now(timezone.utc)


# --- Converters ---
def _effective_amount(assignment: FeeAssignment, structure: FeeStructure) -> Decimal:
    if assignment.custom_amount is not None:
        return money(assignment.custom_amount)
    return money(structure.amount)


def _assignment_to_response(a: FeeAssignment, structure: FeeStructure) -> AssignmentResponse:
    return AssignmentResponse(
        id=a.id,
        coaching_id=a.coaching_id,
        member_id=a.member_id,
        fee_structure_id=a.fee_structure_id,
        fee_structure_name=structure.name,
        custom_amount=a.custom_amount,
        effective_amount=_effective_amount(a, structure),
        discount_amount=_to_decimal(a.discount_amount),
        discount_reason=a.discount_reason,
        scholarship_tag=a.scholarship_tag,
        scholarship_amount=_to_decimal(a.scholarship_amount),
        carried_credit=_to_decimal(a.carried_credit),
        start_date=a.start_date,
        end_date=a.end_date,
        status=a.status,
        paused_at=a.paused_at,
        pause_note=a.pause_note,
        version=a.version,
        created_at=a.created_at,
        updated_at=a.updated_at,
    )


def _record_balance(r: FeeRecord) -> Decimal:
    if r.status == FeeRecordStatus.WAIVED.value:
        return ZERO
    return max(money(r.final_amount) - money(r.paid_amount), ZERO)


def _record_to_response(r: FeeRecord, today: Optional[date] = None) -> FeeRecordResponse:
    today = today or date.today()
    return FeeRecordResponse(
        id=r.id,
        coaching_id=r.coaching_id,
        assignment_id=r.assignment_id,
        member_id=r.member_id,
        title=r.title,
        installment_no=r.installment_no,
        due_date=r.due_date,
        base_amount=money(r.base_amount),
        discount_amount=money(r.discount_amount),
        credit_amount=money(r.credit_amount),
        scholarship_amount=money(r.scholarship_amount),
        tax_amount=money(r.tax_amount),
        fine_amount=money(r.fine_amount),
        final_amount=money(r.final_amount),
        paid_amount=money(r.paid_amount),
        balance=_record_balance(r),
        status=effective_status(r.status, r.due_date, today),
        days_overdue=days_overdue(r.status, r.due_date, today),
        paid_at=r.paid_at,
        receipt_no=r.receipt_no,
        notes=r.notes,
        reminder_sent_at=r.reminder_sent_at,
        reminder_count=r.reminder_count or 0,
        created_at=r.created_at,
        updated_at=r.updated_at,
    )


def _assignment_snapshot(a: FeeAssignment) -> Dict[str, Any]:
    return {
        "feeStructureId": a.fee_structure_id,
        "customAmount": a.custom_amount,
        "discountAmount": a.discount_amount,
        "discountReason": a.discount_reason,
        "scholarshipTag": a.scholarship_tag,
        "scholarshipAmount": a.scholarship_amount,
        "carriedCredit": a.carried_credit,
        "startDate": a.start_date,
        "endDate": a.end_date,
        "status": a.status,
        "pauseNote": a.pause_note,
    }


def _record_snapshot(r: FeeRecord) -> Dict[str, Any]:
    return {
        "title": r.title,
        "dueDate": r.due_date,
        "finalAmount": r.final_amount,
        "paidAmount": r.paid_amount,
        "status": r.status,
    }


# --- Loaders ---
async def _get_member(db: AsyncSession, coaching_id: UUID, member_id: UUID, for_update: bool = False) -> CoachingMember:
    stmt = select(CoachingMember).where(
        CoachingMember.id == member_id,
        CoachingMember.coaching_id == coaching_id,
    )
    if for_update:
        stmt = stmt.with_for_update()
    member = (await db.execute(stmt)).scalar_one_or_none()
    if not member:
        raise NotFoundError("Member not found")
    return member


async def _get_structure(db: AsyncSession, coaching_id: UUID, structure_id: UUID) -> FeeStructure:
    result = await db.execute(
        select(FeeStructure).where(
            FeeStructure.id == structure_id,
            FeeStructure.coaching_id == coaching_id,
        )
    )
    structure = result.scalar_one_or_none()
    if not structure:
        raise NotFoundError("Fee structure not found")
    return structure


async def _get_assignment(db: AsyncSession, coaching_id: UUID, assignment_id: UUID) -> FeeAssignment:
    result = await db.execute(
        select(FeeAssignment).where(
            FeeAssignment.id == assignment_id,
            FeeAssignment.coaching_id == coaching_id,
        )
    )
    assignment = result.unique().scalar_one_or_none()
    if not assignment:
        raise NotFoundError("Fee assignment not found")
    return assignment


async def _get_record(db: AsyncSession, coaching_id: UUID, record_id: UUID, for_update: bool = False) -> FeeRecord:
    stmt = select(FeeRecord).where(
        FeeRecord.id == record_id,
        FeeRecord.coaching_id == coaching_id,
    )
    if for_update:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    record = (await db.execute(stmt)).scalar_one_or_none()
    if not record:
        raise NotFoundError("Fee record not found")
    return record


async def _commit(db: AsyncSession, conflict_message: str) -> None:
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError(conflict_message)


# --- Record generation ---
async def _create_records(
    db: AsyncSession,
    assignment: FeeAssignment,
    structure: FeeStructure,
    plans: Sequence[PlannedRecord],
    actor_id: Optional[UUID],
    actor_type: ActorType = ActorType.ADMIN,
) -> List[FeeRecord]:
    records = []
    for plan in plans:
        amounts = plan.amounts
        record = FeeRecord(
            coaching_id=assignment.coaching_id,
            assignment_id=assignment.id,
            member_id=assignment.member_id,
            title=plan.title,
            installment_no=plan.installment_no,
            due_date=plan.due_date,
            base_amount=amounts.base_amount,
            discount_amount=amounts.discount_amount,
            credit_amount=amounts.credit_amount,
            scholarship_amount=amounts.scholarship_amount,
            tax_amount=amounts.tax_amount,
            fine_amount=ZERO,
            final_amount=amounts.final_amount,
            paid_amount=ZERO,
            status=record_status(amounts.final_amount, ZERO),
            reminder_count=0,
        )
        db.add(record)
        await db.flush()
        await log_fee_audit(
            db, assignment.coaching_id, AuditEntityType.RECORD, record.id, AuditEvent.RECORD_CREATED,
            after=_record_snapshot(record),
            meta={"creditApplied": amounts.credit_amount if amounts.credit_amount else None},
            member_id=assignment.member_id,
            fee_structure_id=structure.id,
            actor_id=actor_id,
            actor_type=actor_type,
        )
        records.append(record)
    return records


async def _generate_next_cycle_record(
    db: AsyncSession,
    paid_record: FeeRecord,
    actor_id: Optional[UUID],
) -> Optional[FeeRecord]:
    """Next cycle's record once the latest one is paid, for ACTIVE recurring assignments."""
    assignment = await _get_assignment(db, paid_record.coaching_id, paid_record.assignment_id)
    if assignment.status != AssignmentStatus.ACTIVE.value:
        return None
    structure = assignment.fee_structure
    if structure.cycle == BillingCycle.ONCE.value or uses_installments(structure):
        return None

    latest_due = (
        await db.execute(
            select(func.max(FeeRecord.due_date)).where(FeeRecord.assignment_id == assignment.id)
        )
    ).scalar()
    if latest_due is None or paid_record.due_date != latest_due:
        return None
    next_due = next_cycle_due(structure.cycle, latest_due)
    if next_due is None or (assignment.end_date and next_due > assignment.end_date):
        return None

    effective = _effective_amount(assignment, structure)
    discount = money(assignment.discount_amount)
    scholarship = money(assignment.scholarship_amount)
    credit = min(money(assignment.carried_credit), max(effective - discount - scholarship, ZERO))
    amounts = price_record(
        effective, discount, scholarship,
        structure.tax_type, structure.gst_rate, structure.cess_rate,
        credit_amount=credit,
    )
    if credit:
        assignment.carried_credit = money(assignment.carried_credit) - credit
    plan = PlannedRecord(
        title=cycle_title(structure.name, structure.cycle, next_due),
        installment_no=None,
        due_date=next_due,
        amounts=amounts,
    )
    records = await _create_records(
        db, assignment, structure, [plan], actor_id, actor_type=ActorType.SYSTEM
    )
    return records[0]


# --- Settlement ---
async def _waive_record(
    db: AsyncSession,
    record: FeeRecord,
    reason: str,
    actor_id: Optional[UUID],
    fee_structure_id: Optional[UUID],
    automatic: bool,
) -> FeeWaiver:
    before = _record_snapshot(record)
    balance = money(record.final_amount) - money(record.paid_amount)
    waiver = FeeWaiver(
        coaching_id=record.coaching_id,
        record_id=record.id,
        waived_amount=balance,
        reason=reason,
        actor_id=actor_id,
        is_automatic=automatic,
        waived_at=_now(),
    )
    db.add(waiver)
    record.status = FeeRecordStatus.WAIVED.value
    await db.flush()
    await log_fee_audit(
        db, record.coaching_id, AuditEntityType.WAIVER, waiver.id, AuditEvent.FEE_WAIVED,
        before=before,
        after=_record_snapshot(record),
        meta={"waivedAmount": balance, "waivedReason": reason, "automatic": automatic},
        member_id=record.member_id,
        fee_structure_id=fee_structure_id,
        actor_id=actor_id,
        actor_type=ActorType.SYSTEM if automatic else ActorType.ADMIN,
    )
    return waiver


async def _settle_open_records(
    db: AsyncSession,
    assignment: FeeAssignment,
    open_records: Sequence[FeeRecord],
    reason: str,
    actor_id: Optional[UUID],
) -> Decimal:
    waived = ZERO
    for record in open_records:
        balance = money(record.final_amount) - money(record.paid_amount)
        if balance <= ZERO:
            record.status = record_status(record.final_amount, record.paid_amount)
            continue
        await _waive_record(db, record, reason, actor_id, assignment.fee_structure_id, automatic=True)
        waived += balance
    if waived:
        logger.info(
            "Settled assignment %s for member %s: waived %s across %d record(s)",
            assignment.id, assignment.member_id, waived, len(open_records),
        )
    return waived


async def _retire_assignment(
    db: AsyncSession,
    assignment: FeeAssignment,
    actor_id: Optional[UUID],
    meta: Dict[str, Any],
) -> None:
    """Version compare-and-swap to REMOVED; a concurrent change makes this a ConflictError."""
    before = _assignment_snapshot(assignment)
    expected_version = assignment.version
    result = await db.execute(
        update(FeeAssignment)
        .where(
            FeeAssignment.id == assignment.id,
            FeeAssignment.version == expected_version,
        )
        .values(
            status=AssignmentStatus.REMOVED.value,
            version=expected_version + 1,
            updated_at=datetime.utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise ConflictError("Fee assignment was changed by another request; retry")
    await db.refresh(assignment)
    await log_fee_audit(
        db, assignment.coaching_id, AuditEntityType.ASSIGNMENT, assignment.id, AuditEvent.ASSIGNMENT_REMOVED,
        before=before,
        after=_assignment_snapshot(assignment),
        meta=meta,
        member_id=assignment.member_id,
        fee_structure_id=assignment.fee_structure_id,
        actor_id=actor_id,
    )


# --- Assignment ---
async def assign_fee(
    db: AsyncSession,
    coaching_id: UUID,
    member_id: UUID,
    structure_id: UUID,
    overrides: AssignmentOverrides,
    actor_id: Optional[UUID] = None,
) -> AssignFeeResult:
    """
    Assign a fee structure to one member, superseding any live assignment.

    Runs under the member lock in a single transaction: settle the old assignment,
    create the new one and its initial records, then commit. Any failure rolls the
    whole member back. Re-assigning the structure a member already has ACTIVE is a no-op.
    """
    async with member_locks.hold(coaching_id, member_id):
        try:
            result = await _assign_fee_locked(db, coaching_id, member_id, structure_id, overrides, actor_id)
            if result.created:
                await db.commit()
            else:
                await db.rollback()
        except IntegrityError:
            await db.rollback()
            raise ConflictError("Fee assignment conflict; retry")
        except ServiceError:
            await db.rollback()
            raise
        return result


async def _assign_fee_locked(
    db: AsyncSession,
    coaching_id: UUID,
    member_id: UUID,
    structure_id: UUID,
    overrides: AssignmentOverrides,
    actor_id: Optional[UUID],
) -> AssignFeeResult:
    await _get_member(db, coaching_id, member_id, for_update=True)
    structure = await _get_structure(db, coaching_id, structure_id)
    if not structure.is_active:
        raise ValidationError("Fee structure is inactive")

    repo = FeeRepository(db)
    current = await repo.live_assignment(coaching_id, member_id)
    if (
        current is not None
        and current.fee_structure_id == structure.id
        and current.status == AssignmentStatus.ACTIVE.value
    ):
        records = await repo.open_records(coaching_id, current.id)
        return AssignFeeResult(
            assignment=_assignment_to_response(current, structure),
            records=[_record_to_response(r) for r in records],
            created=False,
        )

    open_records = await repo.open_records(coaching_id, current.id) if current else []
    if overrides.expected_fingerprint is not None:
        if settlement_fingerprint(current, open_records) != overrides.expected_fingerprint:
            raise ConflictError("Settlement changed since it was previewed; refresh and retry")

    open_balance = sum((money(r.final_amount) - money(r.paid_amount) for r in open_records), ZERO)
    total_paid = sum((money(r.paid_amount) for r in open_records), ZERO)
    if (
        open_balance > ZERO
        and settings.superseded_balance_policy == SupersededBalancePolicy.REQUIRE_CONFIRMATION
        and not overrides.confirm_settlement
    ):
        raise ConflictError("Member has an unpaid balance on the current fee; confirm the settlement to continue")

    start_date = overrides.start_date or date.today()
    if overrides.end_date and overrides.end_date < start_date:
        raise ValidationError("End date cannot be before start date")
    effective = money(overrides.custom_amount) if overrides.custom_amount is not None else money(structure.amount)
    credit = total_paid if overrides.apply_paid_credit else ZERO
    # Prices everything (and validates discounts) before the first write.
    plans, credit_used = plan_records(
        structure, effective, overrides.discount_amount, overrides.scholarship_amount, start_date, credit
    )

    waived = ZERO
    if current is not None:
        waived = await _settle_open_records(
            db, current, open_records, settings.settlement_waiver_reason, actor_id
        )
        await _retire_assignment(
            db, current, actor_id,
            meta={
                "previousStructureId": current.fee_structure_id,
                "newStructureId": structure.id,
                "totalWaived": waived,
                "reason": settings.settlement_waiver_reason,
            },
        )

    assignment = FeeAssignment(
        coaching_id=coaching_id,
        member_id=member_id,
        fee_structure_id=structure.id,
        custom_amount=overrides.custom_amount,
        discount_amount=money(overrides.discount_amount),
        discount_reason=(overrides.discount_reason or "").strip() or None,
        scholarship_tag=(overrides.scholarship_tag or "").strip() or None,
        scholarship_amount=money(overrides.scholarship_amount),
        carried_credit=credit - credit_used,
        start_date=start_date,
        end_date=overrides.end_date,
        status=AssignmentStatus.ACTIVE.value,
        version=1,
    )
    db.add(assignment)
    await db.flush()
    await log_fee_audit(
        db, coaching_id, AuditEntityType.ASSIGNMENT, assignment.id, AuditEvent.ASSIGNMENT_CREATED,
        after={**_assignment_snapshot(assignment), "feeStructureName": structure.name},
        meta={
            "previousStructureId": current.fee_structure_id if current else None,
            "creditApplied": credit_used if credit_used else None,
        },
        member_id=member_id,
        fee_structure_id=structure.id,
        actor_id=actor_id,
    )
    records = await _create_records(db, assignment, structure, plans, actor_id)
    return AssignFeeResult(
        assignment=_assignment_to_response(assignment, structure),
        records=[_record_to_response(r) for r in records],
        created=True,
        waived_amount=waived,
        credit_applied=credit_used,
    )


async def update_assignment(
    db: AsyncSession,
    coaching_id: UUID,
    assignment_id: UUID,
    payload: AssignmentUpdate,
    actor_id: Optional[UUID] = None,
) -> AssignmentResponse:
    """Change pricing overrides; unpaid records of the assignment are re-priced."""
    assignment = await _get_assignment(db, coaching_id, assignment_id)
    async with member_locks.hold(coaching_id, assignment.member_id):
        try:
            await _get_member(db, coaching_id, assignment.member_id, for_update=True)
            await db.refresh(assignment)
            if assignment.status == AssignmentStatus.REMOVED.value:
                raise ValidationError("Fee assignment has been removed")
            structure = await _get_structure(db, coaching_id, assignment.fee_structure_id)
            before = _assignment_snapshot(assignment)

            updates = payload.model_dump(exclude_unset=True)
            for key in ("discount_reason", "scholarship_tag"):
                if key in updates:
                    updates[key] = (updates[key] or "").strip() or None
            for key in ("discount_amount", "scholarship_amount"):
                if key in updates:
                    updates[key] = money(updates[key])
            if updates.get("end_date") and updates["end_date"] < assignment.start_date:
                raise ValidationError("End date cannot be before start date")
            for attr, value in updates.items():
                setattr(assignment, attr, value)

            after = _assignment_snapshot(assignment)
            if after == before:
                await db.commit()
                return _assignment_to_response(assignment, structure)

            repriced = await _reprice_unpaid_records(db, assignment, structure)
            assignment.version = assignment.version + 1
            await db.flush()
            await log_fee_audit(
                db, coaching_id, AuditEntityType.ASSIGNMENT, assignment.id, AuditEvent.ASSIGNMENT_UPDATED,
                before=before,
                after=_assignment_snapshot(assignment),
                meta={"repricedRecords": repriced or None},
                member_id=assignment.member_id,
                fee_structure_id=structure.id,
                actor_id=actor_id,
            )
            await _commit(db, "Fee assignment update conflict")
        except ServiceError:
            await db.rollback()
            raise
        return _assignment_to_response(assignment, structure)


async def _reprice_unpaid_records(db: AsyncSession, assignment: FeeAssignment, structure: FeeStructure) -> int:
    effective = _effective_amount(assignment, structure)
    plans, _ = plan_records(
        structure, effective, assignment.discount_amount, assignment.scholarship_amount, assignment.start_date
    )
    by_installment = {p.installment_no: p for p in plans}
    result = await db.execute(
        select(FeeRecord).where(
            FeeRecord.assignment_id == assignment.id,
            FeeRecord.status == FeeRecordStatus.PENDING.value,
            FeeRecord.paid_amount == 0,
        )
    )
    count = 0
    for record in result.scalars().all():
        plan = by_installment.get(record.installment_no) or plans[0]
        amounts = plan.amounts
        room = max(amounts.base_amount - amounts.discount_amount - amounts.scholarship_amount, ZERO)
        credit = min(money(record.credit_amount), room)
        repriced = price_record(
            amounts.base_amount, amounts.discount_amount, amounts.scholarship_amount,
            structure.tax_type, structure.gst_rate, structure.cess_rate,
            credit_amount=credit,
        )
        record.base_amount = repriced.base_amount
        record.discount_amount = repriced.discount_amount
        record.credit_amount = repriced.credit_amount
        record.scholarship_amount = repriced.scholarship_amount
        record.tax_amount = repriced.tax_amount
        record.final_amount = repriced.final_amount
        record.status = record_status(repriced.final_amount, record.paid_amount)
        count += 1
    return count


async def toggle_pause(
    db: AsyncSession,
    coaching_id: UUID,
    assignment_id: UUID,
    payload: PauseRequest,
    actor_id: Optional[UUID] = None,
) -> AssignmentResponse:
    assignment = await _get_assignment(db, coaching_id, assignment_id)
    structure = assignment.fee_structure
    async with member_locks.hold(coaching_id, assignment.member_id):
        await _get_member(db, coaching_id, assignment.member_id, for_update=True)
        await db.refresh(assignment)
        if assignment.status == AssignmentStatus.REMOVED.value:
            await db.rollback()
            raise ValidationError("Fee assignment has been removed")
        target = AssignmentStatus.PAUSED.value if payload.paused else AssignmentStatus.ACTIVE.value
        if assignment.status == target:
            await db.commit()
            return _assignment_to_response(assignment, structure)

        before = _assignment_snapshot(assignment)
        assignment.status = target
        assignment.paused_at = _now() if payload.paused else None
        assignment.pause_note = ((payload.note or "").strip() or None) if payload.paused else None
        assignment.version = assignment.version + 1
        await db.flush()
        await log_fee_audit(
            db, coaching_id, AuditEntityType.ASSIGNMENT, assignment.id,
            AuditEvent.ASSIGNMENT_PAUSED if payload.paused else AuditEvent.ASSIGNMENT_UNPAUSED,
            before=before,
            after=_assignment_snapshot(assignment),
            member_id=assignment.member_id,
            fee_structure_id=assignment.fee_structure_id,
            actor_id=actor_id,
            note=payload.note,
        )
        await _commit(db, "Fee assignment update conflict")
        return _assignment_to_response(assignment, structure)


async def remove_assignment(
    db: AsyncSession,
    coaching_id: UUID,
    assignment_id: UUID,
    actor_id: Optional[UUID] = None,
) -> AssignmentResponse:
    """Remove a live assignment; open balances on its records are waived."""
    assignment = await _get_assignment(db, coaching_id, assignment_id)
    structure = assignment.fee_structure
    async with member_locks.hold(coaching_id, assignment.member_id):
        try:
            await _get_member(db, coaching_id, assignment.member_id, for_update=True)
            await db.refresh(assignment)
            if assignment.status == AssignmentStatus.REMOVED.value:
                raise ValidationError("Fee assignment is already removed")
            open_records = await FeeRepository(db).open_records(coaching_id, assignment.id)
            waived = await _settle_open_records(db, assignment, open_records, REMOVAL_WAIVER_REASON, actor_id)
            await _retire_assignment(db, assignment, actor_id, meta={"totalWaived": waived or None})
            await _commit(db, "Fee assignment update conflict")
        except ServiceError:
            await db.rollback()
            raise
        return _assignment_to_response(assignment, structure)


# --- Payments, refunds, waivers ---
async def _locked_record(db: AsyncSession, coaching_id: UUID, record_id: UUID):
    record = await _get_record(db, coaching_id, record_id)
    return record, member_locks.hold(coaching_id, record.member_id)


async def record_payment(
    db: AsyncSession,
    coaching_id: UUID,
    record_id: UUID,
    payload: PaymentCreate,
    actor_id: Optional[UUID] = None,
) -> PaymentResult:
    record, lock = await _locked_record(db, coaching_id, record_id)
    async with lock:
        try:
            await _get_member(db, coaching_id, record.member_id, for_update=True)
            record = await _get_record(db, coaching_id, record_id, for_update=True)
            if record.status in (FeeRecordStatus.PAID.value, FeeRecordStatus.WAIVED.value):
                raise ValidationError("Fee record is already settled")
            amount = money(payload.amount)
            balance = money(record.final_amount) - money(record.paid_amount)
            if amount > balance:
                raise ValidationError(f"Payment exceeds the outstanding balance of {balance}")

            before = _record_snapshot(record)
            paid_at = payload.paid_at or _now()
            payment = FeePayment(
                coaching_id=coaching_id,
                record_id=record.id,
                amount=amount,
                mode=payload.mode.value,
                transaction_ref=(payload.transaction_ref or "").strip() or None,
                receipt_no=generate_receipt_no(),
                notes=(payload.notes or "").strip() or None,
                paid_at=paid_at,
                recorded_by=actor_id,
            )
            db.add(payment)
            record.paid_amount = money(record.paid_amount) + amount
            record.status = record_status(record.final_amount, record.paid_amount)
            if record.status == FeeRecordStatus.PAID.value:
                record.paid_at = paid_at
                record.receipt_no = payment.receipt_no
            await db.flush()
            await log_fee_audit(
                db, coaching_id, AuditEntityType.PAYMENT, payment.id, AuditEvent.PAYMENT_RECORDED,
                before=before,
                after=_record_snapshot(record),
                meta={
                    "paymentAmount": amount,
                    "paymentMode": payment.mode,
                    "receiptNo": payment.receipt_no,
                    "transactionRef": payment.transaction_ref,
                },
                member_id=record.member_id,
                actor_id=actor_id,
            )
            next_record = None
            if record.status == FeeRecordStatus.PAID.value:
                next_record = await _generate_next_cycle_record(db, record, actor_id)
            await _commit(db, "Payment conflict; retry")
        except ServiceError:
            await db.rollback()
            raise
        return PaymentResult(
            payment=PaymentResponse.model_validate(payment),
            record=_record_to_response(record),
            next_record=_record_to_response(next_record) if next_record else None,
        )


async def record_refund(
    db: AsyncSession,
    coaching_id: UUID,
    record_id: UUID,
    payload: RefundCreate,
    actor_id: Optional[UUID] = None,
) -> RefundResult:
    record, lock = await _locked_record(db, coaching_id, record_id)
    async with lock:
        try:
            await _get_member(db, coaching_id, record.member_id, for_update=True)
            record = await _get_record(db, coaching_id, record_id, for_update=True)
            if record.status == FeeRecordStatus.WAIVED.value:
                raise ValidationError("Cannot refund a waived fee")
            amount = money(payload.amount)
            if amount > money(record.paid_amount):
                raise ValidationError("Refund exceeds the amount paid on this fee")
            if payload.payment_id is not None:
                payment = await db.get(FeePayment, payload.payment_id)
                if not payment or payment.record_id != record.id:
                    raise ValidationError("Payment does not belong to this fee record")
                already = (
                    await db.execute(
                        select(func.coalesce(func.sum(FeeRefund.amount), 0)).where(
                            FeeRefund.payment_id == payment.id
                        )
                    )
                ).scalar()
                if amount > money(payment.amount) - money(already):
                    raise ValidationError("Refund exceeds the refundable amount of the payment")

            before = _record_snapshot(record)
            refund = FeeRefund(
                coaching_id=coaching_id,
                record_id=record.id,
                payment_id=payload.payment_id,
                amount=amount,
                mode=payload.mode.value,
                reason=(payload.reason or "").strip() or None,
                refunded_at=payload.refunded_at or _now(),
                processed_by=actor_id,
            )
            db.add(refund)
            record.paid_amount = money(record.paid_amount) - amount
            record.status = record_status(record.final_amount, record.paid_amount)
            if record.status != FeeRecordStatus.PAID.value:
                record.paid_at = None
            await db.flush()
            await log_fee_audit(
                db, coaching_id, AuditEntityType.REFUND, refund.id, AuditEvent.REFUND_ISSUED,
                before=before,
                after=_record_snapshot(record),
                meta={"refundAmount": amount, "refundMode": refund.mode, "reason": refund.reason},
                member_id=record.member_id,
                actor_id=actor_id,
            )
            await _commit(db, "Refund conflict; retry")
        except ServiceError:
            await db.rollback()
            raise
        return RefundResult(refund=RefundResponse.model_validate(refund), record=_record_to_response(record))


async def waive_fee(
    db: AsyncSession,
    coaching_id: UUID,
    record_id: UUID,
    payload: WaiveRequest,
    actor_id: Optional[UUID] = None,
) -> WaiveResult:
    record, lock = await _locked_record(db, coaching_id, record_id)
    async with lock:
        try:
            await _get_member(db, coaching_id, record.member_id, for_update=True)
            record = await _get_record(db, coaching_id, record_id, for_update=True)
            if record.status == FeeRecordStatus.PAID.value:
                raise ValidationError("Fee is already paid")
            if record.status == FeeRecordStatus.WAIVED.value:
                raise ValidationError("Fee is already waived")
            waiver = await _waive_record(
                db, record, payload.reason.strip(), actor_id, fee_structure_id=None, automatic=False
            )
            await _commit(db, "Waiver conflict; retry")
        except ServiceError:
            await db.rollback()
            raise
        return WaiveResult(waiver=WaiverResponse.model_validate(waiver), record=_record_to_response(record))


# --- Reminders ---
def _notice(record: FeeRecord) -> ReminderNotice:
    return ReminderNotice(
        coaching_id=record.coaching_id,
        member_id=record.member_id,
        record_id=record.id,
        title=record.title,
        balance=_record_balance(record),
        due_date=record.due_date,
        reminder_count=record.reminder_count,
    )


async def _stamp_reminder(db: AsyncSession, record: FeeRecord, actor_id: Optional[UUID]) -> None:
    before = {"reminderCount": record.reminder_count or 0}
    record.reminder_sent_at = _now()
    record.reminder_count = (record.reminder_count or 0) + 1
    await db.flush()
    await log_fee_audit(
        db, record.coaching_id, AuditEntityType.RECORD, record.id, AuditEvent.REMINDER_SENT,
        before=before,
        after={"reminderCount": record.reminder_count},
        member_id=record.member_id,
        actor_id=actor_id,
    )


async def send_reminder(
    db: AsyncSession,
    coaching_id: UUID,
    record_id: UUID,
    actor_id: Optional[UUID] = None,
) -> Tuple[RemindResult, List[ReminderNotice]]:
    record = await _get_record(db, coaching_id, record_id)
    if record.status not in LIVE_RECORD_STATUSES:
        raise ValidationError("Only unpaid fees can be reminded")
    await _stamp_reminder(db, record, actor_id)
    await _commit(db, "Reminder conflict; retry")
    return RemindResult(reminded=1, record_ids=[record.id]), [_notice(record)]


def _status_condition(status: FeeRecordStatus, today: date):
    open_statuses = (FeeRecordStatus.PENDING.value, FeeRecordStatus.PARTIALLY_PAID.value)
    if status == FeeRecordStatus.OVERDUE:
        return and_(FeeRecord.status.in_(LIVE_RECORD_STATUSES), FeeRecord.due_date < today)
    if status.value in open_statuses:
        return and_(FeeRecord.status == status.value, FeeRecord.due_date >= today)
    return FeeRecord.status == status.value


async def bulk_remind(
    db: AsyncSession,
    coaching_id: UUID,
    payload: BulkRemindRequest,
    actor_id: Optional[UUID] = None,
) -> Tuple[RemindResult, List[ReminderNotice]]:
    if payload.status_filter.value not in LIVE_RECORD_STATUSES:
        raise ValidationError("Reminders can only target unpaid fees")
    conditions = [FeeRecord.coaching_id == coaching_id, _status_condition(payload.status_filter, date.today())]
    if payload.member_ids:
        conditions.append(FeeRecord.member_id.in_(payload.member_ids))
    result = await db.execute(select(FeeRecord).where(*conditions).order_by(FeeRecord.due_date, FeeRecord.id))
    records = list(result.scalars().all())
    for record in records:
        await _stamp_reminder(db, record, actor_id)
    await _commit(db, "Reminder conflict; retry")
    return RemindResult(reminded=len(records), record_ids=[r.id for r in records]), [_notice(r) for r in records]


# --- Reads ---
async def list_records(
    db: AsyncSession,
    coaching_id: UUID,
    filters: RecordFilters,
    page: int = 1,
    limit: int = 30,
) -> FeeRecordPage:
    today = date.today()
    conditions = [FeeRecord.coaching_id == coaching_id]
    if filters.member_id is not None:
        conditions.append(FeeRecord.member_id == filters.member_id)
    if filters.assignment_id is not None:
        conditions.append(FeeRecord.assignment_id == filters.assignment_id)
    if filters.status is not None:
        conditions.append(_status_condition(filters.status, today))
    if filters.from_date is not None:
        conditions.append(FeeRecord.due_date >= filters.from_date)
    if filters.to_date is not None:
        conditions.append(FeeRecord.due_date <= filters.to_date)

    total = (
        await db.execute(select(func.count()).select_from(FeeRecord).where(*conditions))
    ).scalar() or 0
    result = await db.execute(
        select(FeeRecord)
        .where(*conditions)
        .order_by(FeeRecord.due_date.desc(), FeeRecord.created_at.desc(), FeeRecord.id)
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return FeeRecordPage(
        records=[_record_to_response(r, today) for r in result.scalars().all()],
        total=total,
        page=page,
        limit=limit,
    )


async def get_record(db: AsyncSession, coaching_id: UUID, record_id: UUID) -> FeeRecordResponse:
    return _record_to_response(await _get_record(db, coaching_id, record_id))


async def get_fee_summary(db: AsyncSession, coaching_id: UUID) -> FeeSummary:
    today = date.today()
    result = await db.execute(select(FeeRecord).where(FeeRecord.coaching_id == coaching_id))
    summary = FeeSummary()
    breakdown: Dict[str, int] = defaultdict(int)
    for r in result.scalars().all():
        status = effective_status(r.status, r.due_date, today)
        breakdown[status] += 1
        summary.total_records += 1
        summary.total_collected += money(r.paid_amount)
        if status == FeeRecordStatus.OVERDUE.value:
            summary.total_overdue += _record_balance(r)
        elif status in LIVE_RECORD_STATUSES:
            summary.total_pending += _record_balance(r)
    summary.status_breakdown = dict(breakdown)

    summary.total_waived = money(
        (
            await db.execute(
                select(func.coalesce(func.sum(FeeWaiver.waived_amount), 0)).where(
                    FeeWaiver.coaching_id == coaching_id
                )
            )
        ).scalar()
    )
    modes = await db.execute(
        select(FeePayment.mode, func.sum(FeePayment.amount))
        .where(FeePayment.coaching_id == coaching_id)
        .group_by(FeePayment.mode)
    )
    summary.payment_modes = {mode: money(total) for mode, total in modes.all()}
    return summary


async def get_member_ledger(db: AsyncSession, coaching_id: UUID, member_id: UUID) -> StudentLedger:
    await _get_member(db, coaching_id, member_id)
    return await ledger_builder.get_student_ledger(FeeRepository(db), coaching_id, member_id)


async def get_assignment_preview(db: AsyncSession, coaching_id: UUID, member_id: UUID) -> SettlementPreview:
    await _get_member(db, coaching_id, member_id)
    return await preview_reassignment(FeeRepository(db), coaching_id, member_id)


async def get_member_fee_profile(db: AsyncSession, coaching_id: UUID, member_id: UUID) -> MemberFeeProfile:
    member = await _get_member(db, coaching_id, member_id)
    repo = FeeRepository(db)
    records = await repo.records_for_member(coaching_id, member_id)
    record_ids = [r.id for r in records]
    ledger = ledger_builder.build_ledger(
        records,
        await repo.payments_for_records(coaching_id, record_ids),
        await repo.refunds_for_records(coaching_id, record_ids),
        await repo.waivers_for_records(coaching_id, record_ids),
        member_id=member_id,
    )

    today = date.today()
    by_assignment: Dict[UUID, List[FeeRecord]] = defaultdict(list)
    for r in records:
        by_assignment[r.assignment_id].append(r)

    result = await db.execute(
        select(FeeAssignment)
        .where(FeeAssignment.coaching_id == coaching_id, FeeAssignment.member_id == member_id)
        .order_by(FeeAssignment.created_at.desc())
    )
    assignments = []
    for a in result.unique().scalars().all():
        recent = sorted(by_assignment.get(a.id, []), key=lambda r: r.due_date, reverse=True)
        assignments.append(
            AssignmentWithRecords(
                **_assignment_to_response(a, a.fee_structure).model_dump(),
                records=[_record_to_response(r, today) for r in recent[:PROFILE_RECENT_RECORDS]],
            )
        )
    return MemberFeeProfile(
        member=MemberSummary.model_validate(member),
        ledger=ledger,
        assignments=assignments,
    )


async def get_my_fees(db: AsyncSession, coaching_id: UUID, user_id: UUID) -> MyFees:
    """Ledger and records for the user's own membership and any ward they are parent of."""
    result = await db.execute(
        select(CoachingMember)
        .where(
            CoachingMember.coaching_id == coaching_id,
            or_(CoachingMember.user_id == user_id, CoachingMember.parent_user_id == user_id),
        )
        .order_by(CoachingMember.created_at, CoachingMember.id)
    )
    repo = FeeRepository(db)
    today = date.today()
    members = []
    for member in result.scalars().all():
        records = await repo.records_for_member(coaching_id, member.id)
        members.append(
            MyMemberFees(
                member=MemberSummary.model_validate(member),
                ledger=await ledger_builder.get_student_ledger(repo, coaching_id, member.id),
                records=[_record_to_response(r, today) for r in reversed(records)],
            )
        )
    return MyFees(members=members)
