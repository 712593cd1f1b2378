"""Fee structure catalog: reusable fee templates with audit on every change."""

from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from feeledger.api.v1.fee_audit.audit_service import log_fee_audit
from feeledger.api.v1.fee_audit.diff import to_audit_value, values_equal
from feeledger.core.enums import LIVE_ASSIGNMENT_STATUSES, AuditEntityType, AuditEvent
from feeledger.core.exceptions import ConflictError, NotFoundError, ValidationError
from feeledger.core.models import FeeAssignment, FeeStructure

from .schemas import (
    FeeStructureCreate,
    FeeStructureDeleteResponse,
    FeeStructureResponse,
    FeeStructureUpdate,
    InstallmentAmount,
    installment_plan_error,
)

INSTALLMENT_FIELDS = frozenset({"allowInstallments", "installmentCount", "installmentAmounts"})
NULLABLE_FIELDS = frozenset({"description", "sac_code", "hsn_code", "line_items", "installment_amounts"})

# Model attribute -> audit key.
_AUDIT_KEYS = {
    "name": "name",
    "description": "description",
    "amount": "amount",
    "cycle": "cycle",
    "late_fine_per_day": "lateFinePerDay",
    "tax_type": "taxType",
    "gst_rate": "gstRate",
    "gst_supply_type": "gstSupplyType",
    "sac_code": "sacCode",
    "hsn_code": "hsnCode",
    "cess_rate": "cessRate",
    "line_items": "lineItems",
    "allow_installments": "allowInstallments",
    "installment_count": "installmentCount",
    "installment_amounts": "installmentAmounts",
    "is_active": "isActive",
}


def _to_decimal(val) -> Decimal:
    if val is None:
        return Decimal("0")
    return val if isinstance(val, Decimal) else Decimal(str(val))


def _labelled_amounts(items) -> Optional[List[Dict[str, str]]]:
    if items is None:
        return None
    return [{"label": i.label.strip(), "amount": str(i.amount)} for i in items]


def _snapshot(fs: FeeStructure) -> Dict[str, Any]:
    return {audit_key: getattr(fs, attr) for attr, audit_key in _AUDIT_KEYS.items()}


def _to_response(fs: FeeStructure, assignment_count: int = 0) -> FeeStructureResponse:
    return FeeStructureResponse(
        id=fs.id,
        coaching_id=fs.coaching_id,
        name=fs.name,
        description=fs.description,
        amount=_to_decimal(fs.amount),
        currency=fs.currency,
        cycle=fs.cycle,
        late_fine_per_day=_to_decimal(fs.late_fine_per_day),
        tax_type=fs.tax_type,
        gst_rate=_to_decimal(fs.gst_rate),
        gst_supply_type=fs.gst_supply_type,
        sac_code=fs.sac_code,
        hsn_code=fs.hsn_code,
        cess_rate=_to_decimal(fs.cess_rate),
        line_items=fs.line_items or [],
        allow_installments=fs.allow_installments,
        installment_count=fs.installment_count or 0,
        installment_amounts=fs.installment_amounts or [],
        is_active=fs.is_active,
        assignment_count=assignment_count,
        created_at=fs.created_at,
        updated_at=fs.updated_at,
    )


async def _live_assignment_counts(db: AsyncSession, coaching_id: UUID) -> Dict[UUID, int]:
    result = await db.execute(
        select(FeeAssignment.fee_structure_id, func.count(FeeAssignment.id))
        .where(
            FeeAssignment.coaching_id == coaching_id,
            FeeAssignment.status.in_(LIVE_ASSIGNMENT_STATUSES),
        )
        .group_by(FeeAssignment.fee_structure_id)
    )
    return {row[0]: row[1] for row in result.all()}


async def _get_structure(db: AsyncSession, coaching_id: UUID, structure_id: UUID) -> FeeStructure:
    result = await db.execute(
        select(FeeStructure).where(
            FeeStructure.id == structure_id,
            FeeStructure.coaching_id == coaching_id,
        )
    )
    fs = result.scalar_one_or_none()
    if not fs:
        raise NotFoundError("Fee structure not found")
    return fs


async def list_fee_structures(
    db: AsyncSession,
    coaching_id: UUID,
    active_only: bool = False,
) -> List[FeeStructureResponse]:
    stmt = select(FeeStructure).where(FeeStructure.coaching_id == coaching_id)
    if active_only:
        stmt = stmt.where(FeeStructure.is_active.is_(True))
    stmt = stmt.order_by(FeeStructure.name, FeeStructure.created_at)
    result = await db.execute(stmt)
    counts = await _live_assignment_counts(db, coaching_id)
    return [_to_response(fs, counts.get(fs.id, 0)) for fs in result.scalars().all()]


async def get_fee_structure(
    db: AsyncSession,
    coaching_id: UUID,
    structure_id: UUID,
) -> FeeStructureResponse:
    fs = await _get_structure(db, coaching_id, structure_id)
    counts = await _live_assignment_counts(db, coaching_id)
    return _to_response(fs, counts.get(fs.id, 0))


async def create_fee_structure(
    db: AsyncSession,
    coaching_id: UUID,
    payload: FeeStructureCreate,
    actor_id: Optional[UUID] = None,
) -> FeeStructureResponse:
    try:
        fs = FeeStructure(
            coaching_id=coaching_id,
            name=payload.name.strip(),
            description=(payload.description or "").strip() or None,
            amount=payload.amount,
            cycle=payload.cycle.value,
            late_fine_per_day=payload.late_fine_per_day,
            tax_type=payload.tax_type.value,
            gst_rate=payload.gst_rate,
            gst_supply_type=payload.gst_supply_type.value,
            sac_code=(payload.sac_code or "").strip() or None,
            hsn_code=(payload.hsn_code or "").strip() or None,
            cess_rate=payload.cess_rate,
            line_items=_labelled_amounts(payload.line_items),
            allow_installments=payload.allow_installments,
            installment_count=(
                len(payload.installment_amounts)
                if payload.allow_installments and payload.installment_amounts
                else payload.installment_count
            ),
            installment_amounts=_labelled_amounts(payload.installment_amounts),
            is_active=True,
        )
        db.add(fs)
        await db.flush()
        await log_fee_audit(
            db, coaching_id, AuditEntityType.STRUCTURE, fs.id, AuditEvent.STRUCTURE_CREATED,
            after=_snapshot(fs),
            fee_structure_id=fs.id,
            actor_id=actor_id,
        )
        await db.commit()
        await db.refresh(fs)
        return _to_response(fs)
    except IntegrityError:
        await db.rollback()
        raise ConflictError("Fee structure could not be created")


async def update_fee_structure(
    db: AsyncSession,
    coaching_id: UUID,
    structure_id: UUID,
    payload: FeeStructureUpdate,
    actor_id: Optional[UUID] = None,
) -> FeeStructureResponse:
    fs = await _get_structure(db, coaching_id, structure_id)
    before = _snapshot(fs)

    updates = payload.model_dump(exclude_unset=True)
    if updates.get("name") is not None:
        updates["name"] = updates["name"].strip()
    for key in ("description", "sac_code", "hsn_code"):
        if updates.get(key) is not None:
            updates[key] = updates[key].strip() or None
    for key in ("cycle", "tax_type", "gst_supply_type"):
        if updates.get(key) is not None:
            updates[key] = updates[key].value
    if "line_items" in updates:
        updates["line_items"] = _labelled_amounts(payload.line_items)
    if "installment_amounts" in updates:
        updates["installment_amounts"] = _labelled_amounts(payload.installment_amounts)
    # Required columns cannot be cleared through a PATCH.
    updates = {k: v for k, v in updates.items() if v is not None or k in NULLABLE_FIELDS}

    amount = _to_decimal(updates.get("amount", fs.amount))
    allow = updates.get("allow_installments", fs.allow_installments)
    amounts_raw = updates.get("installment_amounts", fs.installment_amounts)
    installment_amounts = [InstallmentAmount(**a) for a in amounts_raw] if amounts_raw else None
    count = updates.get("installment_count", fs.installment_count or 0)
    if allow and installment_amounts and "installment_count" not in updates:
        count = len(installment_amounts)
        updates["installment_count"] = count
    error = installment_plan_error(amount, allow, count, installment_amounts)
    if error:
        raise ValidationError(error)

    for attr, value in updates.items():
        setattr(fs, attr, value)
    after = _snapshot(fs)
    changed = [
        key for key in after
        if not values_equal(key, to_audit_value(before[key]), to_audit_value(after[key]))
    ]
    if not changed:
        await db.rollback()
        return await get_fee_structure(db, coaching_id, structure_id)

    event = (
        AuditEvent.INSTALLMENT_SETTINGS_CHANGED
        if set(changed) <= INSTALLMENT_FIELDS
        else AuditEvent.STRUCTURE_UPDATED
    )
    try:
        await log_fee_audit(
            db, coaching_id, AuditEntityType.STRUCTURE, fs.id, event,
            before={k: before[k] for k in changed},
            after={k: after[k] for k in changed},
            fee_structure_id=fs.id,
            actor_id=actor_id,
        )
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError("Fee structure update conflict")
    await db.refresh(fs)
    counts = await _live_assignment_counts(db, coaching_id)
    return _to_response(fs, counts.get(fs.id, 0))


async def delete_fee_structure(
    db: AsyncSession,
    coaching_id: UUID,
    structure_id: UUID,
    actor_id: Optional[UUID] = None,
) -> FeeStructureDeleteResponse:
    """Soft delete when any assignment (live or historical) references the structure."""
    fs = await _get_structure(db, coaching_id, structure_id)
    total_refs = (
        await db.execute(
            select(func.count(FeeAssignment.id)).where(FeeAssignment.fee_structure_id == fs.id)
        )
    ).scalar() or 0
    live_refs = (
        await db.execute(
            select(func.count(FeeAssignment.id)).where(
                FeeAssignment.fee_structure_id == fs.id,
                FeeAssignment.status.in_(LIVE_ASSIGNMENT_STATUSES),
            )
        )
    ).scalar() or 0

    soft = total_refs > 0
    before = _snapshot(fs)
    if soft:
        fs.is_active = False
        await log_fee_audit(
            db, coaching_id, AuditEntityType.STRUCTURE, fs.id, AuditEvent.STRUCTURE_DELETED,
            before=before,
            after={"isActive": False},
            meta={"soft": True, "memberCount": live_refs},
            fee_structure_id=fs.id,
            actor_id=actor_id,
        )
    else:
        await db.delete(fs)
        await log_fee_audit(
            db, coaching_id, AuditEntityType.STRUCTURE, structure_id, AuditEvent.STRUCTURE_DELETED,
            before=before,
            meta={"soft": False, "memberCount": 0},
            actor_id=actor_id,
        )
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError("Fee structure is in use and cannot be deleted")
    return FeeStructureDeleteResponse(id=structure_id, soft_deleted=soft, live_assignment_count=live_refs)
