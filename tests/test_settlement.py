import asyncio
import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from types import SimpleNamespace

import pytest
from sqlalchemy import select

from feeledger.api.v1.fees import service
from feeledger.api.v1.fees.schemas import AssignmentOverrides, PaymentCreate
from feeledger.api.v1.fees.settlement import compute_settlement
from feeledger.core.config import settings
from feeledger.core.enums import AssignmentStatus, LedgerEntryType, SupersededBalancePolicy
from feeledger.core.exceptions import ConflictError
from feeledger.core.models import FeeAssignment, FeeAuditLog, FeeWaiver


def _assignment(version=1):
    return SimpleNamespace(
        id=uuid.uuid4(),
        version=version,
        fee_structure_id=uuid.uuid4(),
        fee_structure=SimpleNamespace(name="Tuition"),
    )


def _record(final, paid, status="PARTIALLY_PAID"):
    return SimpleNamespace(
        id=uuid.uuid4(), title="January 2026 - Tuition", final_amount=Decimal(final),
        paid_amount=Decimal(paid), status=status,
    )


def test_no_assignment_is_an_empty_settlement():
    preview = compute_settlement(None)
    assert preview.has_assignment is False
    assert preview.partial_records == []
    assert preview.total_balance == Decimal("0")
    assert preview.fingerprint


def test_settlement_conserves_record_amounts():
    records = [_record("500", "300"), _record("800", "0", status="PENDING"), _record("250", "100")]
    preview = compute_settlement(_assignment(), records)

    assert preview.has_assignment is True
    assert preview.current_structure_name == "Tuition"
    assert preview.total_paid == Decimal("400")
    assert preview.total_balance == Decimal("1150")
    assert preview.total_paid + preview.total_balance == sum(Decimal(r.final_amount) for r in records)
    assert [p.balance for p in preview.partial_records] == [Decimal("200"), Decimal("800"), Decimal("150")]


def test_fingerprint_tracks_state():
    assignment = _assignment()
    records = [_record("500", "300")]
    first = compute_settlement(assignment, records).fingerprint

    assert compute_settlement(assignment, list(reversed(records))).fingerprint == first
    records[0].paid_amount = Decimal("400")
    assert compute_settlement(assignment, records).fingerprint != first
    assignment.version = 2
    assert compute_settlement(assignment, []).fingerprint != first


def test_last_assignment_log_is_surfaced():
    actor = uuid.uuid4()
    log = SimpleNamespace(
        after={"customAmount": "900", "discountAmount": "100", "scholarshipTag": "Merit"},
        actor_id=actor,
        created_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
    )
    preview = compute_settlement(_assignment(), [], last_log=log)
    assert preview.last_assignment_log.custom_amount == Decimal("900")
    assert preview.last_assignment_log.scholarship_tag == "Merit"
    assert preview.last_assignment_log.assigned_by == actor


async def _assign_and_part_pay(session_factory, coaching_id, member_id, structure_id, start_date):
    async with session_factory() as db:
        assigned = await service.assign_fee(
            db, coaching_id, member_id, structure_id, AssignmentOverrides(start_date=start_date)
        )
    record_id = assigned.records[0].id
    async with session_factory() as db:
        await service.record_payment(db, coaching_id, record_id, PaymentCreate(amount=Decimal("300")))
    return assigned


@pytest.mark.asyncio
async def test_preview_then_reassign_waives_open_balance(session_factory, coaching_id, make_member, make_structure, start_date):
    member_id = await make_member()
    old_structure = await make_structure(name="Tuition", amount="500", cycle="ONCE")
    new_structure = await make_structure(name="Crash Course", amount="2000", cycle="ONCE")
    first = await _assign_and_part_pay(session_factory, coaching_id, member_id, old_structure, start_date)

    async with session_factory() as db:
        preview = await service.get_assignment_preview(db, coaching_id, member_id)
    assert preview.has_assignment is True
    assert preview.current_structure_id == old_structure
    assert preview.total_balance == Decimal("200")
    assert preview.total_paid == Decimal("300")
    assert preview.partial_records[0].balance == Decimal("200")

    async with session_factory() as db:
        result = await service.assign_fee(
            db, coaching_id, member_id, new_structure,
            AssignmentOverrides(start_date=start_date, expected_fingerprint=preview.fingerprint),
        )
    assert result.created is True
    assert result.waived_amount == Decimal("200")

    async with session_factory() as db:
        waivers = (await db.execute(select(FeeWaiver))).scalars().all()
        old = await db.get(FeeAssignment, first.assignment.id)
        events = (await db.execute(select(FeeAuditLog.event))).scalars().all()
        ledger = await service.get_member_ledger(db, coaching_id, member_id)

    assert len(waivers) == 1
    assert waivers[0].waived_amount == Decimal("200")
    assert waivers[0].is_automatic is True
    assert waivers[0].reason == settings.settlement_waiver_reason
    assert old.status == AssignmentStatus.REMOVED.value
    assert old.version == 2
    assert "FEE_WAIVED" in events and "ASSIGNMENT_REMOVED" in events

    waiver_entries = [e for e in ledger.entries if e.type == LedgerEntryType.WAIVER]
    assert [e.amount for e in waiver_entries] == [Decimal("200")]
    # old fee fully settled; only the new structure remains owed
    assert ledger.summary.balance == Decimal("2000")


@pytest.mark.asyncio
async def test_stale_fingerprint_is_rejected(session_factory, coaching_id, make_member, make_structure, start_date):
    member_id = await make_member()
    old_structure = await make_structure(name="Tuition", amount="500", cycle="ONCE")
    new_structure = await make_structure(name="Crash Course", amount="2000", cycle="ONCE")
    first = await _assign_and_part_pay(session_factory, coaching_id, member_id, old_structure, start_date)

    async with session_factory() as db:
        preview = await service.get_assignment_preview(db, coaching_id, member_id)
    async with session_factory() as db:
        await service.record_payment(db, coaching_id, first.records[0].id, PaymentCreate(amount=Decimal("50")))

    async with session_factory() as db:
        with pytest.raises(ConflictError):
            await service.assign_fee(
                db, coaching_id, member_id, new_structure,
                AssignmentOverrides(start_date=start_date, expected_fingerprint=preview.fingerprint),
            )

    async with session_factory() as db:
        current = await db.get(FeeAssignment, first.assignment.id)
        waivers = (await db.execute(select(FeeWaiver))).scalars().all()
    assert current.status == AssignmentStatus.ACTIVE.value
    assert waivers == []


@pytest.mark.asyncio
async def test_paid_credit_carries_into_new_assignment(session_factory, coaching_id, make_member, make_structure, start_date):
    member_id = await make_member()
    old_structure = await make_structure(name="Tuition", amount="500", cycle="ONCE")
    new_structure = await make_structure(name="Crash Course", amount="2000", cycle="ONCE")
    await _assign_and_part_pay(session_factory, coaching_id, member_id, old_structure, start_date)

    async with session_factory() as db:
        result = await service.assign_fee(
            db, coaching_id, member_id, new_structure,
            AssignmentOverrides(start_date=start_date, apply_paid_credit=True),
        )
    assert result.credit_applied == Decimal("300")
    assert result.records[0].credit_amount == Decimal("300")
    assert result.records[0].final_amount == Decimal("1700")


@pytest.mark.asyncio
async def test_confirmation_policy_requires_opt_in(
    monkeypatch, session_factory, coaching_id, make_member, make_structure, start_date
):
    monkeypatch.setattr(settings, "superseded_balance_policy", SupersededBalancePolicy.REQUIRE_CONFIRMATION)
    member_id = await make_member()
    old_structure = await make_structure(name="Tuition", amount="500", cycle="ONCE")
    new_structure = await make_structure(name="Crash Course", amount="2000", cycle="ONCE")
    await _assign_and_part_pay(session_factory, coaching_id, member_id, old_structure, start_date)

    async with session_factory() as db:
        with pytest.raises(ConflictError):
            await service.assign_fee(
                db, coaching_id, member_id, new_structure, AssignmentOverrides(start_date=start_date)
            )
    async with session_factory() as db:
        result = await service.assign_fee(
            db, coaching_id, member_id, new_structure,
            AssignmentOverrides(start_date=start_date, confirm_settlement=True),
        )
    assert result.created is True
    assert result.waived_amount == Decimal("200")


@pytest.mark.asyncio
async def test_preview_is_read_only(session_factory, coaching_id, make_member, make_structure, start_date):
    member_id = await make_member()
    structure = await make_structure(name="Tuition", amount="500", cycle="ONCE")
    await _assign_and_part_pay(session_factory, coaching_id, member_id, structure, start_date)

    async with session_factory() as db:
        before = (await db.execute(select(FeeAuditLog.id))).scalars().all()
        first = await service.get_assignment_preview(db, coaching_id, member_id)
        second = await service.get_assignment_preview(db, coaching_id, member_id)
        after = (await db.execute(select(FeeAuditLog.id))).scalars().all()

    assert first == second
    assert len(before) == len(after)
    assert first.partial_records[0].paid_amount == Decimal("300")


@pytest.mark.asyncio
async def test_concurrent_reassignments_are_serialized(session_factory, coaching_id, make_member, make_structure, start_date):
    member_id = await make_member()
    old_structure = await make_structure(name="Tuition", amount="500", cycle="ONCE")
    crash = await make_structure(name="Crash Course", amount="2000", cycle="ONCE")
    weekend = await make_structure(name="Weekend Batch", amount="800", cycle="ONCE")
    await _assign_and_part_pay(session_factory, coaching_id, member_id, old_structure, start_date)

    async def reassign(structure_id):
        async with session_factory() as db:
            return await service.assign_fee(
                db, coaching_id, member_id, structure_id, AssignmentOverrides(start_date=start_date)
            )

    results = await asyncio.gather(reassign(crash), reassign(weekend))
    assert all(r.created for r in results)

    async with session_factory() as db:
        assignments = (
            await db.execute(select(FeeAssignment).where(FeeAssignment.member_id == member_id))
        ).scalars().all()
        waivers = (await db.execute(select(FeeWaiver))).scalars().all()

    live = [a for a in assignments if a.status == AssignmentStatus.ACTIVE.value]
    assert len(live) == 1
    assert live[0].fee_structure_id in (crash, weekend)
    assert len(assignments) == 3
    # each superseded record is settled exactly once
    assert len(waivers) == 2
    assert len({w.record_id for w in waivers}) == 2


@pytest.mark.asyncio
async def test_failed_audit_write_does_not_block_assignment(
    caplog, engine, session_factory, coaching_id, make_member, make_structure, start_date
):
    member_id = await make_member()
    structure_id = await make_structure(cycle="ONCE")
    async with engine.begin() as conn:
        await conn.run_sync(FeeAuditLog.__table__.drop)

    with caplog.at_level(logging.ERROR):
        async with session_factory() as db:
            result = await service.assign_fee(
                db, coaching_id, member_id, structure_id, AssignmentOverrides(start_date=start_date)
            )

    assert result.created is True
    assert "Fee audit write failed" in caplog.text
    async with session_factory() as db:
        assignments = (
            await db.execute(select(FeeAssignment).where(FeeAssignment.member_id == member_id))
        ).scalars().all()
    assert len(assignments) == 1
    assert assignments[0].status == AssignmentStatus.ACTIVE.value
