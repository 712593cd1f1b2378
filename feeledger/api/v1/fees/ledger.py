"""
Student ledger: a chronological replay of charges, payments, refunds and waivers.

build_ledger is a pure function of the rows it is given. Rebuilding from the same
rows yields an identical ledger; nothing reads the clock and nothing is written.
"""

from datetime import datetime, time, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, Tuple
from uuid import UUID

from feeledger.core.enums import LIVE_RECORD_STATUSES, LedgerEntryType

from .billing import money
from .repository import LedgerReader
from .schemas import LedgerEntry, LedgerSummary, StudentLedger

_MIN_TS = datetime.min.replace(tzinfo=timezone.utc)

# Same-instant events replay charge first, then payment, refund, waiver.
_KIND_RANK = {
    LedgerEntryType.RECORD: 0,
    LedgerEntryType.PAYMENT: 1,
    LedgerEntryType.REFUND: 2,
    LedgerEntryType.WAIVER: 3,
}

_SIGN = {
    LedgerEntryType.RECORD: 1,
    LedgerEntryType.PAYMENT: -1,
    LedgerEntryType.REFUND: 1,
    LedgerEntryType.WAIVER: -1,
}


def _utc(value: Optional[datetime]) -> datetime:
    if value is None:
        return _MIN_TS
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def _mode(value: Any) -> Optional[str]:
    if value is None:
        return None
    return getattr(value, "value", value)


def _events(
    records: Sequence[Any],
    payments: Sequence[Any],
    refunds: Sequence[Any],
    waivers: Sequence[Any],
) -> List[Tuple[tuple, Dict[str, Any]]]:
    titles = {r.id: r.title for r in records}
    events: List[Tuple[tuple, Dict[str, Any]]] = []
    index = 0

    def add(kind: LedgerEntryType, when: datetime, created: Optional[datetime], entry: Dict[str, Any]) -> None:
        nonlocal index
        entry.update(type=kind, date=when)
        events.append(((when, _utc(created), _KIND_RANK[kind], index), entry))
        index += 1

    for r in records:
        due = datetime.combine(r.due_date, time.min, tzinfo=timezone.utc)
        add(LedgerEntryType.RECORD, due, r.created_at, {
            "id": r.id, "amount": money(r.final_amount), "label": r.title, "record_id": r.id,
        })
    for p in payments:
        add(LedgerEntryType.PAYMENT, _utc(p.paid_at), p.created_at, {
            "id": p.id,
            "amount": money(p.amount),
            "label": f"Payment: {titles.get(p.record_id, 'Fee')}",
            "mode": _mode(p.mode),
            "ref": p.receipt_no or p.transaction_ref,
            "record_id": p.record_id,
        })
    for rf in refunds:
        add(LedgerEntryType.REFUND, _utc(rf.refunded_at), rf.created_at, {
            "id": rf.id,
            "amount": money(rf.amount),
            "label": f"Refund: {titles.get(rf.record_id, 'Fee')}",
            "mode": _mode(rf.mode),
            "ref": rf.reason,
            "record_id": rf.record_id,
        })
    for w in waivers:
        add(LedgerEntryType.WAIVER, _utc(w.waived_at), w.created_at, {
            "id": w.id,
            "amount": money(w.waived_amount),
            "label": f"Waiver: {titles.get(w.record_id, 'Fee')}",
            "ref": w.reason,
            "record_id": w.record_id,
        })
    events.sort(key=lambda e: e[0])
    return events


def build_ledger(
    records: Sequence[Any],
    payments: Sequence[Any] = (),
    refunds: Sequence[Any] = (),
    waivers: Sequence[Any] = (),
    member_id: Optional[UUID] = None,
) -> StudentLedger:
    """Replay all events from a zero balance. Credit (negative balance) is kept as is."""
    totals = {kind: Decimal("0") for kind in LedgerEntryType}
    balance = Decimal("0")
    entries: List[LedgerEntry] = []
    for _, event in _events(records, payments, refunds, waivers):
        kind = event["type"]
        balance += _SIGN[kind] * event["amount"]
        totals[kind] += event["amount"]
        entries.append(LedgerEntry(running_balance=balance, **event))

    open_records = sorted(
        (r for r in records if r.status in LIVE_RECORD_STATUSES),
        key=lambda r: (r.due_date, _utc(r.created_at)),
    )
    next_due = open_records[0] if open_records else None

    summary = LedgerSummary(
        total_charged=totals[LedgerEntryType.RECORD],
        total_paid=totals[LedgerEntryType.PAYMENT],
        total_refunded=totals[LedgerEntryType.REFUND],
        total_waived=totals[LedgerEntryType.WAIVER],
        balance=(
            totals[LedgerEntryType.RECORD]
            - totals[LedgerEntryType.PAYMENT]
            + totals[LedgerEntryType.REFUND]
            - totals[LedgerEntryType.WAIVER]
        ),
        next_due_date=next_due.due_date if next_due else None,
        next_due_amount=money(next_due.final_amount) - money(next_due.paid_amount) if next_due else None,
    )
    return StudentLedger(member_id=member_id, entries=entries, summary=summary)


async def get_student_ledger(reader: LedgerReader, coaching_id: UUID, member_id: UUID) -> StudentLedger:
    records = await reader.records_for_member(coaching_id, member_id)
    record_ids = [r.id for r in records]
    payments = await reader.payments_for_records(coaching_id, record_ids)
    refunds = await reader.refunds_for_records(coaching_id, record_ids)
    waivers = await reader.waivers_for_records(coaching_id, record_ids)
    return build_ledger(records, payments, refunds, waivers, member_id=member_id)
