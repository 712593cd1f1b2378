import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from types import SimpleNamespace

import pytest

from feeledger.api.v1.fees.ledger import build_ledger
from feeledger.core.enums import LedgerEntryType


def _record(final, due, status="PENDING", paid="0", title="January 2026 - Tuition", created=None):
    return SimpleNamespace(
        id=uuid.uuid4(),
        title=title,
        due_date=due,
        final_amount=Decimal(final),
        paid_amount=Decimal(paid),
        status=status,
        created_at=created or datetime(2025, 12, 20, tzinfo=timezone.utc),
    )


def _payment(record, amount, when, mode="CASH", receipt="RCP-1"):
    return SimpleNamespace(
        id=uuid.uuid4(), record_id=record.id, amount=Decimal(amount), paid_at=when,
        created_at=when, mode=mode, receipt_no=receipt, transaction_ref=None,
    )


def _refund(record, amount, when, mode="CASH"):
    return SimpleNamespace(
        id=uuid.uuid4(), record_id=record.id, amount=Decimal(amount), refunded_at=when,
        created_at=when, mode=mode, reason="Overpaid",
    )


def _waiver(record, amount, when):
    return SimpleNamespace(
        id=uuid.uuid4(), record_id=record.id, waived_amount=Decimal(amount), waived_at=when,
        created_at=when, reason="Superseded by reassignment",
    )


def _at(day: int) -> datetime:
    return datetime(2026, 1, day, 10, 0, tzinfo=timezone.utc)


def test_charge_payment_refund_running_balance():
    record = _record("1000", date(2026, 1, 1), status="PARTIALLY_PAID", paid="400")
    ledger = build_ledger(
        [record],
        [_payment(record, "600", _at(5))],
        [_refund(record, "200", _at(10))],
    )

    assert [e.type for e in ledger.entries] == [
        LedgerEntryType.RECORD, LedgerEntryType.PAYMENT, LedgerEntryType.REFUND,
    ]
    assert [e.running_balance for e in ledger.entries] == [Decimal("1000"), Decimal("400"), Decimal("600")]
    assert ledger.summary.balance == Decimal("600")
    assert ledger.summary.total_charged == Decimal("1000")
    assert ledger.summary.total_paid == Decimal("600")
    assert ledger.summary.total_refunded == Decimal("200")


def test_balance_matches_totals_with_waivers():
    jan = _record("500", date(2026, 1, 1), status="WAIVED", paid="300")
    feb = _record("800", date(2026, 2, 1), title="February 2026 - Tuition")
    ledger = build_ledger(
        [jan, feb],
        [_payment(jan, "300", _at(3))],
        [],
        [_waiver(jan, "200", _at(20))],
    )
    s = ledger.summary
    assert s.balance == s.total_charged - s.total_paid + s.total_refunded - s.total_waived
    assert s.balance == Decimal("800")
    assert ledger.entries[-1].running_balance == s.balance
    assert s.next_due_date == date(2026, 2, 1)
    assert s.next_due_amount == Decimal("800")


def test_same_instant_events_replay_charge_first():
    due = date(2026, 3, 1)
    record = _record("700", due)
    midnight = datetime(2026, 3, 1, tzinfo=timezone.utc)
    payment = _payment(record, "700", midnight)
    payment.created_at = record.created_at

    ledger = build_ledger([record], [payment])

    assert [e.type for e in ledger.entries] == [LedgerEntryType.RECORD, LedgerEntryType.PAYMENT]
    assert [e.running_balance for e in ledger.entries] == [Decimal("700"), Decimal("0")]


def test_credit_balance_is_not_clamped():
    record = _record("300", date(2026, 1, 1), status="PAID", paid="300")
    other = _record("0", date(2026, 1, 2), status="PAID", title="Waived month")
    ledger = build_ledger([record, other], [_payment(record, "300", _at(2)), _payment(other, "50", _at(3))])
    assert ledger.summary.balance == Decimal("-50")
    assert ledger.entries[-1].running_balance == Decimal("-50")


def test_rebuild_is_identical():
    record = _record("1000", date(2026, 1, 1), status="PARTIALLY_PAID", paid="400")
    payments = [_payment(record, "600", _at(5))]
    refunds = [_refund(record, "200", _at(10))]

    first = build_ledger([record], payments, refunds)
    second = build_ledger([record], payments, refunds)

    assert first.model_dump_json() == second.model_dump_json()


def test_naive_timestamps_are_treated_as_utc():
    record = _record("100", date(2026, 1, 1))
    payment = _payment(record, "100", datetime(2026, 1, 2, 9, 0))
    payment.created_at = datetime(2026, 1, 2, 9, 0)

    ledger = build_ledger([record], [payment])

    assert ledger.entries[1].date.tzinfo is not None
    assert ledger.summary.balance == Decimal("0")


@pytest.mark.parametrize("count", [1, 5, 20])
def test_running_balance_equals_replay(count):
    records = [
        _record("100", date(2026, 1, day), title=f"Fee {day}") for day in range(1, count + 1)
    ]
    payments = [_payment(r, "40", _at(min(28, i + 2)), receipt=f"RCP-{i}") for i, r in enumerate(records)]
    ledger = build_ledger(records, payments)

    balance = Decimal("0")
    for entry in ledger.entries:
        balance += entry.amount if entry.type == LedgerEntryType.RECORD else -entry.amount
        assert entry.running_balance == balance
    assert ledger.summary.balance == Decimal(60 * count)


def test_empty_ledger():
    ledger = build_ledger([])
    assert ledger.entries == []
    assert ledger.summary.balance == Decimal("0")
    assert ledger.summary.next_due_date is None
