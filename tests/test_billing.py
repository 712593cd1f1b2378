from datetime import date
from decimal import Decimal
from types import SimpleNamespace

import pytest

from feeledger.api.v1.fees.billing import (
    add_months,
    days_overdue,
    effective_status,
    generate_receipt_no,
    next_cycle_due,
    plan_records,
    price_record,
    record_status,
    split_amounts,
)
from feeledger.core.exceptions import ValidationError


def _structure(**fields):
    values = dict(
        name="Tuition",
        amount=Decimal("1000"),
        cycle="MONTHLY",
        tax_type="NONE",
        gst_rate=Decimal("0"),
        cess_rate=Decimal("0"),
        allow_installments=False,
        installment_count=0,
        installment_amounts=None,
    )
    values.update(fields)
    return SimpleNamespace(**values)


def test_add_months_clamps_to_month_end():
    assert add_months(date(2026, 1, 31), 1) == date(2026, 2, 28)
    assert add_months(date(2024, 1, 31), 1) == date(2024, 2, 29)
    assert add_months(date(2026, 11, 15), 3) == date(2027, 2, 15)


def test_exclusive_gst_is_added():
    priced = price_record("1000", "100", "0", "GST_EXCLUSIVE", "18", "0")
    assert priced.tax_amount == Decimal("162.00")
    assert priced.final_amount == Decimal("1062.00")


def test_inclusive_gst_is_reported_not_added():
    priced = price_record("1180", "0", "0", "GST_INCLUSIVE", "18", "0")
    assert priced.tax_amount == Decimal("180.00")
    assert priced.final_amount == Decimal("1180.00")


def test_no_tax():
    priced = price_record("1000", "200", "300", "NONE")
    assert priced.tax_amount == Decimal("0")
    assert priced.final_amount == Decimal("500.00")


def test_discount_beyond_amount_is_rejected():
    with pytest.raises(ValidationError):
        price_record("500", "400", "200", "NONE")


def test_split_amounts_last_part_absorbs_rounding():
    parts = split_amounts("1000", [1, 1, 1])
    assert parts == [Decimal("333.33"), Decimal("333.33"), Decimal("333.34")]
    assert sum(parts) == Decimal("1000")


def test_single_cycle_record_title():
    plans, used = plan_records(_structure(), Decimal("1000"), Decimal("0"), Decimal("0"), date(2026, 3, 10))
    assert used == Decimal("0")
    assert len(plans) == 1
    assert plans[0].title == "March 2026 - Tuition"
    assert plans[0].due_date == date(2026, 3, 10)
    assert plans[0].amounts.final_amount == Decimal("1000.00")


def test_one_time_fee_uses_structure_name():
    plans, _ = plan_records(_structure(cycle="ONCE", name="Admission"), "5000", "0", "0", date(2026, 3, 10))
    assert plans[0].title == "Admission"


def test_even_installments_with_pro_rata_discount():
    structure = _structure(allow_installments=True, installment_count=3, cycle="ONCE")
    plans, _ = plan_records(structure, Decimal("900"), Decimal("90"), Decimal("0"), date(2026, 1, 31))

    assert [p.title for p in plans] == [
        "Installment 1 - Tuition", "Installment 2 - Tuition", "Installment 3 - Tuition",
    ]
    assert [p.due_date for p in plans] == [date(2026, 1, 31), date(2026, 2, 28), date(2026, 3, 31)]
    assert [p.amounts.discount_amount for p in plans] == [Decimal("30.00")] * 3
    assert sum(p.amounts.final_amount for p in plans) == Decimal("810")


def test_explicit_installments_scale_to_custom_amount():
    structure = _structure(
        allow_installments=True,
        installment_amounts=[{"label": "Term 1", "amount": "600"}, {"label": "Term 2", "amount": "400"}],
    )
    plans, _ = plan_records(structure, Decimal("2000"), Decimal("0"), Decimal("0"), date(2026, 4, 1))
    assert [p.amounts.base_amount for p in plans] == [Decimal("1200.00"), Decimal("800.00")]
    assert plans[1].title == "Term 2 - Tuition"


def test_credit_is_consumed_record_by_record():
    structure = _structure(allow_installments=True, installment_count=2)
    plans, used = plan_records(structure, Decimal("1000"), Decimal("0"), Decimal("0"), date(2026, 1, 1), credit="700")

    assert used == Decimal("700")
    assert [p.amounts.credit_amount for p in plans] == [Decimal("500.00"), Decimal("200.00")]
    assert [p.amounts.final_amount for p in plans] == [Decimal("0.00"), Decimal("300.00")]


def test_unused_credit_is_returned():
    plans, used = plan_records(_structure(), Decimal("300"), Decimal("0"), Decimal("0"), date(2026, 1, 1), credit="500")
    assert used == Decimal("300")
    assert plans[0].amounts.final_amount == Decimal("0")


def test_plan_rejects_discount_above_amount():
    with pytest.raises(ValidationError):
        plan_records(_structure(), Decimal("1000"), Decimal("800"), Decimal("300"), date(2026, 1, 1))


def test_installment_reductions_never_exceed_their_base():
    structure = _structure(allow_installments=True, installment_count=2, cycle="ONCE")
    plans, _ = plan_records(structure, Decimal("100"), Decimal("50.01"), Decimal("49.99"), date(2026, 1, 1))

    for plan in plans:
        amounts = plan.amounts
        assert amounts.discount_amount + amounts.scholarship_amount <= amounts.base_amount
        assert amounts.final_amount == Decimal("0")
    assert sum(p.amounts.discount_amount for p in plans) == Decimal("50.01")
    assert sum(p.amounts.scholarship_amount for p in plans) == Decimal("49.99")


def test_next_cycle_due():
    assert next_cycle_due("MONTHLY", date(2026, 1, 31)) == date(2026, 2, 28)
    assert next_cycle_due("QUARTERLY", date(2026, 1, 15)) == date(2026, 4, 15)
    assert next_cycle_due("ONCE", date(2026, 1, 15)) is None


def test_status_helpers():
    assert record_status("1000", "0") == "PENDING"
    assert record_status("1000", "400") == "PARTIALLY_PAID"
    assert record_status("1000", "1000") == "PAID"
    today = date(2026, 2, 10)
    assert effective_status("PENDING", date(2026, 2, 1), today) == "OVERDUE"
    assert effective_status("PENDING", date(2026, 2, 10), today) == "PENDING"
    assert effective_status("PAID", date(2026, 1, 1), today) == "PAID"
    assert days_overdue("PARTIALLY_PAID", date(2026, 2, 1), today) == 9
    assert days_overdue("WAIVED", date(2026, 2, 1), today) == 0


def test_receipt_numbers_are_unique():
    numbers = {generate_receipt_no() for _ in range(20)}
    assert len(numbers) == 20
    assert all(n.startswith("RCP-") for n in numbers)
