"""
Record pricing and schedules.

Pure helpers: no database access, no clock reads except where a `today` or `now`
argument defaults to it. Money is Decimal quantized to paise with ROUND_HALF_UP.
"""

import calendar
import secrets
import string
import time
from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, List, Optional, Sequence, Tuple

from feeledger.core.enums import BillingCycle, FeeRecordStatus, TaxType
from feeledger.core.exceptions import ValidationError

CENT = Decimal("0.01")
ZERO = Decimal("0")

CYCLE_MONTHS = {
    BillingCycle.ONCE.value: 0,
    BillingCycle.MONTHLY.value: 1,
    BillingCycle.QUARTERLY.value: 3,
    BillingCycle.HALF_YEARLY.value: 6,
    BillingCycle.YEARLY.value: 12,
}

_RECEIPT_ALPHABET = string.ascii_uppercase + string.digits
_BASE36 = string.digits + string.ascii_uppercase


def money(value: Any) -> Decimal:
    if value is None:
        return ZERO
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def add_months(d: date, months: int) -> date:
    """Calendar month arithmetic; the day is clamped to the target month's length."""
    month_index = d.month - 1 + months
    year = d.year + month_index // 12
    month = month_index % 12 + 1
    day = min(d.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def compute_tax(taxable: Decimal, tax_type: str, gst_rate: Any, cess_rate: Any) -> Decimal:
    """Tax on a taxable amount. For GST_INCLUSIVE this is the tax already contained in it."""
    rate = money(gst_rate) + money(cess_rate)
    if tax_type == TaxType.GST_EXCLUSIVE.value:
        return money(taxable * rate / 100)
    if tax_type == TaxType.GST_INCLUSIVE.value:
        if rate == ZERO:
            return ZERO
        return money(taxable - taxable * 100 / (100 + rate))
    return ZERO


@dataclass
class PricedAmounts:
    base_amount: Decimal
    discount_amount: Decimal
    credit_amount: Decimal
    scholarship_amount: Decimal
    tax_amount: Decimal
    final_amount: Decimal


def price_record(
    base_amount: Any,
    discount_amount: Any,
    scholarship_amount: Any,
    tax_type: str,
    gst_rate: Any = ZERO,
    cess_rate: Any = ZERO,
    credit_amount: Any = ZERO,
) -> PricedAmounts:
    """
    final = base - discount - scholarship + exclusive tax.

    credit_amount is carried credit folded into the discount; the returned
    discount_amount includes it.
    """
    base = money(base_amount)
    credit = money(credit_amount)
    discount = money(discount_amount) + credit
    scholarship = money(scholarship_amount)
    taxable = base - discount - scholarship
    if taxable < ZERO:
        raise ValidationError("Discount and scholarship cannot exceed the fee amount")
    tax = compute_tax(taxable, tax_type, gst_rate, cess_rate)
    final = taxable + tax if tax_type == TaxType.GST_EXCLUSIVE.value else taxable
    return PricedAmounts(
        base_amount=base,
        discount_amount=discount,
        credit_amount=credit,
        scholarship_amount=scholarship,
        tax_amount=tax,
        final_amount=money(final),
    )


def split_amounts(total: Any, weights: Sequence[Any]) -> List[Decimal]:
    """Split total pro-rata over weights; the last part absorbs rounding."""
    total = money(total)
    weights = [money(w) for w in weights]
    if not weights:
        return []
    weight_sum = sum(weights, ZERO)
    if weight_sum == ZERO:
        parts = [ZERO] * len(weights)
        parts[-1] = total
        return parts
    parts = [money(total * w / weight_sum) for w in weights[:-1]]
    parts.append(total - sum(parts, ZERO))
    return parts


def cycle_title(structure_name: str, cycle: str, due_date: date) -> str:
    if cycle == BillingCycle.ONCE.value:
        return structure_name
    return f"{due_date.strftime('%B %Y')} - {structure_name}"


def installment_title(label: str, structure_name: str) -> str:
    return f"{label} - {structure_name}"


@dataclass
class PlannedRecord:
    title: str
    installment_no: Optional[int]
    due_date: date
    amounts: PricedAmounts


def _installment_plan(structure: Any, effective_amount: Decimal) -> List[Tuple[str, Decimal]]:
    items = structure.installment_amounts or []
    if items:
        labels = [str(i["label"]) for i in items]
        weights = [money(i["amount"]) for i in items]
        return list(zip(labels, split_amounts(effective_amount, weights)))
    count = int(structure.installment_count or 0)
    labels = [f"Installment {n}" for n in range(1, count + 1)]
    return list(zip(labels, split_amounts(effective_amount, [1] * count)))


def uses_installments(structure: Any) -> bool:
    if not structure.allow_installments:
        return False
    return bool(structure.installment_amounts) or int(structure.installment_count or 0) >= 2


def plan_records(
    structure: Any,
    effective_amount: Any,
    discount_amount: Any,
    scholarship_amount: Any,
    start_date: date,
    credit: Any = ZERO,
) -> Tuple[List[PlannedRecord], Decimal]:
    """
    Initial records for a new assignment, and the carried credit they consumed.

    Installment structures get every installment up front, one per month from
    start_date. Other structures get the first cycle's record.
    """
    effective = money(effective_amount)
    discount = money(discount_amount)
    scholarship = money(scholarship_amount)
    if discount + scholarship > effective:
        raise ValidationError("Discount and scholarship cannot exceed the fee amount")

    if uses_installments(structure):
        plan = _installment_plan(structure, effective)
        bases = [amount for _, amount in plan]
        # Split the combined reduction once so no slot is reduced past its base.
        reductions = split_amounts(discount + scholarship, bases)
        discounts = [min(d, r) for d, r in zip(split_amounts(discount, bases), reductions)]
        scholarships = [r - d for r, d in zip(reductions, discounts)]
        slots = [
            (installment_title(label, structure.name), n, add_months(start_date, n - 1), base, d, s)
            for n, ((label, base), d, s) in enumerate(zip(plan, discounts, scholarships), start=1)
        ]
    else:
        title = cycle_title(structure.name, structure.cycle, start_date)
        slots = [(title, None, start_date, effective, discount, scholarship)]

    credit_left = money(credit)
    planned: List[PlannedRecord] = []
    for title, number, due, base, d, s in slots:
        use = min(credit_left, max(base - d - s, ZERO))
        credit_left -= use
        amounts = price_record(
            base, d, s, structure.tax_type, structure.gst_rate, structure.cess_rate, credit_amount=use
        )
        planned.append(PlannedRecord(title=title, installment_no=number, due_date=due, amounts=amounts))
    return planned, money(credit) - credit_left


def next_cycle_due(cycle: str, last_due: date) -> Optional[date]:
    months = CYCLE_MONTHS.get(cycle, 0)
    if months == 0:
        return None
    return add_months(last_due, months)


def record_status(final_amount: Any, paid_amount: Any) -> str:
    final, paid = money(final_amount), money(paid_amount)
    if paid >= final:
        return FeeRecordStatus.PAID.value
    if paid > ZERO:
        return FeeRecordStatus.PARTIALLY_PAID.value
    return FeeRecordStatus.PENDING.value


def effective_status(status: str, due_date: date, today: Optional[date] = None) -> str:
    """Stored status with OVERDUE derived for open records past their due date."""
    today = today or date.today()
    if status in (FeeRecordStatus.PENDING.value, FeeRecordStatus.PARTIALLY_PAID.value) and due_date < today:
        return FeeRecordStatus.OVERDUE.value
    return status


def days_overdue(status: str, due_date: date, today: Optional[date] = None) -> int:
    today = today or date.today()
    if effective_status(status, due_date, today) != FeeRecordStatus.OVERDUE.value:
        return 0
    return (today - due_date).days


def _base36(n: int) -> str:
    digits = []
    while n:
        n, rem = divmod(n, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits)) or "0"


def generate_receipt_no() -> str:
    stamp = _base36(int(time.time() * 1000))
    suffix = "".join(secrets.choice(_RECEIPT_ALPHABET) for _ in range(4))
    return f"RCP-{stamp}-{suffix}"
