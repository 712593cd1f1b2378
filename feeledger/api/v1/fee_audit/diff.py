"""
Field-level before/after diff for fee audit entries.

before/after/meta are AuditValue maps (JSON-safe scalars, lists and dicts). The diff is a
pure function of its inputs: the same maps always give the same rows in the same order.
Labels and unit formatting come from the static tables below.
"""

import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Union
from uuid import UUID

from feeledger.core.config import settings

from .schemas import AuditChange, ChangeKind

AuditScalar = Union[str, int, float, bool, None]
AuditValue = Union[AuditScalar, List["AuditValue"], Dict[str, "AuditValue"]]
AuditMap = Dict[str, AuditValue]

FIELD_LABELS: Dict[str, str] = {
    "name": "Name",
    "amount": "Amount",
    "cycle": "Billing Cycle",
    "lateFinePerDay": "Late Fine/Day",
    "taxType": "Tax Type",
    "gstRate": "GST Rate",
    "sacCode": "SAC Code",
    "hsnCode": "HSN Code",
    "cessRate": "Cess Rate",
    "gstSupplyType": "GST Supply Type",
    "description": "Description",
    "isActive": "Active",
    "lineItems": "Line Items",
    "allowInstallments": "Allow Installments",
    "installmentCount": "Installment Count",
    "installmentAmounts": "Installment Amounts",
    "memberId": "Member",
    "memberName": "Member Name",
    "feeStructureId": "Fee Structure",
    "feeStructureName": "Structure Name",
    "discountAmount": "Discount Amount",
    "discountReason": "Discount Reason",
    "scholarshipTag": "Scholarship Tag",
    "scholarshipAmount": "Scholarship Amount",
    "customAmount": "Custom Amount",
    "carriedCredit": "Carried Credit",
    "creditApplied": "Credit Applied",
    "startDate": "Start Date",
    "endDate": "End Date",
    "pauseNote": "Pause Reason",
    "paymentAmount": "Payment Amount",
    "paymentMode": "Payment Mode",
    "transactionRef": "Transaction Ref",
    "notes": "Notes",
    "paidAt": "Paid At",
    "receiptNo": "Receipt No.",
    "waivedAmount": "Waived Amount",
    "waivedReason": "Waive Reason",
    "refundAmount": "Refund Amount",
    "refundMode": "Refund Mode",
    "reason": "Reason",
    "refundedAt": "Refunded At",
    "memberCount": "Members Affected",
    "previousStructureId": "Previous Structure",
    "newStructureId": "New Structure",
    "finalAmount": "Final Amount",
    "paidAmount": "Paid Amount",
    "status": "Status",
    "dueDate": "Due Date",
    "title": "Fee Title",
    "reminderCount": "Reminders Sent",
}

CURRENCY_KEYS = frozenset(
    {
        "amount",
        "discountAmount",
        "customAmount",
        "scholarshipAmount",
        "carriedCredit",
        "creditApplied",
        "paymentAmount",
        "waivedAmount",
        "refundAmount",
        "finalAmount",
        "paidAmount",
        "lateFinePerDay",
        "totalPaid",
        "totalWaived",
    }
)

PERCENT_KEYS = frozenset({"gstRate", "cessRate"})

# Lists of {"label", "amount"} objects rendered as "label: <currency>amount" joins.
LABELLED_AMOUNT_LIST_KEYS = frozenset({"installmentAmounts", "lineItems"})

NUMERIC_KEYS = CURRENCY_KEYS | PERCENT_KEYS


def to_audit_value(value: Any) -> AuditValue:
    """Normalize a Python value into the JSON-safe AuditValue union."""
    if isinstance(value, Enum):
        return to_audit_value(value.value)
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Mapping):
        return {str(k): to_audit_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_audit_value(v) for v in value]
    if hasattr(value, "model_dump"):
        return to_audit_value(value.model_dump())
    return str(value)


def to_audit_map(values: Optional[Mapping[str, Any]]) -> Optional[AuditMap]:
    if values is None:
        return None
    return {k: to_audit_value(v) for k, v in values.items()}


def _as_decimal(value: AuditValue) -> Optional[Decimal]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float, str)):
        try:
            return Decimal(str(value))
        except InvalidOperation:
            return None
    return None


def values_equal(key: str, a: AuditValue, b: AuditValue) -> bool:
    """Deep equality; null and missing are the same, lists compare element-wise."""
    if a is None or b is None:
        return a is None and b is None
    if isinstance(a, list) and isinstance(b, list):
        return len(a) == len(b) and all(values_equal(key, x, y) for x, y in zip(a, b))
    if isinstance(a, dict) and isinstance(b, dict):
        keys = set(a) | set(b)
        return all(values_equal(k, a.get(k), b.get(k)) for k in keys)
    if isinstance(a, bool) or isinstance(b, bool):
        return a == b
    if key in NUMERIC_KEYS or (isinstance(a, (int, float)) and isinstance(b, (int, float))):
        da, db = _as_decimal(a), _as_decimal(b)
        if da is not None and db is not None:
            return da == db
    return a == b


def _format_money(amount: Decimal) -> str:
    if amount == amount.to_integral_value():
        return f"{settings.currency_symbol}{amount:.0f}"
    return f"{settings.currency_symbol}{amount:.2f}"


def format_value(key: str, value: AuditValue) -> Optional[str]:
    """Human-readable rendering of one value; None stays None."""
    if value is None:
        return None
    if isinstance(value, bool):
        return "Yes" if value else "No"
    if key in CURRENCY_KEYS:
        amount = _as_decimal(value)
        if amount is not None:
            return _format_money(amount)
    if key in PERCENT_KEYS:
        rate = _as_decimal(value)
        if rate is not None:
            return f"{rate.normalize():f}%"
    if key in LABELLED_AMOUNT_LIST_KEYS and isinstance(value, list):
        if not value:
            return "None"
        parts = []
        for item in value:
            item = item if isinstance(item, dict) else {}
            amount = _as_decimal(item.get("amount"))
            amount_text = _format_money(amount) if amount is not None else "?"
            parts.append(f"{item.get('label') or '?'}: {amount_text}")
        return ", ".join(parts)
    if isinstance(value, list):
        if not value:
            return "None"
        return str(value[0]) if len(value) == 1 else f"({len(value)} items)"
    return str(value)


def label_for(key: str) -> str:
    if key in FIELD_LABELS:
        return FIELD_LABELS[key]
    words = re.sub(r"([A-Z])", r" \1", key).replace("_", " ").split()
    return " ".join(w[:1].upper() + w[1:] for w in words)


def diff(
    before: Optional[Mapping[str, AuditValue]],
    after: Optional[Mapping[str, AuditValue]],
    meta: Optional[Mapping[str, AuditValue]] = None,
) -> List[AuditChange]:
    """Changed fields between before and after, followed by informational meta rows."""
    before = before or {}
    after = after or {}
    keys = list(before.keys()) + [k for k in after.keys() if k not in before]

    rows: List[AuditChange] = []
    for key in keys:
        old, new = before.get(key), after.get(key)
        if values_equal(key, old, new):
            continue
        if old is None:
            kind = ChangeKind.added
        elif new is None:
            kind = ChangeKind.removed
        else:
            kind = ChangeKind.changed
        rows.append(
            AuditChange(
                field=key,
                label=label_for(key),
                change=kind,
                old_value=old,
                new_value=new,
                old_display=format_value(key, old),
                new_display=format_value(key, new),
            )
        )

    for key, value in (meta or {}).items():
        if value is None:
            continue
        rows.append(
            AuditChange(
                field=key,
                label=label_for(key),
                change=ChangeKind.meta,
                old_value=None,
                new_value=value,
                old_display=None,
                new_display=format_value(key, value),
            )
        )
    return rows
