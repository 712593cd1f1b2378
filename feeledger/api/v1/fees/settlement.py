"""
Settlement preview: what replacing a member's current assignment would do.

Open balances on the live assignment's records are what gets waived; the amounts
already paid on them are what the operator may carry over as credit. The fingerprint
lets the commit step detect that the state moved since the preview was shown.
"""

import hashlib
from decimal import Decimal
from typing import Any, Optional, Sequence
from uuid import UUID

from .billing import money
from .repository import SettlementReader
from .schemas import LastAssignmentLog, PartialRecord, SettlementPreview

_NO_ASSIGNMENT = "no-assignment"


def settlement_fingerprint(assignment: Any, open_records: Sequence[Any]) -> str:
    digest = hashlib.sha256()
    if assignment is None:
        digest.update(_NO_ASSIGNMENT.encode())
        return digest.hexdigest()
    digest.update(f"{assignment.id}:{assignment.version}".encode())
    for r in sorted(open_records, key=lambda r: str(r.id)):
        digest.update(f"|{r.id}:{money(r.final_amount)}:{money(r.paid_amount)}:{r.status}".encode())
    return digest.hexdigest()


def _last_log(log: Any) -> Optional[LastAssignmentLog]:
    if log is None:
        return None
    after = log.after or {}
    return LastAssignmentLog(
        custom_amount=after.get("customAmount"),
        discount_amount=after.get("discountAmount"),
        discount_reason=after.get("discountReason"),
        scholarship_tag=after.get("scholarshipTag"),
        scholarship_amount=after.get("scholarshipAmount"),
        assigned_by=log.actor_id,
        assigned_at=log.created_at,
    )


def compute_settlement(
    assignment: Any,
    open_records: Sequence[Any] = (),
    last_log: Any = None,
    structure_name: Optional[str] = None,
) -> SettlementPreview:
    """Pure. total_paid + total_balance always equals the open records' final amounts."""
    if assignment is None:
        return SettlementPreview(
            has_assignment=False,
            last_assignment_log=_last_log(last_log),
            fingerprint=settlement_fingerprint(None, ()),
        )

    partial = []
    total_paid = Decimal("0")
    total_balance = Decimal("0")
    for r in open_records:
        final, paid = money(r.final_amount), money(r.paid_amount)
        partial.append(
            PartialRecord(
                record_id=r.id,
                title=r.title,
                total_amount=final,
                paid_amount=paid,
                balance=final - paid,
            )
        )
        total_paid += paid
        total_balance += final - paid

    if structure_name is None and getattr(assignment, "fee_structure", None) is not None:
        structure_name = assignment.fee_structure.name

    return SettlementPreview(
        has_assignment=True,
        current_assignment_id=assignment.id,
        current_structure_id=assignment.fee_structure_id,
        current_structure_name=structure_name,
        partial_records=partial,
        total_paid=total_paid,
        total_balance=total_balance,
        last_assignment_log=_last_log(last_log),
        fingerprint=settlement_fingerprint(assignment, open_records),
    )


async def preview_reassignment(
    reader: SettlementReader,
    coaching_id: UUID,
    member_id: UUID,
) -> SettlementPreview:
    assignment = await reader.live_assignment(coaching_id, member_id)
    records = await reader.open_records(coaching_id, assignment.id) if assignment else []
    last_log = await reader.last_assignment_log(coaching_id, member_id)
    return compute_settlement(assignment, records, last_log)
