"""Fees schemas: assignments, records, payments, refunds, waivers, ledger, settlement."""

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator, model_validator

from feeledger.core.enums import (
    AssignmentStatus,
    FeeRecordStatus,
    LedgerEntryType,
    PaymentMode,
    RefundMode,
)

# Back-dated entries are fine; forward-dated ones only within clock skew.
FUTURE_DATE_TOLERANCE = timedelta(hours=1)


def _not_in_future(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return value
    aware = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if aware > datetime.now(timezone.utc) + FUTURE_DATE_TOLERANCE:
        raise ValueError("Date cannot be in the future")
    return value


# --- Assignment ---
class AssignmentOverrides(BaseModel):
    """Per-member pricing and settlement options for an assignment."""

    custom_amount: Optional[Decimal] = Field(None, gt=0)
    discount_amount: Decimal = Field(Decimal("0"), ge=0)
    discount_reason: Optional[str] = Field(None, max_length=500)
    scholarship_tag: Optional[str] = Field(None, max_length=100)
    scholarship_amount: Decimal = Field(Decimal("0"), ge=0)
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    apply_paid_credit: bool = False
    confirm_settlement: bool = False
    expected_fingerprint: Optional[str] = Field(None, max_length=128)

    @model_validator(mode="after")
    def validate_dates(self) -> "AssignmentOverrides":
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("End date cannot be before start date")
        return self


class AssignFeeRequest(AssignmentOverrides):
    member_id: UUID
    fee_structure_id: UUID


class BulkAssignRequest(BaseModel):
    fee_structure_id: UUID
    member_ids: List[UUID] = Field(..., min_length=1, max_length=500)
    overrides: AssignmentOverrides = Field(default_factory=AssignmentOverrides)
    # Validated per member during the run so one bad entry fails only that member.
    member_overrides: Dict[UUID, Dict[str, Any]] = Field(default_factory=dict)
    # member_id -> fingerprint from that member's settlement preview
    expected_settlements: Dict[UUID, str] = Field(default_factory=dict)


class BulkAssignResult(BaseModel):
    succeeded: List[UUID] = Field(default_factory=list)
    failed: List[UUID] = Field(default_factory=list)
    not_attempted: List[UUID] = Field(default_factory=list)
    errors: Dict[UUID, str] = Field(default_factory=dict)
    cancelled: bool = False


class AssignmentUpdate(BaseModel):
    custom_amount: Optional[Decimal] = Field(None, gt=0)
    discount_amount: Optional[Decimal] = Field(None, ge=0)
    discount_reason: Optional[str] = Field(None, max_length=500)
    scholarship_tag: Optional[str] = Field(None, max_length=100)
    scholarship_amount: Optional[Decimal] = Field(None, ge=0)
    end_date: Optional[date] = None


class PauseRequest(BaseModel):
    paused: bool
    note: Optional[str] = Field(None, max_length=500)


class AssignmentResponse(BaseModel):
    id: UUID
    coaching_id: UUID
    member_id: UUID
    fee_structure_id: UUID
    fee_structure_name: Optional[str] = None
    custom_amount: Optional[Decimal] = None
    effective_amount: Decimal
    discount_amount: Decimal
    discount_reason: Optional[str] = None
    scholarship_tag: Optional[str] = None
    scholarship_amount: Decimal
    carried_credit: Decimal
    start_date: date
    end_date: Optional[date] = None
    status: AssignmentStatus
    paused_at: Optional[datetime] = None
    pause_note: Optional[str] = None
    version: int
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


# --- Records ---
class FeeRecordResponse(BaseModel):
    id: UUID
    coaching_id: UUID
    assignment_id: UUID
    member_id: UUID
    title: str
    installment_no: Optional[int] = None
    due_date: date
    base_amount: Decimal
    discount_amount: Decimal
    credit_amount: Decimal
    scholarship_amount: Decimal
    tax_amount: Decimal
    fine_amount: Decimal
    final_amount: Decimal
    paid_amount: Decimal
    balance: Decimal
    status: FeeRecordStatus
    days_overdue: int = 0
    paid_at: Optional[datetime] = None
    receipt_no: Optional[str] = None
    notes: Optional[str] = None
    reminder_sent_at: Optional[datetime] = None
    reminder_count: int = 0
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class RecordFilters(BaseModel):
    member_id: Optional[UUID] = None
    assignment_id: Optional[UUID] = None
    status: Optional[FeeRecordStatus] = None
    from_date: Optional[date] = None
    to_date: Optional[date] = None


class FeeRecordPage(BaseModel):
    records: List[FeeRecordResponse]
    total: int
    page: int
    limit: int


class AssignFeeResult(BaseModel):
    """Outcome of a single-member assignment."""

    assignment: AssignmentResponse
    records: List[FeeRecordResponse] = Field(default_factory=list)
    created: bool = True
    waived_amount: Decimal = Decimal("0")
    credit_applied: Decimal = Decimal("0")


# --- Payments ---
class PaymentCreate(BaseModel):
    amount: Decimal = Field(..., gt=0)
    mode: PaymentMode = PaymentMode.CASH
    transaction_ref: Optional[str] = Field(None, max_length=200)
    notes: Optional[str] = Field(None, max_length=500)
    paid_at: Optional[datetime] = None

    _validate_paid_at = field_validator("paid_at")(_not_in_future)


class PaymentResponse(BaseModel):
    id: UUID
    record_id: UUID
    amount: Decimal
    mode: PaymentMode
    transaction_ref: Optional[str] = None
    receipt_no: str
    notes: Optional[str] = None
    paid_at: datetime
    recorded_by: Optional[UUID] = None
    created_at: datetime

    class Config:
        from_attributes = True


class PaymentResult(BaseModel):
    payment: PaymentResponse
    record: FeeRecordResponse
    next_record: Optional[FeeRecordResponse] = None


# --- Refunds ---
class RefundCreate(BaseModel):
    amount: Decimal = Field(..., gt=0)
    mode: RefundMode = RefundMode.CASH
    reason: Optional[str] = Field(None, max_length=500)
    payment_id: Optional[UUID] = None
    refunded_at: Optional[datetime] = None

    _validate_refunded_at = field_validator("refunded_at")(_not_in_future)


class RefundResponse(BaseModel):
    id: UUID
    record_id: UUID
    payment_id: Optional[UUID] = None
    amount: Decimal
    mode: RefundMode
    reason: Optional[str] = None
    refunded_at: datetime
    processed_by: Optional[UUID] = None
    created_at: datetime

    class Config:
        from_attributes = True


class RefundResult(BaseModel):
    refund: RefundResponse
    record: FeeRecordResponse


# --- Waivers ---
class WaiveRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)


class WaiverResponse(BaseModel):
    id: UUID
    record_id: UUID
    waived_amount: Decimal
    reason: Optional[str] = None
    actor_id: Optional[UUID] = None
    is_automatic: bool
    waived_at: datetime
    created_at: datetime

    class Config:
        from_attributes = True


class WaiveResult(BaseModel):
    waiver: WaiverResponse
    record: FeeRecordResponse


# --- Reminders ---
class BulkRemindRequest(BaseModel):
    status_filter: FeeRecordStatus = FeeRecordStatus.OVERDUE
    member_ids: Optional[List[UUID]] = None


class RemindResult(BaseModel):
    reminded: int
    record_ids: List[UUID] = Field(default_factory=list)


# --- Ledger ---
class LedgerEntry(BaseModel):
    id: UUID
    type: LedgerEntryType
    amount: Decimal
    date: datetime
    running_balance: Decimal
    label: str
    mode: Optional[str] = None
    ref: Optional[str] = None
    record_id: Optional[UUID] = None


class LedgerSummary(BaseModel):
    total_charged: Decimal = Decimal("0")
    total_paid: Decimal = Decimal("0")
    total_refunded: Decimal = Decimal("0")
    total_waived: Decimal = Decimal("0")
    balance: Decimal = Decimal("0")
    next_due_date: Optional[date] = None
    next_due_amount: Optional[Decimal] = None


class StudentLedger(BaseModel):
    member_id: Optional[UUID] = None
    entries: List[LedgerEntry] = Field(default_factory=list)
    summary: LedgerSummary = Field(default_factory=LedgerSummary)


# --- Settlement preview ---
class PartialRecord(BaseModel):
    record_id: UUID
    title: str
    total_amount: Decimal
    paid_amount: Decimal
    balance: Decimal


class LastAssignmentLog(BaseModel):
    custom_amount: Optional[Decimal] = None
    discount_amount: Optional[Decimal] = None
    discount_reason: Optional[str] = None
    scholarship_tag: Optional[str] = None
    scholarship_amount: Optional[Decimal] = None
    assigned_by: Optional[UUID] = None
    assigned_at: Optional[datetime] = None


class SettlementPreview(BaseModel):
    has_assignment: bool
    current_assignment_id: Optional[UUID] = None
    current_structure_id: Optional[UUID] = None
    current_structure_name: Optional[str] = None
    partial_records: List[PartialRecord] = Field(default_factory=list)
    total_paid: Decimal = Decimal("0")
    total_balance: Decimal = Decimal("0")
    last_assignment_log: Optional[LastAssignmentLog] = None
    fingerprint: Optional[str] = None


# --- Member profile & summary ---
class MemberSummary(BaseModel):
    id: UUID
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    is_active: bool = True

    class Config:
        from_attributes = True


class AssignmentWithRecords(AssignmentResponse):
    records: List[FeeRecordResponse] = Field(default_factory=list)


class MemberFeeProfile(BaseModel):
    member: MemberSummary
    ledger: StudentLedger
    assignments: List[AssignmentWithRecords] = Field(default_factory=list)


class MyMemberFees(BaseModel):
    member: MemberSummary
    ledger: StudentLedger
    records: List[FeeRecordResponse] = Field(default_factory=list)


class MyFees(BaseModel):
    """Fees visible to the signed-in user: their own membership and any wards."""

    members: List[MyMemberFees] = Field(default_factory=list)


class FeeSummary(BaseModel):
    total_records: int = 0
    status_breakdown: Dict[str, int] = Field(default_factory=dict)
    total_collected: Decimal = Decimal("0")
    total_pending: Decimal = Decimal("0")
    total_overdue: Decimal = Decimal("0")
    total_waived: Decimal = Decimal("0")
    payment_modes: Dict[str, Decimal] = Field(default_factory=dict)
