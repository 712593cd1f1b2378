from enum import Enum


class BillingCycle(str, Enum):
    ONCE = "ONCE"
    MONTHLY = "MONTHLY"
    QUARTERLY = "QUARTERLY"
    HALF_YEARLY = "HALF_YEARLY"
    YEARLY = "YEARLY"


class TaxType(str, Enum):
    NONE = "NONE"
    GST_INCLUSIVE = "GST_INCLUSIVE"
    GST_EXCLUSIVE = "GST_EXCLUSIVE"


class GstSupplyType(str, Enum):
    INTRA_STATE = "INTRA_STATE"
    INTER_STATE = "INTER_STATE"


class AssignmentStatus(str, Enum):
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    REMOVED = "REMOVED"


class FeeRecordStatus(str, Enum):
    PENDING = "PENDING"
    PARTIALLY_PAID = "PARTIALLY_PAID"
    PAID = "PAID"
    OVERDUE = "OVERDUE"
    WAIVED = "WAIVED"


class PaymentMode(str, Enum):
    CASH = "CASH"
    ONLINE = "ONLINE"
    UPI = "UPI"
    BANK_TRANSFER = "BANK_TRANSFER"
    CHEQUE = "CHEQUE"
    OTHER = "OTHER"


class RefundMode(str, Enum):
    CASH = "CASH"
    BANK_TRANSFER = "BANK_TRANSFER"
    ONLINE = "ONLINE"


class AuditEntityType(str, Enum):
    STRUCTURE = "STRUCTURE"
    ASSIGNMENT = "ASSIGNMENT"
    RECORD = "RECORD"
    PAYMENT = "PAYMENT"
    REFUND = "REFUND"
    WAIVER = "WAIVER"


class AuditEvent(str, Enum):
    STRUCTURE_CREATED = "STRUCTURE_CREATED"
    STRUCTURE_UPDATED = "STRUCTURE_UPDATED"
    STRUCTURE_DELETED = "STRUCTURE_DELETED"
    INSTALLMENT_SETTINGS_CHANGED = "INSTALLMENT_SETTINGS_CHANGED"
    ASSIGNMENT_CREATED = "ASSIGNMENT_CREATED"
    ASSIGNMENT_UPDATED = "ASSIGNMENT_UPDATED"
    ASSIGNMENT_REMOVED = "ASSIGNMENT_REMOVED"
    ASSIGNMENT_PAUSED = "ASSIGNMENT_PAUSED"
    ASSIGNMENT_UNPAUSED = "ASSIGNMENT_UNPAUSED"
    RECORD_CREATED = "RECORD_CREATED"
    PAYMENT_RECORDED = "PAYMENT_RECORDED"
    REFUND_ISSUED = "REFUND_ISSUED"
    FEE_WAIVED = "FEE_WAIVED"
    REMINDER_SENT = "REMINDER_SENT"


class ActorType(str, Enum):
    ADMIN = "ADMIN"
    SYSTEM = "SYSTEM"


class LedgerEntryType(str, Enum):
    RECORD = "RECORD"
    PAYMENT = "PAYMENT"
    REFUND = "REFUND"
    WAIVER = "WAIVER"


class SupersededBalancePolicy(str, Enum):
    AUTO_WAIVE = "AUTO_WAIVE"
    REQUIRE_CONFIRMATION = "REQUIRE_CONFIRMATION"


# Records whose balance is still open; a reassignment would orphan these.
LIVE_RECORD_STATUSES = (
    FeeRecordStatus.PENDING.value,
    FeeRecordStatus.PARTIALLY_PAID.value,
    FeeRecordStatus.OVERDUE.value,
)

# Assignments that count toward the one-per-member rule.
LIVE_ASSIGNMENT_STATUSES = (
    AssignmentStatus.ACTIVE.value,
    AssignmentStatus.PAUSED.value,
)
