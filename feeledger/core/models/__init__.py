from feeledger.core.models.coaching_member import CoachingMember
from feeledger.core.models.fee_structure import FeeStructure
from feeledger.core.models.fee_assignment import FeeAssignment
from feeledger.core.models.fee_record import FeeRecord
from feeledger.core.models.fee_payment import FeePayment
from feeledger.core.models.fee_refund import FeeRefund
from feeledger.core.models.fee_waiver import FeeWaiver
from feeledger.core.models.fee_audit_log import FeeAuditLog

__all__ = [
    "CoachingMember",
    "FeeStructure",
    "FeeAssignment",
    "FeeRecord",
    "FeePayment",
    "FeeRefund",
    "FeeWaiver",
    "FeeAuditLog",
]
