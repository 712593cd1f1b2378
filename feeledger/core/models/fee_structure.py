"""Fee structure: reusable fee template per coaching (amount, cycle, tax, installments)."""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, Integer, Numeric, String, Text
from sqlalchemy.dialects.postgresql import UUID

from feeledger.core.enums import BillingCycle, TaxType
from feeledger.db.session import Base
from feeledger.db.types import JSONType


class FeeStructure(Base):
    """Fee template. Soft delete via is_active once any assignment references it."""

    __tablename__ = "fee_structures"
    __table_args__ = (
        CheckConstraint(
            "cycle IN ('ONCE','MONTHLY','QUARTERLY','HALF_YEARLY','YEARLY')",
            name="chk_fee_structure_cycle",
        ),
        CheckConstraint(
            "tax_type IN ('NONE','GST_INCLUSIVE','GST_EXCLUSIVE')",
            name="chk_fee_structure_tax_type",
        ),
        CheckConstraint("amount > 0", name="chk_fee_structure_amount_positive"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    coaching_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="INR")
    cycle = Column(String(20), nullable=False, default=BillingCycle.MONTHLY.value)
    late_fine_per_day = Column(Numeric(12, 2), nullable=False, default=0)

    tax_type = Column(String(20), nullable=False, default=TaxType.NONE.value)
    gst_rate = Column(Numeric(5, 2), nullable=False, default=0)
    gst_supply_type = Column(String(20), nullable=False, default="INTRA_STATE")
    sac_code = Column(String(20), nullable=True)
    hsn_code = Column(String(20), nullable=True)
    cess_rate = Column(Numeric(5, 2), nullable=False, default=0)

    # [{"label": str, "amount": "123.00"}], display breakdown of amount
    line_items = Column(JSONType, nullable=True)

    allow_installments = Column(Boolean, nullable=False, default=False)
    installment_count = Column(Integer, nullable=False, default=0)
    # [{"label": str, "amount": "123.00"}]; must sum to amount
    installment_amounts = Column(JSONType, nullable=True)

    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
