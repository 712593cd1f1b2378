"""Fee structure schemas."""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator, model_validator

from feeledger.core.enums import BillingCycle, GstSupplyType, TaxType

VALID_GST_RATES = (Decimal("0"), Decimal("5"), Decimal("12"), Decimal("18"), Decimal("28"))

# Installment plan amounts may drift from the structure amount by this fraction.
INSTALLMENT_SUM_TOLERANCE = Decimal("0.01")


class LineItem(BaseModel):
    label: str = Field(..., min_length=1, max_length=200)
    amount: Decimal = Field(..., ge=0)


class InstallmentAmount(BaseModel):
    label: str = Field(..., min_length=1, max_length=200)
    amount: Decimal = Field(..., gt=0)


def installment_plan_error(
    amount: Decimal,
    allow_installments: bool,
    installment_count: int,
    installment_amounts: Optional[List[InstallmentAmount]],
) -> Optional[str]:
    """Return a message describing why the installment settings are invalid, or None."""
    if not allow_installments:
        return None
    if installment_amounts:
        total = sum((i.amount for i in installment_amounts), Decimal("0"))
        if abs(total - amount) > amount * INSTALLMENT_SUM_TOLERANCE:
            return "Installment amounts must sum to the total fee amount"
        if installment_count and installment_count != len(installment_amounts):
            return "Installment count does not match the number of installment amounts"
        return None
    if installment_count < 2:
        return "Installment count must be at least 2 when installments are allowed"
    return None


def _check_gst_rate(value: Optional[Decimal]) -> Optional[Decimal]:
    if value is not None and value not in VALID_GST_RATES:
        raise ValueError("GST rate must be one of: 0, 5, 12, 18, 28")
    return value


class FeeStructureCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=1000)
    amount: Decimal = Field(..., gt=0)
    cycle: BillingCycle = BillingCycle.MONTHLY
    late_fine_per_day: Decimal = Field(Decimal("0"), ge=0)
    tax_type: TaxType = TaxType.NONE
    gst_rate: Decimal = Decimal("0")
    gst_supply_type: GstSupplyType = GstSupplyType.INTRA_STATE
    sac_code: Optional[str] = Field(None, max_length=20)
    hsn_code: Optional[str] = Field(None, max_length=20)
    cess_rate: Decimal = Field(Decimal("0"), ge=0, le=50)
    line_items: Optional[List[LineItem]] = None
    allow_installments: bool = False
    installment_count: int = Field(0, ge=0)
    installment_amounts: Optional[List[InstallmentAmount]] = None

    _validate_gst_rate = field_validator("gst_rate")(_check_gst_rate)

    @model_validator(mode="after")
    def validate_installments(self) -> "FeeStructureCreate":
        error = installment_plan_error(
            self.amount, self.allow_installments, self.installment_count, self.installment_amounts
        )
        if error:
            raise ValueError(error)
        return self


class FeeStructureUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=1000)
    amount: Optional[Decimal] = Field(None, gt=0)
    cycle: Optional[BillingCycle] = None
    late_fine_per_day: Optional[Decimal] = Field(None, ge=0)
    tax_type: Optional[TaxType] = None
    gst_rate: Optional[Decimal] = None
    gst_supply_type: Optional[GstSupplyType] = None
    sac_code: Optional[str] = Field(None, max_length=20)
    hsn_code: Optional[str] = Field(None, max_length=20)
    cess_rate: Optional[Decimal] = Field(None, ge=0, le=50)
    line_items: Optional[List[LineItem]] = None
    allow_installments: Optional[bool] = None
    installment_count: Optional[int] = Field(None, ge=0)
    installment_amounts: Optional[List[InstallmentAmount]] = None
    is_active: Optional[bool] = None

    _validate_gst_rate = field_validator("gst_rate")(_check_gst_rate)


class FeeStructureResponse(BaseModel):
    id: UUID
    coaching_id: UUID
    name: str
    description: Optional[str] = None
    amount: Decimal
    currency: str
    cycle: BillingCycle
    late_fine_per_day: Decimal
    tax_type: TaxType
    gst_rate: Decimal
    gst_supply_type: GstSupplyType
    sac_code: Optional[str] = None
    hsn_code: Optional[str] = None
    cess_rate: Decimal
    line_items: List[LineItem] = Field(default_factory=list)
    allow_installments: bool
    installment_count: int
    installment_amounts: List[InstallmentAmount] = Field(default_factory=list)
    is_active: bool
    assignment_count: int = 0
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class FeeStructureDeleteResponse(BaseModel):
    id: UUID
    soft_deleted: bool
    live_assignment_count: int
