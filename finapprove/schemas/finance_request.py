from datetime import date
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field, model_validator

from finapprove.models.enums import Currency, PaymentMode, PaymentType

IFSC_PATTERN = r"^[A-Z]{4}0[A-Z0-9]{6}$"


def _check_percentages(model) -> None:
    if model.gst_applicable and model.gst_percentage is None:
        raise ValueError("gst_percentage is required when GST is applicable")
    if model.tds_applicable and model.tds_percentage is None:
        raise ValueError("tds_percentage is required when TDS is applicable")


class FinanceRequestCreate(BaseModel):
    department: Optional[str] = Field(None, min_length=1, max_length=100)
    entity: Optional[str] = Field(None, max_length=100)
    cost_center: Optional[str] = Field(None, max_length=100)
    payment_type: PaymentType
    payment_mode: PaymentMode = PaymentMode.NEFT
    purpose: str = Field(..., min_length=10, max_length=2000)
    vendor_name: Optional[str] = Field(None, max_length=255)
    vendor_code: Optional[str] = Field(None, max_length=50)
    vendor_bank_name: Optional[str] = Field(None, max_length=255)
    vendor_bank_account: Optional[str] = Field(None, max_length=50)
    vendor_bank_ifsc: Optional[str] = Field(None, pattern=IFSC_PATTERN)
    vendor_upi_id: Optional[str] = Field(None, max_length=100)
    invoice_number: Optional[str] = Field(None, max_length=100)
    invoice_date: Optional[date] = None
    base_amount: Decimal = Field(..., gt=0, max_digits=15, decimal_places=2)
    gst_applicable: bool = False
    gst_percentage: Optional[Decimal] = Field(None, ge=0, le=100)
    tds_applicable: bool = False
    tds_percentage: Optional[Decimal] = Field(None, ge=0, le=100)
    currency: Currency = Currency.INR
    # False submits immediately after creation
    save_as_draft: bool = True

    @model_validator(mode="after")
    def percentages_for_flags(self):
        _check_percentages(self)
        return self


class FinanceRequestUpdate(BaseModel):
    """Partial edit. Totals are recomputed server-side whenever a money field changes."""

    department: Optional[str] = Field(None, min_length=1, max_length=100)
    entity: Optional[str] = Field(None, max_length=100)
    cost_center: Optional[str] = Field(None, max_length=100)
    payment_type: Optional[PaymentType] = None
    payment_mode: Optional[PaymentMode] = None
    purpose: Optional[str] = Field(None, min_length=10, max_length=2000)
    vendor_name: Optional[str] = Field(None, max_length=255)
    vendor_code: Optional[str] = Field(None, max_length=50)
    vendor_bank_name: Optional[str] = Field(None, max_length=255)
    vendor_bank_account: Optional[str] = Field(None, max_length=50)
    vendor_bank_ifsc: Optional[str] = Field(None, pattern=IFSC_PATTERN)
    vendor_upi_id: Optional[str] = Field(None, max_length=100)
    invoice_number: Optional[str] = Field(None, max_length=100)
    invoice_date: Optional[date] = None
    base_amount: Optional[Decimal] = Field(None, gt=0, max_digits=15, decimal_places=2)
    gst_applicable: Optional[bool] = None
    gst_percentage: Optional[Decimal] = Field(None, ge=0, le=100)
    tds_applicable: Optional[bool] = None
    tds_percentage: Optional[Decimal] = Field(None, ge=0, le=100)
    currency: Optional[Currency] = None


class FinanceRequestResponse(BaseModel):
    id: str
    reference_number: str
    requestor_id: str
    department: str
    entity: Optional[str] = None
    cost_center: Optional[str] = None
    payment_type: str
    payment_mode: Optional[str] = None
    purpose: str
    vendor_name: Optional[str] = None
    vendor_code: Optional[str] = None
    vendor_bank_name: Optional[str] = None
    vendor_bank_account: Optional[str] = None
    vendor_bank_ifsc: Optional[str] = None
    vendor_upi_id: Optional[str] = None
    invoice_number: Optional[str] = None
    invoice_date: Optional[str] = None
    base_amount: str
    gst_applicable: bool
    gst_percentage: Optional[str] = None
    gst_amount: str
    tds_applicable: bool
    tds_percentage: Optional[str] = None
    tds_amount: str
    total_amount: str
    currency: str
    status: str
    current_approval_level: Optional[str] = None
    resubmission_count: int
    ledger_generation: int
    payment_reference_number: Optional[str] = None
    actual_payment_date: Optional[str] = None
    disbursement_remarks: Optional[str] = None
    created_at: str
    updated_at: Optional[str] = None
    submitted_at: Optional[str] = None
    approved_at: Optional[str] = None
    completed_at: Optional[str] = None

    model_config = {"from_attributes": True}


class ApprovalActionRecordResponse(BaseModel):
    id: str
    actor_id: str
    action: str
    comments: Optional[str] = None
    sla_compliant: Optional[bool] = None
    response_time_hours: Optional[str] = None
    is_override: bool = False
    created_at: str


class ApprovalStepResponse(BaseModel):
    id: str
    generation: int
    level: str
    sequence: int
    assigned_to_role: str
    status: str
    is_active: bool
    is_archived: bool
    sla_hours: int
    sla_due_at: Optional[str] = None
    sla_breached: bool
    sla_status: Optional[str] = None
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    actions: List[ApprovalActionRecordResponse] = []


class SLALogResponse(BaseModel):
    id: str
    generation: int
    level: str
    sla_hours: int
    sla_due_at: str
    is_breached: bool
    breached_at: Optional[str] = None
    is_archived: bool


class FinanceRequestDetailResponse(FinanceRequestResponse):
    approval_steps: List[ApprovalStepResponse] = []
    sla_logs: List[SLALogResponse] = []
    can_edit: bool = False


class LedgerGenerationResponse(BaseModel):
    generation: int
    is_current: bool
    steps: List[ApprovalStepResponse] = []
    sla_logs: List[SLALogResponse] = []


class FinanceRequestHistoryResponse(BaseModel):
    id: str
    reference_number: str
    current_generation: int
    generations: List[LedgerGenerationResponse] = []
