import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    String,
    Integer,
    Boolean,
    Date,
    DateTime,
    Numeric,
    Text,
    ForeignKey,
    CheckConstraint,
    Index,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from finapprove.database import Base


class FinanceRequest(Base):
    __tablename__ = "finance_requests"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    reference_number: Mapped[str] = mapped_column(
        String(50), unique=True, nullable=False
    )
    requestor_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False
    )
    department: Mapped[str] = mapped_column(String(100), nullable=False)
    entity: Mapped[Optional[str]] = mapped_column(String(100))
    cost_center: Mapped[Optional[str]] = mapped_column(String(100))

    payment_type: Mapped[str] = mapped_column(String(30), nullable=False)
    payment_mode: Mapped[str] = mapped_column(String(30), default="NEFT")
    purpose: Mapped[str] = mapped_column(Text, nullable=False)
    vendor_name: Mapped[Optional[str]] = mapped_column(String(255))
    vendor_code: Mapped[Optional[str]] = mapped_column(String(50))
    vendor_bank_name: Mapped[Optional[str]] = mapped_column(String(255))
    vendor_bank_account: Mapped[Optional[str]] = mapped_column(String(50))
    vendor_bank_ifsc: Mapped[Optional[str]] = mapped_column(String(11))
    vendor_upi_id: Mapped[Optional[str]] = mapped_column(String(100))
    invoice_number: Mapped[Optional[str]] = mapped_column(String(100))
    invoice_date: Mapped[Optional[date]] = mapped_column(Date)

    base_amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    gst_applicable: Mapped[bool] = mapped_column(Boolean, default=False)
    gst_percentage: Mapped[Optional[Decimal]] = mapped_column(Numeric(5, 2))
    gst_amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), default=Decimal("0.00"))
    tds_applicable: Mapped[bool] = mapped_column(Boolean, default=False)
    tds_percentage: Mapped[Optional[Decimal]] = mapped_column(Numeric(5, 2))
    tds_amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), default=Decimal("0.00"))
    total_amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="INR")

    status: Mapped[str] = mapped_column(String(50), default="DRAFT")
    current_approval_level: Mapped[Optional[str]] = mapped_column(String(50))
    resubmission_count: Mapped[int] = mapped_column(Integer, default=0)
    # Bumped every time the approval ledger is (re)created; older steps are archived.
    ledger_generation: Mapped[int] = mapped_column(Integer, default=0)

    payment_reference_number: Mapped[Optional[str]] = mapped_column(String(100))
    actual_payment_date: Mapped[Optional[date]] = mapped_column(Date)
    disbursement_remarks: Mapped[Optional[str]] = mapped_column(Text)

    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )
    submitted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    __table_args__ = (
        CheckConstraint("base_amount > 0", name="chk_fr_base_amount_positive"),
        CheckConstraint("resubmission_count >= 0", name="chk_fr_resubmission_count"),
        Index("idx_fr_status", "status"),
        Index("idx_fr_requestor", "requestor_id"),
        Index("idx_fr_department", "department"),
    )
