import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    String,
    Integer,
    Boolean,
    DateTime,
    Numeric,
    Text,
    ForeignKey,
    UniqueConstraint,
    CheckConstraint,
    Index,
    Uuid,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from finapprove.database import Base


class ApprovalStep(Base):
    __tablename__ = "approval_steps"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    finance_request_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("finance_requests.id", ondelete="CASCADE"),
        nullable=False,
    )
    generation: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    level: Mapped[str] = mapped_column(String(50), nullable=False)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    assigned_to_role: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="PENDING")
    is_active: Mapped[bool] = mapped_column(Boolean, default=False)
    is_archived: Mapped[bool] = mapped_column(Boolean, default=False)
    sla_hours: Mapped[int] = mapped_column(Integer, nullable=False)
    sla_due_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    sla_breached: Mapped[bool] = mapped_column(Boolean, default=False)
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow
    )

    __table_args__ = (
        UniqueConstraint(
            "finance_request_id", "generation", "sequence", name="uq_approval_step_sequence"
        ),
        CheckConstraint(
            "status IN ('PENDING','COMPLETED','SKIPPED')",
            name="chk_approval_step_status",
        ),
        CheckConstraint("sla_hours > 0", name="chk_approval_step_sla_hours"),
        # At most one active step per request.
        Index(
            "uq_approval_steps_one_active",
            "finance_request_id",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active = 1"),
        ),
        Index("idx_approval_steps_request", "finance_request_id", "generation"),
        Index("idx_approval_steps_active_due", "is_active", "sla_due_at"),
    )


class ApprovalActionRecord(Base):
    """Append-only audit trail. Rows are never updated or deleted."""

    __tablename__ = "approval_action_records"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    approval_step_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("approval_steps.id"), nullable=False
    )
    finance_request_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("finance_requests.id"), nullable=False
    )
    actor_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False
    )
    action: Mapped[str] = mapped_column(String(20), nullable=False)
    comments: Mapped[Optional[str]] = mapped_column(Text)
    sla_compliant: Mapped[Optional[bool]] = mapped_column(Boolean)
    response_time_hours: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2))
    is_override: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow
    )

    __table_args__ = (
        CheckConstraint(
            "action IN ('APPROVED','REJECTED','SENT_BACK')",
            name="chk_approval_action",
        ),
        Index("idx_approval_actions_step", "approval_step_id"),
        Index("idx_approval_actions_request", "finance_request_id"),
    )
