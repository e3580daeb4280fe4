import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    String,
    Integer,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from finapprove.database import Base


class SLALog(Base):
    __tablename__ = "sla_logs"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    finance_request_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("finance_requests.id", ondelete="CASCADE"),
        nullable=False,
    )
    approval_step_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("approval_steps.id")
    )
    generation: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    level: Mapped[str] = mapped_column(String(50), nullable=False)
    sla_hours: Mapped[int] = mapped_column(Integer, nullable=False)
    sla_due_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    is_breached: Mapped[bool] = mapped_column(Boolean, default=False)
    breached_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    is_archived: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow
    )

    __table_args__ = (
        Index("idx_sla_logs_request", "finance_request_id"),
        Index("idx_sla_logs_step", "approval_step_id"),
        Index("idx_sla_logs_breached", "is_breached"),
    )
