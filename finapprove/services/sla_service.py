"""
SLA clock and breach sweep.

Two at-risk policies:
  - dashboard window: a step is AT_RISK when its deadline is within
    ``SLA_RISK_WINDOW_HOURS`` (4h). See ``sla_status``.
  - notification warning: an approver is warned once ``SLA_WARNING_RATIO``
    (80%) of the SLA has elapsed. See ``is_in_warning_window``.

The sweep is invoked externally (hourly). Each active step is processed in
its own transaction; different requests never share one.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
import structlog

from finapprove.config import settings
from finapprove.models.approval import ApprovalStep
from finapprove.models.enums import NotificationType, StepStatus
from finapprove.models.finance_request import FinanceRequest
from finapprove.models.user import User
from finapprove.services.ledger_service import mark_sla_log_breached
from finapprove.services.level_chain import ApprovalChain, get_approval_chain
from finapprove.services.notification_service import (
    EmailIntent,
    NotificationIntent,
    create_notifications,
    find_approvers_for_level,
    has_recent_notification,
)

logger = structlog.get_logger()


class SLAStatus:
    ON_TRACK = "ON_TRACK"
    AT_RISK = "AT_RISK"
    BREACHED = "BREACHED"
    COMPLETED = "COMPLETED"


# ---------- pure clock ----------


def due_at(
    level: str,
    payment_type: Optional[str],
    started_at: datetime,
    chain: Optional[ApprovalChain] = None,
) -> datetime:
    chain = chain or get_approval_chain()
    chain_level = chain.get(level)
    if chain_level is None:
        raise ValueError(f"Level {level} is not part of the '{chain.name}' chain")
    return started_at + timedelta(hours=chain_level.sla_hours_for(payment_type))


def hours_between(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds() / 3600


def sla_status(
    sla_due_at: Optional[datetime],
    now: datetime,
    completed: bool,
    risk_window_hours: Optional[float] = None,
) -> str:
    """Dashboard status: COMPLETED, BREACHED, AT_RISK (deadline within window) or ON_TRACK."""
    if completed:
        return SLAStatus.COMPLETED
    if sla_due_at is None:
        return SLAStatus.ON_TRACK
    if now > sla_due_at:
        return SLAStatus.BREACHED

    window = settings.SLA_RISK_WINDOW_HOURS if risk_window_hours is None else risk_window_hours
    if hours_between(now, sla_due_at) <= window:
        return SLAStatus.AT_RISK
    return SLAStatus.ON_TRACK


def is_in_warning_window(
    started_at: Optional[datetime],
    sla_hours: int,
    now: datetime,
    ratio: Optional[float] = None,
) -> bool:
    """True once ``ratio`` of the SLA has elapsed but the SLA is not yet exceeded."""
    if started_at is None:
        return False
    ratio = settings.SLA_WARNING_RATIO if ratio is None else ratio
    elapsed = hours_between(started_at, now)
    return sla_hours * ratio < elapsed <= sla_hours


# ---------- sweep ----------


@dataclass
class SweepResult:
    processed_count: int = 0
    breached_count: int = 0
    notifications_sent: int = 0
    warnings_sent: int = 0
    errors: int = 0
    emails: list[EmailIntent] = field(default_factory=list)
    timestamp: Optional[datetime] = None

    def as_dict(self) -> dict:
        return {
            "processed_count": self.processed_count,
            "breached_count": self.breached_count,
            "notifications_sent": self.notifications_sent,
            "warnings_sent": self.warnings_sent,
            "errors": self.errors,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }

    def merge(self, other: "SweepResult") -> None:
        self.processed_count += other.processed_count
        self.breached_count += other.breached_count
        self.notifications_sent += other.notifications_sent
        self.warnings_sent += other.warnings_sent
        self.emails.extend(other.emails)


async def _active_step_ids(session: AsyncSession) -> list:
    result = await session.execute(
        select(ApprovalStep.id)
        .join(FinanceRequest, FinanceRequest.id == ApprovalStep.finance_request_id)
        .where(
            ApprovalStep.is_active == True,  # noqa: E712
            ApprovalStep.status == StepStatus.PENDING,
            ApprovalStep.sla_due_at.is_not(None),
            FinanceRequest.is_deleted == False,  # noqa: E712
        )
        .order_by(ApprovalStep.sla_due_at)
    )
    return [row[0] for row in result.all()]


async def _mark_breached(
    session: AsyncSession,
    request: FinanceRequest,
    step: ApprovalStep,
    approvers: list[User],
    now: datetime,
    result: SweepResult,
) -> None:
    step.sla_breached = True
    await mark_sla_log_breached(session, step.id, now)
    result.breached_count += 1

    hours_overdue = round(hours_between(step.sla_due_at, now), 1)
    intents = [
        NotificationIntent(
            user_id=approver.id,
            title="SLA Breach Alert",
            message=(
                f"Request {request.reference_number} is overdue by "
                f"{hours_overdue} hours at {step.level}"
            ),
            type=NotificationType.SLA_BREACH,
            finance_request_id=request.id,
        )
        for approver in approvers
    ]
    intents.append(
        NotificationIntent(
            user_id=request.requestor_id,
            title="Request Delayed",
            message=f"Your request {request.reference_number} is delayed at {step.level} stage",
            type=NotificationType.REQUEST_DELAYED,
            finance_request_id=request.id,
        )
    )
    result.notifications_sent += await create_notifications(session, intents, now)

    emails = [a.email for a in approvers if a.email]
    if emails:
        result.emails.append(
            EmailIntent(
                "sla_breach",
                emails,
                {
                    "reference_number": request.reference_number,
                    "level": step.level,
                    "hours_overdue": hours_overdue,
                },
            )
        )

    logger.warning(
        "sla_breached",
        reference_number=request.reference_number,
        level=step.level,
        hours_overdue=hours_overdue,
        approvers=len(approvers),
    )


async def _warn_approvers(
    session: AsyncSession,
    request: FinanceRequest,
    step: ApprovalStep,
    approvers: list[User],
    now: datetime,
    result: SweepResult,
) -> None:
    since = now - timedelta(hours=settings.SLA_WARNING_SUPPRESSION_HOURS)
    to_warn = []
    for approver in approvers:
        already_warned = await has_recent_notification(
            session, approver.id, request.id, NotificationType.SLA_WARNING, since
        )
        if not already_warned:
            to_warn.append(approver)

    if not to_warn:
        return

    hours_remaining = round(hours_between(now, step.sla_due_at), 1)
    intents = [
        NotificationIntent(
            user_id=approver.id,
            title="SLA Warning",
            message=(
                f"Request {request.reference_number} needs attention - "
                "SLA deadline approaching"
            ),
            type=NotificationType.SLA_WARNING,
            finance_request_id=request.id,
        )
        for approver in to_warn
    ]
    result.warnings_sent += await create_notifications(session, intents, now)

    emails = [a.email for a in to_warn if a.email]
    if emails:
        result.emails.append(
            EmailIntent(
                "sla_warning",
                emails,
                {
                    "reference_number": request.reference_number,
                    "level": step.level,
                    "hours_remaining": hours_remaining,
                },
            )
        )


async def _process_step(
    session: AsyncSession,
    step_id,
    chain: ApprovalChain,
    now: datetime,
    result: SweepResult,
) -> None:
    step_result = await session.execute(
        select(ApprovalStep).where(ApprovalStep.id == step_id).with_for_update()
    )
    step = step_result.scalar_one_or_none()
    # Completed between listing and locking
    if step is None or not step.is_active or step.status != StepStatus.PENDING:
        return

    req_result = await session.execute(
        select(FinanceRequest).where(FinanceRequest.id == step.finance_request_id)
    )
    request = req_result.scalar_one()
    result.processed_count += 1

    if now > step.sla_due_at:
        if step.sla_breached:
            return
        approvers = await find_approvers_for_level(session, step.level, chain)
        await _mark_breached(session, request, step, approvers, now, result)
    elif is_in_warning_window(step.started_at, step.sla_hours, now):
        approvers = await find_approvers_for_level(session, step.level, chain)
        await _warn_approvers(session, request, step, approvers, now, result)


async def check_sla_breaches(
    session_factory: async_sessionmaker,
    now: Optional[datetime] = None,
    chain: Optional[ApprovalChain] = None,
) -> SweepResult:
    """
    Flag breached active steps and warn approvers nearing the deadline.

    Idempotent: a step already flagged ``sla_breached`` is not flipped or
    notified again, and a warning is skipped when one was sent to the same
    approver for the same request inside the suppression window.
    Email intents are returned for post-commit dispatch.
    """
    now = now or datetime.utcnow()
    chain = chain or get_approval_chain()
    result = SweepResult(timestamp=now)

    async with session_factory() as session:
        step_ids = await _active_step_ids(session)

    for step_id in step_ids:
        # Counted only once the step's transaction has committed
        step_result = SweepResult()
        try:
            async with session_factory() as session:
                async with session.begin():
                    await _process_step(session, step_id, chain, now, step_result)
        except Exception as e:
            logger.error("sla_check_step_failed", step_id=str(step_id), error=str(e))
            result.errors += 1
        else:
            result.merge(step_result)

    logger.info(
        "sla_check_complete",
        processed=result.processed_count,
        breached=result.breached_count,
        notifications=result.notifications_sent,
        warnings=result.warnings_sent,
    )
    return result


async def sla_overview(session: AsyncSession) -> dict:
    """Read-only view of pending/overdue active steps. Sends nothing."""
    rows = await session.execute(
        select(ApprovalStep, FinanceRequest.reference_number)
        .join(FinanceRequest, FinanceRequest.id == ApprovalStep.finance_request_id)
        .where(
            ApprovalStep.is_active == True,  # noqa: E712
            FinanceRequest.is_deleted == False,  # noqa: E712
        )
    )
    pending = rows.all()
    overdue = [(step, ref) for step, ref in pending if step.sla_breached]
    return {
        "pending_approvals": len(pending),
        "overdue_count": len(overdue),
        "overdue_requests": [
            {"reference_number": ref, "level": step.level, "sla_hours": step.sla_hours}
            for step, ref in overdue
        ],
    }
