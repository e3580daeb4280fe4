"""
Resubmission limit and admin override.

The override is the admin escape hatch: it settles every PENDING step of the
current generation in one batch and records a single override-tagged action.
"""

from datetime import datetime
from typing import Optional
import uuid

from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from finapprove.exceptions import NoActiveStepError, ValidationError
from finapprove.models.approval import ApprovalActionRecord, ApprovalStep
from finapprove.models.enums import AdminReviewAction, ApprovalAction, StepStatus
from finapprove.models.finance_request import FinanceRequest
from finapprove.services.ledger_service import get_current_steps

logger = structlog.get_logger()

OVERRIDE_PREFIXES = {
    AdminReviewAction.APPROVE: "Admin override: ",
    AdminReviewAction.REJECT: "Admin rejection: ",
    AdminReviewAction.ALLOW_RESUBMISSION: "Admin allowed resubmission: ",
}

# Outcome stored on the override action record.
OVERRIDE_OUTCOMES = {
    AdminReviewAction.APPROVE: ApprovalAction.APPROVED,
    AdminReviewAction.REJECT: ApprovalAction.REJECTED,
    AdminReviewAction.ALLOW_RESUBMISSION: ApprovalAction.SENT_BACK,
}


def increment_and_check_limit(count: int, max_resubmissions: int) -> bool:
    """True when one more resubmission would exceed ``max_resubmissions``."""
    if max_resubmissions < 0:
        raise ValueError("max_resubmissions must be >= 0")
    return (count or 0) + 1 > max_resubmissions


def reset_resubmission_count(request: FinanceRequest) -> None:
    request.resubmission_count = 0


def _override_target(steps: list[ApprovalStep]) -> Optional[ApprovalStep]:
    """Active step, else the first PENDING step by sequence, else the last step."""
    for step in steps:
        if step.is_active:
            return step
    for step in steps:
        if step.status == StepStatus.PENDING:
            return step
    return steps[-1] if steps else None


async def apply_admin_override(
    session: AsyncSession,
    request: FinanceRequest,
    actor_id: uuid.UUID,
    action: str,
    comments: Optional[str],
    now: datetime,
) -> ApprovalActionRecord:
    """
    Settle the current ledger for an admin decision and append one
    override-tagged action record.

    APPROVE marks every PENDING step COMPLETED, REJECT marks them SKIPPED,
    ALLOW_RESUBMISSION leaves the steps as they are.
    """
    if action not in OVERRIDE_PREFIXES:
        raise ValidationError.for_field("action", f"Unknown admin action: {action}")

    steps = await get_current_steps(session, request)
    target = _override_target(steps)
    if target is None:
        raise NoActiveStepError(str(request.id), request.status)

    settled = 0
    if action in (AdminReviewAction.APPROVE, AdminReviewAction.REJECT):
        new_status = (
            StepStatus.COMPLETED if action == AdminReviewAction.APPROVE else StepStatus.SKIPPED
        )
        for step in steps:
            if step.status == StepStatus.PENDING:
                step.status = new_status
                step.is_active = False
                step.completed_at = now
                settled += 1

    record = ApprovalActionRecord(
        approval_step_id=target.id,
        finance_request_id=request.id,
        actor_id=actor_id,
        action=OVERRIDE_OUTCOMES[action],
        comments=f"{OVERRIDE_PREFIXES[action]}{comments or ''}".rstrip(),
        sla_compliant=None,
        response_time_hours=None,
        is_override=True,
    )
    session.add(record)
    await session.flush()

    logger.info(
        "admin_override_applied",
        finance_request_id=str(request.id),
        action=action,
        actor_id=str(actor_id),
        settled_steps=settled,
        target_level=target.level,
    )
    return record

