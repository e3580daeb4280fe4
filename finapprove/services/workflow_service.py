"""
Workflow state machine.

``plan_transition`` is the pure transition table: given the configured chain,
the current status and an action it returns the next status and level, or
raises InvalidTransitionError. The async operations below load the request
under a row lock, check the actor, apply the plan through the ledger and
collect notification side effects.

    DRAFT        --submit-->    PENDING_<first>
    PENDING_<L>  --APPROVED-->  PENDING_<next> | APPROVED (next is DISBURSEMENT)
                                | DISBURSED (L is DISBURSEMENT) | APPROVED (L is last)
    PENDING_<L>  --REJECTED-->  REJECTED
    PENDING_<L>  --SENT_BACK--> SENT_BACK
    SENT_BACK    --resubmit-->  PENDING_<first> | PENDING_ADMIN_REVIEW (limit exceeded)
    APPROVED     --disburse-->  DISBURSED
    PENDING_ADMIN_REVIEW / PENDING_<L> --admin APPROVE--> DISBURSED
    PENDING_ADMIN_REVIEW / PENDING_<L> --admin REJECT-->  REJECTED
    PENDING_ADMIN_REVIEW --admin ALLOW_RESUBMISSION-->    SENT_BACK
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from finapprove.config import settings
from finapprove.exceptions import (
    AuthorizationError,
    ConcurrencyConflictError,
    InvalidTransitionError,
    NoActiveStepError,
    ValidationError,
)
from finapprove.models.approval import ApprovalStep
from finapprove.models.enums import (
    AdminReviewAction,
    ApprovalAction,
    NotificationType,
    RequestStatus,
    StepStatus,
)
from finapprove.models.finance_request import FinanceRequest
from finapprove.services.auth_service import Actor
from finapprove.services.finance_request_service import get_request
from finapprove.services.ledger_service import (
    activate_step,
    complete_active_step,
    create_ledger,
    get_active_step,
    reset_ledger,
)
from finapprove.services.level_chain import DISBURSEMENT, ApprovalChain, get_approval_chain
from finapprove.services.money_service import format_amount
from finapprove.services.notification_service import (
    EmailIntent,
    NotificationIntent,
    create_notifications,
    find_approvers_for_level,
    find_users_by_role,
    resolve_user_emails,
)
from finapprove.services.permission_service import (
    ADMIN,
    can_act_at_level,
    get_role_label,
    has_permission,
)
from finapprove.services.resubmission_service import (
    apply_admin_override,
    increment_and_check_limit,
    reset_resubmission_count,
)

logger = structlog.get_logger()

SUBMIT = "SUBMIT"
RESUBMIT = "RESUBMIT"
DISBURSE = "DISBURSE"

DECISION_TITLES = {
    ApprovalAction.APPROVED: "Request Approved",
    ApprovalAction.REJECTED: "Request Rejected",
    ApprovalAction.SENT_BACK: "Request Sent Back",
}

DECISION_TEMPLATES = {
    ApprovalAction.APPROVED: "request_approved",
    ApprovalAction.REJECTED: "request_rejected",
    ApprovalAction.SENT_BACK: "request_sent_back",
}


@dataclass(frozen=True)
class TransitionPlan:
    next_status: str
    next_level: Optional[str] = None
    activate_next: bool = False

    @property
    def is_terminal(self) -> bool:
        return self.next_status in (RequestStatus.REJECTED, RequestStatus.DISBURSED)


@dataclass
class TransitionResult:
    request: FinanceRequest
    previous_status: str
    action: str
    emails: list[EmailIntent] = field(default_factory=list)
    notifications_sent: int = 0


# ---------- transition table ----------


def plan_transition(chain: ApprovalChain, current_status: str, action: str) -> TransitionPlan:
    level = chain.level_for_status(current_status)

    if action in (SUBMIT, RESUBMIT):
        expected = RequestStatus.DRAFT if action == SUBMIT else RequestStatus.SENT_BACK
        if current_status != expected:
            raise InvalidTransitionError(current_status, action.lower())
        return TransitionPlan(chain.first.pending_status, chain.first.level)

    if action in (ApprovalAction.APPROVED, ApprovalAction.REJECTED, ApprovalAction.SENT_BACK):
        if level is None:
            raise InvalidTransitionError(current_status, action.lower())
        if action == ApprovalAction.REJECTED:
            return TransitionPlan(RequestStatus.REJECTED)
        if action == ApprovalAction.SENT_BACK:
            return TransitionPlan(RequestStatus.SENT_BACK)

        nxt = chain.next_after(level)
        if nxt is None:
            final = RequestStatus.DISBURSED if level == DISBURSEMENT else RequestStatus.APPROVED
            return TransitionPlan(final)
        if nxt.is_disbursement:
            return TransitionPlan(RequestStatus.APPROVED)
        return TransitionPlan(nxt.pending_status, nxt.level, activate_next=True)

    if action == DISBURSE:
        if current_status != RequestStatus.APPROVED:
            raise InvalidTransitionError(current_status, "disburse")
        return TransitionPlan(RequestStatus.DISBURSED)

    if action in (AdminReviewAction.APPROVE, AdminReviewAction.REJECT):
        if current_status != RequestStatus.PENDING_ADMIN_REVIEW and level is None:
            raise InvalidTransitionError(current_status, f"admin {action.lower()}")
        final = (
            RequestStatus.DISBURSED
            if action == AdminReviewAction.APPROVE
            else RequestStatus.REJECTED
        )
        return TransitionPlan(final)

    if action == AdminReviewAction.ALLOW_RESUBMISSION:
        if current_status != RequestStatus.PENDING_ADMIN_REVIEW:
            raise InvalidTransitionError(current_status, "allow resubmission")
        return TransitionPlan(RequestStatus.SENT_BACK)

    raise InvalidTransitionError(current_status, str(action))


def _apply_plan(request: FinanceRequest, plan: TransitionPlan, now: datetime) -> None:
    request.status = plan.next_status
    request.current_approval_level = plan.next_level
    request.updated_at = now
    if plan.next_status == RequestStatus.APPROVED:
        request.approved_at = now
    if plan.is_terminal:
        request.completed_at = now


def _deny(actor: Actor, request: FinanceRequest, action: str, message: str) -> AuthorizationError:
    logger.warning(
        "workflow_action_denied",
        finance_request_id=str(request.id),
        reference_number=request.reference_number,
        actor_id=str(actor.id),
        role=actor.role,
        action=action,
        status=request.status,
    )
    return AuthorizationError(message)


# ---------- notification helpers ----------


async def _notify_level_approvers(
    session: AsyncSession,
    request: FinanceRequest,
    level: str,
    chain: ApprovalChain,
    now: datetime,
    title: str = "New Approval Request",
) -> tuple[int, Optional[EmailIntent]]:
    approvers = await find_approvers_for_level(session, level, chain)
    approvers = [a for a in approvers if a.id != request.requestor_id]
    if not approvers:
        logger.warning("no_approvers_for_level", level=level, reference_number=request.reference_number)
        return 0, None

    amount = format_amount(request.total_amount, request.currency or "INR")
    sent = await create_notifications(
        session,
        [
            NotificationIntent(
                user_id=a.id,
                title=title,
                message=f"Request {request.reference_number} for {amount} awaits your action at {level}",
                type=NotificationType.APPROVAL_REQUIRED,
                finance_request_id=request.id,
            )
            for a in approvers
        ],
        now,
    )
    chain_level = chain.get(level)
    email = EmailIntent(
        "approval_request",
        [a.email for a in approvers if a.email],
        {
            "reference_number": request.reference_number,
            "level": level,
            "amount_display": amount,
            "purpose": request.purpose,
            "sla_hours": chain_level.sla_hours_for(request.payment_type) if chain_level else "",
        },
    )
    return sent, email


async def _requestor_emails(session: AsyncSession, request: FinanceRequest) -> list[str]:
    return await resolve_user_emails(session, [request.requestor_id])


async def _load_request(session: AsyncSession, request_id) -> FinanceRequest:
    return await get_request(session, request_id, for_update=True)


# ---------- operations ----------


async def submit_request(
    session: AsyncSession,
    request_id,
    actor: Actor,
    now: Optional[datetime] = None,
    chain: Optional[ApprovalChain] = None,
) -> TransitionResult:
    """DRAFT -> PENDING_<first level>. Creates the first ledger generation."""
    now = now or datetime.utcnow()
    chain = chain or get_approval_chain()
    request = await _load_request(session, request_id)

    if request.requestor_id != actor.id:
        raise _deny(actor, request, SUBMIT, "Only the requestor can submit this request")

    previous = request.status
    plan = plan_transition(chain, request.status, SUBMIT)
    await create_ledger(session, request, chain, now)
    _apply_plan(request, plan, now)
    request.submitted_at = now
    await session.flush()

    result = TransitionResult(request=request, previous_status=previous, action=SUBMIT)
    sent, email = await _notify_level_approvers(session, request, plan.next_level, chain, now)
    result.notifications_sent += sent
    if email:
        result.emails.append(email)
    result.emails.append(
        EmailIntent(
            "request_submitted",
            await _requestor_emails(session, request),
            {
                "reference_number": request.reference_number,
                "amount_display": format_amount(request.total_amount, request.currency or "INR"),
                "level": plan.next_level,
            },
        )
    )

    logger.info(
        "finance_request_submitted",
        reference_number=request.reference_number,
        status=request.status,
        level=request.current_approval_level,
    )
    return result


async def resubmit_request(
    session: AsyncSession,
    request_id,
    actor: Actor,
    now: Optional[datetime] = None,
    chain: Optional[ApprovalChain] = None,
    max_resubmissions: Optional[int] = None,
) -> TransitionResult:
    """
    SENT_BACK -> PENDING_<first level> with a fresh ledger generation, or
    PENDING_ADMIN_REVIEW once the resubmission limit is exceeded.
    """
    now = now or datetime.utcnow()
    chain = chain or get_approval_chain()
    limit = settings.MAX_RESUBMISSIONS if max_resubmissions is None else max_resubmissions
    request = await _load_request(session, request_id)

    if request.requestor_id != actor.id:
        raise _deny(actor, request, RESUBMIT, "Only the requestor can resubmit this request")

    previous = request.status
    plan = plan_transition(chain, request.status, RESUBMIT)
    exceeded = increment_and_check_limit(request.resubmission_count, limit)
    request.resubmission_count = (request.resubmission_count or 0) + 1
    result = TransitionResult(request=request, previous_status=previous, action=RESUBMIT)

    if exceeded:
        _apply_plan(request, TransitionPlan(RequestStatus.PENDING_ADMIN_REVIEW), now)
        await session.flush()

        admins = await find_users_by_role(session, ADMIN)
        result.notifications_sent += await create_notifications(
            session,
            [
                NotificationIntent(
                    user_id=a.id,
                    title="Admin Review Required",
                    message=(
                        f"Request {request.reference_number} exceeded the resubmission "
                        f"limit ({limit}) and needs an admin decision"
                    ),
                    type=NotificationType.ADMIN_REVIEW,
                    finance_request_id=request.id,
                )
                for a in admins
            ],
            now,
        )
        result.emails.append(
            EmailIntent(
                "admin_review_required",
                [a.email for a in admins if a.email],
                {
                    "reference_number": request.reference_number,
                    "resubmission_count": request.resubmission_count,
                },
            )
        )
        logger.warning(
            "resubmission_limit_exceeded",
            reference_number=request.reference_number,
            resubmission_count=request.resubmission_count,
            limit=limit,
        )
        return result

    await reset_ledger(session, request, chain, now)
    _apply_plan(request, plan, now)
    request.submitted_at = now
    await session.flush()

    sent, email = await _notify_level_approvers(session, request, plan.next_level, chain, now)
    result.notifications_sent += sent
    if email:
        result.emails.append(email)
    result.emails.append(
        EmailIntent(
            "request_resubmitted",
            await _requestor_emails(session, request),
            {
                "reference_number": request.reference_number,
                "resubmission_count": request.resubmission_count,
                "level": plan.next_level,
            },
        )
    )

    logger.info(
        "finance_request_resubmitted",
        reference_number=request.reference_number,
        resubmission_count=request.resubmission_count,
        generation=request.ledger_generation,
    )
    return result


async def process_approval_action(
    session: AsyncSession,
    request_id,
    actor: Actor,
    action: str,
    comments: Optional[str] = None,
    now: Optional[datetime] = None,
    chain: Optional[ApprovalChain] = None,
    *,
    expected_level: str,
) -> TransitionResult:
    """
    APPROVED / REJECTED / SENT_BACK at the active level.

    ``expected_level`` is the level the caller acted on. When the locked
    active step is at a different level, a serialized duplicate submission
    has already advanced the request and ConcurrencyConflictError is raised
    instead of acting on the next level.
    """
    now = now or datetime.utcnow()
    chain = chain or get_approval_chain()

    if not expected_level:
        raise ValidationError.for_field("level", "The level being acted on is required")
    if action not in (ApprovalAction.APPROVED, ApprovalAction.REJECTED, ApprovalAction.SENT_BACK):
        raise ValidationError.for_field("action", f"Unknown approval action: {action}")
    if action != ApprovalAction.APPROVED and not (comments and comments.strip()):
        raise ValidationError.for_field(
            "comments", "Comments are required when rejecting or sending back"
        )

    request = await _load_request(session, request_id)
    level = chain.level_for_status(request.status)
    if level is None:
        raise InvalidTransitionError(request.status, action.lower())

    step = await get_active_step(session, request.id, lock=True)
    if step is None:
        raise NoActiveStepError(str(request.id), request.status)
    if step.level != level:
        raise ConcurrencyConflictError("FinanceRequest", str(request.id))
    if expected_level != step.level:
        logger.warning(
            "stale_approval_action",
            reference_number=request.reference_number,
            expected_level=expected_level,
            active_level=step.level,
            actor_id=str(actor.id),
        )
        raise ConcurrencyConflictError("ApprovalStep", str(step.id))

    if not can_act_at_level(actor.role, step.level):
        raise _deny(
            actor, request, action, f"{get_role_label(actor.role)} cannot act at level {step.level}"
        )
    if request.requestor_id == actor.id and actor.role != ADMIN:
        raise _deny(actor, request, action, "You cannot act on your own request")

    previous = request.status
    plan = plan_transition(chain, request.status, action)
    completion = await complete_active_step(
        session,
        request,
        actor.id,
        action,
        comments,
        now,
        step=step,
        activate_next=plan.activate_next,
    )
    _apply_plan(request, plan, now)
    await session.flush()

    result = TransitionResult(request=request, previous_status=previous, action=action)

    if action == ApprovalAction.APPROVED:
        message = f"Your request {request.reference_number} was approved at {step.level}"
    elif action == ApprovalAction.REJECTED:
        message = f"Your request {request.reference_number} was rejected: {comments}"
    else:
        message = f"Your request {request.reference_number} was sent back: {comments}"
    result.notifications_sent += await create_notifications(
        session,
        [
            NotificationIntent(
                user_id=request.requestor_id,
                title=DECISION_TITLES[action],
                message=message,
                type=action,
                finance_request_id=request.id,
            )
        ],
        now,
    )
    result.emails.append(
        EmailIntent(
            DECISION_TEMPLATES[action],
            await _requestor_emails(session, request),
            {
                "reference_number": request.reference_number,
                "level": step.level,
                "status": request.status,
                "reason": comments or "",
            },
        )
    )

    if completion.next_step is not None:
        sent, email = await _notify_level_approvers(
            session, request, completion.next_step.level, chain, now
        )
        result.notifications_sent += sent
        if email:
            result.emails.append(email)
    elif request.status == RequestStatus.APPROVED and chain.disbursement_level is not None:
        sent, email = await _notify_level_approvers(
            session, request, DISBURSEMENT, chain, now, title="Payment Pending"
        )
        result.notifications_sent += sent
        if email:
            result.emails.append(email)

    logger.info(
        "approval_action_processed",
        reference_number=request.reference_number,
        action=action,
        level=step.level,
        actor_id=str(actor.id),
        previous_status=previous,
        status=request.status,
    )
    return result


async def _disbursement_step(
    session: AsyncSession, request: FinanceRequest
) -> Optional[ApprovalStep]:
    result = await session.execute(
        select(ApprovalStep).where(
            ApprovalStep.finance_request_id == request.id,
            ApprovalStep.generation == request.ledger_generation,
            ApprovalStep.level == DISBURSEMENT,
        )
    )
    return result.scalar_one_or_none()


async def disburse_request(
    session: AsyncSession,
    request_id,
    actor: Actor,
    payment_reference_number: str,
    actual_payment_date: Optional[date] = None,
    disbursement_remarks: Optional[str] = None,
    now: Optional[datetime] = None,
    chain: Optional[ApprovalChain] = None,
) -> TransitionResult:
    """APPROVED -> DISBURSED. Completes the DISBURSEMENT step when the chain has one."""
    now = now or datetime.utcnow()
    chain = chain or get_approval_chain()
    request = await _load_request(session, request_id)

    if not can_act_at_level(actor.role, DISBURSEMENT):
        raise _deny(actor, request, DISBURSE, "Only the finance team can process disbursements")
    if request.requestor_id == actor.id and actor.role != ADMIN:
        raise _deny(actor, request, DISBURSE, "You cannot disburse your own request")

    previous = request.status
    plan = plan_transition(chain, request.status, DISBURSE)

    step = await _disbursement_step(session, request)
    if step is not None and step.status == StepStatus.PENDING:
        await activate_step(session, request, step, now)
        await complete_active_step(
            session,
            request,
            actor.id,
            ApprovalAction.APPROVED,
            disbursement_remarks or f"Payment reference {payment_reference_number}",
            now,
            step=step,
        )

    request.payment_reference_number = payment_reference_number
    request.actual_payment_date = actual_payment_date or now.date()
    request.disbursement_remarks = disbursement_remarks
    _apply_plan(request, plan, now)
    await session.flush()

    result = TransitionResult(request=request, previous_status=previous, action=DISBURSE)
    amount = format_amount(request.total_amount, request.currency or "INR")
    result.notifications_sent += await create_notifications(
        session,
        [
            NotificationIntent(
                user_id=request.requestor_id,
                title="Payment Completed",
                message=(
                    f"Payment of {amount} for {request.reference_number} has been "
                    f"disbursed (ref {payment_reference_number})"
                ),
                type=NotificationType.DISBURSEMENT,
                finance_request_id=request.id,
            )
        ],
        now,
    )
    result.emails.append(
        EmailIntent(
            "request_disbursed",
            await _requestor_emails(session, request),
            {
                "reference_number": request.reference_number,
                "amount_display": amount,
                "payment_reference_number": payment_reference_number,
            },
        )
    )

    logger.info(
        "finance_request_disbursed",
        reference_number=request.reference_number,
        payment_reference_number=payment_reference_number,
        actor_id=str(actor.id),
    )
    return result


async def admin_review(
    session: AsyncSession,
    request_id,
    actor: Actor,
    action: str,
    comments: Optional[str] = None,
    now: Optional[datetime] = None,
    chain: Optional[ApprovalChain] = None,
) -> TransitionResult:
    """Admin decision: APPROVE -> DISBURSED, REJECT -> REJECTED, ALLOW_RESUBMISSION -> SENT_BACK."""
    now = now or datetime.utcnow()
    chain = chain or get_approval_chain()
    request = await _load_request(session, request_id)

    if not has_permission(actor.role, "approval:override"):
        raise _deny(actor, request, action, "Only administrators can review this request")

    previous = request.status
    plan = plan_transition(chain, request.status, action)
    await apply_admin_override(session, request, actor.id, action, comments, now)
    _apply_plan(request, plan, now)
    if action == AdminReviewAction.ALLOW_RESUBMISSION:
        reset_resubmission_count(request)
    await session.flush()

    result = TransitionResult(request=request, previous_status=previous, action=action)
    result.notifications_sent += await create_notifications(
        session,
        [
            NotificationIntent(
                user_id=request.requestor_id,
                title="Admin Decision",
                message=f"An administrator decided {action} on request {request.reference_number}",
                type=NotificationType.ADMIN_REVIEW,
                finance_request_id=request.id,
            )
        ],
        now,
    )
    result.emails.append(
        EmailIntent(
            "admin_decision",
            await _requestor_emails(session, request),
            {
                "reference_number": request.reference_number,
                "decision": action,
                "comments": comments or "",
            },
        )
    )

    logger.info(
        "admin_review_processed",
        reference_number=request.reference_number,
        action=action,
        actor_id=str(actor.id),
        previous_status=previous,
        status=request.status,
    )
    return result
