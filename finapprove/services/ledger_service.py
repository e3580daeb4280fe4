"""
Approval step ledger.

One ordered batch of ApprovalSteps per request per *generation*. Submitting
creates generation 1; every resubmission archives the current generation and
creates the next one, so action records are never deleted.

At most one step per request is active. Completion is a compare-and-swap on
(is_active, status); the losing side of a race gets ConcurrencyConflictError.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional
import uuid

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from finapprove.exceptions import ConcurrencyConflictError, NoActiveStepError
from finapprove.models.approval import ApprovalActionRecord, ApprovalStep
from finapprove.models.enums import ApprovalAction, StepStatus
from finapprove.models.finance_request import FinanceRequest
from finapprove.models.sla_log import SLALog
from finapprove.services.level_chain import ApprovalChain

logger = structlog.get_logger()


@dataclass
class StepCompletion:
    completed_step: ApprovalStep
    action_record: ApprovalActionRecord
    sla_compliant: bool
    next_step: Optional[ApprovalStep] = None

    @property
    def next_active_level(self) -> Optional[str]:
        return self.next_step.level if self.next_step else None


@dataclass
class LedgerGeneration:
    generation: int
    is_current: bool
    steps: list[ApprovalStep]
    actions: dict[uuid.UUID, list[ApprovalActionRecord]] = field(default_factory=dict)
    sla_logs: list[SLALog] = field(default_factory=list)


def _response_time_hours(step: ApprovalStep, now: datetime) -> Optional[Decimal]:
    if step.started_at is None:
        return None
    hours = (now - step.started_at).total_seconds() / 3600
    return Decimal(str(round(hours, 2)))


# ---------- queries ----------


async def get_current_steps(
    session: AsyncSession, request: FinanceRequest
) -> list[ApprovalStep]:
    result = await session.execute(
        select(ApprovalStep)
        .where(
            ApprovalStep.finance_request_id == request.id,
            ApprovalStep.generation == request.ledger_generation,
        )
        .order_by(ApprovalStep.sequence)
    )
    return list(result.scalars().all())


async def get_active_step(
    session: AsyncSession, finance_request_id: uuid.UUID, lock: bool = False
) -> Optional[ApprovalStep]:
    stmt = select(ApprovalStep).where(
        ApprovalStep.finance_request_id == finance_request_id,
        ApprovalStep.is_active == True,  # noqa: E712
    )
    if lock:
        stmt = stmt.with_for_update()
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def get_actions_for_steps(
    session: AsyncSession, step_ids: list[uuid.UUID]
) -> dict[uuid.UUID, list[ApprovalActionRecord]]:
    actions: dict[uuid.UUID, list[ApprovalActionRecord]] = {sid: [] for sid in step_ids}
    if not step_ids:
        return actions
    result = await session.execute(
        select(ApprovalActionRecord)
        .where(ApprovalActionRecord.approval_step_id.in_(step_ids))
        .order_by(ApprovalActionRecord.created_at)
    )
    for record in result.scalars().all():
        actions[record.approval_step_id].append(record)
    return actions


async def get_sla_logs(
    session: AsyncSession, finance_request_id: uuid.UUID, generation: Optional[int] = None
) -> list[SLALog]:
    stmt = select(SLALog).where(SLALog.finance_request_id == finance_request_id)
    if generation is not None:
        stmt = stmt.where(SLALog.generation == generation)
    result = await session.execute(stmt.order_by(SLALog.created_at))
    return list(result.scalars().all())


async def mark_sla_log_breached(
    session: AsyncSession, step_id: uuid.UUID, breached_at: datetime
) -> int:
    """Flip the open SLA log of a step. Returns how many rows changed (0 when already flipped)."""
    result = await session.execute(
        select(SLALog).where(
            SLALog.approval_step_id == step_id,
            SLALog.is_breached == False,  # noqa: E712
        )
    )
    logs = list(result.scalars().all())
    for log in logs:
        log.is_breached = True
        log.breached_at = breached_at
    if logs:
        await session.flush()
    return len(logs)


# ---------- mutations ----------


async def activate_step(
    session: AsyncSession, request: FinanceRequest, step: ApprovalStep, now: datetime
) -> ApprovalStep:
    """Start the SLA clock on a step and open its SLA log."""
    step.is_active = True
    step.started_at = now
    step.sla_due_at = now + timedelta(hours=step.sla_hours)
    step.sla_breached = False
    session.add(
        SLALog(
            finance_request_id=request.id,
            approval_step_id=step.id,
            generation=step.generation,
            level=step.level,
            sla_hours=step.sla_hours,
            sla_due_at=step.sla_due_at,
            is_breached=False,
            is_archived=False,
        )
    )
    await session.flush()
    return step


async def create_ledger(
    session: AsyncSession,
    request: FinanceRequest,
    chain: ApprovalChain,
    now: datetime,
) -> list[ApprovalStep]:
    """
    Create one step per chain level for the next generation and activate
    the first one. Bumps ``request.ledger_generation``.
    """
    generation = (request.ledger_generation or 0) + 1
    sla_hours = chain.sla_hours_by_level(request.payment_type)

    steps = []
    for chain_level in chain.levels:
        step = ApprovalStep(
            id=uuid.uuid4(),
            finance_request_id=request.id,
            generation=generation,
            level=chain_level.level,
            sequence=chain_level.sequence,
            assigned_to_role=chain_level.assigned_role,
            status=StepStatus.PENDING,
            is_active=False,
            is_archived=False,
            sla_hours=sla_hours[chain_level.level],
            sla_breached=False,
        )
        session.add(step)
        steps.append(step)

    request.ledger_generation = generation
    await session.flush()
    await activate_step(session, request, steps[0], now)

    logger.info(
        "approval_ledger_created",
        finance_request_id=str(request.id),
        generation=generation,
        steps=len(steps),
        first_level=steps[0].level,
    )
    return steps


async def complete_active_step(
    session: AsyncSession,
    request: FinanceRequest,
    actor_id: uuid.UUID,
    outcome: str,
    comments: Optional[str],
    now: datetime,
    step: Optional[ApprovalStep] = None,
    activate_next: bool = False,
) -> StepCompletion:
    """
    Complete the active step, append its action record and, when asked,
    activate the next step by sequence.

    Raises NoActiveStepError when nothing is active and
    ConcurrencyConflictError when another transaction completed the step first.
    """
    if step is None:
        step = await get_active_step(session, request.id, lock=True)
    if step is None:
        raise NoActiveStepError(str(request.id), request.status)

    sla_compliant = step.sla_due_at is None or now <= step.sla_due_at

    result = await session.execute(
        update(ApprovalStep)
        .where(
            ApprovalStep.id == step.id,
            ApprovalStep.is_active == True,  # noqa: E712
            ApprovalStep.status == StepStatus.PENDING,
        )
        .values(
            is_active=False,
            status=StepStatus.COMPLETED,
            completed_at=now,
            sla_breached=not sla_compliant,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        logger.warning(
            "approval_step_completion_conflict",
            finance_request_id=str(request.id),
            step_id=str(step.id),
        )
        raise ConcurrencyConflictError("ApprovalStep", str(step.id))
    await session.refresh(step)

    record = ApprovalActionRecord(
        approval_step_id=step.id,
        finance_request_id=request.id,
        actor_id=actor_id,
        action=outcome,
        comments=comments,
        sla_compliant=sla_compliant,
        response_time_hours=_response_time_hours(step, now),
        is_override=False,
    )
    session.add(record)

    if not sla_compliant:
        await mark_sla_log_breached(session, step.id, step.sla_due_at)

    next_step = None
    if outcome == ApprovalAction.APPROVED and activate_next:
        next_result = await session.execute(
            select(ApprovalStep).where(
                ApprovalStep.finance_request_id == request.id,
                ApprovalStep.generation == step.generation,
                ApprovalStep.sequence == step.sequence + 1,
            )
        )
        next_step = next_result.scalar_one_or_none()
        if next_step is not None:
            await activate_step(session, request, next_step, now)

    await session.flush()

    logger.info(
        "approval_step_completed",
        finance_request_id=str(request.id),
        level=step.level,
        action=outcome,
        actor_id=str(actor_id),
        sla_compliant=sla_compliant,
        next_level=next_step.level if next_step else None,
    )
    return StepCompletion(
        completed_step=step,
        action_record=record,
        sla_compliant=sla_compliant,
        next_step=next_step,
    )


async def archive_ledger(session: AsyncSession, request: FinanceRequest) -> int:
    """Archive every step and SLA log of the request. Action records stay untouched."""
    steps_result = await session.execute(
        select(ApprovalStep).where(
            ApprovalStep.finance_request_id == request.id,
            ApprovalStep.is_archived == False,  # noqa: E712
        )
    )
    steps = list(steps_result.scalars().all())
    for step in steps:
        step.is_active = False
        step.is_archived = True

    logs_result = await session.execute(
        select(SLALog).where(
            SLALog.finance_request_id == request.id,
            SLALog.is_archived == False,  # noqa: E712
        )
    )
    for log in logs_result.scalars().all():
        log.is_archived = True

    await session.flush()
    return len(steps)


async def reset_ledger(
    session: AsyncSession,
    request: FinanceRequest,
    chain: ApprovalChain,
    now: datetime,
) -> list[ApprovalStep]:
    """Archive the current generation and start a fresh one from the first level."""
    archived = await archive_ledger(session, request)
    steps = await create_ledger(session, request, chain, now)
    logger.info(
        "approval_ledger_reset",
        finance_request_id=str(request.id),
        archived_steps=archived,
        generation=request.ledger_generation,
    )
    return steps


async def ledger_history(
    session: AsyncSession, request: FinanceRequest
) -> list[LedgerGeneration]:
    """Every generation of the ledger, oldest first, with action records and SLA logs."""
    result = await session.execute(
        select(ApprovalStep)
        .where(ApprovalStep.finance_request_id == request.id)
        .order_by(ApprovalStep.generation, ApprovalStep.sequence)
    )
    steps = list(result.scalars().all())
    actions = await get_actions_for_steps(session, [s.id for s in steps])
    logs = await get_sla_logs(session, request.id)

    by_generation: dict[int, LedgerGeneration] = {}
    for step in steps:
        gen = by_generation.get(step.generation)
        if gen is None:
            gen = LedgerGeneration(
                generation=step.generation,
                is_current=step.generation == request.ledger_generation,
                steps=[],
            )
            by_generation[step.generation] = gen
        gen.steps.append(step)
        gen.actions[step.id] = actions.get(step.id, [])
    for log in logs:
        if log.generation in by_generation:
            by_generation[log.generation].sla_logs.append(log)

    return [by_generation[g] for g in sorted(by_generation)]
