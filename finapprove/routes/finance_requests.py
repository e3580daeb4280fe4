"""
Finance request CRUD routes: list, detail (current ledger + live SLA status),
history across ledger generations, create, edit and soft delete.
"""

from datetime import datetime

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from finapprove.database import get_db
from finapprove.exceptions import AuthorizationError
from finapprove.middleware.auth import get_current_actor
from finapprove.middleware.authorization import require_permission
from finapprove.models.approval import ApprovalActionRecord, ApprovalStep
from finapprove.models.enums import StepStatus
from finapprove.models.finance_request import FinanceRequest
from finapprove.models.sla_log import SLALog
from finapprove.schemas.common import PaginatedResponse, build_pagination, iso, money
from finapprove.schemas.finance_request import (
    ApprovalActionRecordResponse,
    ApprovalStepResponse,
    FinanceRequestCreate,
    FinanceRequestDetailResponse,
    FinanceRequestHistoryResponse,
    FinanceRequestResponse,
    FinanceRequestUpdate,
    LedgerGenerationResponse,
    SLALogResponse,
)
from finapprove.services.auth_service import Actor
from finapprove.services.finance_request_service import (
    can_edit,
    can_view,
    create_request,
    get_request,
    list_requests,
    soft_delete_request,
    update_request,
)
from finapprove.services.ledger_service import (
    get_actions_for_steps,
    get_current_steps,
    get_sla_logs,
    ledger_history,
)
from finapprove.services.notification_service import dispatch_emails
from finapprove.services.sla_service import sla_status
from finapprove.services.workflow_service import submit_request

logger = structlog.get_logger()
router = APIRouter()


# ---------- serializers ----------


def _to_response(fr: FinanceRequest) -> FinanceRequestResponse:
    return FinanceRequestResponse(
        id=str(fr.id),
        reference_number=fr.reference_number,
        requestor_id=str(fr.requestor_id),
        department=fr.department,
        entity=fr.entity,
        cost_center=fr.cost_center,
        payment_type=fr.payment_type,
        payment_mode=fr.payment_mode,
        purpose=fr.purpose,
        vendor_name=fr.vendor_name,
        vendor_code=fr.vendor_code,
        vendor_bank_name=fr.vendor_bank_name,
        vendor_bank_account=fr.vendor_bank_account,
        vendor_bank_ifsc=fr.vendor_bank_ifsc,
        vendor_upi_id=fr.vendor_upi_id,
        invoice_number=fr.invoice_number,
        invoice_date=iso(fr.invoice_date),
        base_amount=money(fr.base_amount),
        gst_applicable=bool(fr.gst_applicable),
        gst_percentage=money(fr.gst_percentage),
        gst_amount=money(fr.gst_amount),
        tds_applicable=bool(fr.tds_applicable),
        tds_percentage=money(fr.tds_percentage),
        tds_amount=money(fr.tds_amount),
        total_amount=money(fr.total_amount),
        currency=fr.currency,
        status=fr.status,
        current_approval_level=fr.current_approval_level,
        resubmission_count=fr.resubmission_count or 0,
        ledger_generation=fr.ledger_generation or 0,
        payment_reference_number=fr.payment_reference_number,
        actual_payment_date=iso(fr.actual_payment_date),
        disbursement_remarks=fr.disbursement_remarks,
        created_at=iso(fr.created_at) or "",
        updated_at=iso(fr.updated_at),
        submitted_at=iso(fr.submitted_at),
        approved_at=iso(fr.approved_at),
        completed_at=iso(fr.completed_at),
    )


def _action_to_response(a: ApprovalActionRecord) -> ApprovalActionRecordResponse:
    return ApprovalActionRecordResponse(
        id=str(a.id),
        actor_id=str(a.actor_id),
        action=a.action,
        comments=a.comments,
        sla_compliant=a.sla_compliant,
        response_time_hours=money(a.response_time_hours),
        is_override=bool(a.is_override),
        created_at=iso(a.created_at) or "",
    )


def _step_to_response(
    step: ApprovalStep, actions: list[ApprovalActionRecord], now: datetime
) -> ApprovalStepResponse:
    live_status = None
    if not step.is_archived and (step.is_active or step.status != StepStatus.PENDING):
        live_status = sla_status(
            step.sla_due_at, now, completed=step.status != StepStatus.PENDING
        )
    return ApprovalStepResponse(
        id=str(step.id),
        generation=step.generation,
        level=step.level,
        sequence=step.sequence,
        assigned_to_role=step.assigned_to_role,
        status=step.status,
        is_active=bool(step.is_active),
        is_archived=bool(step.is_archived),
        sla_hours=step.sla_hours,
        sla_due_at=iso(step.sla_due_at),
        sla_breached=bool(step.sla_breached),
        sla_status=live_status,
        started_at=iso(step.started_at),
        completed_at=iso(step.completed_at),
        actions=[_action_to_response(a) for a in actions],
    )


def _sla_log_to_response(log: SLALog) -> SLALogResponse:
    return SLALogResponse(
        id=str(log.id),
        generation=log.generation,
        level=log.level,
        sla_hours=log.sla_hours,
        sla_due_at=iso(log.sla_due_at) or "",
        is_breached=bool(log.is_breached),
        breached_at=iso(log.breached_at),
        is_archived=bool(log.is_archived),
    )


async def _detail(db: AsyncSession, fr: FinanceRequest, actor: Actor) -> FinanceRequestDetailResponse:
    now = datetime.utcnow()
    steps = await get_current_steps(db, fr)
    actions = await get_actions_for_steps(db, [s.id for s in steps])
    logs = await get_sla_logs(db, fr.id, fr.ledger_generation) if fr.ledger_generation else []
    return FinanceRequestDetailResponse(
        **_to_response(fr).model_dump(),
        approval_steps=[_step_to_response(s, actions.get(s.id, []), now) for s in steps],
        sla_logs=[_sla_log_to_response(log) for log in logs],
        can_edit=can_edit(actor, fr),
    )


async def _get_visible(db: AsyncSession, request_id: str, actor: Actor) -> FinanceRequest:
    fr = await get_request(db, request_id)
    if not can_view(actor, fr):
        logger.warning(
            "finance_request_view_denied",
            finance_request_id=str(fr.id),
            actor_id=str(actor.id),
            role=actor.role,
        )
        raise AuthorizationError("You do not have access to this request")
    return fr


# ---------- LIST / GET ----------


@router.get("", response_model=PaginatedResponse[FinanceRequestResponse])
async def list_finance_requests(
    page: int = Query(1, ge=1, le=1000),
    limit: int = Query(20, ge=1, le=100),
    request_status: str = Query(None, alias="status"),
    department: str = Query(None),
    search: str = Query(None, max_length=100),
    list_type: str = Query(None, alias="type", pattern="^pending-approvals$"),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    items, total = await list_requests(
        db,
        actor,
        page=page,
        limit=limit,
        status=request_status,
        department=department,
        search=search,
        pending_approvals=list_type == "pending-approvals",
    )
    logger.info("finance_request_list", page=page, total=total, type=list_type)
    return PaginatedResponse(
        data=[_to_response(fr) for fr in items],
        pagination=build_pagination(page, limit, total),
    )


@router.get("/{request_id}", response_model=FinanceRequestDetailResponse)
async def get_finance_request(
    request_id: str,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    fr = await _get_visible(db, request_id, actor)
    return await _detail(db, fr, actor)


@router.get("/{request_id}/history", response_model=FinanceRequestHistoryResponse)
async def get_finance_request_history(
    request_id: str,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Every ledger generation, archived ones included, with their action records."""
    fr = await _get_visible(db, request_id, actor)
    now = datetime.utcnow()
    generations = await ledger_history(db, fr)
    return FinanceRequestHistoryResponse(
        id=str(fr.id),
        reference_number=fr.reference_number,
        current_generation=fr.ledger_generation or 0,
        generations=[
            LedgerGenerationResponse(
                generation=g.generation,
                is_current=g.is_current,
                steps=[_step_to_response(s, g.actions.get(s.id, []), now) for s in g.steps],
                sla_logs=[_sla_log_to_response(log) for log in g.sla_logs],
            )
            for g in generations
        ],
    )


# ---------- CREATE / UPDATE / DELETE ----------


@router.post("", response_model=FinanceRequestDetailResponse, status_code=status.HTTP_201_CREATED)
async def create_finance_request(
    body: FinanceRequestCreate,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_current_actor),
    _auth: None = Depends(require_permission("request:create")),
    db: AsyncSession = Depends(get_db),
):
    data = body.model_dump(exclude={"save_as_draft"})
    fr = await create_request(db, actor, data)

    if not body.save_as_draft:
        result = await submit_request(db, fr.id, actor)
        fr = result.request
        background_tasks.add_task(dispatch_emails, result.emails)

    return await _detail(db, fr, actor)


@router.patch("/{request_id}", response_model=FinanceRequestDetailResponse)
async def update_finance_request(
    request_id: str,
    body: FinanceRequestUpdate,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    fr = await get_request(db, request_id, for_update=True)
    fr = await update_request(db, fr, actor, body.model_dump(exclude_unset=True))
    return await _detail(db, fr, actor)


@router.delete("/{request_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_finance_request(
    request_id: str,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    fr = await get_request(db, request_id, for_update=True)
    await soft_delete_request(db, fr, actor)
    return None
