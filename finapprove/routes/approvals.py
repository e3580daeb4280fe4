"""
Workflow routes: submit, resubmit, approve/reject/send back, disburse and
admin review. Every call passes the acting user explicitly to the workflow
service; emails go out after commit via BackgroundTasks.
"""

from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from finapprove.database import get_db
from finapprove.middleware.auth import get_current_actor
from finapprove.middleware.authorization import require_roles
from finapprove.schemas.approval import (
    AdminReviewRequest,
    ApprovalActionRequest,
    DisbursementRequest,
    TransitionResponse,
)
from finapprove.schemas.finance_request import FinanceRequestUpdate
from finapprove.services.auth_service import Actor
from finapprove.services.finance_request_service import get_request, update_request
from finapprove.services.notification_service import dispatch_emails
from finapprove.services.permission_service import ADMIN
from finapprove.services.workflow_service import (
    TransitionResult,
    admin_review,
    disburse_request,
    process_approval_action,
    resubmit_request,
    submit_request,
)

logger = structlog.get_logger()
router = APIRouter()


def _to_response(result: TransitionResult) -> TransitionResponse:
    fr = result.request
    return TransitionResponse(
        id=str(fr.id),
        reference_number=fr.reference_number,
        previous_status=result.previous_status,
        status=fr.status,
        current_approval_level=fr.current_approval_level,
        resubmission_count=fr.resubmission_count or 0,
        notifications_sent=result.notifications_sent,
    )


def _finish(result: TransitionResult, background_tasks: BackgroundTasks) -> TransitionResponse:
    if result.emails:
        background_tasks.add_task(dispatch_emails, result.emails)
    return _to_response(result)


@router.post("/{request_id}/submit", response_model=TransitionResponse)
async def submit_finance_request(
    request_id: str,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    result = await submit_request(db, request_id, actor)
    return _finish(result, background_tasks)


@router.post("/{request_id}/resubmit", response_model=TransitionResponse)
async def resubmit_finance_request(
    request_id: str,
    background_tasks: BackgroundTasks,
    body: Optional[FinanceRequestUpdate] = None,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Apply the requestor's edits (if any) and resubmit, in one transaction."""
    if body is not None:
        changes = body.model_dump(exclude_unset=True)
        if changes:
            fr = await get_request(db, request_id, for_update=True)
            await update_request(db, fr, actor, changes)
    result = await resubmit_request(db, request_id, actor)
    return _finish(result, background_tasks)


@router.post("/{request_id}/approve", response_model=TransitionResponse)
async def act_on_finance_request(
    request_id: str,
    body: ApprovalActionRequest,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    result = await process_approval_action(
        db, request_id, actor, body.action, body.comments, expected_level=body.level
    )
    return _finish(result, background_tasks)


@router.post("/{request_id}/disburse", response_model=TransitionResponse)
async def disburse_finance_request(
    request_id: str,
    body: DisbursementRequest,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    result = await disburse_request(
        db,
        request_id,
        actor,
        body.payment_reference_number,
        body.actual_payment_date,
        body.disbursement_remarks,
    )
    return _finish(result, background_tasks)


@router.post("/{request_id}/admin-review", response_model=TransitionResponse)
async def admin_review_finance_request(
    request_id: str,
    body: AdminReviewRequest,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_current_actor),
    _auth: None = Depends(require_roles(ADMIN)),
    db: AsyncSession = Depends(get_db),
):
    result = await admin_review(db, request_id, actor, body.action, body.comments)
    return _finish(result, background_tasks)
