from datetime import datetime

from fastapi import APIRouter, Depends
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from finapprove.database import get_db
from finapprove.middleware.auth import get_current_actor
from finapprove.models.approval import ApprovalStep
from finapprove.models.enums import RequestStatus
from finapprove.models.finance_request import FinanceRequest
from finapprove.schemas.common import iso, money
from finapprove.schemas.dashboard import DashboardResponse, SLAAlert
from finapprove.services.auth_service import Actor
from finapprove.services.finance_request_service import pending_statuses_for, visibility_filters
from finapprove.services.level_chain import PENDING_PREFIX
from finapprove.services.sla_service import SLAStatus, hours_between, sla_status

router = APIRouter()

_STATUS_BUCKETS = {
    RequestStatus.DRAFT: "draft",
    RequestStatus.APPROVED: "approved",
    RequestStatus.REJECTED: "rejected",
    RequestStatus.SENT_BACK: "sent_back",
    RequestStatus.DISBURSED: "disbursed",
    RequestStatus.PENDING_ADMIN_REVIEW: "admin_review",
}


@router.get("", response_model=DashboardResponse)
async def get_dashboard(
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    now = datetime.utcnow()
    filters = visibility_filters(actor)

    # -----------------------------------------------------------------------
    # 1. Counts by status bucket + total amount
    # -----------------------------------------------------------------------
    rows = await db.execute(
        select(
            FinanceRequest.status,
            func.count(FinanceRequest.id),
            func.coalesce(func.sum(FinanceRequest.total_amount), 0),
        )
        .where(*filters)
        .group_by(FinanceRequest.status)
    )
    counts = {bucket: 0 for bucket in _STATUS_BUCKETS.values()}
    counts["pending"] = 0
    total_requests = 0
    total_amount = 0
    for req_status, count, amount in rows.all():
        total_requests += count
        total_amount += amount or 0
        bucket = _STATUS_BUCKETS.get(req_status)
        if bucket:
            counts[bucket] += count
        elif req_status.startswith(PENDING_PREFIX):
            counts["pending"] += count

    # -----------------------------------------------------------------------
    # 2. Breaches among visible requests
    # -----------------------------------------------------------------------
    breached = await db.execute(
        select(func.count(ApprovalStep.id))
        .join(FinanceRequest, FinanceRequest.id == ApprovalStep.finance_request_id)
        .where(
            *filters,
            ApprovalStep.is_active == True,  # noqa: E712
            ApprovalStep.sla_breached == True,  # noqa: E712
        )
    )

    # -----------------------------------------------------------------------
    # 3. My pending approvals + SLA alerts (fixed at-risk window)
    # -----------------------------------------------------------------------
    my_statuses = pending_statuses_for(actor)
    my_pending = 0
    alerts: list[SLAAlert] = []
    if my_statuses:
        active = await db.execute(
            select(ApprovalStep, FinanceRequest.reference_number)
            .join(FinanceRequest, FinanceRequest.id == ApprovalStep.finance_request_id)
            .where(
                FinanceRequest.is_deleted == False,  # noqa: E712
                FinanceRequest.status.in_(my_statuses),
                FinanceRequest.requestor_id != actor.id,
                ApprovalStep.is_active == True,  # noqa: E712
            )
            .order_by(ApprovalStep.sla_due_at)
        )
        for step, reference_number in active.all():
            my_pending += 1
            step_status = sla_status(step.sla_due_at, now, completed=False)
            if step_status in (SLAStatus.AT_RISK, SLAStatus.BREACHED):
                alerts.append(
                    SLAAlert(
                        finance_request_id=str(step.finance_request_id),
                        reference_number=reference_number,
                        level=step.level,
                        sla_due_at=iso(step.sla_due_at) or "",
                        sla_status=step_status,
                        hours_remaining=round(hours_between(now, step.sla_due_at), 1),
                    )
                )

    return DashboardResponse(
        total_requests=total_requests,
        total_amount=money(total_amount) or "0.00",
        sla_breached_count=breached.scalar() or 0,
        my_pending_approvals=my_pending,
        sla_alerts=alerts,
        **counts,
    )
