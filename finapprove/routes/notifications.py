from typing import List
import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from finapprove.database import get_db
from finapprove.exceptions import NotFoundError
from finapprove.middleware.auth import get_current_actor
from finapprove.models.notification import AppNotification
from finapprove.schemas.common import iso
from finapprove.schemas.dashboard import NotificationResponse
from finapprove.services.auth_service import Actor

logger = structlog.get_logger()
router = APIRouter()


def _to_response(row: AppNotification) -> NotificationResponse:
    return NotificationResponse(
        id=str(row.id),
        title=row.title,
        message=row.message,
        type=row.type,
        finance_request_id=str(row.finance_request_id) if row.finance_request_id else None,
        is_read=bool(row.is_read),
        created_at=iso(row.created_at) or "",
    )


@router.get("", response_model=List[NotificationResponse])
async def list_notifications(
    unread_only: bool = Query(False),
    limit: int = Query(50, ge=1, le=200),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Recent in-app notifications for the acting user, newest first."""
    q = select(AppNotification).where(AppNotification.user_id == actor.id)
    if unread_only:
        q = q.where(AppNotification.is_read == False)  # noqa: E712
    q = q.order_by(AppNotification.created_at.desc()).limit(limit)
    result = await db.execute(q)
    return [_to_response(row) for row in result.scalars().all()]


@router.post("/{notification_id}/read", response_model=NotificationResponse)
async def mark_read(
    notification_id: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        select(AppNotification).where(
            AppNotification.id == notification_id,
            AppNotification.user_id == actor.id,
        )
    )
    notification = result.scalar_one_or_none()
    if notification is None:
        raise NotFoundError("Notification", str(notification_id))

    notification.is_read = True
    await db.flush()
    return _to_response(notification)
