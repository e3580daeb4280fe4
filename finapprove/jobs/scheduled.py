"""
Scheduled jobs triggered by an external scheduler calling internal endpoints.

Jobs:
  - check-sla: hourly. Flags breached approval steps and warns approvers
    once 80% of a step's SLA has elapsed.
"""

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
import structlog

from finapprove.config import settings
from finapprove.database import get_db, get_session_factory
from finapprove.services.notification_service import dispatch_emails
from finapprove.services.sla_service import check_sla_breaches, sla_overview

logger = structlog.get_logger()
router = APIRouter()


async def _require_internal_auth(request: Request):
    """
    Verify the call comes from the scheduler or another internal service.
    Validates the X-Internal-Secret header against INTERNAL_JOB_SECRET.
    """
    secret = settings.INTERNAL_JOB_SECRET
    if not secret:
        # In development (DEBUG=True), allow unauthenticated internal calls
        if settings.DEBUG:
            return
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="INTERNAL_JOB_SECRET is not configured",
        )
    provided = request.headers.get("X-Internal-Secret")
    if not provided or provided != secret:
        logger.warning("internal_auth_failed", path=request.url.path)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Forbidden",
        )


@router.post("/check-sla")
async def run_sla_check(
    background_tasks: BackgroundTasks,
    session_factory: async_sessionmaker = Depends(get_session_factory),
    _auth: None = Depends(_require_internal_auth),
):
    """Hourly: one transaction per active step, emails after commit."""
    result = await check_sla_breaches(session_factory)
    if result.emails:
        background_tasks.add_task(dispatch_emails, result.emails)
    return result.as_dict()


@router.get("/check-sla")
async def get_sla_overview(
    db: AsyncSession = Depends(get_db),
    _auth: None = Depends(_require_internal_auth),
):
    return await sla_overview(db)
