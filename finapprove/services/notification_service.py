"""
Notification service: in-app rows + templated email.

In-app notifications are written inside a SAVEPOINT in the caller's
transaction; a failure is logged and the savepoint discarded, the enclosing
workflow transition still commits.

Emails are resolved DURING the request (while the session is open) into
``EmailIntent`` objects and dispatched after commit via BackgroundTasks.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional
import uuid

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from finapprove.config import settings
from finapprove.exceptions import DependencyFailure
from finapprove.models.notification import AppNotification
from finapprove.models.user import User
from finapprove.services.email_service import send_email
from finapprove.services.level_chain import ApprovalChain, get_approval_chain

logger = structlog.get_logger()

SUBJECT_PREFIX = "[FinApprove]"

# ---------- Template registry ----------

TEMPLATES = {
    "request_submitted": {
        "subject": "{prefix} Request {reference_number} submitted",
        "html": (
            "<h2>Request Submitted</h2>"
            "<p>Your finance request <strong>{reference_number}</strong> "
            "for {amount_display} has been submitted.</p>"
            "<p>It is now awaiting <strong>{level}</strong>.</p>"
        ),
    },
    "request_resubmitted": {
        "subject": "{prefix} Request {reference_number} resubmitted",
        "html": (
            "<h2>Request Resubmitted</h2>"
            "<p>Finance request <strong>{reference_number}</strong> has been resubmitted "
            "(attempt {resubmission_count}) and restarts at <strong>{level}</strong>.</p>"
        ),
    },
    "approval_request": {
        "subject": "{prefix} Request {reference_number} requires your approval",
        "html": (
            "<h2>Approval Required</h2>"
            "<p>Finance request <strong>{reference_number}</strong> is awaiting "
            "your action at <strong>{level}</strong>.</p>"
            "<p><strong>Amount:</strong> {amount_display}</p>"
            "<p><strong>Purpose:</strong> {purpose}</p>"
            "<p><strong>SLA:</strong> {sla_hours} hours</p>"
        ),
    },
    "request_approved": {
        "subject": "{prefix} Request {reference_number} approved",
        "html": (
            "<h2>Request Approved</h2>"
            "<p>Your finance request <strong>{reference_number}</strong> has been "
            "<span style='color:green'>approved</span> at {level}.</p>"
            "<p><strong>Current status:</strong> {status}</p>"
        ),
    },
    "request_rejected": {
        "subject": "{prefix} Request {reference_number} rejected",
        "html": (
            "<h2>Request Rejected</h2>"
            "<p>Your finance request <strong>{reference_number}</strong> has been "
            "<span style='color:red'>rejected</span> at {level}.</p>"
            "<p><strong>Reason:</strong> {reason}</p>"
        ),
    },
    "request_sent_back": {
        "subject": "{prefix} Request {reference_number} sent back for changes",
        "html": (
            "<h2>Request Sent Back</h2>"
            "<p>Your finance request <strong>{reference_number}</strong> was sent back "
            "at {level}.</p>"
            "<p><strong>Comments:</strong> {reason}</p>"
            "<p>Update the request and resubmit it.</p>"
        ),
    },
    "request_disbursed": {
        "subject": "{prefix} Payment completed for {reference_number}",
        "html": (
            "<h2>Payment Completed</h2>"
            "<p>Payment of {amount_display} for <strong>{reference_number}</strong> "
            "has been disbursed.</p>"
            "<p><strong>Payment reference:</strong> {payment_reference_number}</p>"
        ),
    },
    "sla_breach": {
        "subject": "{prefix} SLA breach: {reference_number}",
        "html": (
            "<h2>SLA Breach Alert</h2>"
            "<p>Finance request <strong>{reference_number}</strong> is overdue by "
            "{hours_overdue} hours at <strong>{level}</strong>.</p>"
        ),
    },
    "sla_warning": {
        "subject": "{prefix} SLA warning: {reference_number}",
        "html": (
            "<h2>SLA Warning</h2>"
            "<p>Finance request <strong>{reference_number}</strong> at "
            "<strong>{level}</strong> is due in {hours_remaining} hours.</p>"
        ),
    },
    "admin_review_required": {
        "subject": "{prefix} Admin review required for {reference_number}",
        "html": (
            "<h2>Admin Review Required</h2>"
            "<p>Finance request <strong>{reference_number}</strong> exceeded the "
            "resubmission limit ({resubmission_count} attempts).</p>"
        ),
    },
    "admin_decision": {
        "subject": "{prefix} Admin decision on {reference_number}",
        "html": (
            "<h2>Admin Decision</h2>"
            "<p>An administrator decided <strong>{decision}</strong> on finance "
            "request <strong>{reference_number}</strong>.</p>"
            "<p><strong>Comments:</strong> {comments}</p>"
        ),
    },
}


@dataclass
class NotificationIntent:
    user_id: uuid.UUID
    title: str
    message: str
    type: str
    finance_request_id: Optional[uuid.UUID] = None


@dataclass
class EmailIntent:
    template_id: str
    recipients: list[str]
    context: dict = field(default_factory=dict)


def render_template(template_id: str, context: dict) -> tuple[str, str]:
    template = TEMPLATES.get(template_id)
    if not template:
        raise DependencyFailure(f"Unknown notification template: {template_id}")
    values = {"prefix": SUBJECT_PREFIX, **context}
    try:
        return template["subject"].format(**values), template["html"].format(**values)
    except KeyError as e:
        raise DependencyFailure(
            f"Template {template_id} is missing context key {e}",
            details={"template_id": template_id},
        ) from e


# ---------- in-app notifications ----------


async def create_notifications(
    session: AsyncSession,
    intents: list[NotificationIntent],
    now: Optional[datetime] = None,
) -> int:
    """Persist in-app notifications in a savepoint. Returns the number written (0 on failure)."""
    created_at = now or datetime.utcnow()
    if not intents:
        return 0
    try:
        async with session.begin_nested():
            session.add_all(
                [
                    AppNotification(
                        user_id=i.user_id,
                        finance_request_id=i.finance_request_id,
                        title=i.title,
                        message=i.message,
                        type=i.type,
                        created_at=created_at,
                    )
                    for i in intents
                ]
            )
    except SQLAlchemyError as e:
        logger.error(
            "notification_persist_failed",
            count=len(intents),
            types=sorted({i.type for i in intents}),
            error=str(e),
        )
        return 0
    return len(intents)


async def has_recent_notification(
    session: AsyncSession,
    user_id: uuid.UUID,
    finance_request_id: uuid.UUID,
    notification_type: str,
    since: datetime,
) -> bool:
    result = await session.execute(
        select(AppNotification.id)
        .where(
            AppNotification.user_id == user_id,
            AppNotification.finance_request_id == finance_request_id,
            AppNotification.type == notification_type,
            AppNotification.created_at >= since,
        )
        .limit(1)
    )
    return result.scalar_one_or_none() is not None


# ---------- recipients ----------


async def find_users_by_role(session: AsyncSession, role: str) -> list[User]:
    result = await session.execute(
        select(User).where(User.role == role, User.is_active == True)  # noqa: E712
    )
    return list(result.scalars().all())


async def find_approvers_for_level(
    session: AsyncSession, level: str, chain: Optional[ApprovalChain] = None
) -> list[User]:
    """Active users holding the role a level is assigned to."""
    chain = chain or get_approval_chain()
    chain_level = chain.get(level)
    if chain_level is None:
        return []
    return await find_users_by_role(session, chain_level.assigned_role)


async def resolve_user_emails(
    session: AsyncSession, user_ids: list[uuid.UUID]
) -> list[str]:
    """Batch look up emails for user IDs."""
    if not user_ids:
        return []
    result = await session.execute(select(User.email).where(User.id.in_(user_ids)))
    return [row[0] for row in result.all()]


# ---------- email dispatch ----------


async def send_notification(template_id: str, recipient_emails: list[str], context: dict) -> bool:
    """
    Render a template and send it.

    Raises DependencyFailure when rendering fails or delivery is refused.
    Returns False when there is nothing to send or email is not configured.
    """
    if not recipient_emails:
        logger.warning("notification_no_recipients", template_id=template_id)
        return False

    subject, html = render_template(template_id, context)
    if not settings.BREVO_API_KEY:
        logger.info("notification_email_disabled", template_id=template_id)
        return False

    delivered = await send_email(recipient_emails, subject, html)
    if not delivered:
        raise DependencyFailure(
            f"Email delivery failed for template {template_id}",
            details={"recipients": len(recipient_emails)},
        )

    logger.info("notification_sent", template_id=template_id, recipients=recipient_emails)
    return True


async def dispatch_emails(intents: list[EmailIntent]) -> int:
    """
    Post-commit fan-out. Never raises: every failure is logged and the next
    intent is attempted. Returns the number of emails accepted.
    """
    delivered = 0
    for intent in intents:
        try:
            if await send_notification(intent.template_id, intent.recipients, intent.context):
                delivered += 1
        except DependencyFailure as e:
            logger.warning(
                "notification_delivery_failed",
                template_id=intent.template_id,
                code=e.code,
                error=e.message,
            )
        except Exception as e:
            logger.error(
                "notification_dispatch_error",
                template_id=intent.template_id,
                error=str(e),
            )
    return delivered
