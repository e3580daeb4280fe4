"""
Unit tests for finapprove/services/notification_service.py

Tests: template rendering, savepoint-guarded in-app notifications,
       send_notification failure modes, post-commit dispatch.
"""

import uuid
from datetime import datetime
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy.exc import SQLAlchemyError

from finapprove.exceptions import DependencyFailure
from finapprove.models.enums import NotificationType
from finapprove.services import notification_service
from finapprove.services.notification_service import (
    EmailIntent,
    NotificationIntent,
    create_notifications,
    dispatch_emails,
    render_template,
    send_notification,
)

NOW = datetime(2026, 3, 2, 12, 0, 0)


class _Savepoint:
    """Stand-in for session.begin_nested(); optionally fails on exit like a flush error."""

    def __init__(self, error=None):
        self.error = error

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        if self.error is not None:
            raise self.error
        return False


def _session(error=None) -> MagicMock:
    session = MagicMock()
    session.begin_nested.return_value = _Savepoint(error)
    return session


def _intent(type_=NotificationType.APPROVAL_REQUIRED) -> NotificationIntent:
    return NotificationIntent(
        user_id=uuid.uuid4(),
        title="New Approval Request",
        message="Request FIN-2603-000001 awaits your action",
        type=type_,
        finance_request_id=uuid.uuid4(),
    )


# ---------------------------------------------------------------------------
# render_template
# ---------------------------------------------------------------------------


def test_render_known_template():
    subject, html = render_template(
        "request_rejected",
        {"reference_number": "FIN-2603-000001", "level": "DIRECTOR", "reason": "Missing invoice"},
    )
    assert subject == "[FinApprove] Request FIN-2603-000001 rejected"
    assert "Missing invoice" in html
    assert "DIRECTOR" in html


def test_render_unknown_template():
    with pytest.raises(DependencyFailure):
        render_template("does_not_exist", {})


def test_render_missing_context_key():
    with pytest.raises(DependencyFailure) as exc_info:
        render_template("sla_breach", {"reference_number": "FIN-2603-000001"})
    assert exc_info.value.details == {"template_id": "sla_breach"}


# ---------------------------------------------------------------------------
# create_notifications
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_create_notifications_writes_rows_in_savepoint():
    session = _session()
    intents = [_intent(), _intent()]

    count = await create_notifications(session, intents, NOW)

    assert count == 2
    session.begin_nested.assert_called_once()
    rows = session.add_all.call_args[0][0]
    assert len(rows) == 2
    assert rows[0].user_id == intents[0].user_id
    assert rows[0].type == NotificationType.APPROVAL_REQUIRED
    assert all(r.created_at == NOW for r in rows)


@pytest.mark.asyncio
async def test_create_notifications_failure_is_swallowed():
    session = _session(error=SQLAlchemyError("constraint violated"))
    count = await create_notifications(session, [_intent()], NOW)
    assert count == 0


@pytest.mark.asyncio
async def test_create_notifications_nothing_to_do():
    session = _session()
    assert await create_notifications(session, [], NOW) == 0
    session.begin_nested.assert_not_called()


# ---------------------------------------------------------------------------
# send_notification
# ---------------------------------------------------------------------------

_CONTEXT = {
    "reference_number": "FIN-2603-000001",
    "amount_display": "INR 11,800.00",
    "payment_reference_number": "UTR123456",
}


@pytest.mark.asyncio
async def test_send_notification_without_recipients():
    assert await send_notification("request_disbursed", [], _CONTEXT) is False


@pytest.mark.asyncio
async def test_send_notification_email_disabled(monkeypatch):
    monkeypatch.setattr(notification_service.settings, "BREVO_API_KEY", None)
    with patch("finapprove.services.notification_service.send_email", AsyncMock()) as mock_send:
        assert await send_notification("request_disbursed", ["a@finapprove.test"], _CONTEXT) is False
    mock_send.assert_not_awaited()


@pytest.mark.asyncio
async def test_send_notification_delivered(monkeypatch):
    monkeypatch.setattr(notification_service.settings, "BREVO_API_KEY", "test-key")
    with patch(
        "finapprove.services.notification_service.send_email", AsyncMock(return_value=True)
    ) as mock_send:
        assert await send_notification("request_disbursed", ["a@finapprove.test"], _CONTEXT) is True

    to_emails, subject, html = mock_send.await_args[0]
    assert to_emails == ["a@finapprove.test"]
    assert subject == "[FinApprove] Payment completed for FIN-2603-000001"
    assert "UTR123456" in html


@pytest.mark.asyncio
async def test_send_notification_refused_raises(monkeypatch):
    monkeypatch.setattr(notification_service.settings, "BREVO_API_KEY", "test-key")
    with patch("finapprove.services.notification_service.send_email", AsyncMock(return_value=False)):
        with pytest.raises(DependencyFailure):
            await send_notification("request_disbursed", ["a@finapprove.test"], _CONTEXT)


# ---------------------------------------------------------------------------
# dispatch_emails
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_dispatch_emails_never_raises():
    intents = [
        EmailIntent("request_disbursed", ["a@finapprove.test"], _CONTEXT),
        EmailIntent("request_disbursed", ["b@finapprove.test"], _CONTEXT),
        EmailIntent("request_disbursed", ["c@finapprove.test"], _CONTEXT),
    ]
    side_effects = [True, DependencyFailure("Brevo refused"), RuntimeError("boom")]
    with patch(
        "finapprove.services.notification_service.send_notification",
        AsyncMock(side_effect=side_effects),
    ) as mock_send:
        delivered = await dispatch_emails(intents)

    assert delivered == 1
    assert mock_send.await_count == 3
