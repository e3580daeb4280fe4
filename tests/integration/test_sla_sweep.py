"""
SLA sweep tests. Setup is committed through the ``db`` session; the sweep
opens its own sessions, so assertions read back through a fresh one.
"""

from datetime import datetime, timedelta
from unittest.mock import patch

import pytest
from sqlalchemy import func, select

from finapprove.models.approval import ApprovalStep
from finapprove.models.enums import ApprovalAction, NotificationType
from finapprove.models.notification import AppNotification
from finapprove.models.sla_log import SLALog
from finapprove.services import sla_service
from finapprove.services.finance_request_service import create_request
from finapprove.services.sla_service import check_sla_breaches, sla_overview
from finapprove.services.workflow_service import process_approval_action, submit_request

T0 = datetime(2026, 3, 2, 9, 0, 0)


async def _submit_and_commit(db, requestor, data, now=T0):
    fr = await create_request(db, requestor, data, now=now)
    await submit_request(db, fr.id, requestor, now=now)
    await db.commit()
    return fr.id


async def _count_notifications(session, request_id, type_):
    result = await session.execute(
        select(func.count(AppNotification.id)).where(
            AppNotification.finance_request_id == request_id,
            AppNotification.type == type_,
        )
    )
    return result.scalar()


async def _active_step(session, request_id):
    result = await session.execute(
        select(ApprovalStep).where(
            ApprovalStep.finance_request_id == request_id,
            ApprovalStep.is_active == True,  # noqa: E712
        )
    )
    return result.scalar_one()


@pytest.mark.asyncio
async def test_breach_flags_step_and_notifies_once(db, session_factory, users, actor_of, new_request_data):
    request_id = await _submit_and_commit(db, actor_of(users["EMPLOYEE"]), new_request_data())
    swept_at = T0 + timedelta(hours=73)

    result = await check_sla_breaches(session_factory, now=swept_at)

    assert result.processed_count == 1
    assert result.breached_count == 1
    assert result.errors == 0
    # Two finance team approvers plus the requestor
    assert result.notifications_sent == 3
    assert [e.template_id for e in result.emails] == ["sla_breach"]
    assert sorted(result.emails[0].recipients) == sorted(
        [users["FINANCE_TEAM"].email, users["FINANCE_TEAM_2"].email]
    )

    async with session_factory() as session:
        step = await _active_step(session, request_id)
        assert step.sla_breached is True
        logs = (
            await session.execute(select(SLALog).where(SLALog.approval_step_id == step.id))
        ).scalars().all()
        assert len(logs) == 1
        assert logs[0].is_breached is True
        assert logs[0].breached_at == swept_at

        breach_notes = (
            await session.execute(
                select(AppNotification).where(
                    AppNotification.finance_request_id == request_id,
                    AppNotification.type == NotificationType.SLA_BREACH,
                )
            )
        ).scalars().all()
        assert {n.user_id for n in breach_notes} == {
            users["FINANCE_TEAM"].id,
            users["FINANCE_TEAM_2"].id,
        }
        delayed = (
            await session.execute(
                select(AppNotification).where(
                    AppNotification.finance_request_id == request_id,
                    AppNotification.type == NotificationType.REQUEST_DELAYED,
                )
            )
        ).scalars().all()
        assert [n.user_id for n in delayed] == [users["EMPLOYEE"].id]
        assert delayed[0].created_at == swept_at

    second = await check_sla_breaches(session_factory, now=swept_at)

    assert second.processed_count == 1
    assert second.breached_count == 0
    assert second.notifications_sent == 0
    assert second.emails == []
    async with session_factory() as session:
        assert await _count_notifications(session, request_id, NotificationType.SLA_BREACH) == 2
        assert await _count_notifications(session, request_id, NotificationType.REQUEST_DELAYED) == 1
        breached_logs = (
            await session.execute(
                select(func.count(SLALog.id)).where(
                    SLALog.finance_request_id == request_id,
                    SLALog.is_breached == True,  # noqa: E712
                )
            )
        ).scalar()
        assert breached_logs == 1


@pytest.mark.asyncio
async def test_step_within_sla_is_left_alone(db, session_factory, users, actor_of, new_request_data):
    request_id = await _submit_and_commit(db, actor_of(users["EMPLOYEE"]), new_request_data())

    result = await check_sla_breaches(session_factory, now=T0 + timedelta(hours=10))

    assert result.processed_count == 1
    assert result.breached_count == 0
    assert result.warnings_sent == 0
    async with session_factory() as session:
        step = await _active_step(session, request_id)
        assert step.sla_breached is False


@pytest.mark.asyncio
async def test_warning_sent_once_inside_suppression_window(
    db, session_factory, users, actor_of, new_request_data
):
    request_id = await _submit_and_commit(db, actor_of(users["EMPLOYEE"]), new_request_data())

    # 60h of a 72h SLA is past the 80% mark
    first = await check_sla_breaches(session_factory, now=T0 + timedelta(hours=60))
    assert first.warnings_sent == 2
    assert first.breached_count == 0
    assert [e.template_id for e in first.emails] == ["sla_warning"]

    second = await check_sla_breaches(session_factory, now=T0 + timedelta(hours=61))
    assert second.warnings_sent == 0
    assert second.emails == []

    async with session_factory() as session:
        assert await _count_notifications(session, request_id, NotificationType.SLA_WARNING) == 2
        step = await _active_step(session, request_id)
        assert step.sla_breached is False


@pytest.mark.asyncio
async def test_sweep_follows_the_active_step(db, session_factory, users, actor_of, new_request_data):
    request_id = await _submit_and_commit(db, actor_of(users["EMPLOYEE"]), new_request_data())
    await process_approval_action(
        db, request_id, actor_of(users["FINANCE_TEAM"]), ApprovalAction.APPROVED,
        now=T0 + timedelta(hours=1), expected_level="FINANCE_VETTING",
    )
    await db.commit()

    # Controller SLA (24h) ran out, the completed vetting step is ignored
    result = await check_sla_breaches(session_factory, now=T0 + timedelta(hours=26))

    assert result.processed_count == 1
    assert result.breached_count == 1
    async with session_factory() as session:
        step = await _active_step(session, request_id)
        assert step.level == "FINANCE_CONTROLLER"
        assert step.sla_breached is True
        breach_users = (
            await session.execute(
                select(AppNotification.user_id).where(
                    AppNotification.finance_request_id == request_id,
                    AppNotification.type == NotificationType.SLA_BREACH,
                )
            )
        ).scalars().all()
        assert breach_users == [users["FINANCE_CONTROLLER"].id]


@pytest.mark.asyncio
async def test_drafts_are_not_swept(db, session_factory, users, actor_of, new_request_data):
    await create_request(db, actor_of(users["EMPLOYEE"]), new_request_data(), now=T0)
    await db.commit()

    result = await check_sla_breaches(session_factory, now=T0 + timedelta(hours=100))

    assert result.processed_count == 0
    assert result.notifications_sent == 0


@pytest.mark.asyncio
async def test_overview_lists_overdue_steps(db, session_factory, users, actor_of, new_request_data):
    await _submit_and_commit(db, actor_of(users["EMPLOYEE"]), new_request_data())
    await _submit_and_commit(db, actor_of(users["EMPLOYEE_2"]), new_request_data(department="Sales"))

    async with session_factory() as session:
        before = await sla_overview(session)
    assert before["pending_approvals"] == 2
    assert before["overdue_count"] == 0

    await check_sla_breaches(session_factory, now=T0 + timedelta(hours=80))

    async with session_factory() as session:
        after = await sla_overview(session)
    assert after["pending_approvals"] == 2
    assert after["overdue_count"] == 2
    assert {r["level"] for r in after["overdue_requests"]} == {"FINANCE_VETTING"}


@pytest.mark.asyncio
async def test_failed_step_transaction_is_not_reported(
    db, session_factory, users, actor_of, new_request_data
):
    request_id = await _submit_and_commit(db, actor_of(users["EMPLOYEE"]), new_request_data())
    swept_at = T0 + timedelta(hours=73)
    original = sla_service._mark_breached

    async def mark_then_fail(*args, **kwargs):
        await original(*args, **kwargs)
        raise RuntimeError("commit failed")

    with patch.object(sla_service, "_mark_breached", side_effect=mark_then_fail):
        failed = await check_sla_breaches(session_factory, now=swept_at)

    assert failed.errors == 1
    assert failed.processed_count == 0
    assert failed.breached_count == 0
    assert failed.notifications_sent == 0
    assert failed.emails == []
    async with session_factory() as session:
        step = await _active_step(session, request_id)
        assert step.sla_breached is False
        assert await _count_notifications(session, request_id, NotificationType.SLA_BREACH) == 0

    retried = await check_sla_breaches(session_factory, now=swept_at)
    assert retried.errors == 0
    assert retried.breached_count == 1
    assert [e.template_id for e in retried.emails] == ["sla_breach"]
