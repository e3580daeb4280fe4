"""Unit tests for the pure SLA clock: deadlines, dashboard status, warning window."""

from datetime import datetime, timedelta

import pytest

from finapprove.config import Settings
from finapprove.services.level_chain import build_chain
from finapprove.services.sla_service import (
    SLAStatus,
    SweepResult,
    due_at,
    is_in_warning_window,
    sla_status,
)

T0 = datetime(2026, 3, 2, 9, 0, 0)


@pytest.fixture
def chain():
    return build_chain(Settings(APPROVAL_CHAIN="standard"))


def test_due_at_uses_payment_type(chain):
    assert due_at("FINANCE_VETTING", "INVOICE", T0, chain) == T0 + timedelta(hours=72)
    assert due_at("FINANCE_VETTING", "CRITICAL", T0, chain) == T0 + timedelta(hours=24)
    assert due_at("MD", "SALARY", T0, chain) == T0 + timedelta(hours=24)


def test_due_at_unknown_level(chain):
    with pytest.raises(ValueError):
        due_at("FINANCE_APPROVAL", "INVOICE", T0, chain)


def test_sla_status_buckets():
    due = T0 + timedelta(hours=24)
    assert sla_status(due, T0, completed=False) == SLAStatus.ON_TRACK
    assert sla_status(due, due - timedelta(hours=3), completed=False) == SLAStatus.AT_RISK
    assert sla_status(due, due - timedelta(hours=4), completed=False) == SLAStatus.AT_RISK
    assert sla_status(due, due + timedelta(minutes=1), completed=False) == SLAStatus.BREACHED
    assert sla_status(due, due + timedelta(hours=5), completed=True) == SLAStatus.COMPLETED
    assert sla_status(None, T0, completed=False) == SLAStatus.ON_TRACK


def test_sla_status_custom_window():
    due = T0 + timedelta(hours=24)
    assert sla_status(due, T0, completed=False, risk_window_hours=30) == SLAStatus.AT_RISK


@pytest.mark.parametrize(
    "elapsed_hours,expected",
    [(10, False), (19, False), (20, True), (24, True), (25, False)],
)
def test_warning_window_is_past_80_percent(elapsed_hours, expected):
    now = T0 + timedelta(hours=elapsed_hours)
    assert is_in_warning_window(T0, 24, now) is expected


def test_warning_window_needs_a_start():
    assert is_in_warning_window(None, 24, T0) is False


def test_sweep_result_as_dict():
    result = SweepResult(processed_count=3, breached_count=1, timestamp=T0)
    data = result.as_dict()
    assert data["processed_count"] == 3
    assert data["breached_count"] == 1
    assert data["timestamp"] == T0.isoformat()
    assert "emails" not in data
