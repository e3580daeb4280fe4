"""
Unit tests for finapprove/services/level_chain.py

The same engine runs every chain variant; only settings change.
"""

import pytest

from finapprove.config import Settings
from finapprove.services.level_chain import build_chain


def test_standard_chain_levels_and_sla():
    chain = build_chain(Settings(APPROVAL_CHAIN="standard"))
    assert chain.level_names == ["FINANCE_VETTING", "FINANCE_CONTROLLER", "DIRECTOR", "MD", "DISBURSEMENT"]
    assert chain.first.level == "FINANCE_VETTING"
    assert chain.first.assigned_role == "FINANCE_TEAM"
    assert chain.get("FINANCE_VETTING").sla_hours_for("INVOICE") == 72
    assert chain.get("FINANCE_VETTING").sla_hours_for("CRITICAL") == 24
    assert chain.get("DIRECTOR").sla_hours_for("CRITICAL") == 24
    assert chain.disbursement_level.sequence == 5


def test_extended_chain_has_planner_after_vetting():
    chain = build_chain(Settings(APPROVAL_CHAIN="extended"))
    assert len(chain.levels) == 6
    assert chain.next_after("FINANCE_VETTING").level == "FINANCE_PLANNER"
    assert chain.get("FINANCE_PLANNER").assigned_role == "FINANCE_CONTROLLER"


def test_legacy_chain_starts_at_manager():
    chain = build_chain(Settings(APPROVAL_CHAIN="legacy"))
    assert chain.first.level == "MANAGER"
    assert chain.first.pending_status == "PENDING_MANAGER"
    assert chain.get("FINANCE_APPROVAL").assigned_role == "FINANCE_HEAD"


def test_explicit_levels_and_sla_overrides():
    chain = build_chain(
        Settings(
            APPROVAL_LEVELS=["FINANCE_VETTING", "DIRECTOR"],
            SLA_HOURS={"DIRECTOR": 48},
            CRITICAL_SLA_HOURS={"DIRECTOR": 12},
        )
    )
    assert chain.name == "custom"
    assert chain.level_names == ["FINANCE_VETTING", "DIRECTOR"]
    assert chain.disbursement_level is None
    assert chain.sla_hours_by_level("INVOICE") == {"FINANCE_VETTING": 72, "DIRECTOR": 48}
    assert chain.sla_hours_by_level("CRITICAL") == {"FINANCE_VETTING": 24, "DIRECTOR": 12}


@pytest.mark.parametrize(
    "overrides",
    [
        {"APPROVAL_CHAIN": "nonexistent"},
        {"APPROVAL_LEVELS": ["DIRECTOR", "DIRECTOR"]},
        {"APPROVAL_LEVELS": ["DISBURSEMENT", "DIRECTOR"]},
        {"APPROVAL_LEVELS": ["FINANCE_VETTING", "CEO"]},
    ],
)
def test_invalid_chain_configuration_rejected(overrides):
    with pytest.raises(ValueError):
        build_chain(Settings(**overrides))


def test_status_and_sequence_navigation():
    chain = build_chain(Settings(APPROVAL_CHAIN="standard"))
    assert chain.level_for_status("PENDING_DIRECTOR") == "DIRECTOR"
    assert chain.level_for_status("PENDING_ADMIN_REVIEW") is None
    assert chain.level_for_status("APPROVED") is None
    assert chain.next_after("MD").is_disbursement
    assert chain.next_after("DISBURSEMENT") is None
    assert chain.pending_statuses()[0] == "PENDING_FINANCE_VETTING"
