"""Unit tests for the role/level permission tables."""

import pytest

from finapprove.services.permission_service import (
    can_act_at_level,
    get_role_label,
    has_permission,
    levels_for_role,
)


@pytest.mark.parametrize(
    "role,level,expected",
    [
        ("FINANCE_TEAM", "FINANCE_VETTING", True),
        ("FINANCE_TEAM", "DISBURSEMENT", True),
        ("FINANCE_TEAM", "DIRECTOR", False),
        ("FINANCE_CONTROLLER", "FINANCE_PLANNER", True),
        ("DIRECTOR", "DIRECTOR", True),
        ("EMPLOYEE", "DIRECTOR", False),
        ("MD", "FINANCE_VETTING", False),
        ("ADMIN", "MD", True),
        ("ADMIN", "DISBURSEMENT", True),
        ("ADMIN", "NOT_A_LEVEL", False),
    ],
)
def test_can_act_at_level(role, level, expected):
    assert can_act_at_level(role, level) is expected


def test_has_permission_exact_match():
    assert has_permission("EMPLOYEE", "request:create")
    assert not has_permission("EMPLOYEE", "request:view:all")
    assert has_permission("FINANCE_TEAM", "request:edit:financial")


def test_admin_has_every_permission():
    assert has_permission("ADMIN", "approval:override")
    assert has_permission("ADMIN", "anything:at:all")


def test_unknown_role_has_nothing():
    assert not has_permission("CONTRACTOR", "request:create")
    assert levels_for_role("CONTRACTOR") == []


def test_levels_for_role():
    assert levels_for_role("FINANCE_TEAM") == ["FINANCE_VETTING", "DISBURSEMENT"]
    assert "MD" in levels_for_role("ADMIN")


def test_role_label_falls_back_to_code():
    assert get_role_label("MD") == "Managing Director"
    assert get_role_label("CONTRACTOR") == "CONTRACTOR"
