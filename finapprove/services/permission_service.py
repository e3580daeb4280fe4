"""
Permission oracle over static role tables.

    can_act_at_level(role, level)    who may act on a step at an approval level
    has_permission(role, permission) exact match, then ``category:*``, then ADMIN
"""

ADMIN = "ADMIN"

# Level -> roles allowed to act. Covers the levels of every configured chain.
LEVEL_ROLES: dict[str, frozenset[str]] = {
    "FINANCE_VETTING": frozenset({"FINANCE_TEAM", ADMIN}),
    "FINANCE_PLANNER": frozenset({"FINANCE_CONTROLLER", ADMIN}),
    "FINANCE_CONTROLLER": frozenset({"FINANCE_CONTROLLER", ADMIN}),
    "DIRECTOR": frozenset({"DIRECTOR", ADMIN}),
    "MD": frozenset({"MD", ADMIN}),
    "DISBURSEMENT": frozenset({"FINANCE_TEAM", ADMIN}),
    "MANAGER": frozenset({"MANAGER", ADMIN}),
    "DEPARTMENT_HEAD": frozenset({"DEPARTMENT_HEAD", ADMIN}),
    "FINANCE_APPROVAL": frozenset({"FINANCE_HEAD", ADMIN}),
}

ROLE_PERMISSIONS: dict[str, list[str]] = {
    "EMPLOYEE": [
        "request:create",
        "request:view:own",
        "request:edit:own:draft",
        "request:delete:own:draft",
        "request:respond:sendback",
    ],
    "MANAGER": [
        "request:create",
        "request:view:own",
        "approval:manager",
    ],
    "DEPARTMENT_HEAD": [
        "request:create",
        "request:view:department",
        "approval:department_head",
        "dashboard:department",
    ],
    "FINANCE_TEAM": [
        "request:view:all",
        "request:edit:financial",
        "approval:finance:vetting",
        "disbursement:process",
        "dashboard:finance",
        "reports:all",
    ],
    "FINANCE_PLANNER": [
        "request:view:all",
        "dashboard:finance",
        "reports:all",
    ],
    "FINANCE_CONTROLLER": [
        "request:view:all",
        "approval:finance:controller",
        "dashboard:all",
        "reports:all",
    ],
    "FINANCE_HEAD": [
        "request:view:all",
        "approval:finance:approval",
        "dashboard:all",
        "reports:all",
    ],
    "DIRECTOR": [
        "request:view:all",
        "approval:director",
        "dashboard:all",
        "reports:all",
    ],
    "MD": [
        "request:view:all",
        "approval:md",
        "dashboard:all",
        "reports:all",
        "config:view",
    ],
    "ADMIN": [
        "request:view:all",
        "request:edit:all",
        "approval:override",
        "user:manage",
        "config:manage",
        "reports:all",
        "system:manage",
    ],
}

ROLE_LABELS = {
    "EMPLOYEE": "Employee",
    "MANAGER": "Manager",
    "DEPARTMENT_HEAD": "Department Head",
    "FINANCE_TEAM": "Finance Team",
    "FINANCE_PLANNER": "Finance Planner",
    "FINANCE_CONTROLLER": "Finance Controller",
    "FINANCE_HEAD": "Finance Head",
    "DIRECTOR": "Director",
    "MD": "Managing Director",
    "ADMIN": "Administrator",
}


def can_act_at_level(role: str, level: str) -> bool:
    return role in LEVEL_ROLES.get(level, frozenset())


def has_permission(role: str, permission: str) -> bool:
    if role not in ROLE_PERMISSIONS:
        return False
    permissions = ROLE_PERMISSIONS[role]
    if permission in permissions:
        return True

    category = permission.split(":", 1)[0]
    if f"{category}:*" in permissions:
        return True

    return role == ADMIN


def levels_for_role(role: str) -> list[str]:
    """Levels at which ``role`` may act (ADMIN gets every level)."""
    return [level for level, roles in LEVEL_ROLES.items() if role in roles]


def get_role_label(role: str) -> str:
    return ROLE_LABELS.get(role, role)
