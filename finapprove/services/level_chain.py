"""
Approval chain configuration.

One generic engine, parameterised by an ordered level sequence. Three named
variants ship by default; ``APPROVAL_LEVELS`` overrides the sequence and
``SLA_HOURS`` / ``CRITICAL_SLA_HOURS`` override per-level SLA hours.

    standard  FINANCE_VETTING -> FINANCE_CONTROLLER -> DIRECTOR -> MD -> DISBURSEMENT
    extended  FINANCE_VETTING -> FINANCE_PLANNER -> FINANCE_CONTROLLER -> DIRECTOR -> MD -> DISBURSEMENT
    legacy    MANAGER -> DEPARTMENT_HEAD -> FINANCE_VETTING -> FINANCE_APPROVAL -> DISBURSEMENT
"""

from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from finapprove.config import Settings, settings as default_settings

PENDING_PREFIX = "PENDING_"
DISBURSEMENT = "DISBURSEMENT"
CRITICAL_PAYMENT_TYPE = "CRITICAL"

CHAIN_VARIANTS: dict[str, list[str]] = {
    "standard": ["FINANCE_VETTING", "FINANCE_CONTROLLER", "DIRECTOR", "MD", DISBURSEMENT],
    "extended": [
        "FINANCE_VETTING",
        "FINANCE_PLANNER",
        "FINANCE_CONTROLLER",
        "DIRECTOR",
        "MD",
        DISBURSEMENT,
    ],
    "legacy": ["MANAGER", "DEPARTMENT_HEAD", "FINANCE_VETTING", "FINANCE_APPROVAL", DISBURSEMENT],
}

# Role a step is assigned to when the ledger is created.
ASSIGNED_ROLES: dict[str, str] = {
    "FINANCE_VETTING": "FINANCE_TEAM",
    "FINANCE_PLANNER": "FINANCE_CONTROLLER",
    "FINANCE_CONTROLLER": "FINANCE_CONTROLLER",
    "DIRECTOR": "DIRECTOR",
    "MD": "MD",
    DISBURSEMENT: "FINANCE_TEAM",
    "MANAGER": "MANAGER",
    "DEPARTMENT_HEAD": "DEPARTMENT_HEAD",
    "FINANCE_APPROVAL": "FINANCE_HEAD",
}

# Non-default SLA hours. Vetting gets 72h unless the payment is CRITICAL.
BASE_SLA_HOURS: dict[str, int] = {"FINANCE_VETTING": 72}
BASE_CRITICAL_SLA_HOURS: dict[str, int] = {"FINANCE_VETTING": 24}


@dataclass(frozen=True)
class ChainLevel:
    level: str
    sequence: int
    assigned_role: str
    sla_hours: int
    critical_sla_hours: int

    @property
    def is_disbursement(self) -> bool:
        return self.level == DISBURSEMENT

    @property
    def pending_status(self) -> str:
        return f"{PENDING_PREFIX}{self.level}"

    def sla_hours_for(self, payment_type: Optional[str]) -> int:
        if payment_type == CRITICAL_PAYMENT_TYPE:
            return self.critical_sla_hours
        return self.sla_hours


@dataclass(frozen=True)
class ApprovalChain:
    name: str
    levels: tuple[ChainLevel, ...]

    @property
    def first(self) -> ChainLevel:
        return self.levels[0]

    @property
    def level_names(self) -> list[str]:
        return [lvl.level for lvl in self.levels]

    def get(self, level: str) -> Optional[ChainLevel]:
        for lvl in self.levels:
            if lvl.level == level:
                return lvl
        return None

    def next_after(self, level: str) -> Optional[ChainLevel]:
        current = self.get(level)
        if current is None or current.sequence >= len(self.levels):
            return None
        return self.levels[current.sequence]

    def sla_hours_by_level(self, payment_type: Optional[str]) -> dict[str, int]:
        return {lvl.level: lvl.sla_hours_for(payment_type) for lvl in self.levels}

    def pending_statuses(self) -> list[str]:
        return [lvl.pending_status for lvl in self.levels]

    def level_for_status(self, status: str) -> Optional[str]:
        """PENDING_<LEVEL> -> LEVEL when LEVEL is part of this chain."""
        if not status.startswith(PENDING_PREFIX):
            return None
        level = status[len(PENDING_PREFIX):]
        return level if self.get(level) else None

    @property
    def disbursement_level(self) -> Optional[ChainLevel]:
        return self.get(DISBURSEMENT)


def build_chain(cfg: Settings) -> ApprovalChain:
    if cfg.APPROVAL_LEVELS:
        names = list(cfg.APPROVAL_LEVELS)
        chain_name = "custom"
    else:
        if cfg.APPROVAL_CHAIN not in CHAIN_VARIANTS:
            raise ValueError(
                f"Unknown APPROVAL_CHAIN '{cfg.APPROVAL_CHAIN}'. "
                f"Expected one of {sorted(CHAIN_VARIANTS)}"
            )
        names = CHAIN_VARIANTS[cfg.APPROVAL_CHAIN]
        chain_name = cfg.APPROVAL_CHAIN

    if not names:
        raise ValueError("Approval chain must contain at least one level")
    if len(set(names)) != len(names):
        raise ValueError(f"Approval chain has duplicate levels: {names}")
    unknown = [n for n in names if n not in ASSIGNED_ROLES]
    if unknown:
        raise ValueError(f"Unknown approval levels: {unknown}")
    if DISBURSEMENT in names and names[-1] != DISBURSEMENT:
        raise ValueError("DISBURSEMENT must be the last level of the chain")

    sla_hours = {**BASE_SLA_HOURS, **cfg.SLA_HOURS}
    critical_hours = {**BASE_CRITICAL_SLA_HOURS, **cfg.CRITICAL_SLA_HOURS}

    levels = []
    for idx, name in enumerate(names, start=1):
        hours = sla_hours.get(name, cfg.DEFAULT_SLA_HOURS)
        levels.append(
            ChainLevel(
                level=name,
                sequence=idx,
                assigned_role=ASSIGNED_ROLES[name],
                sla_hours=hours,
                critical_sla_hours=critical_hours.get(name, hours),
            )
        )
    return ApprovalChain(name=chain_name, levels=tuple(levels))


@lru_cache()
def get_approval_chain() -> ApprovalChain:
    return build_chain(default_settings)
