"""
Money calculator: GST / TDS / total payable.

    gst   = base * gst% / 100   (0 when GST not applicable)
    tds   = base * tds% / 100   (0 when TDS not applicable)
    total = base + gst - tds

Each component is rounded to currency precision (2 dp, half-up) before the
total is formed, so the stored columns always satisfy the identity exactly.
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Union

from finapprove.exceptions import ValidationError

CENT = Decimal("0.01")
HUNDRED = Decimal("100")

Number = Union[Decimal, int, float, str]


@dataclass(frozen=True)
class Totals:
    base_amount: Decimal
    gst_amount: Decimal
    tds_amount: Decimal
    total_amount: Decimal


def to_money(value: Number) -> Decimal:
    """Quantize to 2 decimal places. Floats go through str() to avoid binary noise."""
    if isinstance(value, float):
        value = str(value)
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def _percentage_of(base: Decimal, percentage: Optional[Number]) -> Decimal:
    if percentage is None:
        return Decimal("0.00")
    pct = Decimal(str(percentage)) if isinstance(percentage, float) else Decimal(percentage)
    return to_money(base * pct / HUNDRED)


def compute_totals(
    base_amount: Number,
    gst_applicable: bool,
    gst_percentage: Optional[Number] = None,
    tds_applicable: bool = False,
    tds_percentage: Optional[Number] = None,
) -> Totals:
    base = to_money(base_amount)
    gst_amount = _percentage_of(base, gst_percentage) if gst_applicable else Decimal("0.00")
    tds_amount = _percentage_of(base, tds_percentage) if tds_applicable else Decimal("0.00")
    return Totals(
        base_amount=base,
        gst_amount=gst_amount,
        tds_amount=tds_amount,
        total_amount=base + gst_amount - tds_amount,
    )


def check_tds_within_gross(totals: Totals) -> None:
    """Business rule: TDS may not exceed the gross (base + GST) amount."""
    if totals.tds_amount > totals.base_amount + totals.gst_amount:
        raise ValidationError.for_field(
            "tds_percentage",
            "TDS amount cannot exceed base amount plus GST",
        )


def format_amount(amount: Decimal, currency: str = "INR") -> str:
    """Display string for notifications, e.g. 'INR 11,800.00'."""
    return f"{currency} {amount:,.2f}"
