"""
Unit tests for finapprove/services/money_service.py

Tests: compute_totals (GST, TDS, rounding), check_tds_within_gross,
       to_money, format_amount.
"""

from decimal import Decimal

import pytest

from finapprove.exceptions import ValidationError
from finapprove.services.money_service import (
    check_tds_within_gross,
    compute_totals,
    format_amount,
    to_money,
)


def test_gst_added_to_total():
    totals = compute_totals(Decimal("10000"), True, Decimal("18"))
    assert totals.gst_amount == Decimal("1800.00")
    assert totals.tds_amount == Decimal("0.00")
    assert totals.total_amount == Decimal("11800.00")


def test_tds_deducted_from_total():
    totals = compute_totals(Decimal("10000"), True, Decimal("18"), True, Decimal("2"))
    assert totals.tds_amount == Decimal("200.00")
    assert totals.total_amount == Decimal("11600.00")


def test_percentages_ignored_when_flags_off():
    totals = compute_totals(Decimal("5000"), False, Decimal("18"), False, Decimal("10"))
    assert totals.gst_amount == Decimal("0.00")
    assert totals.tds_amount == Decimal("0.00")
    assert totals.total_amount == Decimal("5000.00")


def test_components_rounded_half_up_before_total():
    # 100.05 * 18% = 18.009 -> 18.01
    totals = compute_totals(Decimal("100.05"), True, Decimal("18"))
    assert totals.gst_amount == Decimal("18.01")
    assert totals.total_amount == totals.base_amount + totals.gst_amount - totals.tds_amount


def test_float_inputs_do_not_leak_binary_noise():
    assert to_money(0.1 + 0.2) == Decimal("0.30")
    totals = compute_totals(199.99, True, 12.5)
    assert totals.gst_amount == Decimal("25.00")


def test_tds_above_gross_rejected():
    totals = compute_totals(Decimal("100"), False, None, True, Decimal("150"))
    with pytest.raises(ValidationError) as exc_info:
        check_tds_within_gross(totals)
    assert exc_info.value.errors[0]["field"] == "tds_percentage"


def test_tds_equal_to_gross_allowed():
    totals = compute_totals(Decimal("100"), False, None, True, Decimal("100"))
    check_tds_within_gross(totals)
    assert totals.total_amount == Decimal("0.00")


def test_format_amount():
    assert format_amount(Decimal("11800"), "INR") == "INR 11,800.00"
    assert format_amount(Decimal("12.5"), "USD") == "USD 12.50"
