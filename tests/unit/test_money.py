"""Unit tests for minor-unit money conversion and status mapping"""

from decimal import Decimal

import pytest

from revenue_attestor.domain.models import FinancialStatus, map_status
from revenue_attestor.domain.money import from_minor_units, minor_units, to_decimal, to_minor_units
from revenue_attestor.infrastructure.providers import paypal, shopify, square, stripe, woocommerce


def test_to_minor_units_decimal_strings():
    """Test decimal strings convert exactly"""
    assert to_minor_units("12.34", "USD") == 1234
    assert to_minor_units("0.10", "USD") == 10
    assert to_minor_units("-15.00", "USD") == -1500
    assert to_minor_units(None, "USD") == 0
    assert to_minor_units("", "USD") == 0


def test_to_minor_units_floats_avoid_binary_expansion():
    """Test floats go through their shortest repr, so 0.1 + 0.2 style errors never appear"""
    assert to_minor_units(19.99, "USD") == 1999
    assert to_minor_units(1.005, "USD") == 101  # repr is "1.005", rounded half-up


def test_to_minor_units_currency_exponents():
    """Test zero- and three-decimal currencies"""
    assert to_minor_units("1500", "JPY") == 1500
    assert to_minor_units("1.234", "KWD") == 1234
    assert to_minor_units("1.23", "usd") == 123


def test_to_minor_units_rejects_out_of_range_amounts():
    """Test amounts too large to quantize raise ValueError rather than a decimal signal"""
    with pytest.raises(ValueError):
        to_minor_units("1E+40", "USD")
    with pytest.raises(ValueError):
        to_minor_units(Decimal("9" * 30), "JPY")


def test_from_minor_units_is_exact():
    assert from_minor_units(42000, "USD") == Decimal("420.00")
    assert str(from_minor_units(42000, "USD")) == "420.00"
    assert from_minor_units(1500, "JPY") == Decimal("1500")
    assert from_minor_units(-5, "USD") == Decimal("-0.05")


def test_minor_units_rejects_fractions():
    assert minor_units(2350) == 2350
    assert minor_units("2350") == 2350
    with pytest.raises(ValueError):
        minor_units("23.5")


@pytest.mark.parametrize("bad", ["abc", "NaN", "Infinity", True])
def test_to_decimal_rejects_non_amounts(bad):
    with pytest.raises(ValueError):
        to_decimal(bad)


def test_map_status_is_total():
    """Test unknown or missing statuses map to pending rather than failing"""
    assert map_status(shopify.STATUS_MAP, "PAID") == FinancialStatus.PAID
    assert map_status(shopify.STATUS_MAP, "something_new") == FinancialStatus.PENDING
    assert map_status(shopify.STATUS_MAP, None) == FinancialStatus.PENDING


@pytest.mark.parametrize(
    "mapping, raw, expected",
    [
        (stripe.STATUS_MAP, "succeeded", FinancialStatus.PAID),
        (stripe.STATUS_MAP, "failed", FinancialStatus.FAILED),
        (shopify.STATUS_MAP, "partially_refunded", FinancialStatus.PAID),
        (shopify.STATUS_MAP, "authorized", FinancialStatus.PENDING),
        (shopify.STATUS_MAP, "refunded", FinancialStatus.REFUNDED),
        (woocommerce.STATUS_MAP, "on-hold", FinancialStatus.PENDING),
        (woocommerce.STATUS_MAP, "cancelled", FinancialStatus.VOIDED),
        (square.STATUS_MAP, "CANCELED", FinancialStatus.VOIDED),
        (square.STATUS_MAP, "COMPLETED", FinancialStatus.PAID),
        (paypal.STATUS_MAP, "D", FinancialStatus.FAILED),
        (paypal.STATUS_MAP, "P", FinancialStatus.PENDING),
    ],
)
def test_provider_status_tables(mapping, raw, expected):
    assert map_status(mapping, raw) == expected
