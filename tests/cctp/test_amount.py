"""USDC amount conversion."""

import decimal
from decimal import Decimal

import pytest

from bridgepay.cctp.amount import MAX_UINT256, format_usdc, to_decimal, to_subunits
from bridgepay.cctp.errors import AmountPrecisionError, InvalidAmount


def test_to_subunits_bill_amount():
    """25.50 USDC is 25,500,000 raw units."""
    assert to_subunits(Decimal("25.50")) == 25_500_000
    assert to_subunits("25.50") == 25_500_000
    assert to_subunits(25) == 25_000_000


def test_to_subunits_float_uses_shortest_repr():
    """Floats do not leak binary rounding into raw units."""
    assert to_subunits(25.5) == 25_500_000
    assert to_subunits(0.1) == 100_000
    assert to_subunits(1.005) == 1_005_000


def test_to_subunits_truncates_beyond_six_decimals():
    """Digits past the 6th decimal are dropped, never rounded up."""
    assert to_subunits("0.000001") == 1
    assert to_subunits("0.0000019") == 1
    assert to_subunits("1.9999999") == 1_999_999


@pytest.mark.parametrize("amount", [0, "0", "-1", Decimal("-0.01"), "NaN", "Infinity", "abc", True, None])
def test_to_subunits_rejects_non_positive_and_garbage(amount):
    with pytest.raises(InvalidAmount):
        to_subunits(amount)


def test_to_subunits_rejects_dust():
    """Less than one raw unit would burn nothing."""
    with pytest.raises(InvalidAmount, match="smallest unit"):
        to_subunits("0.0000001")


def test_to_subunits_rejects_overflow():
    with pytest.raises(InvalidAmount, match="uint256"):
        to_subunits(Decimal(MAX_UINT256))


@pytest.mark.parametrize("amount", ["25.5", "0.000001", "1000000", "123456.654321"])
def test_to_decimal_inverts_to_subunits(amount):
    assert to_decimal(to_subunits(amount)) == Decimal(amount)


def test_to_decimal_keeps_six_places():
    assert str(to_decimal(25_500_000)) == "25.500000"
    assert to_decimal(0) == 0


def test_to_decimal_negative():
    with pytest.raises(ValueError):
        to_decimal(-1)


def test_to_decimal_precision_boundary():
    """Amounts wider than the decimal context raise instead of rounding."""
    huge = 10**30 + 1
    with pytest.raises(AmountPrecisionError):
        to_decimal(huge)

    with decimal.localcontext() as ctx:
        ctx.prec = 100
        assert to_decimal(huge) == Decimal("1000000000000000000000000.000001")


def test_format_usdc():
    assert format_usdc(25_500_000) == "25.50 USDC"
    assert format_usdc(1_234_567_890_000) == "1,234,567.89 USDC"
    # Log formatting never trips over the precision boundary
    assert format_usdc(MAX_UINT256).endswith(" USDC")


@pytest.mark.parametrize("subunits", [1, 25_500_000, 2**63 - 1, 2**64 - 1])
def test_to_subunits_inverts_to_decimal(subunits):
    assert to_subunits(to_decimal(subunits)) == subunits
