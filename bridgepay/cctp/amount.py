"""USDC amount conversion.

USDC has 6 decimals on every CCTP chain. On-chain amounts are raw integers
(``1_000_000`` is 1 USDC), humans and bills deal in decimals.

All conversion goes through :py:class:`decimal.Decimal`. Floats are accepted
for convenience and converted through their shortest ``repr``, so ``25.5``
becomes exactly ``Decimal("25.5")`` and not ``25.499999999999998...``.

Precision boundary
------------------

:py:func:`to_decimal` is exact only while the raw integer fits in the active
decimal context precision (28 significant digits by default). Anything larger
raises :py:class:`~bridgepay.cctp.errors.AmountPrecisionError` instead of
rounding quietly. Widen the context with :py:func:`decimal.localcontext` if
you really need to display such amounts.

Example::

    from decimal import Decimal
    from bridgepay.cctp.amount import to_subunits, to_decimal

    assert to_subunits(Decimal("25.50")) == 25_500_000
    assert to_decimal(25_500_000) == Decimal("25.5")
"""

import decimal
from decimal import ROUND_DOWN, Decimal, InvalidOperation

from bridgepay.cctp.errors import AmountPrecisionError, InvalidAmount

#: USDC decimals on all CCTP chains
USDC_DECIMALS = 6

#: Raw units per one USDC
SUBUNIT_SCALE = 10**USDC_DECIMALS

#: Largest value a Solidity ``uint256`` holds
MAX_UINT256 = 2**256 - 1


def _as_decimal(amount: Decimal | int | float | str) -> Decimal:
    if isinstance(amount, bool):
        raise InvalidAmount(f"Not an amount: {amount!r}")

    if isinstance(amount, Decimal):
        return amount

    if isinstance(amount, float):
        amount = repr(amount)

    try:
        return Decimal(amount)
    except (InvalidOperation, TypeError, ValueError) as e:
        raise InvalidAmount(f"Not an amount: {amount!r}") from e


def to_subunits(amount: Decimal | int | float | str) -> int:
    """Convert a human USDC amount to raw 6-decimal units.

    Digits beyond the 6th decimal are truncated toward zero.

    :param amount:
        Amount in USDC, e.g. ``Decimal("25.50")``.

    :return:
        Raw amount, e.g. ``25_500_000``.

    :raises InvalidAmount:
        If the amount is not a finite positive number, or is smaller than one raw unit.
    """
    value = _as_decimal(amount)

    if not value.is_finite():
        raise InvalidAmount(f"Amount must be finite, got {amount!r}")

    if value <= 0:
        raise InvalidAmount(f"Amount must be greater than zero, got {amount!r}")

    with decimal.localcontext() as ctx:
        # Enough digits for any uint256 so scaling itself never rounds
        ctx.prec = 100
        subunits = int((value * SUBUNIT_SCALE).to_integral_value(rounding=ROUND_DOWN))

    if subunits == 0:
        raise InvalidAmount(f"Amount {amount!r} is below the smallest unit 0.000001 USDC")

    if subunits > MAX_UINT256:
        raise InvalidAmount(f"Amount {amount!r} does not fit uint256")

    return subunits


def to_decimal(subunits: int) -> Decimal:
    """Convert raw 6-decimal units to a USDC amount.

    :param subunits:
        Raw non-negative integer amount.

    :return:
        Exact decimal amount, with 6 decimal places.

    :raises AmountPrecisionError:
        If the integer has more significant digits than the current decimal context.
    """
    assert isinstance(subunits, int) and not isinstance(subunits, bool), f"Expected int, got {type(subunits)}: {subunits}"

    if subunits < 0:
        raise ValueError(f"Raw amount cannot be negative: {subunits}")

    precision = decimal.getcontext().prec
    if len(str(subunits)) > precision:
        raise AmountPrecisionError(f"Raw amount {subunits} needs more than {precision} significant digits to convert exactly")

    return Decimal(subunits).scaleb(-USDC_DECIMALS)


def format_usdc(subunits: int) -> str:
    """Human-readable USDC string for log messages, e.g. ``25.50 USDC``."""
    with decimal.localcontext() as ctx:
        ctx.prec = 100
        return f"{to_decimal(subunits):,.2f} USDC"
