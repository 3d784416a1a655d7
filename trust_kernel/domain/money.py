"""
Money helpers -- single-currency cent arithmetic.

Responsibility:
    Normalize every monetary input to a two-place ``Decimal`` and provide the
    running-balance fold used by the ledger replay.

Architecture position:
    Kernel > Domain -- pure functions, no I/O.

Invariants enforced:
    - Amounts are quantized to cents with ROUND_HALF_UP before they reach
      the database or a comparison.
    - Floats are converted through ``str`` so 0.1 stays 0.10.
"""

from collections.abc import Iterable
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from trust_kernel.exceptions import ValidationFailedError

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
DEFAULT_TOLERANCE = Decimal("0.01")


def to_money(value, field: str = "amount") -> Decimal:
    """
    Convert ``value`` to a cent-quantized Decimal.

    Accepts Decimal, int, float and numeric strings (commas, currency
    symbols and accounting parentheses are tolerated in strings).

    Raises:
        ValidationFailedError: value is missing or not numeric.
    """
    if value is None or isinstance(value, bool):
        raise ValidationFailedError(field, "amount is required")
    if isinstance(value, Decimal):
        dec = value
    elif isinstance(value, int):
        dec = Decimal(value)
    elif isinstance(value, float):
        dec = Decimal(str(value))
    else:
        text = str(value).strip().replace(",", "").replace("$", "")
        negative = text.startswith("(") and text.endswith(")")
        if negative:
            text = text[1:-1]
        try:
            dec = Decimal(text)
        except InvalidOperation:
            raise ValidationFailedError(field, f"not a valid amount: {value!r}") from None
        if negative:
            dec = -dec
    if not dec.is_finite():
        raise ValidationFailedError(field, f"not a valid amount: {value!r}")
    return dec.quantize(CENT, rounding=ROUND_HALF_UP)


def amounts_equal(a: Decimal, b: Decimal, tolerance: Decimal = DEFAULT_TOLERANCE) -> bool:
    """True when ``a`` and ``b`` differ by strictly less than ``tolerance``."""
    return abs(a - b) < tolerance


def within_tolerance(a: Decimal, b: Decimal, tolerance: Decimal = DEFAULT_TOLERANCE) -> bool:
    """True unless ``a`` and ``b`` differ by more than ``tolerance``."""
    return abs(a - b) <= tolerance


def running_balances(opening: Decimal, amounts: Iterable[Decimal]) -> list[Decimal]:
    """Cumulative balance after each amount, starting from ``opening``."""
    balances: list[Decimal] = []
    balance = opening
    for amount in amounts:
        balance = balance + amount
        balances.append(balance)
    return balances
