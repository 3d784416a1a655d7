"""
Unit tests for money helpers.

Verifies:
- Cent quantization with ROUND_HALF_UP
- Float inputs go through str (0.1 stays 0.10)
- Accounting notation in strings
- Tolerance comparison and running balance fold
"""

from decimal import Decimal

import pytest

from trust_kernel.domain.money import (
    CENT,
    ZERO,
    amounts_equal,
    running_balances,
    to_money,
    within_tolerance,
)
from trust_kernel.exceptions import ValidationFailedError


class TestToMoney:
    """Tests for to_money."""

    def test_decimal_is_quantized(self):
        """Decimals are rounded to cents."""
        assert to_money(Decimal("10.555")) == Decimal("10.56")
        assert to_money(Decimal("10.554")) == Decimal("10.55")

    def test_int(self):
        assert to_money(100) == Decimal("100.00")

    def test_float_goes_through_str(self):
        """0.1 + 0.2 style artifacts never reach the ledger."""
        assert to_money(0.1) == Decimal("0.10")
        assert to_money(1234.5) == Decimal("1234.50")

    def test_string_with_commas_and_symbol(self):
        assert to_money("$1,234.56") == Decimal("1234.56")

    def test_accounting_parentheses_are_negative(self):
        assert to_money("(250.00)") == Decimal("-250.00")

    def test_negative_string(self):
        assert to_money("-42.10") == Decimal("-42.10")

    def test_result_has_two_places(self):
        assert to_money("5").as_tuple().exponent == CENT.as_tuple().exponent

    def test_none_rejected(self):
        with pytest.raises(ValidationFailedError) as exc_info:
            to_money(None)
        assert exc_info.value.field == "amount"

    def test_bool_rejected(self):
        """True is an int subclass but never an amount."""
        with pytest.raises(ValidationFailedError):
            to_money(True)

    def test_garbage_rejected_with_field_name(self):
        with pytest.raises(ValidationFailedError) as exc_info:
            to_money("twelve", field="credit")
        assert exc_info.value.field == "credit"
        assert exc_info.value.code == "VALIDATION_FAILED"

    def test_non_finite_rejected(self):
        with pytest.raises(ValidationFailedError):
            to_money("NaN")
        with pytest.raises(ValidationFailedError):
            to_money(Decimal("Infinity"))


class TestAmountsEqual:
    """Tolerance is strict: a difference equal to the tolerance is unequal."""

    def test_identical(self):
        assert amounts_equal(Decimal("10.00"), Decimal("10.00"))

    def test_sub_cent_difference(self):
        assert amounts_equal(Decimal("10.000"), Decimal("10.009"))

    def test_one_cent_difference_is_unequal(self):
        assert not amounts_equal(Decimal("10.00"), Decimal("10.01"))

    def test_custom_tolerance(self):
        assert amounts_equal(Decimal("10.00"), Decimal("10.04"), Decimal("0.05"))


class TestWithinTolerance:
    """Inclusive: only a difference above the tolerance fails."""

    def test_one_cent_difference_accepted(self):
        assert within_tolerance(Decimal("-250.01"), Decimal("-250.00"))

    def test_two_cent_difference_rejected(self):
        assert not within_tolerance(Decimal("-250.02"), Decimal("-250.00"))

    def test_unquantized_column_values(self):
        assert within_tolerance(Decimal("10.010000000"), Decimal("10.000000000"))


class TestRunningBalances:

    def test_fold_from_zero(self):
        amounts = [Decimal("100.00"), Decimal("-30.00"), Decimal("5.50")]
        assert running_balances(ZERO, amounts) == [
            Decimal("100.00"),
            Decimal("70.00"),
            Decimal("75.50"),
        ]

    def test_fold_from_opening(self):
        assert running_balances(Decimal("50.00"), [Decimal("-50.00")]) == [ZERO]

    def test_empty(self):
        assert running_balances(Decimal("12.00"), []) == []
