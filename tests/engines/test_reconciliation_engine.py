"""
Tests for the reconciliation engine.

Covers:
- Statement comparison totals and buckets
- Signed difference
- Balance check tolerance
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

from trust_engines.matching import BankLine, BookEntry
from trust_engines.reconciliation import check_balance, compare_statement

D = date(2024, 4, 1)


def bank(amount, on=D):
    return BankLine(id=uuid4(), transaction_date=on, amount=Decimal(amount))


def book(amount, on=D):
    return BookEntry(id=uuid4(), transaction_date=on, amount=Decimal(amount))


class TestCompareStatement:

    def test_clean_statement(self):
        report = compare_statement([bank("500.00"), bank("-120.00")], [book("500.00"), book("-120.00")])
        summary = report.summary
        assert report.is_clean
        assert summary.matched_count == 2
        assert summary.matched_total == Decimal("380.00")
        assert summary.difference == Decimal("0.00")

    def test_pending_and_missing(self):
        report = compare_statement(
            [bank("500.00"), bank("-35.00")],
            [book("500.00"), book("-200.00")],
        )
        summary = report.summary
        assert not report.is_clean
        assert summary.pending_count == 1
        assert summary.pending_total == Decimal("-35.00")
        assert summary.missing_count == 1
        assert summary.missing_total == Decimal("-200.00")

    def test_difference_is_signed_staging_minus_books(self):
        report = compare_statement([bank("100.00")], [book("150.00")])
        assert report.summary.staging_total == Decimal("100.00")
        assert report.summary.transaction_total == Decimal("150.00")
        assert report.summary.difference == Decimal("-50.00")

    def test_empty(self):
        report = compare_statement([], [])
        assert report.is_clean
        assert report.summary.staging_count == 0
        assert report.summary.difference == Decimal("0.00")


class TestCheckBalance:

    def test_balanced(self):
        check = check_balance(Decimal("1000.00"), Decimal("1000.00"))
        assert check.is_balanced
        assert check.difference == Decimal("0.00")

    def test_out_of_balance(self):
        check = check_balance(Decimal("1000.00"), Decimal("990.00"))
        assert not check.is_balanced
        assert check.difference == Decimal("10.00")

    def test_one_cent_is_out_of_balance(self):
        assert not check_balance(Decimal("10.01"), Decimal("10.00")).is_balanced

    def test_custom_tolerance(self):
        assert check_balance(Decimal("10.01"), Decimal("10.00"), Decimal("0.05")).is_balanced
