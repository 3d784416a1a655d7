"""
trust_engines.reconciliation -- three-view comparison for a trust account.

Responsibility:
    * ``compare_statement`` runs the two-pass matcher over bank lines and
      book entries and summarizes what matched, what the bank shows that the
      books do not (pending in bank) and what the books show that the bank
      does not (missing in bank).
    * ``check_balance`` compares the account's mirrored balance with the
      sum of its client ledgers.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - difference = staging_total - transaction_total, signed.
    - Findings are data: nothing here raises on a discrepancy.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from decimal import Decimal

from trust_engines.matching import (
    DEFAULT_TOLERANCE,
    BankLine,
    BookEntry,
    MatchPair,
    auto_match,
)
from trust_engines.tracer import traced_engine

_CENT = Decimal("0.01")


def _total(amounts) -> Decimal:
    return sum(amounts, Decimal("0")).quantize(_CENT)


@dataclass(frozen=True)
class ReconciliationSummary:
    staging_count: int
    staging_total: Decimal
    transaction_count: int
    transaction_total: Decimal
    matched_count: int
    matched_total: Decimal
    pending_count: int
    pending_total: Decimal
    missing_count: int
    missing_total: Decimal
    difference: Decimal


@dataclass(frozen=True)
class ReconciliationReport:
    summary: ReconciliationSummary
    matched: tuple[MatchPair, ...]
    pending_in_bank: tuple[BankLine, ...]
    missing_in_bank: tuple[BookEntry, ...]

    @property
    def is_clean(self) -> bool:
        return not self.pending_in_bank and not self.missing_in_bank


@dataclass(frozen=True)
class BalanceCheck:
    account_balance: Decimal
    ledger_total: Decimal
    difference: Decimal
    is_balanced: bool


@traced_engine(
    "statement_comparison", "1.0",
    fingerprint_fields=("fuzzy_window_days", "tolerance"),
)
def compare_statement(
    bank_lines: Sequence[BankLine],
    book_entries: Sequence[BookEntry],
    *,
    fuzzy_window_days: int = 1,
    tolerance: Decimal = DEFAULT_TOLERANCE,
) -> ReconciliationReport:
    """Match a statement against the books and total every bucket."""
    result = auto_match(
        bank_lines,
        book_entries,
        fuzzy_window_days=fuzzy_window_days,
        tolerance=tolerance,
    )

    staging_total = _total(line.amount for line in bank_lines)
    transaction_total = _total(entry.amount for entry in book_entries)

    summary = ReconciliationSummary(
        staging_count=len(bank_lines),
        staging_total=staging_total,
        transaction_count=len(book_entries),
        transaction_total=transaction_total,
        matched_count=result.matched_count,
        matched_total=_total(pair.bank_line.amount for pair in result.matched),
        pending_count=result.pending_count,
        pending_total=_total(line.amount for line in result.unmatched_bank),
        missing_count=result.missing_count,
        missing_total=_total(entry.amount for entry in result.unmatched_book),
        difference=staging_total - transaction_total,
    )

    return ReconciliationReport(
        summary=summary,
        matched=result.matched,
        pending_in_bank=result.unmatched_bank,
        missing_in_bank=result.unmatched_book,
    )


def check_balance(
    account_balance: Decimal,
    ledger_total: Decimal,
    tolerance: Decimal = DEFAULT_TOLERANCE,
) -> BalanceCheck:
    """``difference = account_balance - ledger_total``; balanced below tolerance."""
    difference = (account_balance - ledger_total).quantize(_CENT)
    return BalanceCheck(
        account_balance=account_balance,
        ledger_total=ledger_total,
        difference=difference,
        is_balanced=abs(difference) < tolerance,
    )
