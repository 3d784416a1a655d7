"""
trust_engines.matching -- scored matching of bank lines to ledger entries.

Responsibility:
    Two deterministic heuristics over plain values:

    * ``rank_candidates`` proposes existing ledger entries for one bank
      line: exact amount, inside a date window, scored
      ``100 - decay * |days|`` (floored at zero) and ordered by score, then
      most recent date, then most recent allocation.
    * ``auto_match`` pairs a whole statement against the books in two
      passes.  Pass 1 is exact (same date, amount within tolerance, and
      matching references when both sides carry one).  Pass 2 is fuzzy
      (date within the fuzzy window, amount within tolerance) over what
      pass 1 left.  Each line and each entry is used at most once; within a
      pass the first eligible entry in input order wins.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  Callers load rows and
    persist decisions; nothing here mutates state.

Invariants enforced:
    - Identical inputs produce identical outputs (no clock, no randomness).
    - Tolerance comparisons are Decimal-only.
    - A record is consumed by at most one pair.

Usage:
    from trust_engines.matching import BankLine, BookEntry, auto_match

    result = auto_match(
        [BankLine(id=s.id, transaction_date=s.transaction_date, amount=s.amount)],
        [BookEntry(id=t.id, transaction_date=t.transaction_date, amount=t.amount)],
    )
    result.matched_count
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from uuid import UUID

from trust_engines.tracer import traced_engine

DEFAULT_TOLERANCE = Decimal("0.01")


class MatchType(str, Enum):
    EXACT = "exact"
    FUZZY = "fuzzy"


@dataclass(frozen=True)
class BankLine:
    """A bank-side record (staging row)."""

    id: UUID
    transaction_date: date
    amount: Decimal
    reference: str | None = None
    description: str | None = None


@dataclass(frozen=True)
class BookEntry:
    """A book-side record (ledger transaction)."""

    id: UUID
    transaction_date: date
    amount: Decimal
    reference: str | None = None
    description: str | None = None
    seq: int = 0


@dataclass(frozen=True)
class ScoredCandidate:
    entry: BookEntry
    score: int
    days_difference: int


@dataclass(frozen=True)
class MatchPair:
    bank_line: BankLine
    book_entry: BookEntry
    match_type: MatchType

    @property
    def days_difference(self) -> int:
        return abs((self.bank_line.transaction_date - self.book_entry.transaction_date).days)


@dataclass(frozen=True)
class AutoMatchResult:
    matched: tuple[MatchPair, ...]
    unmatched_bank: tuple[BankLine, ...]
    unmatched_book: tuple[BookEntry, ...]

    @property
    def matched_count(self) -> int:
        return len(self.matched)

    @property
    def pending_count(self) -> int:
        return len(self.unmatched_bank)

    @property
    def missing_count(self) -> int:
        return len(self.unmatched_book)

    @property
    def exact_count(self) -> int:
        return sum(1 for m in self.matched if m.match_type is MatchType.EXACT)

    @property
    def fuzzy_count(self) -> int:
        return sum(1 for m in self.matched if m.match_type is MatchType.FUZZY)


def score_candidate(days_difference: int, decay_per_day: int = 5) -> int:
    """100 minus ``decay_per_day`` per day apart, never below zero."""
    return max(0, 100 - decay_per_day * abs(days_difference))


def _normalize_reference(reference: str | None) -> str:
    return (reference or "").strip()


def references_compatible(left: str | None, right: str | None) -> bool:
    """References only veto a match when both sides carry one."""
    a, b = _normalize_reference(left), _normalize_reference(right)
    if a and b:
        return a == b
    return True


@traced_engine(
    "candidate_ranking", "1.0",
    fingerprint_fields=("window_days", "decay_per_day", "limit"),
)
def rank_candidates(
    target: BankLine,
    candidates: Sequence[BookEntry],
    *,
    window_days: int = 14,
    decay_per_day: int = 5,
    limit: int | None = 10,
) -> tuple[ScoredCandidate, ...]:
    """
    Rank ledger entries that could be the same money as ``target``.

    Preconditions:
        ``candidates`` are already restricted to the right client, account
        and status by the caller.
    Postconditions:
        Every returned entry has exactly the target amount and lies within
        ``window_days`` of the target date.
    """
    scored: list[ScoredCandidate] = []
    for entry in candidates:
        if entry.amount != target.amount:
            continue
        days = abs((entry.transaction_date - target.transaction_date).days)
        if days > window_days:
            continue
        scored.append(ScoredCandidate(
            entry=entry,
            score=score_candidate(days, decay_per_day),
            days_difference=days,
        ))

    scored.sort(
        key=lambda c: (
            -c.score,
            -c.entry.transaction_date.toordinal(),
            -c.entry.seq,
        )
    )
    if limit is not None:
        scored = scored[:limit]
    return tuple(scored)


def _run_pass(
    bank_lines: Sequence[BankLine],
    book_entries: Sequence[BookEntry],
    used_bank: set[UUID],
    used_book: set[UUID],
    match_type: MatchType,
    accepts: Callable[[BankLine, BookEntry], bool],
) -> list[MatchPair]:
    pairs: list[MatchPair] = []
    for line in bank_lines:
        if line.id in used_bank:
            continue
        for entry in book_entries:
            if entry.id in used_book:
                continue
            if accepts(line, entry):
                pairs.append(MatchPair(bank_line=line, book_entry=entry, match_type=match_type))
                used_bank.add(line.id)
                used_book.add(entry.id)
                break
    return pairs


@traced_engine(
    "auto_match", "1.0",
    fingerprint_fields=("fuzzy_window_days", "tolerance"),
)
def auto_match(
    bank_lines: Sequence[BankLine],
    book_entries: Sequence[BookEntry],
    *,
    fuzzy_window_days: int = 1,
    tolerance: Decimal = DEFAULT_TOLERANCE,
) -> AutoMatchResult:
    """
    Two-pass statement matching.

    Postconditions:
        matched + unmatched_bank covers every bank line exactly once, and
        matched + unmatched_book covers every book entry exactly once.
    """
    used_bank: set[UUID] = set()
    used_book: set[UUID] = set()

    def amounts_match(line: BankLine, entry: BookEntry) -> bool:
        return abs(line.amount - entry.amount) < tolerance

    def exact(line: BankLine, entry: BookEntry) -> bool:
        return (
            line.transaction_date == entry.transaction_date
            and amounts_match(line, entry)
            and references_compatible(line.reference, entry.reference)
        )

    def fuzzy(line: BankLine, entry: BookEntry) -> bool:
        days = abs((line.transaction_date - entry.transaction_date).days)
        return days <= fuzzy_window_days and amounts_match(line, entry)

    matched = _run_pass(bank_lines, book_entries, used_bank, used_book, MatchType.EXACT, exact)
    matched += _run_pass(bank_lines, book_entries, used_bank, used_book, MatchType.FUZZY, fuzzy)

    return AutoMatchResult(
        matched=tuple(matched),
        unmatched_bank=tuple(line for line in bank_lines if line.id not in used_bank),
        unmatched_book=tuple(entry for entry in book_entries if entry.id not in used_book),
    )
