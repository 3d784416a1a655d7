"""
Tests for the matching engine.

Covers:
- Candidate scoring and ordering
- Exact and fuzzy statement passes
- One-to-one consumption of lines and entries
- Determinism
"""

from datetime import date, timedelta
from decimal import Decimal
from uuid import uuid4

from trust_engines.matching import (
    BankLine,
    BookEntry,
    MatchType,
    auto_match,
    rank_candidates,
    references_compatible,
    score_candidate,
)

D = date(2024, 3, 15)


def line(amount, on=D, reference=None):
    return BankLine(id=uuid4(), transaction_date=on, amount=Decimal(amount), reference=reference)


def entry(amount, on=D, reference=None, seq=0):
    return BookEntry(
        id=uuid4(), transaction_date=on, amount=Decimal(amount), reference=reference, seq=seq,
    )


class TestScoreCandidate:

    def test_same_day_scores_100(self):
        assert score_candidate(0) == 100

    def test_decay_per_day(self):
        assert score_candidate(3) == 85
        assert score_candidate(-3) == 85

    def test_floor_at_zero(self):
        assert score_candidate(40) == 0

    def test_custom_decay(self):
        assert score_candidate(2, decay_per_day=10) == 80


class TestReferencesCompatible:

    def test_both_present_must_match(self):
        assert references_compatible("1001", " 1001 ")
        assert not references_compatible("1001", "1002")

    def test_missing_side_never_vetoes(self):
        assert references_compatible(None, "1002")
        assert references_compatible("", "1002")
        assert references_compatible(None, None)


class TestRankCandidates:

    def test_exact_amount_only(self):
        target = line("-250.00")
        ranked = rank_candidates(target, [entry("-250.00"), entry("-250.01")])
        assert len(ranked) == 1
        assert ranked[0].entry.amount == Decimal("-250.00")

    def test_window(self):
        target = line("-250.00")
        near = entry("-250.00", on=D + timedelta(days=14))
        far = entry("-250.00", on=D - timedelta(days=15))
        ranked = rank_candidates(target, [near, far], window_days=14)
        assert [c.entry.id for c in ranked] == [near.id]
        assert ranked[0].score == 30
        assert ranked[0].days_difference == 14

    def test_ordering_score_then_date_then_seq(self):
        target = line("-100.00")
        two_days_before = entry("-100.00", on=D - timedelta(days=2), seq=1)
        two_days_after = entry("-100.00", on=D + timedelta(days=2), seq=2)
        same_day_old = entry("-100.00", on=D, seq=3)
        same_day_new = entry("-100.00", on=D, seq=4)

        ranked = rank_candidates(
            target, [two_days_before, same_day_old, two_days_after, same_day_new],
        )
        assert [c.entry.id for c in ranked] == [
            same_day_new.id,
            same_day_old.id,
            two_days_after.id,
            two_days_before.id,
        ]

    def test_limit(self):
        target = line("5.00")
        entries = [entry("5.00", seq=i) for i in range(15)]
        assert len(rank_candidates(target, entries, limit=10)) == 10
        assert len(rank_candidates(target, entries, limit=None)) == 15


class TestAutoMatch:

    def test_exact_pass(self):
        bank = [line("1000.00")]
        book = [entry("1000.00")]
        result = auto_match(bank, book)
        assert result.matched_count == 1
        assert result.matched[0].match_type is MatchType.EXACT
        assert result.pending_count == 0
        assert result.missing_count == 0

    def test_exact_same_day_wins_over_fuzzy_neighbour(self):
        """Pass 1 runs over every line before pass 2 starts."""
        bank = [line("50.00", on=D)]
        fuzzy_first = entry("50.00", on=D - timedelta(days=1))
        exact = entry("50.00", on=D)
        result = auto_match(bank, [fuzzy_first, exact])
        assert result.matched[0].book_entry.id == exact.id
        assert result.matched[0].match_type is MatchType.EXACT
        assert [e.id for e in result.unmatched_book] == [fuzzy_first.id]

    def test_reference_mismatch_blocks_exact_but_not_fuzzy(self):
        bank = [line("-75.00", reference="1001")]
        book = [entry("-75.00", reference="1002")]
        result = auto_match(bank, book)
        assert result.matched_count == 1
        assert result.matched[0].match_type is MatchType.FUZZY

    def test_fuzzy_window(self):
        bank = [line("20.00", on=D)]
        in_window = entry("20.00", on=D + timedelta(days=1))
        result = auto_match(bank, [in_window], fuzzy_window_days=1)
        assert result.fuzzy_count == 1

        out_of_window = entry("20.00", on=D + timedelta(days=2))
        result = auto_match(bank, [out_of_window], fuzzy_window_days=1)
        assert result.matched_count == 0
        assert result.pending_count == 1
        assert result.missing_count == 1

    def test_tolerance_is_strict(self):
        result = auto_match([line("10.00")], [entry("10.01")])
        assert result.matched_count == 0

    def test_each_record_used_once(self):
        bank = [line("30.00"), line("30.00")]
        book = [entry("30.00")]
        result = auto_match(bank, book)
        assert result.matched_count == 1
        assert result.pending_count == 1
        assert result.missing_count == 0

    def test_partition_is_complete(self):
        bank = [line("1.00"), line("2.00"), line("3.00")]
        book = [entry("2.00"), entry("4.00")]
        result = auto_match(bank, book)
        bank_ids = {m.bank_line.id for m in result.matched} | {l.id for l in result.unmatched_bank}
        book_ids = {m.book_entry.id for m in result.matched} | {e.id for e in result.unmatched_book}
        assert bank_ids == {l.id for l in bank}
        assert book_ids == {e.id for e in book}

    def test_deterministic(self):
        bank = [line("10.00"), line("10.00", on=D + timedelta(days=1))]
        book = [entry("10.00"), entry("10.00", on=D + timedelta(days=1))]
        first = auto_match(bank, book)
        second = auto_match(bank, book)
        assert first == second

    def test_days_difference(self):
        result = auto_match([line("8.00", on=D)], [entry("8.00", on=D - timedelta(days=1))])
        assert result.matched[0].days_difference == 1

    def test_emits_engine_trace(self, captured_logs):
        auto_match([line("1.00")], [entry("1.00")], fuzzy_window_days=2)
        traces = [r for r in captured_logs() if r["message"] == "TRUST_ENGINE_TRACE"]
        assert traces
        assert traces[-1]["engine_name"] == "auto_match"
        assert len(traces[-1]["input_fingerprint"]) == 16
