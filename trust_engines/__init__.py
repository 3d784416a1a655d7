"""
Pure calculation engines for the trust subledger.

Engines take plain frozen dataclasses, return plain frozen dataclasses and
perform no I/O.  Services in ``trust_kernel.services`` load rows, call an
engine, and persist whatever the engine decided.
"""

from trust_engines.matching import (
    AutoMatchResult,
    BankLine,
    BookEntry,
    MatchPair,
    MatchType,
    ScoredCandidate,
    auto_match,
    rank_candidates,
    score_candidate,
)
from trust_engines.reconciliation import (
    BalanceCheck,
    ReconciliationReport,
    ReconciliationSummary,
    check_balance,
    compare_statement,
)

__all__ = [
    "AutoMatchResult",
    "BalanceCheck",
    "BankLine",
    "BookEntry",
    "MatchPair",
    "MatchType",
    "ReconciliationReport",
    "ReconciliationSummary",
    "ScoredCandidate",
    "auto_match",
    "check_balance",
    "compare_statement",
    "rank_candidates",
    "score_candidate",
]
