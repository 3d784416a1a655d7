"""
Tunable matching and reconciliation policy.

The kernel never reads configuration files; ``trust_config`` builds a
``TrustPolicy`` and callers hand it to the services that need one.
"""

from dataclasses import dataclass
from decimal import Decimal


@dataclass(frozen=True)
class TrustPolicy:
    # Candidate proposals
    match_window_days: int = 14
    score_decay_per_day: int = 5
    candidate_limit: int = 10

    # Statement auto-match
    fuzzy_window_days: int = 1
    amount_tolerance: Decimal = Decimal("0.01")

    # Three-way balance check
    balance_tolerance: Decimal = Decimal("0.01")

    # When True, rows without a reference dedup on date + amount + description
    fallback_dedup_key: bool = False

    def __post_init__(self) -> None:
        if self.match_window_days < 0:
            raise ValueError("match_window_days must be >= 0")
        if self.fuzzy_window_days < 0:
            raise ValueError("fuzzy_window_days must be >= 0")
        if self.candidate_limit < 1:
            raise ValueError("candidate_limit must be >= 1")
        if self.amount_tolerance <= 0 or self.balance_tolerance <= 0:
            raise ValueError("tolerances must be positive")
