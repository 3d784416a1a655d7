"""
Configuration schema -- frozen dataclasses only, no I/O.

  TrustSettings = runtime settings (database, logging, matching policy)
"""

from dataclasses import dataclass
from decimal import Decimal

from trust_kernel.domain.policy import TrustPolicy

DEFAULT_DATABASE_URL = "sqlite:///trust_ledger.db"


@dataclass(frozen=True)
class TrustSettings:
    database_url: str = DEFAULT_DATABASE_URL
    log_level: str = "INFO"

    match_window_days: int = 14
    score_decay_per_day: int = 5
    candidate_limit: int = 10
    fuzzy_window_days: int = 1
    amount_tolerance: Decimal = Decimal("0.01")
    balance_tolerance: Decimal = Decimal("0.01")
    fallback_dedup_key: bool = False

    def policy(self) -> TrustPolicy:
        """The kernel-facing slice of the settings."""
        return TrustPolicy(
            match_window_days=self.match_window_days,
            score_decay_per_day=self.score_decay_per_day,
            candidate_limit=self.candidate_limit,
            fuzzy_window_days=self.fuzzy_window_days,
            amount_tolerance=self.amount_tolerance,
            balance_tolerance=self.balance_tolerance,
            fallback_dedup_key=self.fallback_dedup_key,
        )
