"""Selectors for the trust kernel (read side)."""

from trust_kernel.selectors.audit_selector import AuditSelector
from trust_kernel.selectors.ledger_selector import LedgerSelector
from trust_kernel.selectors.staging_selector import StagingSelector

__all__ = [
    "AuditSelector",
    "LedgerSelector",
    "StagingSelector",
]
