"""
Data transfer objects returned by trust kernel services and selectors.

Frozen dataclasses only -- callers never receive ORM instances from a
selector, and bulk results are plain data that can be serialized as-is.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID


# ---------------------------------------------------------------------------
# Bulk and import results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ItemError:
    """One failed item in a bulk operation."""

    item_id: UUID
    code: str
    message: str


@dataclass(frozen=True)
class BulkResult:
    """
    Mixed outcome of a per-item bulk operation.

    The batch itself always succeeds; failures are data.
    """

    succeeded: tuple[UUID, ...] = ()
    errors: tuple[ItemError, ...] = ()

    @property
    def succeeded_count(self) -> int:
        return len(self.succeeded)

    @property
    def skipped_count(self) -> int:
        return len(self.errors)

    def as_dict(self, verb: str) -> dict[str, Any]:
        """Legacy response shape, e.g. ``{"posted": 3, "skipped": 1, "errors": [...]}``."""
        return {
            verb: self.succeeded_count,
            "skipped": self.skipped_count,
            "errors": [f"ID {e.item_id}: {e.message}" for e in self.errors],
        }


@dataclass(frozen=True)
class RowError:
    row_number: int
    message: str


@dataclass(frozen=True)
class SkippedRow:
    row_number: int
    reason: str
    reference: str | None = None
    amount: Decimal | None = None


@dataclass(frozen=True)
class ImportResult:
    batch_id: str
    imported: int
    duplicates: int
    skipped: int
    staging_ids: tuple[UUID, ...] = ()
    errors: tuple[RowError, ...] = ()
    skipped_rows: tuple[SkippedRow, ...] = ()


# ---------------------------------------------------------------------------
# Read models
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TransactionView:
    id: UUID
    ledger_id: UUID
    seq: int
    transaction_type: str
    transaction_date: date
    amount: Decimal
    running_balance: Decimal
    status: str
    description: str | None = None
    reference_number: str | None = None
    check_number: str | None = None
    payee: str | None = None
    staging_id: UUID | None = None
    split_group_id: UUID | None = None
    related_transaction_id: UUID | None = None


@dataclass(frozen=True)
class LedgerSnapshot:
    """Balance plus ordered history for one client ledger."""

    ledger_id: UUID
    client_id: UUID
    account_id: UUID
    balance: Decimal
    is_active: bool
    transactions: tuple[TransactionView, ...]
    transaction_count: int
    last_activity: date | None


@dataclass(frozen=True)
class LedgerListing:
    ledger_id: UUID
    client_id: UUID
    client_name: str
    balance: Decimal
    is_active: bool
    transaction_count: int
    last_activity: date | None


@dataclass(frozen=True)
class StagingView:
    id: UUID
    seq: int
    account_id: UUID
    transaction_date: date
    amount: Decimal
    staging_type: str
    status: str
    description: str | None = None
    reference_number: str | None = None
    payee: str | None = None
    client_id: UUID | None = None
    client_name: str | None = None
    posted_transaction_id: UUID | None = None
    matched_transaction_id: UUID | None = None
    import_batch_id: str | None = None


@dataclass(frozen=True)
class StatusBucket:
    count: int = 0
    deposits: Decimal = Decimal("0.00")
    withdrawals: Decimal = Decimal("0.00")
    net: Decimal = Decimal("0.00")


@dataclass(frozen=True)
class StagingList:
    """Staging records with a per-status summary and a grand total."""

    records: tuple[StagingView, ...]
    summary: dict[str, StatusBucket]
    total: StatusBucket

    @property
    def total_count(self) -> int:
        return len(self.records)


@dataclass(frozen=True)
class CandidateMatch:
    """A pending transaction proposed for a staging record."""

    transaction_id: UUID
    transaction_date: date
    amount: Decimal
    score: int
    days_difference: int
    description: str | None = None
    reference: str | None = None
    payee: str | None = None


@dataclass(frozen=True)
class SplitLine:
    """One client allocation of a split instrument (positive magnitude)."""

    client_id: UUID
    amount: Decimal
    description: str | None = None


@dataclass(frozen=True)
class SplitGroupView:
    split_group_id: UUID
    transaction_type: str
    transaction_date: date
    check_number: str | None
    payee: str | None
    total: Decimal
    lines: tuple[TransactionView, ...]


@dataclass(frozen=True)
class BalanceSummary:
    """Mirror balance vs client-ledger sum for one trust account."""

    account_id: UUID
    account_name: str
    account_type: str
    account_balance: Decimal
    ledger_total: Decimal
    difference: Decimal
    is_balanced: bool
    ledger_count: int
    active_ledger_count: int


@dataclass(frozen=True)
class FirmBalanceSummary:
    accounts: tuple[BalanceSummary, ...]
    total_account_balance: Decimal
    total_ledger_balance: Decimal
    total_difference: Decimal
    is_balanced: bool


@dataclass(frozen=True)
class AuditTrailEntry:
    seq: int
    action: str
    entity_type: str
    entity_id: UUID | None
    client_id: UUID | None
    old_values: dict | None
    new_values: dict | None
    description: str | None
    actor_id: UUID
    timestamp: datetime
    changed_fields: tuple[str, ...] = field(default=())
