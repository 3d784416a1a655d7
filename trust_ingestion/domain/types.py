"""
trust_ingestion.domain.types -- frozen results of parsing a statement.

ZERO I/O.  Imports only from trust_kernel/domain/.
"""

from __future__ import annotations

from dataclasses import dataclass

from trust_kernel.domain.dtos import RowError
from trust_kernel.domain.statement import StatementRow


@dataclass(frozen=True)
class ColumnMap:
    """Which source header feeds each statement field (None when absent)."""

    date: str
    amount: str | None = None
    debit: str | None = None
    credit: str | None = None
    description: str | None = None
    type: str | None = None
    reference: str | None = None
    payee: str | None = None

    @property
    def has_amount(self) -> bool:
        return bool(self.amount or self.debit or self.credit)


@dataclass(frozen=True)
class ParseResult:
    """Rows that parsed, rows that did not, and the header mapping used."""

    rows: tuple[StatementRow, ...]
    errors: tuple[RowError, ...]
    column_map: ColumnMap | None = None
    header_row: int = 1

    @property
    def row_count(self) -> int:
        return len(self.rows) + len(self.errors)
