"""
Reconciliation record model -- an append-only statement snapshot.

One row per (account, statement date) check comparing the bank statement
balance, the account's mirrored book balance and the sum of client ledgers.
Never updated or deleted (db/immutability.py).
"""

from datetime import date
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import ForeignKey, Index, Text
from sqlalchemy.orm import Mapped, mapped_column

from trust_kernel.db.base import TrackedBase, UUIDString, str_enum


class ReconciliationStatus(str, Enum):
    BALANCED = "balanced"
    UNBALANCED = "unbalanced"


class ReconciliationRecord(TrackedBase):
    __tablename__ = "trust_reconciliations"

    __table_args__ = (
        Index("idx_reconciliation_account_date", "account_id", "statement_date"),
    )

    account_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("trust_accounts.id"),
        nullable=False,
    )

    statement_date: Mapped[date] = mapped_column(nullable=False)
    statement_balance: Mapped[Decimal] = mapped_column(nullable=False)
    book_balance: Mapped[Decimal] = mapped_column(nullable=False)
    ledger_total: Mapped[Decimal] = mapped_column(nullable=False)

    # statement_balance - ledger_total
    difference: Mapped[Decimal] = mapped_column(nullable=False)

    status: Mapped[ReconciliationStatus] = mapped_column(
        str_enum(ReconciliationStatus, 20),
        nullable=False,
    )

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
