"""
Trust transaction model -- a posted, signed money movement on one ledger.

Contract:
    Rows are written only by the posting-side services (PostingService,
    TransactionService, SplitService).  ``amount`` is signed by the
    transaction type's direction; ``running_balance`` is the ledger balance
    after this row in (transaction_date, seq) order.

Invariants enforced:
    - transaction_type, seq and split_group_id never change after insert
      (db/immutability.py).
    - running_balance is rewritten only by LedgerService.recalculate_tail.
"""

from datetime import date
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from trust_kernel.db.base import TrackedBase, UUIDString, str_enum
from trust_kernel.domain.transaction_types import TransactionType


class TransactionStatus(str, Enum):
    PENDING = "pending"
    CLEARED = "cleared"


class TrustTransaction(TrackedBase):
    __tablename__ = "trust_transactions"

    __table_args__ = (
        Index("idx_trust_txn_ledger_order", "ledger_id", "transaction_date", "seq"),
        Index("idx_trust_txn_staging", "staging_id"),
        Index("idx_trust_txn_split_group", "split_group_id"),
        Index("idx_trust_txn_reference", "reference_number"),
    )

    ledger_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("trust_ledgers.id"),
        nullable=False,
    )

    # Allocation order; tiebreaker for same-day transactions
    seq: Mapped[int] = mapped_column(nullable=False, unique=True)

    transaction_type: Mapped[TransactionType] = mapped_column(
        str_enum(TransactionType),
        nullable=False,
    )

    amount: Mapped[Decimal] = mapped_column(nullable=False)

    running_balance: Mapped[Decimal] = mapped_column(nullable=False)

    transaction_date: Mapped[date] = mapped_column(nullable=False)

    status: Mapped[TransactionStatus] = mapped_column(
        str_enum(TransactionStatus, 20),
        nullable=False,
        default=TransactionStatus.PENDING,
    )

    cleared_date: Mapped[date | None] = mapped_column(nullable=True)

    description: Mapped[str | None] = mapped_column(String(500), nullable=True)
    memo: Mapped[str | None] = mapped_column(Text, nullable=True)
    reference_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    check_number: Mapped[str | None] = mapped_column(String(50), nullable=True)
    payee: Mapped[str | None] = mapped_column(String(200), nullable=True)
    received_from: Mapped[str | None] = mapped_column(String(200), nullable=True)

    staging_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    split_group_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    related_transaction_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    @property
    def instrument_reference(self) -> str | None:
        """The value a bank statement would show: check number, else reference."""
        return self.check_number or self.reference_number

    def __repr__(self) -> str:
        return (
            f"<TrustTransaction #{self.seq} {self.transaction_type} "
            f"{self.amount} on {self.transaction_date}>"
        )
