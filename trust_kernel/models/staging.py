"""
Staging record model -- an imported bank line awaiting attribution.

State machine::

    unassigned -> assigned -> posted
    unassigned <-> assigned                (assign / unassign)
    unassigned | assigned -> rejected      (terminal)
    posted -> assigned | unassigned        (unpost)
    unassigned | assigned -> reconciled    (mark_reconciled)

Invariants enforced:
    - Only ASSIGNED records with a client_id are posted.
    - While POSTED, the financial fields (account_id, transaction_date,
      amount, reference_number, description) are frozen (db/immutability.py).
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import JSON, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from trust_kernel.db.base import TrackedBase, UUIDString, str_enum
from trust_kernel.domain.transaction_types import StagingType


class StagingStatus(str, Enum):
    UNASSIGNED = "unassigned"
    ASSIGNED = "assigned"
    POSTED = "posted"
    REJECTED = "rejected"
    RECONCILED = "reconciled"


ALLOWED_TRANSITIONS: dict[StagingStatus, frozenset[StagingStatus]] = {
    StagingStatus.UNASSIGNED: frozenset({
        StagingStatus.ASSIGNED,
        StagingStatus.REJECTED,
        StagingStatus.RECONCILED,
    }),
    StagingStatus.ASSIGNED: frozenset({
        StagingStatus.ASSIGNED,
        StagingStatus.UNASSIGNED,
        StagingStatus.POSTED,
        StagingStatus.REJECTED,
        StagingStatus.RECONCILED,
    }),
    StagingStatus.POSTED: frozenset({
        StagingStatus.ASSIGNED,
        StagingStatus.UNASSIGNED,
    }),
    StagingStatus.REJECTED: frozenset(),
    StagingStatus.RECONCILED: frozenset(),
}

# Fields a posted record may not change
FROZEN_WHEN_POSTED = (
    "account_id",
    "transaction_date",
    "amount",
    "reference_number",
    "description",
)


class StagingRecord(TrackedBase):
    __tablename__ = "trust_staging"

    __table_args__ = (
        Index("idx_staging_account_status", "account_id", "status"),
        Index("idx_staging_client", "client_id"),
        Index("idx_staging_dedup", "account_id", "reference_number"),
        Index("idx_staging_batch", "import_batch_id"),
    )

    seq: Mapped[int] = mapped_column(nullable=False, unique=True)

    account_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("trust_accounts.id"),
        nullable=False,
    )

    transaction_date: Mapped[date] = mapped_column(nullable=False)

    amount: Mapped[Decimal] = mapped_column(nullable=False)

    staging_type: Mapped[StagingType] = mapped_column(
        str_enum(StagingType, 20),
        nullable=False,
        default=StagingType.OTHER,
    )

    description: Mapped[str | None] = mapped_column(String(500), nullable=True)
    reference_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    payee: Mapped[str | None] = mapped_column(String(200), nullable=True)

    client_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("trust_clients.id"),
        nullable=True,
    )

    status: Mapped[StagingStatus] = mapped_column(
        str_enum(StagingStatus, 20),
        nullable=False,
        default=StagingStatus.UNASSIGNED,
    )

    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    posted_transaction_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    matched_transaction_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    posted_at: Mapped[datetime | None] = mapped_column(nullable=True)
    posted_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    import_batch_id: Mapped[str | None] = mapped_column(String(50), nullable=True)
    source_row: Mapped[int | None] = mapped_column(Integer, nullable=True)
    raw_row: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    def can_transition_to(self, target: StagingStatus) -> bool:
        return target in ALLOWED_TRANSITIONS[StagingStatus(self.status)]

    def __repr__(self) -> str:
        return f"<StagingRecord #{self.seq} {self.amount} {self.status}>"
