"""
Client ledger model -- one running balance per (client, trust account).

Invariants enforced:
    - Unique (client_id, account_id).
    - current_balance equals the sum of the ledger's transaction amounts and
      is never negative.  Enforced by LedgerService, which is the only writer.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from trust_kernel.db.base import TrackedBase, UUIDString


class ClientLedger(TrackedBase):
    __tablename__ = "trust_ledgers"

    __table_args__ = (
        UniqueConstraint("client_id", "account_id", name="uq_ledger_client_account"),
    )

    client_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("trust_clients.id"),
        nullable=False,
    )

    account_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("trust_accounts.id"),
        nullable=False,
    )

    current_balance: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<ClientLedger {self.client_id}/{self.account_id}: {self.current_balance}>"
