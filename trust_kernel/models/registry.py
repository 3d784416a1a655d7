"""
Client and trust account registry models.

Clients are the attribution target for funds.  Trust accounts are the bank
accounts client ledgers live in; ``current_balance`` on an account is the
mirrored book balance the reconciliation check compares against the sum of
its client ledgers.
"""

from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from trust_kernel.db.base import TrackedBase, UUIDString, str_enum


class AccountType(str, Enum):
    IOLTA = "iolta"
    TRUST = "trust"
    OPERATING = "operating"

    @property
    def holds_client_funds(self) -> bool:
        return self in (AccountType.IOLTA, AccountType.TRUST)


class Client(TrackedBase):
    """A billing matter/customer holding funds in trust."""

    __tablename__ = "trust_clients"

    name: Mapped[str] = mapped_column(String(200), nullable=False)

    matter_number: Mapped[str | None] = mapped_column(
        String(50),
        nullable=True,
        unique=True,
    )

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<Client {self.name} ({self.matter_number})>"


class TrustAccount(TrackedBase):
    """
    A bank account.

    ``linked_client_id`` marks a TRUST account as one client's case
    sub-account; ledger deltas for that client are mirrored into it.
    """

    __tablename__ = "trust_accounts"

    __table_args__ = (
        Index("idx_trust_account_linked_client", "linked_client_id"),
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False)

    account_type: Mapped[AccountType] = mapped_column(
        str_enum(AccountType, 20),
        nullable=False,
    )

    current_balance: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    linked_client_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("trust_clients.id"),
        nullable=True,
    )

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<TrustAccount {self.name} [{self.account_type}]>"
