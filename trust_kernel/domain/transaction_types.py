"""
Transaction types and the one place amounts get their sign.

Responsibility:
    Every ledger transaction type is tagged with a ``Direction``.  Credit
    types increase a client's balance, debit types decrease it.
    ``apply_sign`` is the only function that turns a user-entered magnitude
    into a signed ledger amount; posting, editing, splits and transfers all
    call it.

Architecture position:
    Kernel > Domain -- pure, no I/O.
"""

from decimal import Decimal
from enum import Enum

from trust_kernel.domain.money import to_money


class Direction(str, Enum):
    CREDIT = "credit"
    DEBIT = "debit"

    @property
    def sign(self) -> int:
        return 1 if self is Direction.CREDIT else -1


class TransactionType(str, Enum):
    """Ledger transaction types."""

    DEPOSIT = "deposit"
    TRANSFER_IN = "transfer_in"
    REFUND = "refund"
    INTEREST = "interest"
    DISBURSEMENT = "disbursement"
    TRANSFER_OUT = "transfer_out"
    FEE = "fee"
    EARNED_FEE = "earned_fee"
    ADJUSTMENT = "adjustment"

    @property
    def direction(self) -> Direction:
        return _DIRECTIONS[self]

    @property
    def is_credit(self) -> bool:
        return self.direction is Direction.CREDIT


_DIRECTIONS: dict[TransactionType, Direction] = {
    TransactionType.DEPOSIT: Direction.CREDIT,
    TransactionType.TRANSFER_IN: Direction.CREDIT,
    TransactionType.REFUND: Direction.CREDIT,
    TransactionType.INTEREST: Direction.CREDIT,
    TransactionType.DISBURSEMENT: Direction.DEBIT,
    TransactionType.TRANSFER_OUT: Direction.DEBIT,
    TransactionType.FEE: Direction.DEBIT,
    TransactionType.EARNED_FEE: Direction.DEBIT,
    TransactionType.ADJUSTMENT: Direction.DEBIT,
}

# Types a split instrument may carry.
SPLIT_TYPES = frozenset({
    TransactionType.DISBURSEMENT,
    TransactionType.DEPOSIT,
    TransactionType.TRANSFER_OUT,
    TransactionType.EARNED_FEE,
    TransactionType.REFUND,
})


def apply_sign(transaction_type: TransactionType | str, amount) -> Decimal:
    """Signed ledger amount for ``transaction_type`` from any magnitude."""
    tx_type = TransactionType(transaction_type)
    return abs(to_money(amount)) * tx_type.direction.sign


class StagingType(str, Enum):
    """Type hint attached to an imported bank line."""

    DEPOSIT = "deposit"
    CHECK = "check"
    TRANSFER = "transfer"
    FEE = "fee"
    OTHER = "other"


def infer_staging_type(raw_type: str | None, amount: Decimal) -> StagingType:
    """Classify a bank line from its free-text type column and sign."""
    text = (raw_type or "").lower()
    for keyword, staging_type in (
        ("deposit", StagingType.DEPOSIT),
        ("check", StagingType.CHECK),
        ("transfer", StagingType.TRANSFER),
        ("fee", StagingType.FEE),
    ):
        if keyword in text:
            return staging_type
    return StagingType.DEPOSIT if amount > 0 else StagingType.CHECK


def posting_type_for(staging_type: StagingType | str, amount: Decimal) -> TransactionType:
    """
    Ledger type for a signed bank amount.

    The sign of the bank amount wins: a declared type whose direction
    disagrees with it is replaced by the sign-based default.
    """
    staging_type = StagingType(staging_type)
    credit = amount > 0
    if staging_type is StagingType.TRANSFER:
        return TransactionType.TRANSFER_IN if credit else TransactionType.TRANSFER_OUT
    declared = {
        StagingType.CHECK: TransactionType.DISBURSEMENT,
        StagingType.FEE: TransactionType.FEE,
        StagingType.DEPOSIT: TransactionType.DEPOSIT,
    }.get(staging_type)
    if declared is not None and declared.is_credit == credit:
        return declared
    return TransactionType.DEPOSIT if credit else TransactionType.DISBURSEMENT
