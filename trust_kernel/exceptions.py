"""
Typed exception hierarchy for the trust kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers (API handlers, bulk operations, tests) must be able to tell a
precondition failure from an invariant violation without parsing messages.
Every error therefore has:
  1. A typed exception class (catch by type, not message)
  2. A ``code`` class attribute (machine-readable, API-safe)
  3. Structured attributes carrying the data that caused it

    try:
        posting.post(staging_id, ctx)
    except InsufficientFundsError as e:
        return {"error": e.code, "balance": str(e.current_balance)}

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    TrustLedgerError (base)
    |
    +-- ValidationFailedError
    |
    +-- NotFoundError
    |   +-- ClientNotFoundError
    |   +-- AccountNotFoundError
    |   +-- LedgerNotFoundError
    |   +-- StagingRecordNotFoundError
    |   +-- TransactionNotFoundError
    |   +-- SplitGroupNotFoundError
    |
    +-- PreconditionError
    |   +-- NotAssignedError
    |   +-- AlreadyPostedError
    |   +-- NotPostedError
    |   +-- AlreadyLinkedError
    |   +-- AmountMismatchError
    |   +-- NonZeroBalanceError
    |   +-- InvalidStatusTransitionError
    |   +-- LedgerClosedError
    |   +-- InactiveClientError
    |   +-- NotTrustAccountError
    |   +-- DuplicateMatterNumberError
    |   +-- SplitMemberError
    |
    +-- InvariantError
    |   +-- InsufficientFundsError
    |   +-- LedgerIntegrityError
    |
    +-- ImmutabilityViolationError
    |
    +-- AuditChainBrokenError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category      | Code                       | When Raised
--------------|----------------------------|-------------------------------------------
Validation    | VALIDATION_FAILED          | Missing field, bad type, malformed amount
--------------|----------------------------|-------------------------------------------
Not found     | CLIENT_NOT_FOUND           | Client ID doesn't exist
              | ACCOUNT_NOT_FOUND          | Trust account ID doesn't exist
              | LEDGER_NOT_FOUND           | Ledger ID doesn't exist
              | STAGING_RECORD_NOT_FOUND   | Staging record ID doesn't exist
              | TRANSACTION_NOT_FOUND      | Transaction ID doesn't exist
              | SPLIT_GROUP_NOT_FOUND      | No transactions carry the split group ID
--------------|----------------------------|-------------------------------------------
Precondition  | NOT_ASSIGNED               | Posting a record without client/assigned
              | ALREADY_POSTED             | Record is already posted
              | NOT_POSTED                 | Unposting a record that is not posted
              | ALREADY_LINKED             | Transaction already has a staging link
              | AMOUNT_MISMATCH            | Match amounts differ by more than 0.01
              | NON_ZERO_BALANCE           | Closing/deactivating with money on hand
              | INVALID_STATUS_TRANSITION  | Staging state machine forbids the move
              | LEDGER_CLOSED              | Writing to a closed ledger
              | INACTIVE_CLIENT            | Client has been deactivated
              | NOT_TRUST_ACCOUNT          | Account is not an IOLTA/trust account
              | DUPLICATE_MATTER_NUMBER    | Matter number already registered
              | SPLIT_MEMBER               | Single-line edit of a split member
--------------|----------------------------|-------------------------------------------
Invariant     | INSUFFICIENT_FUNDS         | Ledger balance would go negative
              | LEDGER_INTEGRITY           | Running balance replay disagrees with balance
--------------|----------------------------|-------------------------------------------
Immutability  | IMMUTABILITY_VIOLATION     | Modifying an append-only or frozen record
--------------|----------------------------|-------------------------------------------
Audit         | AUDIT_CHAIN_BROKEN         | Hash chain validation failed

===============================================================================
HANDLING PATTERNS
===============================================================================

1. Bulk operations catch ``TrustLedgerError`` per item and report
   ``(item_id, e.code, str(e))``; nothing else is swallowed.

2. ``AlreadyPostedError`` on a retried ``post`` means the first call
   succeeded; callers may load ``e.posted_transaction_id``.

3. ``AuditChainBrokenError`` means the trail was tampered with. Stop and
   investigate.
"""

from decimal import ROUND_HALF_UP, Decimal


def _cents(value) -> str:
    """Format an amount read back from a Numeric column as 0.00."""
    if isinstance(value, Decimal) and value.is_finite():
        return str(value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))
    return str(value)


class TrustLedgerError(Exception):
    """
    Base exception for all trust kernel errors.

    All subclasses carry a ``code`` class attribute.
    """

    code: str = "TRUST_LEDGER_ERROR"


class ValidationFailedError(TrustLedgerError):
    """Input rejected before any state change."""

    code: str = "VALIDATION_FAILED"

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(f"{field}: {message}")


# Lookup failures


class NotFoundError(TrustLedgerError):
    """Base exception for missing entities."""

    code: str = "NOT_FOUND"


class ClientNotFoundError(NotFoundError):
    code: str = "CLIENT_NOT_FOUND"

    def __init__(self, client_id: str):
        self.client_id = client_id
        super().__init__(f"Client not found: {client_id}")


class AccountNotFoundError(NotFoundError):
    code: str = "ACCOUNT_NOT_FOUND"

    def __init__(self, account_id: str):
        self.account_id = account_id
        super().__init__(f"Trust account not found: {account_id}")


class LedgerNotFoundError(NotFoundError):
    code: str = "LEDGER_NOT_FOUND"

    def __init__(self, ledger_id: str):
        self.ledger_id = ledger_id
        super().__init__(f"Ledger not found: {ledger_id}")


class StagingRecordNotFoundError(NotFoundError):
    code: str = "STAGING_RECORD_NOT_FOUND"

    def __init__(self, staging_id: str):
        self.staging_id = staging_id
        super().__init__(f"Staging record not found: {staging_id}")


class TransactionNotFoundError(NotFoundError):
    code: str = "TRANSACTION_NOT_FOUND"

    def __init__(self, transaction_id: str):
        self.transaction_id = transaction_id
        super().__init__(f"Transaction not found: {transaction_id}")


class SplitGroupNotFoundError(NotFoundError):
    code: str = "SPLIT_GROUP_NOT_FOUND"

    def __init__(self, split_group_id: str):
        self.split_group_id = split_group_id
        super().__init__(f"Split group not found: {split_group_id}")


# Precondition failures (rejected before any write)


class PreconditionError(TrustLedgerError):
    """Base exception for operations whose preconditions do not hold."""

    code: str = "PRECONDITION_FAILED"


class NotAssignedError(PreconditionError):
    """Only assigned records with a client may be posted."""

    code: str = "NOT_ASSIGNED"

    def __init__(self, staging_id: str, status: str):
        self.staging_id = staging_id
        self.status = status
        super().__init__(
            f"Staging record {staging_id} must be assigned to a client "
            f"before posting (status: {status})"
        )


class AlreadyPostedError(PreconditionError):
    code: str = "ALREADY_POSTED"

    def __init__(self, staging_id: str, posted_transaction_id: str | None = None):
        self.staging_id = staging_id
        self.posted_transaction_id = posted_transaction_id
        super().__init__(f"Staging record {staging_id} is already posted")


class NotPostedError(PreconditionError):
    code: str = "NOT_POSTED"

    def __init__(self, staging_id: str, status: str):
        self.staging_id = staging_id
        self.status = status
        super().__init__(f"Staging record {staging_id} is not posted (status: {status})")


class AlreadyLinkedError(PreconditionError):
    code: str = "ALREADY_LINKED"

    def __init__(self, transaction_id: str, staging_id: str):
        self.transaction_id = transaction_id
        self.staging_id = staging_id
        super().__init__(
            f"Transaction {transaction_id} is already linked to staging record {staging_id}"
        )


class AmountMismatchError(PreconditionError):
    code: str = "AMOUNT_MISMATCH"

    def __init__(self, staging_amount: Decimal, transaction_amount: Decimal):
        self.staging_amount = staging_amount
        self.transaction_amount = transaction_amount
        super().__init__(
            f"Amounts differ: staging {_cents(staging_amount)} "
            f"vs transaction {_cents(transaction_amount)}"
        )


class NonZeroBalanceError(PreconditionError):
    code: str = "NON_ZERO_BALANCE"

    def __init__(self, entity_type: str, entity_id: str, balance: Decimal):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.balance = balance
        super().__init__(
            f"{entity_type} {entity_id} has a non-zero balance of {_cents(balance)}"
        )


class InvalidStatusTransitionError(PreconditionError):
    code: str = "INVALID_STATUS_TRANSITION"

    def __init__(self, staging_id: str, from_status: str, to_status: str):
        self.staging_id = staging_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Staging record {staging_id} cannot move from {from_status} to {to_status}"
        )


class LedgerClosedError(PreconditionError):
    code: str = "LEDGER_CLOSED"

    def __init__(self, ledger_id: str):
        self.ledger_id = ledger_id
        super().__init__(f"Ledger {ledger_id} is closed")


class InactiveClientError(PreconditionError):
    code: str = "INACTIVE_CLIENT"

    def __init__(self, client_id: str):
        self.client_id = client_id
        super().__init__(f"Client {client_id} is inactive")


class NotTrustAccountError(PreconditionError):
    code: str = "NOT_TRUST_ACCOUNT"

    def __init__(self, account_id: str, account_type: str):
        self.account_id = account_id
        self.account_type = account_type
        super().__init__(
            f"Account {account_id} is a {account_type} account, not an IOLTA/trust account"
        )


class DuplicateMatterNumberError(PreconditionError):
    code: str = "DUPLICATE_MATTER_NUMBER"

    def __init__(self, matter_number: str):
        self.matter_number = matter_number
        super().__init__(f"Matter number already registered: {matter_number}")


class SplitMemberError(PreconditionError):
    """Split lines are created and removed as a group."""

    code: str = "SPLIT_MEMBER"

    def __init__(self, transaction_id: str, split_group_id: str):
        self.transaction_id = transaction_id
        self.split_group_id = split_group_id
        super().__init__(
            f"Transaction {transaction_id} belongs to split group {split_group_id}; "
            "delete the split group instead"
        )


# Invariant protection


class InvariantError(TrustLedgerError):
    """Base exception for writes that would break a ledger invariant."""

    code: str = "INVARIANT_VIOLATION"


class InsufficientFundsError(InvariantError):
    """A ledger balance would go negative. Never clamped."""

    code: str = "INSUFFICIENT_FUNDS"

    def __init__(self, ledger_id: str, current_balance: Decimal, delta: Decimal):
        self.ledger_id = ledger_id
        self.current_balance = current_balance
        self.delta = delta
        super().__init__(
            f"Insufficient funds in ledger {ledger_id}: balance {_cents(current_balance)}, "
            f"change {_cents(delta)}"
        )


class LedgerIntegrityError(InvariantError):
    code: str = "LEDGER_INTEGRITY"

    def __init__(self, ledger_id: str, replayed_balance: Decimal, stored_balance: Decimal):
        self.ledger_id = ledger_id
        self.replayed_balance = replayed_balance
        self.stored_balance = stored_balance
        super().__init__(
            f"Ledger {ledger_id} replay ended at {_cents(replayed_balance)} "
            f"but stored balance is {_cents(stored_balance)}"
        )


class ImmutabilityViolationError(TrustLedgerError):
    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(f"Cannot modify {entity_type} {entity_id}: {reason}")


class AuditChainBrokenError(TrustLedgerError):
    code: str = "AUDIT_CHAIN_BROKEN"

    def __init__(self, audit_entry_id: str, expected_hash: str, actual_hash: str):
        self.audit_entry_id = audit_entry_id
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash
        super().__init__(
            f"Audit chain broken at {audit_entry_id}: "
            f"expected {expected_hash}, got {actual_hash}"
        )
