"""
PostingService -- turn assigned staging records into ledger transactions.

Responsibility:
    ``post`` converts one ASSIGNED staging record into a CLEARED
    TrustTransaction on the client's ledger; ``unpost`` undoes it.  Bulk
    variants apply the same operation per record.

Architecture position:
    Kernel > Services.  Delegates balance changes to LedgerService and
    row writes to TransactionWriter.

Posting steps (one savepoint):
    1. Lock the staging record; reject missing, posted or unassigned rows.
    2. Get or create the (client, account) ledger, locked, and require it
       to be active.
    3. Map the staging type and signed amount to a transaction type.
    4. Write the transaction (balance check, mirror, seq, running balance).
    5. Replay the tail when the date is earlier than existing history.
    6. Mark the staging record POSTED with its link.
    7. Write the audit entry.

Invariants enforced:
    - Posting a record twice fails with AlreadyPostedError; the second
      attempt writes nothing.
    - post followed by unpost restores balance, running balances and the
      staging status.
"""

from collections.abc import Iterable
from uuid import UUID

from sqlalchemy.orm import Session

from trust_kernel.domain.clock import Clock
from trust_kernel.domain.context import RequestContext
from trust_kernel.domain.dtos import BulkResult
from trust_kernel.domain.transaction_types import TransactionType, posting_type_for
from trust_kernel.exceptions import (
    AlreadyPostedError,
    InvalidStatusTransitionError,
    NotAssignedError,
    NotPostedError,
    TransactionNotFoundError,
)
from trust_kernel.logging_config import LogContext, get_logger
from trust_kernel.models.audit_log import AuditAction
from trust_kernel.models.staging import StagingRecord, StagingStatus
from trust_kernel.models.transaction import TransactionStatus, TrustTransaction
from trust_kernel.services.audit_service import AuditService
from trust_kernel.services.base import BaseService
from trust_kernel.services.ledger_service import LedgerService
from trust_kernel.services.staging_service import StagingService
from trust_kernel.services.transaction_writer import TransactionWriter

logger = get_logger("services.posting")


class PostingService(BaseService):

    def __init__(
        self,
        session: Session,
        auditor: AuditService,
        ledgers: LedgerService,
        clock: Clock | None = None,
    ):
        super().__init__(session, clock)
        self._auditor = auditor
        self._ledgers = ledgers
        self._writer = TransactionWriter(session, ledgers)
        self._staging = StagingService(session, auditor, clock)

    def post(self, staging_id: UUID, ctx: RequestContext) -> TrustTransaction:
        """
        Post one staging record.

        Raises:
            StagingRecordNotFoundError
            AlreadyPostedError: the record is already posted.
            NotAssignedError: the record is not ASSIGNED to a client.
            InactiveClientError, LedgerClosedError, NotTrustAccountError
            InsufficientFundsError: a withdrawal larger than the balance.
        """
        with LogContext.bind(staging_id=staging_id), self.session.begin_nested():
            record = self._staging.get_for_update(staging_id)
            status = StagingStatus(record.status)
            if status is StagingStatus.POSTED:
                raise AlreadyPostedError(str(staging_id), str(record.posted_transaction_id))
            if status is not StagingStatus.ASSIGNED or record.client_id is None:
                raise NotAssignedError(str(staging_id), status.value)

            ledger = self._ledgers.get_or_create_ledger(record.client_id, record.account_id, ctx)
            self._ledgers.require_active(ledger)

            transaction_type = posting_type_for(record.staging_type, record.amount)
            txn = self._writer.write(
                ledger,
                transaction_type,
                record.amount,
                record.transaction_date,
                ctx,
                status=TransactionStatus.CLEARED,
                cleared_date=record.transaction_date,
                description=record.description,
                reference_number=record.reference_number,
                check_number=(
                    record.reference_number
                    if transaction_type is TransactionType.DISBURSEMENT else None
                ),
                payee=record.payee,
                staging_id=record.id,
            )

            record.status = StagingStatus.POSTED
            record.posted_transaction_id = txn.id
            record.posted_at = self._clock.now()
            record.posted_by_id = ctx.actor_id
            record.updated_by_id = ctx.actor_id
            self.session.flush()

            self._auditor.record(
                AuditAction.TRANSACTION_POSTED,
                "TrustTransaction",
                txn.id,
                ctx,
                client_id=record.client_id,
                new_values={
                    "staging_id": record.id,
                    "ledger_id": ledger.id,
                    "transaction_type": transaction_type,
                    "amount": txn.amount,
                    "transaction_date": txn.transaction_date,
                    "balance_after": ledger.current_balance,
                },
            )

            logger.info(
                "staging_posted",
                extra={
                    "transaction_id": str(txn.id),
                    "ledger_id": str(ledger.id),
                    "transaction_type": transaction_type.value,
                    "amount": txn.amount,
                    "new_balance": ledger.current_balance,
                    **ctx.log_fields(),
                },
            )
        return txn

    def unpost(
        self,
        staging_id: UUID,
        ctx: RequestContext,
        target_status: StagingStatus = StagingStatus.ASSIGNED,
    ) -> StagingRecord:
        """
        Undo a post (or a confirmed match) and return the record to the queue.

        A record posted by ``post`` has its transaction reversed and deleted,
        and the ledger tail replayed.  A record linked by ``confirm_match``
        leaves the transaction on the books, back in PENDING.

        Raises:
            NotPostedError: the record is not posted.
            InsufficientFundsError: reversing a deposit that was already spent.
        """
        target_status = StagingStatus(target_status)
        if target_status not in (StagingStatus.ASSIGNED, StagingStatus.UNASSIGNED):
            raise InvalidStatusTransitionError(
                str(staging_id), StagingStatus.POSTED.value, target_status.value,
            )

        with LogContext.bind(staging_id=staging_id), self.session.begin_nested():
            record = self._staging.get_for_update(staging_id)
            if record.status != StagingStatus.POSTED:
                raise NotPostedError(str(staging_id), StagingStatus(record.status).value)

            client_id = record.client_id
            txn_id = record.matched_transaction_id or record.posted_transaction_id
            txn = self.session.get(TrustTransaction, txn_id) if txn_id else None
            if txn is None:
                raise TransactionNotFoundError(str(txn_id))

            if record.matched_transaction_id is not None:
                action = AuditAction.TRANSACTION_UNMATCHED
                txn.staging_id = None
                txn.status = TransactionStatus.PENDING
                txn.cleared_date = None
                txn.updated_by_id = ctx.actor_id
                old_values = {"staging_id": record.id, "status": TransactionStatus.CLEARED}
                new_values = {"staging_id": None, "status": TransactionStatus.PENDING}
            else:
                action = AuditAction.TRANSACTION_UNPOSTED
                old_values = {
                    "ledger_id": txn.ledger_id,
                    "transaction_type": txn.transaction_type,
                    "amount": txn.amount,
                    "transaction_date": txn.transaction_date,
                }
                new_values = None
                self._writer.remove(txn, ctx)

            record.status = target_status
            record.posted_transaction_id = None
            record.matched_transaction_id = None
            record.posted_at = None
            record.posted_by_id = None
            if target_status is StagingStatus.UNASSIGNED:
                record.client_id = None
            record.updated_by_id = ctx.actor_id
            self.session.flush()

            self._auditor.record(
                action,
                "TrustTransaction",
                txn_id,
                ctx,
                client_id=client_id,
                old_values={**old_values, "staging_status": StagingStatus.POSTED},
                new_values={**(new_values or {}), "staging_status": target_status},
            )

            logger.info(
                "staging_unposted",
                extra={
                    "transaction_id": str(txn_id),
                    "target_status": target_status.value,
                    "matched": action is AuditAction.TRANSACTION_UNMATCHED,
                },
            )
        return record

    def bulk_post(self, staging_ids: Iterable[UUID], ctx: RequestContext) -> BulkResult:
        """Post each record in its own savepoint; failures are reported, not raised."""
        return self._run_per_item(
            staging_ids,
            lambda staging_id: self.post(staging_id, ctx),
            "staging_post",
        )

    def bulk_unpost(
        self,
        staging_ids: Iterable[UUID],
        ctx: RequestContext,
        target_status: StagingStatus = StagingStatus.ASSIGNED,
    ) -> BulkResult:
        return self._run_per_item(
            staging_ids,
            lambda staging_id: self.unpost(staging_id, ctx, target_status),
            "staging_unpost",
        )
