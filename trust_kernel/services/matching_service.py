"""
MatchingService -- link bank lines to transactions already on the books.

Responsibility:
    * ``find_candidates`` proposes PENDING transactions (typically
      hand-entered checks) that could be the same money as a staging
      record.
    * ``confirm_match`` links the pair and clears the transaction without
      touching any balance: the money was booked when the transaction was
      recorded.
    * ``auto_match`` runs the two-pass statement matcher over the whole
      queue as a read-only preview.

Architecture position:
    Kernel > Services -- loads rows, delegates scoring to
    ``trust_engines.matching`` and persists confirmed decisions.

Invariants enforced:
    - A transaction is linked to at most one staging record.
    - A confirmed match never changes a ledger balance.
"""

from datetime import timedelta
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from trust_engines.matching import (
    AutoMatchResult,
    BankLine,
    BookEntry,
    auto_match,
    rank_candidates,
)
from trust_kernel.domain.clock import Clock
from trust_kernel.domain.context import RequestContext
from trust_kernel.domain.dtos import CandidateMatch
from trust_kernel.domain.money import within_tolerance
from trust_kernel.domain.policy import TrustPolicy
from trust_kernel.exceptions import (
    AlreadyLinkedError,
    AlreadyPostedError,
    AmountMismatchError,
    InvalidStatusTransitionError,
    NotAssignedError,
    StagingRecordNotFoundError,
    TransactionNotFoundError,
    ValidationFailedError,
)
from trust_kernel.logging_config import get_logger
from trust_kernel.models.audit_log import AuditAction
from trust_kernel.models.ledger import ClientLedger
from trust_kernel.models.staging import StagingRecord, StagingStatus
from trust_kernel.models.transaction import TransactionStatus, TrustTransaction
from trust_kernel.services.audit_service import AuditService
from trust_kernel.services.base import BaseService

logger = get_logger("services.matching")

_OPEN_STATUSES = (StagingStatus.UNASSIGNED, StagingStatus.ASSIGNED)


def bank_line_for(record: StagingRecord) -> BankLine:
    return BankLine(
        id=record.id,
        transaction_date=record.transaction_date,
        amount=record.amount,
        reference=record.reference_number,
        description=record.description,
    )


def book_entry_for(txn: TrustTransaction) -> BookEntry:
    return BookEntry(
        id=txn.id,
        transaction_date=txn.transaction_date,
        amount=txn.amount,
        reference=txn.instrument_reference,
        description=txn.description,
        seq=txn.seq,
    )


class MatchingService(BaseService):

    def __init__(
        self,
        session: Session,
        auditor: AuditService,
        clock: Clock | None = None,
        policy: TrustPolicy | None = None,
    ):
        super().__init__(session, clock)
        self._auditor = auditor
        self._policy = policy or TrustPolicy()

    def _matched_by_staging(self) -> set[UUID]:
        """Transactions already claimed through a staging record's match link."""
        rows = self.session.execute(
            select(StagingRecord.matched_transaction_id)
            .where(StagingRecord.matched_transaction_id.is_not(None))
        ).scalars().all()
        return set(rows)

    def find_candidates(self, staging_id: UUID) -> list[CandidateMatch]:
        """
        Rank pending transactions for one staging record.

        Raises:
            StagingRecordNotFoundError
            AlreadyPostedError: the record is already posted.
            NotAssignedError: the record has no client.
        """
        record = self.session.get(StagingRecord, staging_id)
        if record is None:
            raise StagingRecordNotFoundError(str(staging_id))
        if record.status == StagingStatus.POSTED:
            raise AlreadyPostedError(str(staging_id), str(record.posted_transaction_id))
        if record.client_id is None:
            raise NotAssignedError(str(staging_id), StagingStatus(record.status).value)

        ledger = self.session.execute(
            select(ClientLedger).where(
                ClientLedger.client_id == record.client_id,
                ClientLedger.account_id == record.account_id,
            )
        ).scalar_one_or_none()
        if ledger is None:
            return []

        window = timedelta(days=self._policy.match_window_days)
        rows = self.session.execute(
            select(TrustTransaction).where(
                TrustTransaction.ledger_id == ledger.id,
                TrustTransaction.status == TransactionStatus.PENDING,
                TrustTransaction.staging_id.is_(None),
                TrustTransaction.transaction_date >= record.transaction_date - window,
                TrustTransaction.transaction_date <= record.transaction_date + window,
            )
        ).scalars().all()
        claimed = self._matched_by_staging()
        rows = [txn for txn in rows if txn.id not in claimed]
        by_id = {txn.id: txn for txn in rows}

        ranked = rank_candidates(
            bank_line_for(record),
            [book_entry_for(txn) for txn in rows],
            window_days=self._policy.match_window_days,
            decay_per_day=self._policy.score_decay_per_day,
            limit=self._policy.candidate_limit,
        )
        return [
            CandidateMatch(
                transaction_id=c.entry.id,
                transaction_date=c.entry.transaction_date,
                amount=c.entry.amount,
                score=c.score,
                days_difference=c.days_difference,
                description=c.entry.description,
                reference=c.entry.reference,
                payee=by_id[c.entry.id].payee,
            )
            for c in ranked
        ]

    def confirm_match(
        self,
        staging_id: UUID,
        transaction_id: UUID,
        ctx: RequestContext,
    ) -> TrustTransaction:
        """
        Link a staging record to an existing transaction and clear it.

        Raises:
            StagingRecordNotFoundError, TransactionNotFoundError
            AlreadyPostedError: the staging record is posted.
            InvalidStatusTransitionError: the record is rejected or reconciled.
            AlreadyLinkedError: the transaction already has a staging link or
                is claimed by another record's match.
            ValidationFailedError: the transaction sits on another account, or
                on another client's ledger.
            AmountMismatchError: amounts differ by more than the tolerance.
        """
        with self.session.begin_nested():
            record = self.session.execute(
                select(StagingRecord)
                .where(StagingRecord.id == staging_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalar_one_or_none()
            if record is None:
                raise StagingRecordNotFoundError(str(staging_id))
            if record.status == StagingStatus.POSTED:
                raise AlreadyPostedError(str(staging_id), str(record.posted_transaction_id))
            status = StagingStatus(record.status)
            if status not in _OPEN_STATUSES:
                raise InvalidStatusTransitionError(
                    str(staging_id), status.value, StagingStatus.POSTED.value,
                )

            txn = self.session.execute(
                select(TrustTransaction)
                .where(TrustTransaction.id == transaction_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalar_one_or_none()
            if txn is None:
                raise TransactionNotFoundError(str(transaction_id))
            if txn.staging_id is not None:
                raise AlreadyLinkedError(str(transaction_id), str(txn.staging_id))
            claimed_by = self.session.execute(
                select(StagingRecord.id).where(
                    StagingRecord.matched_transaction_id == transaction_id,
                    StagingRecord.id != staging_id,
                )
            ).scalar_one_or_none()
            if claimed_by is not None:
                raise AlreadyLinkedError(str(transaction_id), str(claimed_by))

            ledger = self.session.get(ClientLedger, txn.ledger_id)
            if ledger.account_id != record.account_id:
                raise ValidationFailedError(
                    "transaction_id", "transaction is on a different trust account",
                )
            if record.client_id is not None and ledger.client_id != record.client_id:
                raise ValidationFailedError(
                    "transaction_id", "transaction belongs to a different client",
                )
            if not within_tolerance(record.amount, txn.amount, self._policy.amount_tolerance):
                raise AmountMismatchError(record.amount, txn.amount)

            previous_status = status
            now = self._clock.now()

            txn.staging_id = record.id
            txn.status = TransactionStatus.CLEARED
            txn.cleared_date = record.transaction_date
            txn.updated_by_id = ctx.actor_id

            record.status = StagingStatus.POSTED
            record.client_id = record.client_id or ledger.client_id
            record.matched_transaction_id = txn.id
            record.posted_transaction_id = txn.id
            record.posted_at = now
            record.posted_by_id = ctx.actor_id
            record.updated_by_id = ctx.actor_id
            self.session.flush()

            self._auditor.record(
                AuditAction.TRANSACTION_MATCHED,
                "TrustTransaction",
                txn.id,
                ctx,
                client_id=ledger.client_id,
                old_values={"status": TransactionStatus.PENDING, "staging_status": previous_status},
                new_values={
                    "status": TransactionStatus.CLEARED,
                    "staging_id": record.id,
                    "staging_status": StagingStatus.POSTED,
                },
            )

        logger.info(
            "staging_matched",
            extra={"staging_id": str(staging_id), "transaction_id": str(transaction_id)},
        )
        return txn

    def auto_match(self, account_id: UUID | None = None) -> AutoMatchResult:
        """
        Preview statement matching over the open queue.

        Staging side: UNASSIGNED and ASSIGNED records.  Book side:
        transactions with no staging link that no reconciled record claims.
        """
        staging_query = select(StagingRecord).where(StagingRecord.status.in_(_OPEN_STATUSES))
        txn_query = (
            select(TrustTransaction)
            .join(ClientLedger, ClientLedger.id == TrustTransaction.ledger_id)
            .where(TrustTransaction.staging_id.is_(None))
        )
        if account_id is not None:
            staging_query = staging_query.where(StagingRecord.account_id == account_id)
            txn_query = txn_query.where(ClientLedger.account_id == account_id)

        staging = self.session.execute(
            staging_query.order_by(StagingRecord.transaction_date, StagingRecord.seq)
        ).scalars().all()
        claimed = self._matched_by_staging()
        txns = [
            txn for txn in self.session.execute(
                txn_query.order_by(TrustTransaction.transaction_date, TrustTransaction.seq)
            ).scalars().all()
            if txn.id not in claimed
        ]

        result = auto_match(
            [bank_line_for(r) for r in staging],
            [book_entry_for(t) for t in txns],
            fuzzy_window_days=self._policy.fuzzy_window_days,
            tolerance=self._policy.amount_tolerance,
        )
        logger.info(
            "auto_match_completed",
            extra={
                "account_id": str(account_id) if account_id else None,
                "matched": result.matched_count,
                "exact": result.exact_count,
                "fuzzy": result.fuzzy_count,
                "pending": result.pending_count,
                "missing": result.missing_count,
            },
        )
        return result
