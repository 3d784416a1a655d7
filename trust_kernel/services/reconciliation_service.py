"""
ReconciliationService -- three-way reconciliation of a trust account.

Responsibility:
    * ``compare`` matches the account's staging records (the bank view)
      against its ledger transactions (the book view).
    * ``balance_summary`` compares the account's mirrored balance with the
      sum of its client ledgers.
    * ``mark_reconciled`` closes a bank line without posting it, optionally
      pairing it with the transaction it corresponds to.
    * ``record_reconciliation`` stores an append-only statement snapshot.

Architecture position:
    Kernel > Services.  Pure arithmetic lives in
    ``trust_engines.reconciliation``; this service loads and persists.

Invariants enforced:
    - Differences are reported as data; nothing here raises because the
      books disagree with the bank.
    - A transaction is claimed by at most one staging record.
"""

from collections.abc import Iterable
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import case, func, select
from sqlalchemy.orm import Session

from trust_engines.reconciliation import (
    ReconciliationReport,
    check_balance,
    compare_statement,
)
from trust_kernel.domain.clock import Clock
from trust_kernel.domain.context import RequestContext
from trust_kernel.domain.dtos import BalanceSummary, BulkResult, FirmBalanceSummary
from trust_kernel.domain.money import CENT, ZERO, amounts_equal, to_money, within_tolerance
from trust_kernel.domain.policy import TrustPolicy
from trust_kernel.exceptions import (
    AccountNotFoundError,
    AlreadyLinkedError,
    AlreadyPostedError,
    AmountMismatchError,
    InvalidStatusTransitionError,
    TransactionNotFoundError,
    ValidationFailedError,
)
from trust_kernel.logging_config import get_logger
from trust_kernel.models.audit_log import AuditAction
from trust_kernel.models.ledger import ClientLedger
from trust_kernel.models.reconciliation import ReconciliationRecord, ReconciliationStatus
from trust_kernel.models.registry import AccountType, TrustAccount
from trust_kernel.models.staging import StagingRecord, StagingStatus
from trust_kernel.models.transaction import TrustTransaction
from trust_kernel.services.audit_service import AuditService
from trust_kernel.services.base import BaseService
from trust_kernel.services.matching_service import bank_line_for, book_entry_for
from trust_kernel.services.staging_service import StagingService

logger = get_logger("services.reconciliation")


class ReconciliationService(BaseService):

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
        self._staging = StagingService(session, auditor, clock, policy)

    def _require_account(self, account_id: UUID) -> TrustAccount:
        account = self.session.get(TrustAccount, account_id)
        if account is None:
            raise AccountNotFoundError(str(account_id))
        return account

    def _ledger_total(self, account_id: UUID) -> Decimal:
        total = self.session.execute(
            select(func.coalesce(func.sum(ClientLedger.current_balance), 0))
            .where(ClientLedger.account_id == account_id)
        ).scalar_one()
        return Decimal(total).quantize(CENT)

    # Statement comparison

    def compare(
        self,
        account_id: UUID,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> ReconciliationReport:
        """
        Compare the bank view with the book view for one account.

        Every staging record of the account is part of the bank view,
        whatever its status; every transaction on the account's ledgers is
        part of the book view.  Both are newest first.
        """
        self._require_account(account_id)

        staging_query = select(StagingRecord).where(StagingRecord.account_id == account_id)
        txn_query = (
            select(TrustTransaction)
            .join(ClientLedger, ClientLedger.id == TrustTransaction.ledger_id)
            .where(ClientLedger.account_id == account_id)
        )
        if start_date is not None:
            staging_query = staging_query.where(StagingRecord.transaction_date >= start_date)
            txn_query = txn_query.where(TrustTransaction.transaction_date >= start_date)
        if end_date is not None:
            staging_query = staging_query.where(StagingRecord.transaction_date <= end_date)
            txn_query = txn_query.where(TrustTransaction.transaction_date <= end_date)

        staging = self.session.execute(
            staging_query.order_by(
                StagingRecord.transaction_date.desc(), StagingRecord.seq.desc(),
            )
        ).scalars().all()
        txns = self.session.execute(
            txn_query.order_by(
                TrustTransaction.transaction_date.desc(), TrustTransaction.seq.desc(),
            )
        ).scalars().all()

        report = compare_statement(
            [bank_line_for(r) for r in staging],
            [book_entry_for(t) for t in txns],
            fuzzy_window_days=self._policy.fuzzy_window_days,
            tolerance=self._policy.amount_tolerance,
        )
        summary = report.summary
        logger.info(
            "statement_compared",
            extra={
                "account_id": str(account_id),
                "matched": summary.matched_count,
                "pending_in_bank": summary.pending_count,
                "missing_in_bank": summary.missing_count,
                "difference": summary.difference,
            },
        )
        return report

    # Balance checks

    def balance_summary(self, account_id: UUID) -> BalanceSummary:
        """Mirror balance against the sum of client ledgers for one account."""
        account = self._require_account(account_id)
        ledger_total = self._ledger_total(account_id)
        ledger_count, active_count = self.session.execute(
            select(
                func.count(ClientLedger.id),
                func.coalesce(func.sum(case((ClientLedger.is_active.is_(True), 1), else_=0)), 0),
            ).where(ClientLedger.account_id == account_id)
        ).one()

        check = check_balance(
            account.current_balance.quantize(CENT),
            ledger_total,
            self._policy.balance_tolerance,
        )
        if not check.is_balanced:
            logger.warning(
                "account_out_of_balance",
                extra={"account_id": str(account_id), "difference": check.difference},
            )
        return BalanceSummary(
            account_id=account.id,
            account_name=account.name,
            account_type=AccountType(account.account_type).value,
            account_balance=check.account_balance,
            ledger_total=check.ledger_total,
            difference=check.difference,
            is_balanced=check.is_balanced,
            ledger_count=ledger_count,
            active_ledger_count=active_count,
        )

    def balance_summary_all(self) -> FirmBalanceSummary:
        """Balance summaries for every IOLTA account plus firm-wide totals."""
        account_ids = self.session.execute(
            select(TrustAccount.id)
            .where(TrustAccount.account_type == AccountType.IOLTA)
            .order_by(TrustAccount.name)
        ).scalars().all()
        summaries = tuple(self.balance_summary(account_id) for account_id in account_ids)

        total_account = sum((s.account_balance for s in summaries), ZERO)
        total_ledger = sum((s.ledger_total for s in summaries), ZERO)
        total_difference = total_account - total_ledger
        return FirmBalanceSummary(
            accounts=summaries,
            total_account_balance=total_account,
            total_ledger_balance=total_ledger,
            total_difference=total_difference,
            is_balanced=(
                all(s.is_balanced for s in summaries)
                and abs(total_difference) < self._policy.balance_tolerance
            ),
        )

    # Closing bank lines

    def mark_reconciled(
        self,
        staging_id: UUID,
        ctx: RequestContext,
        transaction_id: UUID | None = None,
    ) -> StagingRecord:
        """
        Mark a staging record RECONCILED, optionally pairing a transaction.

        Raises:
            StagingRecordNotFoundError, TransactionNotFoundError
            AlreadyPostedError: the record is posted.
            InvalidStatusTransitionError: the record is rejected or already
                reconciled.
            AlreadyLinkedError: the transaction is already claimed.
            ValidationFailedError: the transaction sits on another account, or
                on another client's ledger.
            AmountMismatchError: amounts differ by more than the tolerance.
        """
        with self.session.begin_nested():
            record = self._staging.get_for_update(staging_id)
            status = StagingStatus(record.status)
            if status is StagingStatus.POSTED:
                raise AlreadyPostedError(str(staging_id), str(record.posted_transaction_id))
            if not record.can_transition_to(StagingStatus.RECONCILED):
                raise InvalidStatusTransitionError(
                    str(staging_id), status.value, StagingStatus.RECONCILED.value,
                )

            if transaction_id is not None:
                txn = self.session.get(TrustTransaction, transaction_id)
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

                record.matched_transaction_id = txn.id
                if record.client_id is None:
                    record.client_id = ledger.client_id

            record.status = StagingStatus.RECONCILED
            record.updated_by_id = ctx.actor_id
            self.session.flush()

            self._auditor.record(
                AuditAction.STAGING_RECONCILED,
                "StagingRecord",
                record.id,
                ctx,
                client_id=record.client_id,
                old_values={"status": status},
                new_values={
                    "status": StagingStatus.RECONCILED,
                    "matched_transaction_id": transaction_id,
                },
            )

        logger.info(
            "staging_reconciled",
            extra={
                "staging_id": str(staging_id),
                "transaction_id": str(transaction_id) if transaction_id else None,
            },
        )
        return record

    def bulk_mark_reconciled(
        self,
        pairs: Iterable[tuple[UUID, UUID | None]],
        ctx: RequestContext,
    ) -> BulkResult:
        """``pairs`` are (staging_id, transaction_id or None)."""
        targets = dict(pairs)
        return self._run_per_item(
            targets,
            lambda staging_id: self.mark_reconciled(staging_id, ctx, targets[staging_id]),
            "staging_reconcile",
        )

    # Statement snapshots

    def record_reconciliation(
        self,
        account_id: UUID,
        statement_date: date,
        statement_balance,
        ctx: RequestContext,
        notes: str | None = None,
    ) -> ReconciliationRecord:
        """
        Store the three balances for a statement date.

        BALANCED when both the statement balance and the mirrored book
        balance agree with the client ledger total.
        """
        statement_balance = to_money(statement_balance, "statement_balance")

        with self.session.begin_nested():
            account = self._require_account(account_id)
            book_balance = account.current_balance.quantize(CENT)
            ledger_total = self._ledger_total(account_id)
            difference = statement_balance - ledger_total
            tolerance = self._policy.balance_tolerance
            balanced = (
                amounts_equal(statement_balance, ledger_total, tolerance)
                and amounts_equal(book_balance, ledger_total, tolerance)
            )

            snapshot = ReconciliationRecord(
                account_id=account_id,
                statement_date=statement_date,
                statement_balance=statement_balance,
                book_balance=book_balance,
                ledger_total=ledger_total,
                difference=difference,
                status=ReconciliationStatus.BALANCED if balanced else ReconciliationStatus.UNBALANCED,
                notes=notes,
                created_by_id=ctx.actor_id,
            )
            self.session.add(snapshot)
            self.session.flush()

            self._auditor.record(
                AuditAction.RECONCILIATION_COMPLETED,
                "ReconciliationRecord",
                snapshot.id,
                ctx,
                new_values={
                    "account_id": account_id,
                    "statement_date": statement_date,
                    "statement_balance": statement_balance,
                    "book_balance": book_balance,
                    "ledger_total": ledger_total,
                    "difference": difference,
                    "status": snapshot.status,
                },
            )

        logger.info(
            "reconciliation_recorded",
            extra={
                "account_id": str(account_id),
                "statement_date": statement_date,
                "difference": difference,
                "balanced": balanced,
            },
        )
        return snapshot
