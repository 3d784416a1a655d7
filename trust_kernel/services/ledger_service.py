"""
LedgerService -- the client ledger store.

Responsibility:
    Owns ``ClientLedger.current_balance`` and the running balances of its
    transactions.  Every balance change in the system goes through
    ``adjust_balance``, and every running-balance rewrite goes through
    ``recalculate_tail``.

Architecture position:
    Kernel > Services -- called by TransactionWriter, RegistryService and
    the posting-side services.  Never called by selectors.

Invariants enforced:
    - A ledger balance never goes below zero; the check happens before any
      write.
    - The delta applied to a ledger is mirrored, in the same transaction,
      into its trust account and into the client's linked case
      sub-account when one exists.
    - Ledger rows are read ``FOR UPDATE`` before the balance is read.
    - After a replay the last running balance equals ``current_balance``.

Failure modes:
    - InsufficientFundsError: a debit larger than the current balance.
    - LedgerIntegrityError: the replayed tail disagrees with the stored
      balance (the ledger was written outside this service).
    - LedgerClosedError / NonZeroBalanceError: close/reopen lifecycle.
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import and_, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from trust_kernel.domain.clock import Clock
from trust_kernel.domain.context import RequestContext
from trust_kernel.domain.money import CENT, ZERO, running_balances
from trust_kernel.exceptions import (
    AccountNotFoundError,
    ClientNotFoundError,
    InactiveClientError,
    InsufficientFundsError,
    LedgerClosedError,
    LedgerIntegrityError,
    LedgerNotFoundError,
    NonZeroBalanceError,
    NotTrustAccountError,
)
from trust_kernel.logging_config import get_logger
from trust_kernel.models.audit_log import AuditAction
from trust_kernel.models.ledger import ClientLedger
from trust_kernel.models.registry import AccountType, Client, TrustAccount
from trust_kernel.models.transaction import TrustTransaction
from trust_kernel.services.audit_service import AuditService
from trust_kernel.services.base import BaseService

logger = get_logger("services.ledger")


class LedgerService(BaseService):
    """
    Balance owner for client ledgers.

    Contract:
        Callers pair every ``adjust_balance`` with the transaction write (or
        delete) that justifies it, inside one savepoint.

    Non-goals:
        - Does NOT create TrustTransaction rows (TransactionWriter does).
        - Does NOT commit.
    """

    def __init__(
        self,
        session: Session,
        auditor: AuditService,
        clock: Clock | None = None,
    ):
        super().__init__(session, clock)
        self._auditor = auditor

    # Lookup and locking

    def _select_ledger(self, client_id: UUID, account_id: UUID) -> ClientLedger | None:
        return self.session.execute(
            select(ClientLedger)
            .where(
                ClientLedger.client_id == client_id,
                ClientLedger.account_id == account_id,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def lock_ledger(self, ledger_id: UUID) -> ClientLedger:
        """Re-read the ledger row ``FOR UPDATE``."""
        ledger = self.session.execute(
            select(ClientLedger)
            .where(ClientLedger.id == ledger_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if ledger is None:
            raise LedgerNotFoundError(str(ledger_id))
        return ledger

    def find_ledger(self, client_id: UUID, account_id: UUID) -> ClientLedger | None:
        """Locked ledger for (client, account), or None when none exists yet."""
        return self._select_ledger(client_id, account_id)

    def get_or_create_ledger(
        self,
        client_id: UUID,
        account_id: UUID,
        ctx: RequestContext,
    ) -> ClientLedger:
        """
        Return the locked ledger for (client, account), creating it if needed.

        Raises:
            ClientNotFoundError, InactiveClientError, AccountNotFoundError,
            NotTrustAccountError.
        """
        client = self.session.get(Client, client_id)
        if client is None:
            raise ClientNotFoundError(str(client_id))
        if not client.is_active:
            raise InactiveClientError(str(client_id))

        account = self.session.get(TrustAccount, account_id)
        if account is None:
            raise AccountNotFoundError(str(account_id))
        if not AccountType(account.account_type).holds_client_funds:
            raise NotTrustAccountError(str(account_id), AccountType(account.account_type).value)

        ledger = self._select_ledger(client_id, account_id)
        if ledger is not None:
            return ledger

        savepoint = self.session.begin_nested()
        try:
            ledger = ClientLedger(
                client_id=client_id,
                account_id=account_id,
                current_balance=ZERO,
                is_active=True,
                created_by_id=ctx.actor_id,
            )
            self.session.add(ledger)
            self.session.flush()
            self._auditor.record(
                AuditAction.LEDGER_CREATED,
                "ClientLedger",
                ledger.id,
                ctx,
                client_id=client_id,
                new_values={"client_id": client_id, "account_id": account_id},
            )
            savepoint.commit()
        except IntegrityError:
            # Another session created the same (client, account) ledger
            savepoint.rollback()
            ledger = self._select_ledger(client_id, account_id)
            if ledger is None:
                raise
            return ledger

        logger.info(
            "ledger_created",
            extra={
                "ledger_id": str(ledger.id),
                "client_id": str(client_id),
                "account_id": str(account_id),
            },
        )
        return ledger

    def require_active(self, ledger: ClientLedger) -> None:
        if not ledger.is_active:
            raise LedgerClosedError(str(ledger.id))

    # Balance

    def adjust_balance(self, ledger: ClientLedger, delta: Decimal) -> Decimal:
        """
        Apply ``delta`` to the ledger and its mirrored account balances.

        Raises:
            InsufficientFundsError: the new balance would be negative.  Nothing
                is written in that case.
        """
        current = ledger.current_balance
        new_balance = (current + delta).quantize(CENT)
        if new_balance < ZERO:
            logger.warning(
                "insufficient_funds_rejected",
                extra={
                    "ledger_id": str(ledger.id),
                    "current_balance": current,
                    "delta": delta,
                },
            )
            raise InsufficientFundsError(str(ledger.id), current, delta)

        ledger.current_balance = new_balance

        mirrored = self.session.execute(
            select(TrustAccount)
            .where(
                or_(
                    TrustAccount.id == ledger.account_id,
                    and_(
                        TrustAccount.linked_client_id == ledger.client_id,
                        TrustAccount.account_type == AccountType.TRUST,
                    ),
                )
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalars().all()
        for account in mirrored:
            account.current_balance = (account.current_balance + delta).quantize(CENT)

        self.session.flush()
        logger.debug(
            "ledger_balance_adjusted",
            extra={
                "ledger_id": str(ledger.id),
                "delta": delta,
                "new_balance": new_balance,
                "mirrored_accounts": len(mirrored),
            },
        )
        return new_balance

    def recalculate_tail(self, ledger: ClientLedger, from_date: date) -> Decimal:
        """
        Rewrite running balances for transactions dated on or after ``from_date``.

        The replay starts from the running balance of the last transaction
        strictly before ``from_date`` (zero if none) and walks the rest in
        (transaction_date, seq) order.

        Raises:
            LedgerIntegrityError: the final running balance differs from
                ``current_balance``.
        """
        opening = self.session.execute(
            select(TrustTransaction.running_balance)
            .where(
                TrustTransaction.ledger_id == ledger.id,
                TrustTransaction.transaction_date < from_date,
            )
            .order_by(
                TrustTransaction.transaction_date.desc(),
                TrustTransaction.seq.desc(),
            )
            .limit(1)
        ).scalar_one_or_none()
        opening = ZERO if opening is None else opening.quantize(CENT)

        tail = self.session.execute(
            select(TrustTransaction)
            .where(
                TrustTransaction.ledger_id == ledger.id,
                TrustTransaction.transaction_date >= from_date,
            )
            .order_by(TrustTransaction.transaction_date, TrustTransaction.seq)
        ).scalars().all()

        balances = running_balances(opening, (txn.amount for txn in tail))
        for txn, balance in zip(tail, balances):
            txn.running_balance = balance.quantize(CENT)

        final_balance = (balances[-1] if balances else opening).quantize(CENT)
        stored_balance = ledger.current_balance.quantize(CENT)
        if final_balance != stored_balance:
            logger.critical(
                "ledger_integrity_failed",
                extra={
                    "ledger_id": str(ledger.id),
                    "replayed_balance": final_balance,
                    "stored_balance": stored_balance,
                },
            )
            raise LedgerIntegrityError(str(ledger.id), final_balance, stored_balance)

        self.session.flush()
        logger.info(
            "tail_recalculated",
            extra={
                "ledger_id": str(ledger.id),
                "from_date": from_date,
                "rows": len(tail),
                "final_balance": final_balance,
            },
        )
        return final_balance

    # Lifecycle

    def close_ledger(self, ledger_id: UUID, ctx: RequestContext) -> ClientLedger:
        """Deactivate a ledger whose balance is zero."""
        with self.session.begin_nested():
            ledger = self.lock_ledger(ledger_id)
            if ledger.current_balance != ZERO:
                raise NonZeroBalanceError("ClientLedger", str(ledger_id), ledger.current_balance)
            ledger.is_active = False
            ledger.updated_by_id = ctx.actor_id
            self.session.flush()
            self._auditor.record(
                AuditAction.LEDGER_CLOSED,
                "ClientLedger",
                ledger.id,
                ctx,
                client_id=ledger.client_id,
                old_values={"is_active": True},
                new_values={"is_active": False},
            )
        logger.info("ledger_closed", extra={"ledger_id": str(ledger_id)})
        return ledger

    def reopen_ledger(self, ledger_id: UUID, ctx: RequestContext) -> ClientLedger:
        with self.session.begin_nested():
            ledger = self.lock_ledger(ledger_id)
            if ledger.is_active:
                return ledger
            ledger.is_active = True
            ledger.updated_by_id = ctx.actor_id
            self.session.flush()
            self._auditor.record(
                AuditAction.LEDGER_REOPENED,
                "ClientLedger",
                ledger.id,
                ctx,
                client_id=ledger.client_id,
                old_values={"is_active": False},
                new_values={"is_active": True},
            )
        logger.info("ledger_reopened", extra={"ledger_id": str(ledger_id)})
        return ledger
