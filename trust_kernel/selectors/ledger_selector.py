"""
Module: trust_kernel.selectors.ledger_selector
Responsibility: Client ledger read models -- a ledger's balance with its
    ordered history, per-account listings and client totals.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - History is ordered by (transaction_date, seq), the same order the
      running balances were computed in.
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select

from trust_kernel.domain.dtos import LedgerListing, LedgerSnapshot, TransactionView
from trust_kernel.domain.money import CENT
from trust_kernel.domain.transaction_types import TransactionType
from trust_kernel.exceptions import LedgerNotFoundError
from trust_kernel.models.ledger import ClientLedger
from trust_kernel.models.registry import Client
from trust_kernel.models.transaction import TransactionStatus, TrustTransaction
from trust_kernel.selectors.base import BaseSelector


def transaction_view(txn: TrustTransaction) -> TransactionView:
    return TransactionView(
        id=txn.id,
        ledger_id=txn.ledger_id,
        seq=txn.seq,
        transaction_type=TransactionType(txn.transaction_type).value,
        transaction_date=txn.transaction_date,
        amount=txn.amount.quantize(CENT),
        running_balance=txn.running_balance.quantize(CENT),
        status=TransactionStatus(txn.status).value,
        description=txn.description,
        reference_number=txn.reference_number,
        check_number=txn.check_number,
        payee=txn.payee,
        staging_id=txn.staging_id,
        split_group_id=txn.split_group_id,
        related_transaction_id=txn.related_transaction_id,
    )


class LedgerSelector(BaseSelector):

    def snapshot(
        self,
        ledger_id: UUID,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> LedgerSnapshot:
        """
        Balance and history of one ledger.

        ``transaction_count`` and ``last_activity`` cover the whole ledger;
        the date range only filters ``transactions``.
        """
        ledger = self.session.get(ClientLedger, ledger_id)
        if ledger is None:
            raise LedgerNotFoundError(str(ledger_id))

        query = select(TrustTransaction).where(TrustTransaction.ledger_id == ledger_id)
        if start_date is not None:
            query = query.where(TrustTransaction.transaction_date >= start_date)
        if end_date is not None:
            query = query.where(TrustTransaction.transaction_date <= end_date)
        txns = self.session.execute(
            query.order_by(TrustTransaction.transaction_date, TrustTransaction.seq)
        ).scalars().all()

        count, last_activity = self.session.execute(
            select(
                func.count(TrustTransaction.id),
                func.max(TrustTransaction.transaction_date),
            ).where(TrustTransaction.ledger_id == ledger_id)
        ).one()

        return LedgerSnapshot(
            ledger_id=ledger.id,
            client_id=ledger.client_id,
            account_id=ledger.account_id,
            balance=ledger.current_balance.quantize(CENT),
            is_active=ledger.is_active,
            transactions=tuple(transaction_view(t) for t in txns),
            transaction_count=count,
            last_activity=last_activity,
        )

    def snapshot_for(self, client_id: UUID, account_id: UUID) -> LedgerSnapshot | None:
        ledger_id = self.session.execute(
            select(ClientLedger.id).where(
                ClientLedger.client_id == client_id,
                ClientLedger.account_id == account_id,
            )
        ).scalar_one_or_none()
        if ledger_id is None:
            return None
        return self.snapshot(ledger_id)

    def list_ledgers(self, account_id: UUID, active_only: bool = False) -> list[LedgerListing]:
        """Ledgers on one account with their client names, by client name."""
        activity = (
            select(
                TrustTransaction.ledger_id.label("ledger_id"),
                func.count(TrustTransaction.id).label("txn_count"),
                func.max(TrustTransaction.transaction_date).label("last_activity"),
            )
            .group_by(TrustTransaction.ledger_id)
            .subquery()
        )
        query = (
            select(ClientLedger, Client.name, activity.c.txn_count, activity.c.last_activity)
            .join(Client, Client.id == ClientLedger.client_id)
            .outerjoin(activity, activity.c.ledger_id == ClientLedger.id)
            .where(ClientLedger.account_id == account_id)
        )
        if active_only:
            query = query.where(ClientLedger.is_active.is_(True))

        rows = self.session.execute(query.order_by(Client.name)).all()
        return [
            LedgerListing(
                ledger_id=ledger.id,
                client_id=ledger.client_id,
                client_name=name,
                balance=ledger.current_balance.quantize(CENT),
                is_active=ledger.is_active,
                transaction_count=txn_count or 0,
                last_activity=last_activity,
            )
            for ledger, name, txn_count, last_activity in rows
        ]

    def ledger_total(self, account_id: UUID) -> Decimal:
        total = self.session.execute(
            select(func.coalesce(func.sum(ClientLedger.current_balance), 0))
            .where(ClientLedger.account_id == account_id)
        ).scalar_one()
        return Decimal(total).quantize(CENT)

    def client_balance(self, client_id: UUID) -> Decimal:
        """Total held for a client across all trust accounts."""
        total = self.session.execute(
            select(func.coalesce(func.sum(ClientLedger.current_balance), 0))
            .where(ClientLedger.client_id == client_id)
        ).scalar_one()
        return Decimal(total).quantize(CENT)

    def sum_of_amounts(self, ledger_id: UUID) -> Decimal:
        """Sum of a ledger's transaction amounts, independent of the stored balance."""
        total = self.session.execute(
            select(func.coalesce(func.sum(TrustTransaction.amount), 0))
            .where(TrustTransaction.ledger_id == ledger_id)
        ).scalar_one()
        return Decimal(total).quantize(CENT)
