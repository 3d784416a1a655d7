"""
TransactionWriter -- the single writer of TrustTransaction rows.

Responsibility:
    Inserts and removes ledger transactions, always paired with the
    matching ``LedgerService.adjust_balance`` call, and triggers the tail
    replay when a row lands before later-dated history.

Architecture position:
    Kernel > Services -- shared by PostingService, TransactionService and
    SplitService.

Invariants enforced:
    - ``amount`` is signed by ``apply_sign``; callers pass magnitudes or
      signed values interchangeably.
    - A new row's ``seq`` comes from SequenceService, so same-day rows
      order by allocation.
    - ``running_balance`` of every row equals the replayed fold after the
      write.

Non-goals:
    - Does NOT open savepoints; the calling operation owns the atomic unit.
    - Does NOT write audit entries; the calling operation records one
      entry describing the whole change.
"""

from datetime import date
from decimal import Decimal
from typing import Any

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from trust_kernel.domain.context import RequestContext
from trust_kernel.domain.money import ZERO
from trust_kernel.domain.transaction_types import TransactionType, apply_sign
from trust_kernel.exceptions import ValidationFailedError
from trust_kernel.logging_config import get_logger
from trust_kernel.models.ledger import ClientLedger
from trust_kernel.models.staging import StagingRecord, StagingStatus
from trust_kernel.models.transaction import TransactionStatus, TrustTransaction
from trust_kernel.services.ledger_service import LedgerService
from trust_kernel.services.sequence_service import SequenceService

logger = get_logger("services.transaction_writer")


class TransactionWriter:

    def __init__(self, session: Session, ledgers: LedgerService):
        self._session = session
        self._ledgers = ledgers
        self._sequences = SequenceService(session)

    def _has_later_rows(self, ledger: ClientLedger, transaction_date: date) -> bool:
        later = self._session.execute(
            select(TrustTransaction.id)
            .where(
                TrustTransaction.ledger_id == ledger.id,
                TrustTransaction.transaction_date > transaction_date,
            )
            .limit(1)
        ).first()
        return later is not None

    def write(
        self,
        ledger: ClientLedger,
        transaction_type: TransactionType,
        amount: Decimal,
        transaction_date: date,
        ctx: RequestContext,
        status: TransactionStatus = TransactionStatus.PENDING,
        **metadata: Any,
    ) -> TrustTransaction:
        """
        Insert one transaction on a locked ledger.

        Raises:
            ValidationFailedError: zero amount.
            InsufficientFundsError: from ``adjust_balance``; nothing written.
        """
        transaction_type = TransactionType(transaction_type)
        signed = apply_sign(transaction_type, amount)
        if signed == ZERO:
            raise ValidationFailedError("amount", "amount must be non-zero")

        new_balance = self._ledgers.adjust_balance(ledger, signed)
        backdated = self._has_later_rows(ledger, transaction_date)

        txn = TrustTransaction(
            ledger_id=ledger.id,
            seq=self._sequences.next_value(SequenceService.TRANSACTION),
            transaction_type=transaction_type,
            amount=signed,
            running_balance=new_balance,
            transaction_date=transaction_date,
            status=status,
            created_by_id=ctx.actor_id,
            **metadata,
        )
        self._session.add(txn)
        self._session.flush()

        if backdated:
            self._ledgers.recalculate_tail(ledger, transaction_date)

        logger.info(
            "transaction_written",
            extra={
                "transaction_id": str(txn.id),
                "ledger_id": str(ledger.id),
                "transaction_type": transaction_type.value,
                "amount": signed,
                "seq": txn.seq,
                "backdated": backdated,
            },
        )
        return txn

    def remove(
        self,
        txn: TrustTransaction,
        ctx: RequestContext,
        replay: bool = True,
    ) -> ClientLedger:
        """
        Reverse a transaction's effect on its ledger and delete the row.

        With ``replay=False`` the caller replays the ledger itself (used when
        several rows of one ledger are removed together).

        Raises:
            InsufficientFundsError: removing a credit would overdraw the ledger.
        """
        ledger = self._ledgers.lock_ledger(txn.ledger_id)
        self._ledgers.adjust_balance(ledger, -txn.amount)
        transaction_date = txn.transaction_date
        txn_id = txn.id

        self._session.delete(txn)
        self._session.flush()

        if replay:
            self._ledgers.recalculate_tail(ledger, transaction_date)

        logger.info(
            "transaction_removed",
            extra={
                "transaction_id": str(txn_id),
                "ledger_id": str(ledger.id),
                "actor_id": str(ctx.actor_id),
            },
        )
        return ledger

    def detach_staging(self, txn: TrustTransaction, ctx: RequestContext) -> list[StagingRecord]:
        """
        Drop every staging link to ``txn``.

        Posted records go back to ASSIGNED; reconciled records keep their
        terminal status and only lose the link.
        """
        conditions = [
            StagingRecord.posted_transaction_id == txn.id,
            StagingRecord.matched_transaction_id == txn.id,
        ]
        if txn.staging_id is not None:
            conditions.append(StagingRecord.id == txn.staging_id)

        records = self._session.execute(
            select(StagingRecord).where(or_(*conditions)).with_for_update()
        ).scalars().all()

        for record in records:
            if record.status == StagingStatus.POSTED:
                record.status = StagingStatus.ASSIGNED
                record.posted_transaction_id = None
                record.posted_at = None
                record.posted_by_id = None
            record.matched_transaction_id = None
            record.updated_by_id = ctx.actor_id

        self._session.flush()
        return list(records)
