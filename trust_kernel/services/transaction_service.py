"""
TransactionService -- direct edits to the ledger books.

Responsibility:
    Manual book entries (written checks, receipts), corrections to posted
    transactions, deletions, moves between clients, client-to-client
    transfers and earned-fee withdrawals.

Architecture position:
    Kernel > Services.  Balance changes go through LedgerService and row
    writes through TransactionWriter; every public method is one
    savepoint and one or more audit entries.

Invariants enforced:
    - An amount edit re-signs the new magnitude by the transaction's type,
      applies only the difference to the balance, and replays the ledger
      from the earlier of the old and new dates.
    - Deleting a transaction reverses its amount and returns any linked
      staging record to ASSIGNED.
    - Split members are only removed through their split group.
    - A move is atomic across all of its transactions.
"""

from collections.abc import Iterable
from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from trust_kernel.domain.clock import Clock
from trust_kernel.domain.context import RequestContext
from trust_kernel.domain.dtos import BulkResult
from trust_kernel.domain.money import ZERO, to_money
from trust_kernel.domain.transaction_types import TransactionType, apply_sign
from trust_kernel.exceptions import (
    SplitMemberError,
    TransactionNotFoundError,
    ValidationFailedError,
)
from trust_kernel.logging_config import get_logger
from trust_kernel.models.audit_log import AuditAction
from trust_kernel.models.ledger import ClientLedger
from trust_kernel.models.staging import StagingRecord
from trust_kernel.models.transaction import TransactionStatus, TrustTransaction
from trust_kernel.services.audit_service import AuditService
from trust_kernel.services.base import BaseService
from trust_kernel.services.ledger_service import LedgerService
from trust_kernel.services.transaction_writer import TransactionWriter

logger = get_logger("services.transaction")

EDITABLE_FIELDS = frozenset({
    "transaction_date",
    "amount",
    "status",
    "description",
    "memo",
    "reference_number",
    "check_number",
    "payee",
    "received_from",
})


def transaction_snapshot(txn: TrustTransaction) -> dict[str, Any]:
    return {
        "ledger_id": txn.ledger_id,
        "transaction_type": txn.transaction_type,
        "amount": txn.amount,
        "transaction_date": txn.transaction_date,
        "status": txn.status,
        "description": txn.description,
        "memo": txn.memo,
        "reference_number": txn.reference_number,
        "check_number": txn.check_number,
        "payee": txn.payee,
        "received_from": txn.received_from,
    }


def _positive(amount, field: str = "amount") -> Decimal:
    value = to_money(amount, field)
    if value <= ZERO:
        raise ValidationFailedError(field, "amount must be positive")
    return value


class TransactionService(BaseService):

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

    def _get_for_update(self, transaction_id: UUID) -> TrustTransaction:
        txn = self.session.execute(
            select(TrustTransaction)
            .where(TrustTransaction.id == transaction_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if txn is None:
            raise TransactionNotFoundError(str(transaction_id))
        return txn

    def _client_of(self, ledger_id: UUID) -> UUID:
        return self.session.get(ClientLedger, ledger_id).client_id

    # Manual entries

    def record(
        self,
        client_id: UUID,
        account_id: UUID,
        transaction_type: TransactionType | str,
        amount,
        transaction_date: date,
        ctx: RequestContext,
        status: TransactionStatus = TransactionStatus.PENDING,
        **metadata: Any,
    ) -> TrustTransaction:
        """
        Enter a transaction directly on a client ledger.

        ``metadata`` accepts description, memo, reference_number,
        check_number, payee and received_from.

        Raises:
            ValidationFailedError, InactiveClientError, NotTrustAccountError,
            LedgerClosedError, InsufficientFundsError
        """
        transaction_type = TransactionType(transaction_type)
        amount = to_money(amount)
        if amount == ZERO:
            raise ValidationFailedError("amount", "amount must be non-zero")
        unknown = set(metadata) - EDITABLE_FIELDS
        if unknown:
            raise ValidationFailedError(sorted(unknown)[0], "unknown transaction field")
        status = TransactionStatus(status)

        with self.session.begin_nested():
            ledger = self._ledgers.get_or_create_ledger(client_id, account_id, ctx)
            self._ledgers.require_active(ledger)
            txn = self._writer.write(
                ledger,
                transaction_type,
                amount,
                transaction_date,
                ctx,
                status=status,
                cleared_date=transaction_date if status is TransactionStatus.CLEARED else None,
                **metadata,
            )
            self._auditor.record(
                AuditAction.TRANSACTION_RECORDED,
                "TrustTransaction",
                txn.id,
                ctx,
                client_id=client_id,
                new_values=transaction_snapshot(txn),
            )
        return txn

    def withdraw_earned_fee(
        self,
        client_id: UUID,
        account_id: UUID,
        amount,
        transaction_date: date,
        ctx: RequestContext,
        description: str | None = None,
        reference_number: str | None = None,
    ) -> TrustTransaction:
        """Move earned fees out of trust to the firm (an EARNED_FEE debit)."""
        amount = _positive(amount)
        with self.session.begin_nested():
            ledger = self._ledgers.get_or_create_ledger(client_id, account_id, ctx)
            self._ledgers.require_active(ledger)
            txn = self._writer.write(
                ledger,
                TransactionType.EARNED_FEE,
                amount,
                transaction_date,
                ctx,
                description=description or "Earned fee withdrawal",
                reference_number=reference_number,
            )
            self._auditor.record(
                AuditAction.EARNED_FEE_WITHDRAWN,
                "TrustTransaction",
                txn.id,
                ctx,
                client_id=client_id,
                new_values={"amount": amount, "balance_after": ledger.current_balance},
            )
        logger.info(
            "earned_fee_withdrawn",
            extra={"transaction_id": str(txn.id), "client_id": str(client_id), "amount": amount},
        )
        return txn

    def transfer(
        self,
        from_client_id: UUID,
        to_client_id: UUID,
        account_id: UUID,
        amount,
        transaction_date: date,
        ctx: RequestContext,
        description: str | None = None,
        reference_number: str | None = None,
    ) -> tuple[TrustTransaction, TrustTransaction]:
        """
        Move funds between two clients on the same trust account.

        Writes a TRANSFER_OUT on the source and a TRANSFER_IN on the target,
        each pointing at the other through ``related_transaction_id``.

        Raises:
            ValidationFailedError: same client or non-positive amount.
            InsufficientFundsError: the source cannot cover the amount.
            LedgerClosedError: either ledger is closed.
        """
        amount = _positive(amount)
        if from_client_id == to_client_id:
            raise ValidationFailedError("to_client_id", "cannot transfer to the same client")

        with self.session.begin_nested():
            source = self._ledgers.get_or_create_ledger(from_client_id, account_id, ctx)
            target = self._ledgers.get_or_create_ledger(to_client_id, account_id, ctx)
            for ledger in sorted((source, target), key=lambda l: str(l.id)):
                self._ledgers.lock_ledger(ledger.id)
                self._ledgers.require_active(ledger)

            text = description or "Client transfer"
            outgoing = self._writer.write(
                source,
                TransactionType.TRANSFER_OUT,
                amount,
                transaction_date,
                ctx,
                description=text,
                reference_number=reference_number,
            )
            incoming = self._writer.write(
                target,
                TransactionType.TRANSFER_IN,
                amount,
                transaction_date,
                ctx,
                description=text,
                reference_number=reference_number,
                related_transaction_id=outgoing.id,
            )
            outgoing.related_transaction_id = incoming.id
            self.session.flush()

            self._auditor.record(
                AuditAction.TRANSFER_COMPLETED,
                "TrustTransaction",
                outgoing.id,
                ctx,
                client_id=from_client_id,
                new_values={
                    "from_client_id": from_client_id,
                    "to_client_id": to_client_id,
                    "amount": amount,
                    "transfer_out_id": outgoing.id,
                    "transfer_in_id": incoming.id,
                },
            )

        logger.info(
            "transfer_completed",
            extra={
                "from_client_id": str(from_client_id),
                "to_client_id": str(to_client_id),
                "amount": amount,
            },
        )
        return outgoing, incoming

    # Corrections

    def update(self, transaction_id: UUID, ctx: RequestContext, **changes: Any) -> TrustTransaction:
        """
        Edit a transaction's metadata, amount or date.

        Raises:
            ValidationFailedError: unknown field or zero amount.
            InsufficientFundsError: the new amount would overdraw the ledger.
            LedgerIntegrityError: the replay disagrees with the stored balance.
        """
        unknown = set(changes) - EDITABLE_FIELDS
        if unknown:
            raise ValidationFailedError(sorted(unknown)[0], "field cannot be changed")

        with self.session.begin_nested():
            txn = self._get_for_update(transaction_id)
            ledger = self._ledgers.lock_ledger(txn.ledger_id)
            before = transaction_snapshot(txn)
            old_date = txn.transaction_date
            replay_from: date | None = None

            if "amount" in changes:
                new_amount = apply_sign(txn.transaction_type, changes.pop("amount"))
                if new_amount == ZERO:
                    raise ValidationFailedError("amount", "amount must be non-zero")
                amount_diff = new_amount - txn.amount
                if amount_diff != ZERO:
                    self._ledgers.require_active(ledger)
                    self._ledgers.adjust_balance(ledger, amount_diff)
                    txn.amount = new_amount
                    replay_from = old_date

            if "transaction_date" in changes:
                new_date = changes.pop("transaction_date")
                if new_date != old_date:
                    txn.transaction_date = new_date
                    replay_from = min(old_date, new_date)

            if "status" in changes:
                status = TransactionStatus(changes.pop("status"))
                if status is TransactionStatus.CLEARED and txn.cleared_date is None:
                    txn.cleared_date = self._clock.today()
                elif status is TransactionStatus.PENDING:
                    txn.cleared_date = None
                txn.status = status

            for field, value in changes.items():
                setattr(txn, field, value)
            txn.updated_by_id = ctx.actor_id
            self.session.flush()

            if replay_from is not None:
                self._ledgers.recalculate_tail(ledger, replay_from)

            after = transaction_snapshot(txn)
            self._auditor.record(
                AuditAction.TRANSACTION_UPDATED,
                "TrustTransaction",
                txn.id,
                ctx,
                client_id=ledger.client_id,
                old_values=before,
                new_values=after,
            )

        logger.info(
            "transaction_updated",
            extra={
                "transaction_id": str(transaction_id),
                "fields": list(AuditService.diff_values(before, after)),
                "replayed": replay_from is not None,
            },
        )
        return txn

    def _delete_one(self, transaction_id: UUID, ctx: RequestContext) -> None:
        with self.session.begin_nested():
            txn = self._get_for_update(transaction_id)
            if txn.split_group_id is not None:
                raise SplitMemberError(str(transaction_id), str(txn.split_group_id))

            snapshot = transaction_snapshot(txn)
            client_id = self._client_of(txn.ledger_id)
            detached = self._writer.detach_staging(txn, ctx)

            partners = self.session.execute(
                select(TrustTransaction).where(
                    or_(
                        TrustTransaction.related_transaction_id == txn.id,
                        TrustTransaction.id == txn.related_transaction_id,
                    ),
                    TrustTransaction.id != txn.id,
                )
            ).scalars().all()
            for partner in partners:
                if partner.related_transaction_id == txn.id:
                    partner.related_transaction_id = None

            self._writer.remove(txn, ctx)
            self._auditor.record(
                AuditAction.TRANSACTION_DELETED,
                "TrustTransaction",
                transaction_id,
                ctx,
                client_id=client_id,
                old_values=snapshot,
                new_values={"staging_reverted": [r.id for r in detached]},
            )

    def delete(self, transaction_id: UUID, ctx: RequestContext) -> None:
        """
        Reverse and delete one transaction.

        Raises:
            TransactionNotFoundError
            SplitMemberError: the row belongs to a split group.
            InsufficientFundsError: removing a credit that was already spent.
        """
        self._delete_one(transaction_id, ctx)
        logger.info("transaction_deleted", extra={"transaction_id": str(transaction_id)})

    def bulk_delete(self, transaction_ids: Iterable[UUID], ctx: RequestContext) -> BulkResult:
        return self._run_per_item(
            transaction_ids,
            lambda transaction_id: self._delete_one(transaction_id, ctx),
            "transaction_delete",
        )

    # Re-attribution

    def move_to_client(
        self,
        transaction_ids: Iterable[UUID],
        target_client_id: UUID,
        ctx: RequestContext,
    ) -> list[TrustTransaction]:
        """
        Re-attribute transactions to another client on the same account.

        Each amount leaves the source ledger and lands on the target's;
        linked staging records follow.  All rows move or none do.

        Raises:
            TransactionNotFoundError, SplitMemberError, InactiveClientError,
            LedgerClosedError, InsufficientFundsError
        """
        transaction_ids = list(dict.fromkeys(transaction_ids))
        moved: list[TrustTransaction] = []

        with self.session.begin_nested():
            txns = [self._get_for_update(transaction_id) for transaction_id in transaction_ids]
            for txn in txns:
                if txn.split_group_id is not None:
                    raise SplitMemberError(str(txn.id), str(txn.split_group_id))

            sources = {
                txn.ledger_id: self.session.get(ClientLedger, txn.ledger_id) for txn in txns
            }
            targets: dict[UUID, ClientLedger] = {}
            for source in sources.values():
                if source.account_id not in targets:
                    targets[source.account_id] = self._ledgers.get_or_create_ledger(
                        target_client_id, source.account_id, ctx,
                    )

            ledgers = {l.id: l for l in (*sources.values(), *targets.values())}
            for ledger_id in sorted(ledgers, key=str):
                self._ledgers.lock_ledger(ledger_id)
            for target in targets.values():
                self._ledgers.require_active(target)

            replay_from: dict[UUID, date] = {}
            for txn in txns:
                source = sources[txn.ledger_id]
                target = targets[source.account_id]
                if source.id == target.id:
                    continue

                # Target first: a moved debit must be covered by the target ledger
                self._ledgers.adjust_balance(target, txn.amount)
                self._ledgers.adjust_balance(source, -txn.amount)
                txn.ledger_id = target.id
                txn.updated_by_id = ctx.actor_id

                linked = self.session.execute(
                    select(StagingRecord).where(
                        or_(
                            StagingRecord.posted_transaction_id == txn.id,
                            StagingRecord.matched_transaction_id == txn.id,
                        )
                    )
                ).scalars().all()
                for record in linked:
                    record.client_id = target_client_id
                    record.updated_by_id = ctx.actor_id

                for ledger_id in (source.id, target.id):
                    current = replay_from.get(ledger_id)
                    if current is None or txn.transaction_date < current:
                        replay_from[ledger_id] = txn.transaction_date

                self._auditor.record(
                    AuditAction.TRANSACTION_MOVED,
                    "TrustTransaction",
                    txn.id,
                    ctx,
                    client_id=target_client_id,
                    old_values={"ledger_id": source.id, "client_id": source.client_id},
                    new_values={"ledger_id": target.id, "client_id": target_client_id},
                )
                moved.append(txn)

            self.session.flush()
            for ledger_id in sorted(replay_from, key=str):
                self._ledgers.recalculate_tail(ledgers[ledger_id], replay_from[ledger_id])

        logger.info(
            "transactions_moved",
            extra={"target_client_id": str(target_client_id), "moved": len(moved)},
        )
        return moved
