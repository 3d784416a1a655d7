"""
SplitService -- one bank instrument allocated across several clients.

Responsibility:
    A split check or deposit is written as one transaction per client
    ledger, all carrying the same ``split_group_id`` and instrument
    metadata.  Groups are created and removed as a unit.

Invariants enforced:
    - A group has at least two lines, each with a positive amount.
    - All lines are written or none are: one line's insufficient funds
      rolls back the whole group.
    - Ledgers are locked in ascending id order before any balance moves.
    - Removing a group replays each touched ledger once.
"""

from collections.abc import Sequence
from datetime import date
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from trust_kernel.domain.clock import Clock
from trust_kernel.domain.context import RequestContext
from trust_kernel.domain.dtos import SplitGroupView, SplitLine
from trust_kernel.domain.money import ZERO, to_money
from trust_kernel.domain.transaction_types import SPLIT_TYPES, TransactionType
from trust_kernel.exceptions import SplitGroupNotFoundError, ValidationFailedError
from trust_kernel.logging_config import get_logger
from trust_kernel.models.audit_log import AuditAction
from trust_kernel.models.ledger import ClientLedger
from trust_kernel.models.transaction import TransactionStatus, TrustTransaction
from trust_kernel.selectors.ledger_selector import transaction_view
from trust_kernel.services.audit_service import AuditService
from trust_kernel.services.base import BaseService
from trust_kernel.services.ledger_service import LedgerService
from trust_kernel.services.transaction_writer import TransactionWriter

logger = get_logger("services.split")


class SplitService(BaseService):

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

    def _members(self, split_group_id: UUID) -> list[TrustTransaction]:
        members = self.session.execute(
            select(TrustTransaction)
            .where(TrustTransaction.split_group_id == split_group_id)
            .order_by(TrustTransaction.seq)
        ).scalars().all()
        if not members:
            raise SplitGroupNotFoundError(str(split_group_id))
        return list(members)

    def create_split(
        self,
        account_id: UUID,
        transaction_type: TransactionType | str,
        transaction_date: date,
        lines: Sequence[SplitLine],
        ctx: RequestContext,
        check_number: str | None = None,
        payee: str | None = None,
        received_from: str | None = None,
        reference_number: str | None = None,
        memo: str | None = None,
        description: str | None = None,
        status: TransactionStatus = TransactionStatus.PENDING,
    ) -> SplitGroupView:
        """
        Write a split instrument.

        Raises:
            ValidationFailedError: unsupported type, fewer than two lines or
                a non-positive line amount.
            InsufficientFundsError: any debit line exceeds its client's
                balance; no line is written.
        """
        transaction_type = TransactionType(transaction_type)
        if transaction_type not in SPLIT_TYPES:
            raise ValidationFailedError(
                "transaction_type", f"{transaction_type.value} cannot be split",
            )
        if len(lines) < 2:
            raise ValidationFailedError("lines", "a split needs at least two lines")
        amounts = [to_money(line.amount, "lines.amount") for line in lines]
        if any(amount <= ZERO for amount in amounts):
            raise ValidationFailedError("lines.amount", "split line amounts must be positive")

        split_group_id = uuid4()
        status = TransactionStatus(status)

        with self.session.begin_nested():
            ledgers: dict[UUID, ClientLedger] = {}
            for client_id in sorted({line.client_id for line in lines}, key=str):
                ledgers[client_id] = self._ledgers.get_or_create_ledger(
                    client_id, account_id, ctx,
                )
            for ledger in sorted(ledgers.values(), key=lambda l: str(l.id)):
                self._ledgers.lock_ledger(ledger.id)
                self._ledgers.require_active(ledger)

            members: list[TrustTransaction] = []
            for line, amount in zip(lines, amounts):
                members.append(self._writer.write(
                    ledgers[line.client_id],
                    transaction_type,
                    amount,
                    transaction_date,
                    ctx,
                    status=status,
                    cleared_date=transaction_date if status is TransactionStatus.CLEARED else None,
                    description=line.description or description,
                    memo=memo,
                    reference_number=reference_number,
                    check_number=check_number,
                    payee=payee,
                    received_from=received_from,
                    split_group_id=split_group_id,
                ))

            total = sum(amounts, ZERO)
            self._auditor.record(
                AuditAction.SPLIT_CREATED,
                "SplitGroup",
                split_group_id,
                ctx,
                new_values={
                    "transaction_type": transaction_type,
                    "transaction_date": transaction_date,
                    "check_number": check_number,
                    "total": total,
                    "lines": [
                        {"client_id": line.client_id, "amount": amount}
                        for line, amount in zip(lines, amounts)
                    ],
                },
            )

        logger.info(
            "split_created",
            extra={
                "split_group_id": str(split_group_id),
                "lines": len(members),
                "total": total,
            },
        )
        return self._view(split_group_id, members)

    def delete_split(self, split_group_id: UUID, ctx: RequestContext) -> int:
        """
        Reverse and remove every line of a split group.

        Returns the number of lines removed.

        Raises:
            SplitGroupNotFoundError
            InsufficientFundsError: a deposit line has already been spent.
        """
        with self.session.begin_nested():
            members = self._members(split_group_id)
            snapshot = [
                {"client_id": self.session.get(ClientLedger, m.ledger_id).client_id,
                 "amount": m.amount}
                for m in members
            ]
            for ledger_id in sorted({m.ledger_id for m in members}, key=str):
                self._ledgers.lock_ledger(ledger_id)

            replay_from: dict[UUID, date] = {}
            for member in members:
                self._writer.detach_staging(member, ctx)
                current = replay_from.get(member.ledger_id)
                if current is None or member.transaction_date < current:
                    replay_from[member.ledger_id] = member.transaction_date
                self._writer.remove(member, ctx, replay=False)

            for ledger_id in sorted(replay_from, key=str):
                ledger = self._ledgers.lock_ledger(ledger_id)
                self._ledgers.recalculate_tail(ledger, replay_from[ledger_id])

            self._auditor.record(
                AuditAction.SPLIT_DELETED,
                "SplitGroup",
                split_group_id,
                ctx,
                old_values={"lines": snapshot},
            )

        logger.info(
            "split_deleted",
            extra={"split_group_id": str(split_group_id), "lines": len(members)},
        )
        return len(members)

    def get_split(self, split_group_id: UUID) -> SplitGroupView:
        return self._view(split_group_id, self._members(split_group_id))

    @staticmethod
    def _view(split_group_id: UUID, members: Sequence[TrustTransaction]) -> SplitGroupView:
        first = members[0]
        total: Decimal = sum((abs(m.amount) for m in members), ZERO)
        return SplitGroupView(
            split_group_id=split_group_id,
            transaction_type=TransactionType(first.transaction_type).value,
            transaction_date=first.transaction_date,
            check_number=first.check_number,
            payee=first.payee,
            total=total,
            lines=tuple(transaction_view(m) for m in members),
        )
