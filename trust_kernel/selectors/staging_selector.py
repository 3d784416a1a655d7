"""
Module: trust_kernel.selectors.staging_selector
Responsibility: Staging queue read models -- filtered record lists with a
    per-status summary of counts, deposits, withdrawals and net amounts.
Architecture position: Kernel > Selectors.
"""

from collections import defaultdict
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import or_, select

from trust_kernel.domain.dtos import StagingList, StagingView, StatusBucket
from trust_kernel.domain.money import CENT, ZERO
from trust_kernel.domain.transaction_types import StagingType
from trust_kernel.exceptions import StagingRecordNotFoundError
from trust_kernel.models.registry import Client
from trust_kernel.models.staging import StagingRecord, StagingStatus
from trust_kernel.selectors.base import BaseSelector


def _bucket(amounts: list[Decimal]) -> StatusBucket:
    deposits = sum((a for a in amounts if a > 0), ZERO).quantize(CENT)
    withdrawals = sum((-a for a in amounts if a < 0), ZERO).quantize(CENT)
    return StatusBucket(
        count=len(amounts),
        deposits=deposits,
        withdrawals=withdrawals,
        net=deposits - withdrawals,
    )


def _view(record: StagingRecord, client_name: str | None) -> StagingView:
    return StagingView(
        id=record.id,
        seq=record.seq,
        account_id=record.account_id,
        transaction_date=record.transaction_date,
        amount=record.amount.quantize(CENT),
        staging_type=StagingType(record.staging_type).value,
        status=StagingStatus(record.status).value,
        description=record.description,
        reference_number=record.reference_number,
        payee=record.payee,
        client_id=record.client_id,
        client_name=client_name,
        posted_transaction_id=record.posted_transaction_id,
        matched_transaction_id=record.matched_transaction_id,
        import_batch_id=record.import_batch_id,
    )


class StagingSelector(BaseSelector):

    def get(self, staging_id: UUID) -> StagingView:
        row = self.session.execute(
            select(StagingRecord, Client.name)
            .outerjoin(Client, Client.id == StagingRecord.client_id)
            .where(StagingRecord.id == staging_id)
        ).one_or_none()
        if row is None:
            raise StagingRecordNotFoundError(str(staging_id))
        return _view(*row)

    def list_staging(
        self,
        account_id: UUID | None = None,
        status: StagingStatus | str | None = None,
        client_id: UUID | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
        batch_id: str | None = None,
        search: str | None = None,
    ) -> StagingList:
        """
        Staging records newest first.

        The summary covers every status matching the other filters, so a
        caller filtering on one status still sees the whole queue's shape.
        """
        query = (
            select(StagingRecord, Client.name)
            .outerjoin(Client, Client.id == StagingRecord.client_id)
        )
        if account_id is not None:
            query = query.where(StagingRecord.account_id == account_id)
        if client_id is not None:
            query = query.where(StagingRecord.client_id == client_id)
        if start_date is not None:
            query = query.where(StagingRecord.transaction_date >= start_date)
        if end_date is not None:
            query = query.where(StagingRecord.transaction_date <= end_date)
        if batch_id is not None:
            query = query.where(StagingRecord.import_batch_id == batch_id)
        if search:
            pattern = f"%{search.strip()}%"
            query = query.where(or_(
                StagingRecord.description.ilike(pattern),
                StagingRecord.reference_number.ilike(pattern),
                StagingRecord.payee.ilike(pattern),
            ))

        rows = self.session.execute(
            query.order_by(StagingRecord.transaction_date.desc(), StagingRecord.seq.desc())
        ).all()

        by_status: dict[str, list[Decimal]] = defaultdict(list)
        for record, _ in rows:
            by_status[StagingStatus(record.status).value].append(record.amount)

        wanted = StagingStatus(status).value if status is not None else None
        records = tuple(
            _view(record, name)
            for record, name in rows
            if wanted is None or StagingStatus(record.status).value == wanted
        )
        return StagingList(
            records=records,
            summary={s.value: _bucket(by_status.get(s.value, [])) for s in StagingStatus},
            total=_bucket([record.amount for record, _ in rows]),
        )
