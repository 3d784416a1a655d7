"""
StagingService -- the staging queue of imported bank lines.

Responsibility:
    Imports statement rows into ``trust_staging`` with de-duplication,
    accepts manual entries and corrections, and moves records through
    assignment and rejection.  Posting and matching live in
    PostingService and MatchingService.

Architecture position:
    Kernel > Services.  Consumes ``StatementRow`` values produced by
    ``trust_ingestion``; never parses files itself.

Invariants enforced:
    - A (reference, amount) pair is imported at most once per account,
      whether it is already a transaction on one of the account's ledgers,
      an existing staging record, or an earlier row of the same batch.
    - Status changes follow ``ALLOWED_TRANSITIONS``; POSTED records are
      never edited, re-assigned, rejected or deleted here.
    - Every mutation writes one audit entry in the same savepoint.

Failure modes:
    - Batch-fatal: AccountNotFoundError, NotTrustAccountError,
      ClientNotFoundError / InactiveClientError on the assign target.
    - Per-row (import): invalid date or amount become ``RowError`` values.
    - Per-item (bulk): AlreadyPostedError, InvalidStatusTransitionError,
      StagingRecordNotFoundError reported in ``BulkResult.errors``.
"""

from collections.abc import Iterable, Mapping
from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from trust_kernel.domain.clock import Clock
from trust_kernel.domain.context import RequestContext
from trust_kernel.domain.dtos import BulkResult, ImportResult, RowError, SkippedRow
from trust_kernel.domain.money import ZERO, to_money
from trust_kernel.domain.policy import TrustPolicy
from trust_kernel.domain.statement import StatementRow
from trust_kernel.domain.transaction_types import StagingType, infer_staging_type
from trust_kernel.exceptions import (
    AccountNotFoundError,
    AlreadyPostedError,
    ClientNotFoundError,
    InactiveClientError,
    InvalidStatusTransitionError,
    NotTrustAccountError,
    StagingRecordNotFoundError,
    ValidationFailedError,
)
from trust_kernel.logging_config import LogContext, get_logger
from trust_kernel.models.audit_log import AuditAction
from trust_kernel.models.ledger import ClientLedger
from trust_kernel.models.registry import AccountType, Client, TrustAccount
from trust_kernel.models.staging import StagingRecord, StagingStatus
from trust_kernel.models.transaction import TrustTransaction
from trust_kernel.services.audit_service import AuditService
from trust_kernel.services.base import BaseService
from trust_kernel.services.sequence_service import SequenceService
from trust_kernel.utils.hashing import fingerprint_row

logger = get_logger("services.staging")

DUPLICATE_REASON = "Duplicate (check# + amount already exists)"
ZERO_AMOUNT_REASON = "Zero amount"

_EDITABLE_FIELDS = frozenset({
    "transaction_date",
    "amount",
    "description",
    "reference_number",
    "payee",
    "staging_type",
})


def reference_key(reference: str | None, amount: Decimal) -> str | None:
    """Dedup key for a referenced line; None when there is no reference."""
    ref = (reference or "").strip()
    if not ref:
        return None
    return f"{ref}|{to_money(amount):.2f}"


def fallback_key(transaction_date: date, amount: Decimal, description: str | None) -> str:
    normalized = " ".join((description or "").lower().split())
    return "fp|" + fingerprint_row(transaction_date, to_money(amount), normalized)


def staging_snapshot(record: StagingRecord) -> dict[str, Any]:
    return {
        "status": record.status,
        "client_id": record.client_id,
        "transaction_date": record.transaction_date,
        "amount": record.amount,
        "description": record.description,
        "reference_number": record.reference_number,
        "payee": record.payee,
        "staging_type": record.staging_type,
    }


class StagingService(BaseService):
    """
    Staging queue operations.

    Non-goals:
        - Does NOT post, match or reconcile.
        - Does NOT commit.
    """

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
        self._sequences = SequenceService(session)

    # Lookups

    def _require_trust_account(self, account_id: UUID) -> TrustAccount:
        account = self.session.get(TrustAccount, account_id)
        if account is None:
            raise AccountNotFoundError(str(account_id))
        account_type = AccountType(account.account_type)
        if not account_type.holds_client_funds:
            raise NotTrustAccountError(str(account_id), account_type.value)
        return account

    def _require_active_client(self, client_id: UUID) -> Client:
        client = self.session.get(Client, client_id)
        if client is None:
            raise ClientNotFoundError(str(client_id))
        if not client.is_active:
            raise InactiveClientError(str(client_id))
        return client

    def get_for_update(self, staging_id: UUID) -> StagingRecord:
        record = self.session.execute(
            select(StagingRecord)
            .where(StagingRecord.id == staging_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if record is None:
            raise StagingRecordNotFoundError(str(staging_id))
        return record

    # Import

    def _existing_keys(self, account_id: UUID) -> set[str]:
        keys: set[str] = set()
        use_fallback = self._policy.fallback_dedup_key

        txn_rows = self.session.execute(
            select(
                TrustTransaction.reference_number,
                TrustTransaction.check_number,
                TrustTransaction.amount,
                TrustTransaction.transaction_date,
                TrustTransaction.description,
            )
            .join(ClientLedger, ClientLedger.id == TrustTransaction.ledger_id)
            .where(ClientLedger.account_id == account_id)
        ).all()
        for reference, check_number, amount, txn_date, description in txn_rows:
            for ref in (reference, check_number):
                key = reference_key(ref, amount)
                if key:
                    keys.add(key)
            if use_fallback and not (reference or check_number):
                keys.add(fallback_key(txn_date, amount, description))

        staging_rows = self.session.execute(
            select(
                StagingRecord.reference_number,
                StagingRecord.amount,
                StagingRecord.transaction_date,
                StagingRecord.description,
            ).where(StagingRecord.account_id == account_id)
        ).all()
        for reference, amount, txn_date, description in staging_rows:
            key = reference_key(reference, amount)
            if key:
                keys.add(key)
            elif use_fallback:
                keys.add(fallback_key(txn_date, amount, description))
        return keys

    def _row_key(self, row: StatementRow) -> str | None:
        key = reference_key(row.reference, row.amount)
        if key is None and self._policy.fallback_dedup_key:
            key = fallback_key(row.transaction_date, row.amount, row.description)
        return key

    def import_batch(
        self,
        account_id: UUID,
        rows: Iterable[StatementRow | Mapping[str, Any]],
        ctx: RequestContext,
        batch_id: str | None = None,
    ) -> ImportResult:
        """
        Import statement rows into the staging queue.

        Rows may be ``StatementRow`` values or mappings with the same keys.
        Zero-amount rows are skipped, duplicates are reported in
        ``skipped_rows`` and invalid rows in ``errors``; the rest become
        UNASSIGNED staging records tagged with the batch id.

        Raises:
            AccountNotFoundError, NotTrustAccountError
        """
        self._require_trust_account(account_id)
        batch_id = batch_id or (
            f"IMPORT_{self._clock.now():%Y%m%d%H%M%S}_{uuid4().hex[:8]}"
        )

        staging_ids: list[UUID] = []
        errors: list[RowError] = []
        skipped_rows: list[SkippedRow] = []
        duplicates = 0
        zero_rows = 0

        with LogContext.bind(batch_id=batch_id), self.session.begin_nested():
            seen = self._existing_keys(account_id)

            for index, raw in enumerate(rows, start=1):
                if isinstance(raw, StatementRow):
                    row = raw
                else:
                    try:
                        row = StatementRow.from_mapping(raw, row_number=index)
                    except ValidationFailedError as exc:
                        errors.append(RowError(row_number=index, message=str(exc)))
                        continue

                if row.amount == ZERO:
                    zero_rows += 1
                    skipped_rows.append(SkippedRow(
                        row_number=row.row_number,
                        reason=ZERO_AMOUNT_REASON,
                        reference=row.reference,
                        amount=row.amount,
                    ))
                    continue

                key = self._row_key(row)
                if key is not None:
                    if key in seen:
                        duplicates += 1
                        skipped_rows.append(SkippedRow(
                            row_number=row.row_number,
                            reason=DUPLICATE_REASON,
                            reference=row.reference,
                            amount=row.amount,
                        ))
                        continue
                    seen.add(key)

                record = StagingRecord(
                    seq=self._sequences.next_value(SequenceService.STAGING_RECORD),
                    account_id=account_id,
                    transaction_date=row.transaction_date,
                    amount=row.amount,
                    staging_type=infer_staging_type(row.raw_type, row.amount),
                    description=row.description or (
                        "Deposit" if row.amount > 0 else "Check/Withdrawal"
                    ),
                    reference_number=row.reference,
                    payee=row.payee,
                    status=StagingStatus.UNASSIGNED,
                    import_batch_id=batch_id,
                    source_row=row.row_number,
                    raw_row=row.raw or None,
                    created_by_id=ctx.actor_id,
                )
                self.session.add(record)
                self.session.flush()
                staging_ids.append(record.id)

            self._auditor.record(
                AuditAction.STAGING_IMPORTED,
                "TrustAccount",
                account_id,
                ctx,
                new_values={
                    "batch_id": batch_id,
                    "imported": len(staging_ids),
                    "duplicates": duplicates,
                    "skipped": zero_rows,
                    "errors": len(errors),
                },
                description=f"Imported {len(staging_ids)} statement rows",
            )

            logger.info(
                "staging_batch_imported",
                extra={
                    "account_id": str(account_id),
                    "imported": len(staging_ids),
                    "duplicates": duplicates,
                    "skipped": zero_rows,
                    "errors": len(errors),
                },
            )

        return ImportResult(
            batch_id=batch_id,
            imported=len(staging_ids),
            duplicates=duplicates,
            skipped=zero_rows,
            staging_ids=tuple(staging_ids),
            errors=tuple(errors),
            skipped_rows=tuple(skipped_rows),
        )

    # Manual entry and corrections

    def create(
        self,
        account_id: UUID,
        transaction_date: date,
        amount,
        ctx: RequestContext,
        description: str | None = None,
        reference_number: str | None = None,
        payee: str | None = None,
        staging_type: StagingType | str | None = None,
        client_id: UUID | None = None,
    ) -> StagingRecord:
        """Add one staging record by hand; ASSIGNED when a client is given."""
        amount = to_money(amount)
        if amount == ZERO:
            raise ValidationFailedError("amount", "amount must be non-zero")

        with self.session.begin_nested():
            self._require_trust_account(account_id)
            if client_id is not None:
                self._require_active_client(client_id)

            record = StagingRecord(
                seq=self._sequences.next_value(SequenceService.STAGING_RECORD),
                account_id=account_id,
                transaction_date=transaction_date,
                amount=amount,
                staging_type=(
                    StagingType(staging_type) if staging_type
                    else infer_staging_type(None, amount)
                ),
                description=description,
                reference_number=(reference_number or "").strip() or None,
                payee=payee,
                client_id=client_id,
                status=StagingStatus.ASSIGNED if client_id else StagingStatus.UNASSIGNED,
                created_by_id=ctx.actor_id,
            )
            self.session.add(record)
            self.session.flush()
            self._auditor.record(
                AuditAction.STAGING_CREATED,
                "StagingRecord",
                record.id,
                ctx,
                client_id=client_id,
                new_values=staging_snapshot(record),
            )

        logger.info(
            "staging_record_created",
            extra={"staging_id": str(record.id), "amount": amount},
        )
        return record

    def update(self, staging_id: UUID, ctx: RequestContext, **changes: Any) -> StagingRecord:
        """
        Correct the bank-side fields of a record that is not posted.

        Raises:
            ValidationFailedError: unknown field or zero amount.
            AlreadyPostedError: the record is POSTED.
        """
        unknown = set(changes) - _EDITABLE_FIELDS
        if unknown:
            raise ValidationFailedError(
                sorted(unknown)[0], "field cannot be changed on a staging record",
            )

        with self.session.begin_nested():
            record = self.get_for_update(staging_id)
            if record.status == StagingStatus.POSTED:
                raise AlreadyPostedError(str(staging_id), str(record.posted_transaction_id))

            before = staging_snapshot(record)
            if "amount" in changes:
                changes["amount"] = to_money(changes["amount"])
                if changes["amount"] == ZERO:
                    raise ValidationFailedError("amount", "amount must be non-zero")
            if changes.get("staging_type") is not None:
                changes["staging_type"] = StagingType(changes["staging_type"])
            for field, value in changes.items():
                setattr(record, field, value)
            record.updated_by_id = ctx.actor_id
            self.session.flush()

            after = staging_snapshot(record)
            self._auditor.record(
                AuditAction.STAGING_UPDATED,
                "StagingRecord",
                record.id,
                ctx,
                client_id=record.client_id,
                old_values=before,
                new_values=after,
            )

        logger.info(
            "staging_record_updated",
            extra={
                "staging_id": str(staging_id),
                "fields": list(AuditService.diff_values(before, after)),
            },
        )
        return record

    # Assignment

    def _assign_one(self, staging_id: UUID, client_id: UUID, ctx: RequestContext) -> None:
        with self.session.begin_nested():
            record = self.get_for_update(staging_id)
            status = StagingStatus(record.status)
            if status is StagingStatus.POSTED:
                raise AlreadyPostedError(str(staging_id), str(record.posted_transaction_id))
            if status not in (StagingStatus.UNASSIGNED, StagingStatus.ASSIGNED):
                raise InvalidStatusTransitionError(
                    str(staging_id), status.value, StagingStatus.ASSIGNED.value,
                )

            previous_client = record.client_id
            record.client_id = client_id
            record.status = StagingStatus.ASSIGNED
            record.updated_by_id = ctx.actor_id
            self.session.flush()
            self._auditor.record(
                AuditAction.STAGING_ASSIGNED,
                "StagingRecord",
                record.id,
                ctx,
                client_id=client_id,
                old_values={"status": status, "client_id": previous_client},
                new_values={"status": StagingStatus.ASSIGNED, "client_id": client_id},
            )

    def assign(
        self,
        staging_ids: Iterable[UUID],
        client_id: UUID,
        ctx: RequestContext,
    ) -> BulkResult:
        """
        Attribute records to a client.

        The client is checked once for the batch; each record then succeeds
        or fails on its own.
        """
        self._require_active_client(client_id)
        return self._run_per_item(
            staging_ids,
            lambda staging_id: self._assign_one(staging_id, client_id, ctx),
            "staging_assign",
        )

    def _unassign_one(self, staging_id: UUID, ctx: RequestContext) -> None:
        with self.session.begin_nested():
            record = self.get_for_update(staging_id)
            status = StagingStatus(record.status)
            if status is StagingStatus.POSTED:
                raise AlreadyPostedError(str(staging_id), str(record.posted_transaction_id))
            if status is not StagingStatus.ASSIGNED:
                raise InvalidStatusTransitionError(
                    str(staging_id), status.value, StagingStatus.UNASSIGNED.value,
                )

            previous_client = record.client_id
            record.client_id = None
            record.status = StagingStatus.UNASSIGNED
            record.updated_by_id = ctx.actor_id
            self.session.flush()
            self._auditor.record(
                AuditAction.STAGING_UNASSIGNED,
                "StagingRecord",
                record.id,
                ctx,
                client_id=previous_client,
                old_values={"status": status, "client_id": previous_client},
                new_values={"status": StagingStatus.UNASSIGNED, "client_id": None},
            )

    def unassign(self, staging_ids: Iterable[UUID], ctx: RequestContext) -> BulkResult:
        return self._run_per_item(
            staging_ids,
            lambda staging_id: self._unassign_one(staging_id, ctx),
            "staging_unassign",
        )

    def reject(self, staging_id: UUID, reason: str, ctx: RequestContext) -> StagingRecord:
        """Mark a record REJECTED (terminal) from UNASSIGNED or ASSIGNED."""
        with self.session.begin_nested():
            record = self.get_for_update(staging_id)
            status = StagingStatus(record.status)
            if status is StagingStatus.POSTED:
                raise AlreadyPostedError(str(staging_id), str(record.posted_transaction_id))
            if not record.can_transition_to(StagingStatus.REJECTED):
                raise InvalidStatusTransitionError(
                    str(staging_id), status.value, StagingStatus.REJECTED.value,
                )

            record.status = StagingStatus.REJECTED
            record.rejection_reason = reason
            record.updated_by_id = ctx.actor_id
            self.session.flush()
            self._auditor.record(
                AuditAction.STAGING_REJECTED,
                "StagingRecord",
                record.id,
                ctx,
                client_id=record.client_id,
                old_values={"status": status},
                new_values={"status": StagingStatus.REJECTED, "reason": reason},
            )

        logger.info(
            "staging_record_rejected",
            extra={"staging_id": str(staging_id), "reason": reason},
        )
        return record

    # Deletion

    def _delete_one(self, staging_id: UUID, ctx: RequestContext) -> None:
        with self.session.begin_nested():
            record = self.get_for_update(staging_id)
            if record.status == StagingStatus.POSTED:
                raise AlreadyPostedError(str(staging_id), str(record.posted_transaction_id))

            snapshot = staging_snapshot(record)
            self.session.delete(record)
            self.session.flush()
            self._auditor.record(
                AuditAction.STAGING_DELETED,
                "StagingRecord",
                staging_id,
                ctx,
                client_id=snapshot["client_id"],
                old_values=snapshot,
            )

    def delete(self, staging_id: UUID, ctx: RequestContext) -> None:
        """
        Remove a staging record that is not posted.

        Raises:
            StagingRecordNotFoundError, AlreadyPostedError
        """
        self._delete_one(staging_id, ctx)
        logger.info("staging_record_deleted", extra={"staging_id": str(staging_id)})

    def bulk_delete(self, staging_ids: Iterable[UUID], ctx: RequestContext) -> BulkResult:
        return self._run_per_item(
            staging_ids,
            lambda staging_id: self._delete_one(staging_id, ctx),
            "staging_delete",
        )
