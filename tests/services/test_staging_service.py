"""
Tests for StagingService -- the staging queue.

Covers:
- Batch import with de-duplication and per-row errors
- Manual entry and corrections
- Assignment, unassignment and rejection status rules
- Deletion, single and bulk
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from trust_kernel.domain.statement import StatementRow
from trust_kernel.domain.transaction_types import StagingType, TransactionType
from trust_kernel.exceptions import (
    AlreadyPostedError,
    InactiveClientError,
    InvalidStatusTransitionError,
    NotTrustAccountError,
    StagingRecordNotFoundError,
    ValidationFailedError,
)
from trust_kernel.models.audit_log import AuditAction, AuditLogEntry
from trust_kernel.models.registry import AccountType
from trust_kernel.models.staging import StagingRecord, StagingStatus
from trust_kernel.services.staging_service import DUPLICATE_REASON, ZERO_AMOUNT_REASON


def row(n, amount, reference=None, on=date(2024, 2, 1), description=None, raw_type=None):
    return StatementRow(
        row_number=n,
        transaction_date=on,
        amount=Decimal(amount),
        description=description,
        reference=reference,
        raw_type=raw_type,
    )


class TestImportBatch:

    def test_imports_unassigned_records(self, services, session, ctx, iolta_account):
        result = services.staging.import_batch(
            iolta_account.id,
            [row(1, "1500.00"), row(2, "-80.00", reference="2001", raw_type="check")],
            ctx,
        )

        assert result.imported == 2
        assert result.batch_id.startswith("IMPORT_20240101120000_")
        records = [session.get(StagingRecord, sid) for sid in result.staging_ids]
        assert [r.status for r in records] == [StagingStatus.UNASSIGNED] * 2
        assert records[0].staging_type == StagingType.DEPOSIT
        assert records[0].description == "Deposit"
        assert records[1].staging_type == StagingType.CHECK
        assert records[1].description == "Check/Withdrawal"
        assert records[0].seq < records[1].seq

    def test_explicit_batch_id(self, services, ctx, iolta_account):
        result = services.staging.import_batch(
            iolta_account.id, [row(1, "5.00")], ctx, batch_id="MANUAL_1",
        )
        assert result.batch_id == "MANUAL_1"

    def test_duplicate_import_is_skipped(self, services, ctx, iolta_account):
        rows = [row(1, "-250.00", reference="1001"), row(2, "-90.00", reference="1002")]
        services.staging.import_batch(iolta_account.id, rows, ctx)

        second = services.staging.import_batch(iolta_account.id, rows, ctx)

        assert second.imported == 0
        assert second.duplicates == 2
        assert [s.reason for s in second.skipped_rows] == [DUPLICATE_REASON] * 2

    def test_duplicate_of_booked_check(self, services, ctx, client_a, iolta_account, deposit):
        deposit(client_a, "1000.00")
        services.transactions.record(
            client_a.id,
            iolta_account.id,
            TransactionType.DISBURSEMENT,
            Decimal("250.00"),
            date(2024, 1, 12),
            ctx,
            check_number="1001",
        )

        result = services.staging.import_batch(
            iolta_account.id, [row(1, "-250.00", reference="1001")], ctx,
        )
        assert result.imported == 0
        assert result.duplicates == 1

    def test_same_reference_different_amount_is_not_duplicate(self, services, ctx, iolta_account):
        result = services.staging.import_batch(
            iolta_account.id,
            [row(1, "-250.00", reference="1001"), row(2, "-251.00", reference="1001")],
            ctx,
        )
        assert result.imported == 2
        assert result.duplicates == 0

    def test_duplicate_within_batch(self, services, ctx, iolta_account):
        result = services.staging.import_batch(
            iolta_account.id,
            [row(1, "-150.00", reference="1002"), row(2, "-150.00", reference="1002")],
            ctx,
        )
        assert result.imported == 1
        assert result.duplicates == 1
        assert result.skipped_rows[0].row_number == 2

    def test_dedup_is_per_account(self, services, ctx, iolta_account):
        other = services.registry.create_account("Second IOLTA", AccountType.IOLTA, ctx)
        rows = [row(1, "-250.00", reference="1001")]
        services.staging.import_batch(iolta_account.id, rows, ctx)
        assert services.staging.import_batch(other.id, rows, ctx).imported == 1

    def test_unreferenced_rows_not_deduplicated_by_default(self, services, ctx, iolta_account):
        rows = [row(1, "100.00", description="Wire")]
        services.staging.import_batch(iolta_account.id, rows, ctx)
        assert services.staging.import_batch(iolta_account.id, rows, ctx).imported == 1

    def test_zero_rows_skipped(self, services, ctx, iolta_account):
        result = services.staging.import_batch(iolta_account.id, [row(1, "0.00")], ctx)
        assert result.imported == 0
        assert result.skipped == 1
        assert result.skipped_rows[0].reason == ZERO_AMOUNT_REASON

    def test_mapping_rows_and_row_errors(self, services, ctx, iolta_account):
        result = services.staging.import_batch(
            iolta_account.id,
            [
                {"date": "2024-02-03", "amount": "-12.50", "reference": "3001"},
                {"date": "not-a-date", "amount": "1.00"},
                {"date": "2024-02-04", "amount": None},
            ],
            ctx,
        )
        assert result.imported == 1
        assert [e.row_number for e in result.errors] == [2, 3]

    def test_import_is_audited(self, services, session, ctx, iolta_account):
        services.staging.import_batch(iolta_account.id, [row(1, "5.00")], ctx)
        entry = session.query(AuditLogEntry).filter_by(action=AuditAction.STAGING_IMPORTED).one()
        assert entry.entity_id == iolta_account.id
        assert entry.new_values["imported"] == 1

    def test_operating_account_rejected(self, services, ctx):
        operating = services.registry.create_account("Operating", AccountType.OPERATING, ctx)
        with pytest.raises(NotTrustAccountError):
            services.staging.import_batch(operating.id, [row(1, "5.00")], ctx)


class TestCreateAndUpdate:

    def test_create_with_client_is_assigned(self, stage, client_a):
        record = stage("-50.00", client=client_a)
        assert record.status == StagingStatus.ASSIGNED
        assert record.client_id == client_a.id
        assert record.staging_type == StagingType.CHECK

    def test_create_without_client_is_unassigned(self, stage):
        assert stage("20.00").status == StagingStatus.UNASSIGNED

    def test_create_rejects_zero(self, stage):
        with pytest.raises(ValidationFailedError):
            stage("0")

    def test_create_for_inactive_client(self, services, ctx, stage, client_a):
        services.registry.deactivate_client(client_a.id, ctx)
        with pytest.raises(InactiveClientError):
            stage("10.00", client=client_a)

    def test_update_fields(self, services, ctx, stage):
        record = stage("-50.00", reference="1001")
        services.staging.update(record.id, ctx, amount="-55.00", description="Corrected")
        assert record.amount == Decimal("-55.00")
        assert record.description == "Corrected"

    def test_update_unknown_field(self, services, ctx, stage):
        record = stage("-50.00")
        with pytest.raises(ValidationFailedError) as exc_info:
            services.staging.update(record.id, ctx, status="posted")
        assert exc_info.value.field == "status"

    def test_update_posted_rejected(self, services, ctx, stage, client_a, deposit):
        deposit(client_a, "100.00")
        record = stage("-50.00", client=client_a)
        services.posting.post(record.id, ctx)
        with pytest.raises(AlreadyPostedError):
            services.staging.update(record.id, ctx, description="nope")


class TestAssignment:

    def test_assign_bulk(self, services, ctx, stage, client_a):
        first, second = stage("10.00"), stage("-5.00")
        result = services.staging.assign([first.id, second.id], client_a.id, ctx)
        assert result.succeeded == (first.id, second.id)
        assert first.status == StagingStatus.ASSIGNED
        assert second.client_id == client_a.id

    def test_reassign(self, services, ctx, stage, client_a, client_b):
        record = stage("10.00", client=client_a)
        services.staging.assign([record.id], client_b.id, ctx)
        assert record.client_id == client_b.id

    def test_assign_mixed_result(self, services, ctx, stage, client_a, deposit):
        deposit(client_a, "100.00")
        posted = stage("-10.00", client=client_a)
        services.posting.post(posted.id, ctx)
        fresh = stage("3.00")
        missing = uuid4()

        result = services.staging.assign([posted.id, fresh.id, missing], client_a.id, ctx)

        assert result.succeeded == (fresh.id,)
        assert [(e.item_id, e.code) for e in result.errors] == [
            (posted.id, AlreadyPostedError.code),
            (missing, StagingRecordNotFoundError.code),
        ]

    def test_assign_to_inactive_client_fails_whole_batch(self, services, ctx, stage, client_a):
        services.registry.deactivate_client(client_a.id, ctx)
        with pytest.raises(InactiveClientError):
            services.staging.assign([stage("1.00").id], client_a.id, ctx)

    def test_unassign(self, services, ctx, stage, client_a):
        record = stage("10.00", client=client_a)
        result = services.staging.unassign([record.id], ctx)
        assert result.succeeded_count == 1
        assert record.status == StagingStatus.UNASSIGNED
        assert record.client_id is None

    def test_unassign_unassigned_is_invalid(self, services, ctx, stage):
        record = stage("10.00")
        result = services.staging.unassign([record.id], ctx)
        assert result.errors[0].code == InvalidStatusTransitionError.code


class TestReject:

    def test_reject(self, services, ctx, stage):
        record = stage("10.00")
        services.staging.reject(record.id, "Bank error", ctx)
        assert record.status == StagingStatus.REJECTED
        assert record.rejection_reason == "Bank error"

    def test_rejected_is_terminal(self, services, ctx, stage, client_a):
        record = stage("10.00")
        services.staging.reject(record.id, "Bank error", ctx)
        with pytest.raises(InvalidStatusTransitionError):
            services.staging.reject(record.id, "again", ctx)
        result = services.staging.assign([record.id], client_a.id, ctx)
        assert result.errors[0].code == InvalidStatusTransitionError.code


class TestDelete:

    def test_delete(self, services, session, ctx, stage):
        record = stage("10.00")
        staging_id = record.id
        services.staging.delete(staging_id, ctx)
        assert session.get(StagingRecord, staging_id) is None
        entry = session.query(AuditLogEntry).filter_by(
            entity_id=staging_id, action=AuditAction.STAGING_DELETED,
        ).one()
        assert entry.old_values["amount"] == "10.00"

    def test_delete_missing(self, services, ctx):
        with pytest.raises(StagingRecordNotFoundError):
            services.staging.delete(uuid4(), ctx)

    def test_bulk_delete_skips_posted(self, services, ctx, stage, client_a, deposit):
        deposit(client_a, "100.00")
        posted = stage("-10.00", client=client_a)
        services.posting.post(posted.id, ctx)
        loose = stage("4.00")

        result = services.staging.bulk_delete([posted.id, loose.id], ctx)

        assert result.succeeded == (loose.id,)
        assert result.errors[0].item_id == posted.id
        assert posted.status == StagingStatus.POSTED
