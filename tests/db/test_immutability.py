"""
Tests for ORM-level immutability listeners.

Each violation must raise ImmutabilityViolationError at flush time.
"""

from datetime import date
from decimal import Decimal

import pytest

from trust_kernel.domain.transaction_types import TransactionType
from trust_kernel.exceptions import ImmutabilityViolationError
from trust_kernel.models.audit_log import AuditLogEntry
from trust_kernel.models.staging import StagingStatus


class TestAuditLogImmutability:

    def test_update_blocked(self, session, client_a):
        entry = session.query(AuditLogEntry).first()
        entry.description = "edited"
        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        session.rollback()

    def test_delete_blocked(self, session, client_a):
        entry = session.query(AuditLogEntry).first()
        session.delete(entry)
        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        session.rollback()


class TestReconciliationRecordImmutability:

    def test_update_blocked(self, services, session, ctx, iolta_account):
        snapshot = services.reconciliation.record_reconciliation(
            iolta_account.id, date(2024, 1, 31), "0.00", ctx,
        )
        snapshot.notes = "rewritten"
        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        session.rollback()


class TestTransactionImmutability:

    def test_type_change_blocked(self, session, client_a, deposit):
        txn = deposit(client_a, "10.00")
        txn.transaction_type = TransactionType.INTEREST
        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        session.rollback()

    def test_metadata_change_allowed(self, session, client_a, deposit):
        txn = deposit(client_a, "10.00")
        txn.memo = "fine"
        session.flush()


class TestPostedStagingImmutability:

    @pytest.fixture
    def posted(self, services, ctx, stage, client_a):
        record = stage("40.00", client=client_a)
        services.posting.post(record.id, ctx)
        return record

    def test_amount_frozen(self, session, posted):
        posted.amount = Decimal("41.00")
        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        session.rollback()

    def test_delete_blocked(self, session, posted):
        session.delete(posted)
        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        session.rollback()

    def test_unpost_allowed(self, services, ctx, posted):
        services.posting.unpost(posted.id, ctx)
        assert posted.status == StagingStatus.ASSIGNED

    def test_unposted_record_editable(self, session, stage):
        record = stage("-5.00")
        record.amount = Decimal("-6.00")
        session.flush()
