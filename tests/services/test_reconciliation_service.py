"""
Tests for ReconciliationService -- bank view vs book view.

Covers:
- Statement comparison across staging statuses
- Account balance vs client ledger totals
- Closing bank lines as RECONCILED
- Statement snapshots
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from trust_kernel.exceptions import (
    AccountNotFoundError,
    AlreadyLinkedError,
    AlreadyPostedError,
    AmountMismatchError,
    InvalidStatusTransitionError,
    ValidationFailedError,
)
from trust_kernel.models.registry import AccountType
from trust_kernel.models.reconciliation import ReconciliationStatus
from trust_kernel.models.staging import StagingStatus


class TestCompare:

    @pytest.fixture
    def books(self, services, ctx, stage, client_a, iolta_account):
        posted = stage("500.00", client=client_a, on=date(2024, 3, 1))
        services.posting.post(posted.id, ctx)
        check = services.transactions.record(
            client_a.id, iolta_account.id, "disbursement", "100.00", date(2024, 3, 5), ctx,
            check_number="3001",
        )
        stray = stage("2.00", on=date(2024, 3, 31))
        return posted, check, stray

    def test_buckets_and_totals(self, services, iolta_account, books):
        posted, check, stray = books

        report = services.reconciliation.compare(iolta_account.id)
        summary = report.summary

        assert summary.matched_count == 1
        assert report.matched[0].bank_line.id == posted.id
        assert [line.id for line in report.pending_in_bank] == [stray.id]
        assert [entry.id for entry in report.missing_in_bank] == [check.id]
        assert summary.staging_total == Decimal("502.00")
        assert summary.transaction_total == Decimal("400.00")
        assert summary.difference == Decimal("102.00")
        assert not report.is_clean

    def test_date_range(self, services, iolta_account, books):
        report = services.reconciliation.compare(
            iolta_account.id, start_date=date(2024, 3, 2), end_date=date(2024, 3, 30),
        )
        assert report.summary.staging_count == 0
        assert report.summary.transaction_count == 1

    def test_unknown_account(self, services):
        with pytest.raises(AccountNotFoundError):
            services.reconciliation.compare(uuid4())


class TestBalanceSummary:

    def test_balanced(self, services, client_a, client_b, iolta_account, deposit):
        deposit(client_a, "100.00")
        deposit(client_b, "250.50")

        summary = services.reconciliation.balance_summary(iolta_account.id)

        assert summary.is_balanced
        assert summary.account_balance == Decimal("350.50")
        assert summary.ledger_total == Decimal("350.50")
        assert summary.ledger_count == 2
        assert summary.active_ledger_count == 2
        assert summary.account_type == "iolta"

    def test_out_of_balance(self, services, iolta_account, client_a, deposit, captured_logs):
        deposit(client_a, "100.00")
        # Written around the service on purpose
        iolta_account.current_balance = Decimal("90.00")

        summary = services.reconciliation.balance_summary(iolta_account.id)

        assert not summary.is_balanced
        assert summary.difference == Decimal("-10.00")
        assert any(r["message"] == "account_out_of_balance" for r in captured_logs())

    def test_firm_wide(self, services, ctx, client_a, iolta_account, deposit):
        second = services.registry.create_account("Another IOLTA", AccountType.IOLTA, ctx)
        services.registry.create_account(
            "Alpha case account", AccountType.TRUST, ctx, linked_client_id=client_a.id,
        )
        deposit(client_a, "100.00")
        deposit(client_a, "40.00", account=second)

        firm = services.reconciliation.balance_summary_all()

        assert [s.account_name for s in firm.accounts] == ["Another IOLTA", "Firm IOLTA"]
        assert firm.total_account_balance == Decimal("140.00")
        assert firm.total_ledger_balance == Decimal("140.00")
        assert firm.total_difference == Decimal("0.00")
        assert firm.is_balanced


class TestMarkReconciled:

    def test_without_transaction(self, services, ctx, stage):
        record = stage("3.50")
        services.reconciliation.mark_reconciled(record.id, ctx)
        assert record.status == StagingStatus.RECONCILED
        assert record.matched_transaction_id is None

    def test_with_transaction(self, services, ctx, stage, client_a, deposit):
        txn = deposit(client_a, "75.00")
        record = stage("75.00")

        services.reconciliation.mark_reconciled(record.id, ctx, transaction_id=txn.id)

        assert record.matched_transaction_id == txn.id
        assert record.client_id == client_a.id

    def test_transaction_claimed_once(self, services, ctx, stage, client_a, deposit):
        txn = deposit(client_a, "75.00")
        first, second = stage("75.00"), stage("75.00")
        services.reconciliation.mark_reconciled(first.id, ctx, transaction_id=txn.id)

        with pytest.raises(AlreadyLinkedError):
            services.reconciliation.mark_reconciled(second.id, ctx, transaction_id=txn.id)

    def test_posted_transaction_is_linked(self, services, ctx, stage, client_a):
        posted = stage("20.00", client=client_a)
        txn = services.posting.post(posted.id, ctx)
        with pytest.raises(AlreadyLinkedError):
            services.reconciliation.mark_reconciled(stage("20.00").id, ctx, transaction_id=txn.id)

    def test_amount_mismatch(self, services, ctx, stage, client_a, deposit):
        txn = deposit(client_a, "75.00")
        with pytest.raises(AmountMismatchError):
            services.reconciliation.mark_reconciled(stage("70.00").id, ctx, transaction_id=txn.id)

    def test_one_cent_difference_accepted(self, services, ctx, stage, client_a, deposit):
        txn = deposit(client_a, "75.00")
        record = services.reconciliation.mark_reconciled(stage("75.01").id, ctx, transaction_id=txn.id)
        assert record.matched_transaction_id == txn.id

    def test_transaction_on_other_account(self, services, ctx, stage, client_a, deposit):
        second_account = services.registry.create_account("Second IOLTA", AccountType.IOLTA, ctx)
        txn = deposit(client_a, "75.00", account=second_account)
        record = stage("75.00")

        with pytest.raises(ValidationFailedError):
            services.reconciliation.mark_reconciled(record.id, ctx, transaction_id=txn.id)
        assert record.status == StagingStatus.UNASSIGNED

    def test_posted_record(self, services, ctx, stage, client_a):
        record = stage("20.00", client=client_a)
        services.posting.post(record.id, ctx)
        with pytest.raises(AlreadyPostedError):
            services.reconciliation.mark_reconciled(record.id, ctx)

    def test_terminal_statuses(self, services, ctx, stage):
        rejected = stage("1.00")
        services.staging.reject(rejected.id, "noise", ctx)
        with pytest.raises(InvalidStatusTransitionError):
            services.reconciliation.mark_reconciled(rejected.id, ctx)

        reconciled = stage("2.00")
        services.reconciliation.mark_reconciled(reconciled.id, ctx)
        with pytest.raises(InvalidStatusTransitionError):
            services.reconciliation.mark_reconciled(reconciled.id, ctx)

    def test_bulk(self, services, ctx, stage, client_a, deposit):
        txn = deposit(client_a, "9.00")
        paired, loose, wrong = stage("9.00"), stage("1.00"), stage("5.00")

        result = services.reconciliation.bulk_mark_reconciled(
            [(paired.id, txn.id), (loose.id, None), (wrong.id, txn.id)], ctx,
        )

        assert result.succeeded == (paired.id, loose.id)
        assert result.errors[0].item_id == wrong.id
        assert result.errors[0].code == AlreadyLinkedError.code


class TestRecordReconciliation:

    def test_balanced_snapshot(self, services, ctx, client_a, iolta_account, deposit):
        deposit(client_a, "1200.00")

        snapshot = services.reconciliation.record_reconciliation(
            iolta_account.id, date(2024, 1, 31), "1200.00", ctx, notes="January",
        )

        assert snapshot.status == ReconciliationStatus.BALANCED
        assert snapshot.book_balance == Decimal("1200.00")
        assert snapshot.ledger_total == Decimal("1200.00")
        assert snapshot.difference == Decimal("0.00")
        assert snapshot.notes == "January"

    def test_unbalanced_snapshot(self, services, ctx, client_a, iolta_account, deposit):
        deposit(client_a, "1200.00")

        snapshot = services.reconciliation.record_reconciliation(
            iolta_account.id, date(2024, 1, 31), "1187.45", ctx,
        )

        assert snapshot.status == ReconciliationStatus.UNBALANCED
        assert snapshot.difference == Decimal("-12.55")
