"""
Tests for the read-side selectors.

Covers:
- Ledger snapshots and per-account listings
- Staging queue listing with per-status summary
- Audit trail and entity history
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from trust_kernel.exceptions import LedgerNotFoundError, StagingRecordNotFoundError
from trust_kernel.models.audit_log import AuditAction
from trust_kernel.models.staging import StagingStatus
from trust_kernel.selectors.audit_selector import AuditSelector
from trust_kernel.selectors.ledger_selector import LedgerSelector
from trust_kernel.selectors.staging_selector import StagingSelector


class TestLedgerSelector:

    def test_snapshot(self, session, services, client_a, iolta_account, deposit):
        deposit(client_a, "100.00", on=date(2024, 1, 10), description="Retainer")
        deposit(client_a, "25.00", on=date(2024, 2, 1))
        ledger = services.ledgers.find_ledger(client_a.id, iolta_account.id)

        snap = LedgerSelector(session).snapshot(ledger.id, start_date=date(2024, 2, 1))

        assert snap.balance == Decimal("125.00")
        assert snap.transaction_count == 2
        assert snap.last_activity == date(2024, 2, 1)
        assert [t.amount for t in snap.transactions] == [Decimal("25.00")]
        assert snap.transactions[0].running_balance == Decimal("125.00")
        assert snap.transactions[0].transaction_type == "deposit"

    def test_snapshot_for_missing(self, session, client_a, iolta_account):
        assert LedgerSelector(session).snapshot_for(client_a.id, iolta_account.id) is None

    def test_snapshot_unknown(self, session):
        with pytest.raises(LedgerNotFoundError):
            LedgerSelector(session).snapshot(uuid4())

    def test_list_ledgers(self, session, services, ctx, client_a, client_b, iolta_account, deposit):
        deposit(client_b, "10.00", on=date(2024, 1, 3))
        deposit(client_b, "5.00", on=date(2024, 1, 9))
        services.ledgers.get_or_create_ledger(client_a.id, iolta_account.id, ctx)

        listing = LedgerSelector(session).list_ledgers(iolta_account.id)

        assert [l.client_name for l in listing] == ["Alpha Holdings", "Beta Partners"]
        assert listing[0].transaction_count == 0
        assert listing[0].last_activity is None
        assert listing[1].balance == Decimal("15.00")
        assert listing[1].transaction_count == 2
        assert listing[1].last_activity == date(2024, 1, 9)

    def test_list_active_only(self, session, services, ctx, client_a, iolta_account):
        ledger = services.ledgers.get_or_create_ledger(client_a.id, iolta_account.id, ctx)
        services.ledgers.close_ledger(ledger.id, ctx)
        assert LedgerSelector(session).list_ledgers(iolta_account.id, active_only=True) == []

    def test_sum_of_amounts_matches_balance(self, session, services, ctx, client_a, iolta_account, deposit):
        deposit(client_a, "100.00")
        services.transactions.withdraw_earned_fee(
            client_a.id, iolta_account.id, "33.33", date(2024, 1, 20), ctx,
        )
        ledger = services.ledgers.find_ledger(client_a.id, iolta_account.id)
        selector = LedgerSelector(session)
        assert selector.sum_of_amounts(ledger.id) == ledger.current_balance == Decimal("66.67")
        assert selector.ledger_total(iolta_account.id) == Decimal("66.67")
        assert selector.client_balance(client_a.id) == Decimal("66.67")


class TestStagingSelector:

    def test_summary_covers_all_statuses(self, session, services, ctx, stage, client_a):
        stage("100.00", on=date(2024, 1, 5))
        assigned = stage("-20.00", client=client_a, on=date(2024, 1, 6))
        rejected = stage("-3.00", on=date(2024, 1, 7))
        services.staging.reject(rejected.id, "bank fee reversed", ctx)

        listing = StagingSelector(session).list_staging(status=StagingStatus.ASSIGNED)

        assert [r.id for r in listing.records] == [assigned.id]
        assert listing.records[0].client_name == "Alpha Holdings"
        assert listing.summary["unassigned"].count == 1
        assert listing.summary["unassigned"].deposits == Decimal("100.00")
        assert listing.summary["assigned"].withdrawals == Decimal("20.00")
        assert listing.summary["rejected"].net == Decimal("-3.00")
        assert listing.summary["posted"].count == 0
        assert listing.total.count == 3
        assert listing.total.net == Decimal("77.00")

    def test_newest_first_and_search(self, session, stage):
        old = stage("1.00", on=date(2024, 1, 1), description="Wire from Acme")
        new = stage("2.00", on=date(2024, 1, 2), reference="ACME-2")
        stage("3.00", on=date(2024, 1, 3), description="Other")

        listing = StagingSelector(session).list_staging(search="acme")

        assert [r.id for r in listing.records] == [new.id, old.id]

    def test_batch_filter(self, session, services, ctx, iolta_account):
        result = services.staging.import_batch(
            iolta_account.id, [{"date": "2024-01-02", "amount": "9.00"}], ctx,
        )
        listing = StagingSelector(session).list_staging(batch_id=result.batch_id)
        assert listing.total_count == 1
        assert listing.records[0].import_batch_id == result.batch_id

    def test_get(self, session, stage):
        record = stage("-8.00", reference="77")
        view = StagingSelector(session).get(record.id)
        assert view.amount == Decimal("-8.00")
        assert view.staging_type == "check"
        assert view.status == "unassigned"

    def test_get_unknown(self, session):
        with pytest.raises(StagingRecordNotFoundError):
            StagingSelector(session).get(uuid4())


class TestAuditSelector:

    def test_trail_newest_first(self, session, client_a, deposit):
        deposit(client_a, "10.00")
        trail = AuditSelector(session).trail(client_id=client_a.id)
        assert trail[0].action == AuditAction.TRANSACTION_RECORDED.value
        assert trail[-1].action == AuditAction.CLIENT_CREATED.value
        assert [e.seq for e in trail] == sorted((e.seq for e in trail), reverse=True)

    def test_trail_by_action_and_limit(self, session, create_client):
        for _ in range(3):
            create_client()
        trail = AuditSelector(session).trail(action="client_created", limit=2)
        assert len(trail) == 2

    def test_history_with_changed_fields(self, session, services, ctx, client_a, deposit):
        txn = deposit(client_a, "10.00")
        services.transactions.update(txn.id, ctx, memo="first check")

        history = AuditSelector(session).history("TrustTransaction", txn.id)

        assert [e.action for e in history] == ["transaction_recorded", "transaction_updated"]
        assert history[1].changed_fields == ("memo",)
        assert history[1].actor_id == ctx.actor_id
