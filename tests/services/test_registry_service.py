"""
Tests for RegistryService -- clients and trust accounts.
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from trust_kernel.exceptions import (
    ClientNotFoundError,
    DuplicateMatterNumberError,
    NonZeroBalanceError,
    ValidationFailedError,
)
from trust_kernel.models.audit_log import AuditAction, AuditLogEntry
from trust_kernel.models.registry import AccountType


class TestClients:

    def test_create_client(self, services, session, ctx):
        client = services.registry.create_client("  Gamma LLC ", ctx, matter_number=" M-100 ")
        assert client.name == "Gamma LLC"
        assert client.matter_number == "M-100"
        assert client.is_active
        assert client.created_by_id == ctx.actor_id
        entry = session.query(AuditLogEntry).filter_by(entity_id=client.id).one()
        assert entry.action == AuditAction.CLIENT_CREATED

    def test_name_required(self, services, ctx):
        with pytest.raises(ValidationFailedError) as exc_info:
            services.registry.create_client("   ", ctx)
        assert exc_info.value.field == "name"

    def test_duplicate_matter_number(self, services, ctx, client_a):
        with pytest.raises(DuplicateMatterNumberError):
            services.registry.create_client("Someone else", ctx, matter_number="M-001")

    def test_blank_matter_numbers_do_not_collide(self, services, ctx):
        services.registry.create_client("One", ctx, matter_number="")
        services.registry.create_client("Two", ctx, matter_number=None)


class TestAccounts:

    def test_create_iolta(self, iolta_account):
        assert iolta_account.account_type == AccountType.IOLTA
        assert iolta_account.current_balance == Decimal("0")
        assert iolta_account.linked_client_id is None

    def test_unknown_type(self, services, ctx):
        with pytest.raises(ValidationFailedError) as exc_info:
            services.registry.create_account("Savings", "savings", ctx)
        assert exc_info.value.field == "account_type"

    def test_only_trust_accounts_link_to_clients(self, services, ctx, client_a):
        with pytest.raises(ValidationFailedError) as exc_info:
            services.registry.create_account(
                "Pooled", AccountType.IOLTA, ctx, linked_client_id=client_a.id,
            )
        assert exc_info.value.field == "linked_client_id"

    def test_link_to_missing_client(self, services, ctx):
        with pytest.raises(ClientNotFoundError):
            services.registry.create_account(
                "Case account", AccountType.TRUST, ctx, linked_client_id=uuid4(),
            )


class TestDeactivateClient:

    def test_client_with_funds_stays_active(self, services, ctx, client_a, deposit):
        deposit(client_a, "0.01")
        with pytest.raises(NonZeroBalanceError):
            services.registry.deactivate_client(client_a.id, ctx)
        assert client_a.is_active

    def test_closes_ledgers(self, services, ctx, client_a, iolta_account, deposit):
        deposit(client_a, "50.00")
        services.transactions.withdraw_earned_fee(
            client_a.id, iolta_account.id, "50.00", date(2024, 1, 20), ctx,
        )

        services.registry.deactivate_client(client_a.id, ctx)

        assert not client_a.is_active
        ledger = services.ledgers.find_ledger(client_a.id, iolta_account.id)
        assert not ledger.is_active

    def test_balance_sums_all_ledgers(self, services, ctx, client_a, deposit):
        second = services.registry.create_account("Second IOLTA", AccountType.IOLTA, ctx)
        deposit(client_a, "10.10")
        deposit(client_a, "0.20", account=second)
        assert services.registry.client_balance(client_a.id) == Decimal("10.30")

    def test_unknown_client(self, services, ctx):
        with pytest.raises(ClientNotFoundError):
            services.registry.deactivate_client(uuid4(), ctx)
