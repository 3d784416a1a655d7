"""
RegistryService -- clients and trust accounts.

Responsibility:
    Creates the attribution targets (clients) and the bank accounts that
    hold their funds, and deactivates clients whose money is all gone.

Invariants enforced:
    - Matter numbers are unique.
    - A client is deactivated only when the sum of its ledger balances is
      zero; its ledgers are closed with it.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select

from trust_kernel.domain.context import RequestContext
from trust_kernel.domain.money import CENT, ZERO
from trust_kernel.exceptions import (
    ClientNotFoundError,
    DuplicateMatterNumberError,
    NonZeroBalanceError,
    ValidationFailedError,
)
from trust_kernel.logging_config import get_logger
from trust_kernel.models.audit_log import AuditAction
from trust_kernel.models.ledger import ClientLedger
from trust_kernel.models.registry import AccountType, Client, TrustAccount
from trust_kernel.services.audit_service import AuditService
from trust_kernel.services.base import BaseService

logger = get_logger("services.registry")


class RegistryService(BaseService):

    def __init__(self, session, auditor: AuditService, clock=None):
        super().__init__(session, clock)
        self._auditor = auditor

    def create_client(
        self,
        name: str,
        ctx: RequestContext,
        matter_number: str | None = None,
    ) -> Client:
        name = (name or "").strip()
        if not name:
            raise ValidationFailedError("name", "client name is required")
        matter_number = (matter_number or "").strip() or None

        with self.session.begin_nested():
            if matter_number is not None:
                existing = self.session.execute(
                    select(Client.id).where(Client.matter_number == matter_number)
                ).first()
                if existing is not None:
                    raise DuplicateMatterNumberError(matter_number)

            client = Client(
                name=name,
                matter_number=matter_number,
                is_active=True,
                created_by_id=ctx.actor_id,
            )
            self.session.add(client)
            self.session.flush()
            self._auditor.record(
                AuditAction.CLIENT_CREATED,
                "Client",
                client.id,
                ctx,
                client_id=client.id,
                new_values={"name": name, "matter_number": matter_number},
            )

        logger.info(
            "client_created",
            extra={"client_id": str(client.id), "matter_number": matter_number},
        )
        return client

    def create_account(
        self,
        name: str,
        account_type: AccountType | str,
        ctx: RequestContext,
        linked_client_id: UUID | None = None,
    ) -> TrustAccount:
        name = (name or "").strip()
        if not name:
            raise ValidationFailedError("name", "account name is required")
        try:
            account_type = AccountType(account_type)
        except ValueError:
            raise ValidationFailedError(
                "account_type", f"unknown account type: {account_type!r}",
            ) from None

        with self.session.begin_nested():
            if linked_client_id is not None:
                if account_type is not AccountType.TRUST:
                    raise ValidationFailedError(
                        "linked_client_id",
                        "only trust accounts can be linked to a client",
                    )
                if self.session.get(Client, linked_client_id) is None:
                    raise ClientNotFoundError(str(linked_client_id))

            account = TrustAccount(
                name=name,
                account_type=account_type,
                current_balance=ZERO,
                linked_client_id=linked_client_id,
                is_active=True,
                created_by_id=ctx.actor_id,
            )
            self.session.add(account)
            self.session.flush()
            self._auditor.record(
                AuditAction.ACCOUNT_CREATED,
                "TrustAccount",
                account.id,
                ctx,
                client_id=linked_client_id,
                new_values={
                    "name": name,
                    "account_type": account_type,
                    "linked_client_id": linked_client_id,
                },
            )

        logger.info(
            "account_created",
            extra={"account_id": str(account.id), "account_type": account_type.value},
        )
        return account

    def client_balance(self, client_id: UUID) -> Decimal:
        total = self.session.execute(
            select(func.coalesce(func.sum(ClientLedger.current_balance), 0))
            .where(ClientLedger.client_id == client_id)
        ).scalar_one()
        return Decimal(total).quantize(CENT)

    def deactivate_client(self, client_id: UUID, ctx: RequestContext) -> Client:
        """
        Deactivate a client and close its ledgers.

        Raises:
            ClientNotFoundError
            NonZeroBalanceError: the client still holds funds.
        """
        with self.session.begin_nested():
            client = self.session.get(Client, client_id, with_for_update=True)
            if client is None:
                raise ClientNotFoundError(str(client_id))

            balance = self.client_balance(client_id)
            if balance != ZERO:
                raise NonZeroBalanceError("Client", str(client_id), balance)

            ledgers = self.session.execute(
                select(ClientLedger).where(ClientLedger.client_id == client_id)
            ).scalars().all()
            for ledger in ledgers:
                ledger.is_active = False
                ledger.updated_by_id = ctx.actor_id

            client.is_active = False
            client.updated_by_id = ctx.actor_id
            self.session.flush()
            self._auditor.record(
                AuditAction.CLIENT_DEACTIVATED,
                "Client",
                client.id,
                ctx,
                client_id=client.id,
                old_values={"is_active": True},
                new_values={"is_active": False, "ledgers_closed": len(ledgers)},
            )

        logger.info("client_deactivated", extra={"client_id": str(client_id)})
        return client
