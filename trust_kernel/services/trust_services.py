"""
TrustServices -- one session's worth of wired trust services.

Every service shares the caller's session, clock, policy and a single
AuditService so that all audit entries of a unit of work chain in order.

Usage:
    with session_scope() as session:
        services = TrustServices(session, policy=get_settings().policy())
        services.posting.post(staging_id, ctx)
"""

from sqlalchemy.orm import Session

from trust_kernel.domain.clock import Clock, SystemClock
from trust_kernel.domain.policy import TrustPolicy
from trust_kernel.services.audit_service import AuditService
from trust_kernel.services.ledger_service import LedgerService
from trust_kernel.services.matching_service import MatchingService
from trust_kernel.services.posting_service import PostingService
from trust_kernel.services.reconciliation_service import ReconciliationService
from trust_kernel.services.registry_service import RegistryService
from trust_kernel.services.split_service import SplitService
from trust_kernel.services.staging_service import StagingService
from trust_kernel.services.transaction_service import TransactionService


class TrustServices:

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        policy: TrustPolicy | None = None,
    ):
        self.session = session
        self.clock = clock or SystemClock()
        self.policy = policy or TrustPolicy()

        self.audit = AuditService(session, self.clock)
        self.ledgers = LedgerService(session, self.audit, self.clock)
        self.registry = RegistryService(session, self.audit, self.clock)
        self.staging = StagingService(session, self.audit, self.clock, self.policy)
        self.matching = MatchingService(session, self.audit, self.clock, self.policy)
        self.posting = PostingService(session, self.audit, self.ledgers, self.clock)
        self.transactions = TransactionService(session, self.audit, self.ledgers, self.clock)
        self.splits = SplitService(session, self.audit, self.ledgers, self.clock)
        self.reconciliation = ReconciliationService(
            session, self.audit, self.clock, self.policy,
        )
