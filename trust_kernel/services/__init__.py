"""Services for the trust kernel (write side)."""

from trust_kernel.services.audit_service import AuditService
from trust_kernel.services.ledger_service import LedgerService
from trust_kernel.services.matching_service import MatchingService
from trust_kernel.services.posting_service import PostingService
from trust_kernel.services.reconciliation_service import ReconciliationService
from trust_kernel.services.registry_service import RegistryService
from trust_kernel.services.sequence_service import SequenceService
from trust_kernel.services.split_service import SplitService
from trust_kernel.services.staging_service import StagingService
from trust_kernel.services.transaction_service import TransactionService
from trust_kernel.services.transaction_writer import TransactionWriter
from trust_kernel.services.trust_services import TrustServices

__all__ = [
    "AuditService",
    "LedgerService",
    "MatchingService",
    "PostingService",
    "ReconciliationService",
    "RegistryService",
    "SequenceService",
    "SplitService",
    "StagingService",
    "TransactionService",
    "TransactionWriter",
    "TrustServices",
]
