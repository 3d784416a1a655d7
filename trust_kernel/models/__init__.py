"""ORM models for the trust kernel."""

from trust_kernel.models.audit_log import AuditAction, AuditLogEntry
from trust_kernel.models.ledger import ClientLedger
from trust_kernel.models.reconciliation import ReconciliationRecord, ReconciliationStatus
from trust_kernel.models.registry import AccountType, Client, TrustAccount
from trust_kernel.models.sequence import SequenceCounter
from trust_kernel.models.staging import StagingRecord, StagingStatus
from trust_kernel.models.transaction import TransactionStatus, TrustTransaction

__all__ = [
    "AccountType",
    "AuditAction",
    "AuditLogEntry",
    "Client",
    "ClientLedger",
    "ReconciliationRecord",
    "ReconciliationStatus",
    "SequenceCounter",
    "StagingRecord",
    "StagingStatus",
    "TransactionStatus",
    "TrustAccount",
    "TrustTransaction",
]
