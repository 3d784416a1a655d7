"""
Audit log model -- append-only, hash-chained record of every mutation.

Guarantees:
    - seq is unique and monotonically increasing.
    - hash = H(entity_type | entity_id | action | payload_hash | prev_hash).
    - prev_hash is None only for the first entry.
    - Rows are never updated or deleted (db/immutability.py).
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import JSON, BigInteger, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from trust_kernel.db.base import Base, UUIDString, str_enum


class AuditAction(str, Enum):
    """Actions recorded in the trust audit log."""

    # Registry
    CLIENT_CREATED = "client_created"
    CLIENT_DEACTIVATED = "client_deactivated"
    ACCOUNT_CREATED = "account_created"

    # Ledger store
    LEDGER_CREATED = "ledger_created"
    LEDGER_CLOSED = "ledger_closed"
    LEDGER_REOPENED = "ledger_reopened"

    # Staging queue
    STAGING_IMPORTED = "staging_imported"
    STAGING_CREATED = "staging_created"
    STAGING_UPDATED = "staging_updated"
    STAGING_ASSIGNED = "staging_assigned"
    STAGING_UNASSIGNED = "staging_unassigned"
    STAGING_REJECTED = "staging_rejected"
    STAGING_DELETED = "staging_deleted"
    STAGING_RECONCILED = "staging_reconciled"

    # Posting
    TRANSACTION_POSTED = "transaction_posted"
    TRANSACTION_UNPOSTED = "transaction_unposted"
    TRANSACTION_MATCHED = "transaction_matched"
    TRANSACTION_UNMATCHED = "transaction_unmatched"
    TRANSACTION_RECORDED = "transaction_recorded"
    TRANSACTION_UPDATED = "transaction_updated"
    TRANSACTION_DELETED = "transaction_deleted"
    TRANSACTION_MOVED = "transaction_moved"
    TRANSFER_COMPLETED = "transfer_completed"
    EARNED_FEE_WITHDRAWN = "earned_fee_withdrawn"
    SPLIT_CREATED = "split_created"
    SPLIT_DELETED = "split_deleted"

    # Reconciliation
    RECONCILIATION_COMPLETED = "reconciliation_completed"


class AuditLogEntry(Base):
    __tablename__ = "trust_audit_log"

    __table_args__ = (
        Index("idx_trust_audit_entity", "entity_type", "entity_id"),
        Index("idx_trust_audit_client", "client_id"),
        Index("idx_trust_audit_action", "action"),
    )

    seq: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)

    action: Mapped[AuditAction] = mapped_column(str_enum(AuditAction, 50), nullable=False)

    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    client_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    old_values: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    new_values: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    description: Mapped[str | None] = mapped_column(String(500), nullable=True)

    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(nullable=False)

    payload_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    prev_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    hash: Mapped[str] = mapped_column(String(64), nullable=False)

    def __repr__(self) -> str:
        return f"<AuditLogEntry #{self.seq} {self.action} {self.entity_type}>"
