"""
ORM-level immutability enforcement.

===============================================================================
WHAT IS PROTECTED
===============================================================================

SQLAlchemy fires ``before_update``/``before_delete`` mapper events before the
SQL reaches the database.  The listeners below check the rules and raise
ImmutabilityViolationError, which aborts the flush (and, through the
caller's savepoint, the whole operation).

Entity               | Immutable when            | Rule
---------------------|---------------------------|-----------------------------------
AuditLogEntry        | Always                    | No update, no delete
ReconciliationRecord | Always                    | No update, no delete
TrustTransaction     | Always (structural only)  | transaction_type, seq, split_group_id
StagingRecord        | While status is POSTED    | Financial fields frozen; no delete

Metadata columns (updated_at, updated_by_id) may always change.

===============================================================================
USAGE
===============================================================================

    from trust_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # once at startup

To temporarily disable (TESTS ONLY):

    unregister_immutability_listeners()
"""

from sqlalchemy import event
from sqlalchemy.orm.attributes import get_history

from trust_kernel.exceptions import ImmutabilityViolationError
from trust_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_TRANSACTION_STRUCTURAL_FIELDS = ("transaction_type", "seq", "split_group_id")


def _block(entity_type: str, target, operation: str, reason: str, field: str | None = None):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "operation": operation,
            "field": field,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason=reason,
    )


def _check_audit_entry_update(mapper, connection, target):
    _block("AuditLogEntry", target, "UPDATE", "Audit log entries are append-only")


def _check_audit_entry_delete(mapper, connection, target):
    _block("AuditLogEntry", target, "DELETE", "Audit log entries cannot be deleted")


def _check_reconciliation_update(mapper, connection, target):
    _block(
        "ReconciliationRecord", target, "UPDATE",
        "Reconciliation records are append-only",
    )


def _check_reconciliation_delete(mapper, connection, target):
    _block(
        "ReconciliationRecord", target, "DELETE",
        "Reconciliation records cannot be deleted",
    )


def _check_transaction_update(mapper, connection, target):
    """Block changes to the fields that identify a transaction."""
    for field in _TRANSACTION_STRUCTURAL_FIELDS:
        if get_history(target, field).has_changes():
            _block(
                "TrustTransaction", target, "UPDATE",
                f"Field '{field}' cannot change after posting",
                field=field,
            )


def _was_posted(target) -> bool:
    """True when the row was POSTED before this flush began."""
    from trust_kernel.models.staging import StagingStatus

    status_history = get_history(target, "status")
    if status_history.deleted:
        return status_history.deleted[0] == StagingStatus.POSTED
    if not status_history.added:
        return target.status == StagingStatus.POSTED
    return False


def _check_staging_update(mapper, connection, target):
    """
    Posted staging records keep their financial fields.

    Unposting (POSTED -> ASSIGNED/UNASSIGNED) only touches status and link
    columns, so it passes; changing the amount of a posted line does not.
    """
    from trust_kernel.models.staging import FROZEN_WHEN_POSTED

    if not _was_posted(target):
        return
    for field in FROZEN_WHEN_POSTED:
        if get_history(target, field).has_changes():
            _block(
                "StagingRecord", target, "UPDATE",
                f"Cannot modify field '{field}' on a posted staging record",
                field=field,
            )


def _check_staging_delete(mapper, connection, target):
    from trust_kernel.models.staging import StagingStatus

    if target.status == StagingStatus.POSTED:
        _block("StagingRecord", target, "DELETE", "Posted staging records cannot be deleted")


def _listeners():
    from trust_kernel.models.audit_log import AuditLogEntry
    from trust_kernel.models.reconciliation import ReconciliationRecord
    from trust_kernel.models.staging import StagingRecord
    from trust_kernel.models.transaction import TrustTransaction

    return (
        (AuditLogEntry, "before_update", _check_audit_entry_update),
        (AuditLogEntry, "before_delete", _check_audit_entry_delete),
        (ReconciliationRecord, "before_update", _check_reconciliation_update),
        (ReconciliationRecord, "before_delete", _check_reconciliation_delete),
        (TrustTransaction, "before_update", _check_transaction_update),
        (StagingRecord, "before_update", _check_staging_update),
        (StagingRecord, "before_delete", _check_staging_delete),
    )


def register_immutability_listeners():
    """Register all immutability listeners (idempotent)."""
    for target, event_name, listener_fn in _listeners():
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove immutability listeners.

    WARNING: Only use this in tests that intentionally violate the rules.
    """
    for target, event_name, listener_fn in _listeners():
        if event.contains(target, event_name, listener_fn):
            event.remove(target, event_name, listener_fn)
