"""
BaseService -- common constructor and unit-of-work helpers for kernel services.

Responsibility:
    Every write-side service receives the caller's ``Session`` and uses
    ``flush()`` only.  The caller (``session_scope()``, an API handler, or
    the test harness) owns commit and rollback.

Invariants enforced:
    - One operation, one savepoint: each public mutating method runs inside
      ``session.begin_nested()`` so a failure rolls back that operation's
      balance writes, transaction rows and audit entry together, leaving
      the caller's outer transaction usable.
    - Bulk operations give each item its own savepoint and collect
      ``TrustLedgerError`` per item; any other exception propagates.
"""

from collections.abc import Callable, Iterable
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from trust_kernel.domain.clock import Clock, SystemClock
from trust_kernel.domain.dtos import BulkResult, ItemError
from trust_kernel.exceptions import TrustLedgerError
from trust_kernel.logging_config import get_logger

logger = get_logger("services.base")


class BaseService:
    """
    Base class for write-side services.

    Non-goals:
        - Does NOT commit or roll back the caller's transaction.
        - Does NOT provide read models; those live in ``selectors/``.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self.session = session
        self._clock = clock or SystemClock()

    def _run_per_item(
        self,
        item_ids: Iterable[UUID],
        operation: Callable[[UUID], Any],
        operation_name: str,
    ) -> BulkResult:
        """Apply ``operation`` to each id independently and report a mixed result."""
        succeeded: list[UUID] = []
        errors: list[ItemError] = []
        for item_id in item_ids:
            try:
                operation(item_id)
            except TrustLedgerError as exc:
                errors.append(ItemError(item_id=item_id, code=exc.code, message=str(exc)))
            else:
                succeeded.append(item_id)

        logger.info(
            "bulk_operation_completed",
            extra={
                "operation": operation_name,
                "succeeded": len(succeeded),
                "failed": len(errors),
            },
        )
        return BulkResult(succeeded=tuple(succeeded), errors=tuple(errors))
