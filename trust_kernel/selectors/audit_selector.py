"""
Module: trust_kernel.selectors.audit_selector
Responsibility: Audit trail read models.  Entries are returned newest first
    with the list of fields that changed between old and new values.
Architecture position: Kernel > Selectors.
"""

from uuid import UUID

from sqlalchemy import select

from trust_kernel.domain.dtos import AuditTrailEntry
from trust_kernel.models.audit_log import AuditAction, AuditLogEntry
from trust_kernel.selectors.base import BaseSelector


def _changed_fields(old: dict | None, new: dict | None) -> tuple[str, ...]:
    old, new = old or {}, new or {}
    return tuple(sorted(k for k in set(old) | set(new) if old.get(k) != new.get(k)))


def _entry(row: AuditLogEntry) -> AuditTrailEntry:
    return AuditTrailEntry(
        seq=row.seq,
        action=AuditAction(row.action).value,
        entity_type=row.entity_type,
        entity_id=row.entity_id,
        client_id=row.client_id,
        old_values=row.old_values,
        new_values=row.new_values,
        description=row.description,
        actor_id=row.actor_id,
        timestamp=row.occurred_at,
        changed_fields=_changed_fields(row.old_values, row.new_values),
    )


class AuditSelector(BaseSelector):

    def trail(
        self,
        entity_type: str | None = None,
        entity_id: UUID | None = None,
        client_id: UUID | None = None,
        action: AuditAction | str | None = None,
        limit: int = 100,
    ) -> list[AuditTrailEntry]:
        query = select(AuditLogEntry)
        if entity_type is not None:
            query = query.where(AuditLogEntry.entity_type == entity_type)
        if entity_id is not None:
            query = query.where(AuditLogEntry.entity_id == entity_id)
        if client_id is not None:
            query = query.where(AuditLogEntry.client_id == client_id)
        if action is not None:
            query = query.where(AuditLogEntry.action == AuditAction(action))

        rows = self.session.execute(
            query.order_by(AuditLogEntry.seq.desc()).limit(limit)
        ).scalars().all()
        return [_entry(row) for row in rows]

    def history(self, entity_type: str, entity_id: UUID) -> list[AuditTrailEntry]:
        """Full history of one entity, oldest first."""
        rows = self.session.execute(
            select(AuditLogEntry)
            .where(
                AuditLogEntry.entity_type == entity_type,
                AuditLogEntry.entity_id == entity_id,
            )
            .order_by(AuditLogEntry.seq)
        ).scalars().all()
        return [_entry(row) for row in rows]
