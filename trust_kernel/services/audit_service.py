"""
AuditService -- tamper-evident audit trail for every trust mutation.

Responsibility:
    Writes one hash-chained ``AuditLogEntry`` per mutating operation and
    validates the chain on demand.

Architecture position:
    Kernel > Services -- called by every write-side service inside the
    same savepoint as the mutation it describes.

Invariants enforced:
    - Sequence monotonicity via SequenceService (never max+1).
    - ``hash = H(entity_type | entity_id | action | payload_hash | prev_hash)``;
      the sequence row is locked before the previous hash is read, so two
      writers cannot chain onto the same predecessor.
    - The entry is written in the caller's transaction: if the audit write
      fails the business mutation rolls back with it.

Failure modes:
    - AuditChainBrokenError from ``validate_chain()`` when a stored hash or
      payload no longer matches its recomputed value.
"""

from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from trust_kernel.domain.clock import Clock, SystemClock
from trust_kernel.domain.context import RequestContext
from trust_kernel.exceptions import AuditChainBrokenError
from trust_kernel.logging_config import get_logger
from trust_kernel.models.audit_log import AuditAction, AuditLogEntry
from trust_kernel.services.sequence_service import SequenceService
from trust_kernel.utils.hashing import hash_audit_entry, hash_payload, to_json_safe

logger = get_logger("services.audit")


def _entry_payload(client_id, old_values, new_values, description) -> dict[str, Any]:
    return {
        "client_id": client_id,
        "old_values": old_values,
        "new_values": new_values,
        "description": description,
    }


class AuditService:
    """
    Append-only, hash-chained audit writer.

    Non-goals:
        - Does NOT commit.
        - Does NOT serve read models; see ``AuditSelector``.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()
        self._sequence_service = SequenceService(session)

    def _get_last_hash(self) -> str | None:
        last_entry = self._session.execute(
            select(AuditLogEntry).order_by(AuditLogEntry.seq.desc()).limit(1)
        ).scalar_one_or_none()
        return last_entry.hash if last_entry else None

    def record(
        self,
        action: AuditAction,
        entity_type: str,
        entity_id: UUID | None,
        ctx: RequestContext,
        client_id: UUID | None = None,
        old_values: dict[str, Any] | None = None,
        new_values: dict[str, Any] | None = None,
        description: str | None = None,
    ) -> AuditLogEntry:
        """
        Append one audit entry.

        Postconditions:
            - The entry is flushed with the next audit ``seq`` and a hash
              chained onto the previous entry.
        """
        seq = self._sequence_service.next_value(SequenceService.AUDIT_LOG)
        prev_hash = self._get_last_hash()

        old_json = to_json_safe(old_values)
        new_json = to_json_safe(new_values)
        payload_hash = hash_payload(_entry_payload(client_id, old_json, new_json, description))
        entry_hash = hash_audit_entry(
            entity_type=entity_type,
            entity_id=str(entity_id),
            action=action.value,
            payload_hash=payload_hash,
            prev_hash=prev_hash,
        )

        entry = AuditLogEntry(
            seq=seq,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            client_id=client_id,
            old_values=old_json,
            new_values=new_json,
            description=description,
            actor_id=ctx.actor_id,
            occurred_at=self._clock.now(),
            payload_hash=payload_hash,
            prev_hash=prev_hash,
            hash=entry_hash,
        )
        self._session.add(entry)
        self._session.flush()

        logger.info(
            "audit_entry_created",
            extra={
                "action": action.value,
                "entity_type": entity_type,
                "entity_id": str(entity_id) if entity_id else None,
                "seq": seq,
                **ctx.log_fields(),
            },
        )
        return entry

    @staticmethod
    def diff_values(
        old: dict[str, Any] | None,
        new: dict[str, Any] | None,
    ) -> tuple[str, ...]:
        """Keys whose values differ between ``old`` and ``new``, sorted."""
        old_json = to_json_safe(old) or {}
        new_json = to_json_safe(new) or {}
        keys = set(old_json) | set(new_json)
        return tuple(sorted(k for k in keys if old_json.get(k) != new_json.get(k)))

    def validate_chain(self) -> bool:
        """
        Recompute every payload hash and chain link in ``seq`` order.

        Raises:
            AuditChainBrokenError: at the first entry that does not verify.
        """
        entries = self._session.execute(
            select(AuditLogEntry).order_by(AuditLogEntry.seq)
        ).scalars().all()

        expected_prev: str | None = None
        for entry in entries:
            if entry.prev_hash != expected_prev:
                logger.critical(
                    "audit_chain_broken",
                    extra={"seq": entry.seq, "reason": "prev_hash"},
                )
                raise AuditChainBrokenError(
                    str(entry.id), expected_prev or "None", entry.prev_hash or "None",
                )

            payload_hash = hash_payload(_entry_payload(
                entry.client_id, entry.old_values, entry.new_values, entry.description,
            ))
            if payload_hash != entry.payload_hash:
                logger.critical(
                    "audit_chain_broken",
                    extra={"seq": entry.seq, "reason": "payload_hash"},
                )
                raise AuditChainBrokenError(str(entry.id), payload_hash, entry.payload_hash)

            expected_hash = hash_audit_entry(
                entity_type=entry.entity_type,
                entity_id=str(entry.entity_id),
                action=AuditAction(entry.action).value,
                payload_hash=entry.payload_hash,
                prev_hash=entry.prev_hash,
            )
            if entry.hash != expected_hash:
                logger.critical(
                    "audit_chain_broken",
                    extra={"seq": entry.seq, "reason": "hash"},
                )
                raise AuditChainBrokenError(str(entry.id), expected_hash, entry.hash)

            expected_prev = entry.hash

        logger.info("audit_chain_valid", extra={"entry_count": len(entries)})
        return True
