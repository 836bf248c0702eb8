"""
AuditorService -- tamper-evident audit trail and hash chain maintenance.

Responsibility:
    Creates immutable, hash-chained audit events for every state change
    made by the bursary services.  Provides chain validation for tamper
    detection and trace queries for forensic review.

Architecture position:
    Kernel > Services -- imperative shell, called by PaymentProcessor,
    VoidProcessor, InvoiceService, CreditService, JournalWriter,
    ApprovalWorkflowService and the reconciliation service.

Invariants enforced:
    - Sequence monotonicity via SequenceService (never raw SQL max+1).
    - Chain integrity: ``hash = H(entity_type | entity_id | action |
      payload_hash | prev_hash)``.  Every event links to its predecessor.
    - Append-only: audit events are never modified or deleted.
    - Same transaction: events are flushed into the caller's session, so a
      rolled-back mutation leaves no audit row behind.

Failure modes:
    - AuditChainBrokenError from ``validate_chain()`` when a stored hash
      does not match its recomputation or its predecessor.

Audit relevance:
    This IS the audit sink.  Each event records who (actor_id), what
    (action on entity_type/entity_id), when (occurred_at) and the
    before/after values of the touched row.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from bursary_kernel.domain.clock import Clock, SystemClock
from bursary_kernel.exceptions import AuditChainBrokenError
from bursary_kernel.logging_config import get_logger
from bursary_kernel.models.audit_event import AuditAction, AuditEvent
from bursary_kernel.services.sequence_service import SequenceService
from bursary_kernel.utils.hashing import hash_audit_event, hash_payload, to_json_safe

logger = get_logger("services.auditor")


@dataclass(frozen=True)
class AuditTraceEntry:
    """A single entry in an audit trace."""

    seq: int
    action: AuditAction
    occurred_at: datetime
    actor_id: UUID
    payload: dict[str, Any]
    hash: str


@dataclass(frozen=True)
class AuditTrace:
    """All audit events for one entity, in chronological order."""

    entity_type: str
    entity_id: UUID
    entries: tuple[AuditTraceEntry, ...]

    @property
    def is_empty(self) -> bool:
        return len(self.entries) == 0

    @property
    def actions(self) -> tuple[AuditAction, ...]:
        return tuple(e.action for e in self.entries)


class AuditorService:
    """
    Service for creating and validating tamper-evident audit events.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._sequence_service = SequenceService(session)

    def _get_last_hash(self) -> str | None:
        last_event = self._session.execute(
            select(AuditEvent).order_by(AuditEvent.seq.desc()).limit(1)
        ).scalar_one_or_none()
        return last_event.hash if last_event else None

    def record_change(
        self,
        entity_type: str,
        entity_id: UUID,
        action: AuditAction,
        actor_id: UUID,
        new_values: dict[str, Any],
        old_values: dict[str, Any] | None = None,
    ) -> AuditEvent:
        """
        Append an audit event describing a change to one row.

        Preconditions:
            - ``entity_type`` is the table name of the changed row.
            - ``actor_id`` is the authenticated user behind the change.

        Postconditions:
            - A new ``AuditEvent`` is flushed with the next ``seq`` and a
              hash linked to the previous event.
        """
        seq = self._sequence_service.next_value(SequenceService.AUDIT_EVENT)
        prev_hash = self._get_last_hash()

        payload = to_json_safe({"old_values": old_values, "new_values": new_values})
        payload_hash = hash_payload(payload)
        event_hash = hash_audit_event(
            entity_type=entity_type,
            entity_id=str(entity_id),
            action=action.value,
            payload_hash=payload_hash,
            prev_hash=prev_hash,
        )

        audit_event = AuditEvent(
            seq=seq,
            entity_type=entity_type,
            entity_id=entity_id,
            action=action.value,
            actor_id=actor_id,
            occurred_at=self._clock.now(),
            payload=payload,
            payload_hash=payload_hash,
            prev_hash=prev_hash,
            hash=event_hash,
        )
        self._session.add(audit_event)
        self._session.flush()

        logger.info(
            "audit_event_created",
            extra={
                "entity_type": entity_type,
                "entity_id": str(entity_id),
                "action": action.value,
                "seq": seq,
            },
        )
        return audit_event

    def validate_chain(self) -> bool:
        """
        Walk the whole chain in seq order and recompute every hash.

        Returns:
            True when the chain is intact (including when it is empty).

        Raises:
            AuditChainBrokenError: at the first event whose payload hash,
                predecessor link or event hash does not verify.
        """
        events = self._session.execute(
            select(AuditEvent).order_by(AuditEvent.seq)
        ).scalars().all()

        prev_hash: str | None = None
        for audit_event in events:
            if audit_event.prev_hash != prev_hash:
                raise AuditChainBrokenError(audit_event.seq, prev_hash, audit_event.prev_hash)

            payload_hash = hash_payload(audit_event.payload or {})
            if payload_hash != audit_event.payload_hash:
                raise AuditChainBrokenError(
                    audit_event.seq, payload_hash, audit_event.payload_hash,
                )

            expected = hash_audit_event(
                entity_type=audit_event.entity_type,
                entity_id=str(audit_event.entity_id),
                action=str(AuditAction(audit_event.action).value),
                payload_hash=audit_event.payload_hash,
                prev_hash=audit_event.prev_hash,
            )
            if expected != audit_event.hash:
                raise AuditChainBrokenError(audit_event.seq, expected, audit_event.hash)
            prev_hash = audit_event.hash

        logger.info("audit_chain_validated", extra={"event_count": len(events)})
        return True

    def get_trace(self, entity_type: str, entity_id: UUID) -> AuditTrace:
        """All audit events for one row, oldest first."""
        events = self._session.execute(
            select(AuditEvent)
            .where(AuditEvent.entity_type == entity_type)
            .where(AuditEvent.entity_id == entity_id)
            .order_by(AuditEvent.seq)
        ).scalars().all()

        return AuditTrace(
            entity_type=entity_type,
            entity_id=entity_id,
            entries=tuple(
                AuditTraceEntry(
                    seq=e.seq,
                    action=AuditAction(e.action),
                    occurred_at=e.occurred_at,
                    actor_id=e.actor_id,
                    payload=e.payload or {},
                    hash=e.hash,
                )
                for e in events
            ),
        )

    def get_recent_events(self, limit: int = 50) -> list[AuditEvent]:
        """Most recent audit events, newest first."""
        return list(
            self._session.execute(
                select(AuditEvent).order_by(AuditEvent.seq.desc()).limit(limit)
            ).scalars().all()
        )
