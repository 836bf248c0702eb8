"""
Module: bursary_kernel.models.audit_event
Responsibility: ORM persistence for the tamper-evident audit hash chain.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Audit records are append-only; no UPDATE or DELETE (ORM listeners).
    - Hash chain integrity: hash = H(entity_type | entity_id | action |
      payload_hash | prev_hash).  Validated by AuditorService.
    - seq is monotonically increasing, allocated by SequenceService.

Failure modes:
    - ImmutabilityViolationError on any UPDATE/DELETE attempt.
    - AuditChainBrokenError when chain validation detects a hash mismatch.

Audit relevance:
    AuditEvent IS the audit trail.  Every state-changing bursary operation
    -- payment, void, invoice, credit movement, approval transition,
    reconciliation run -- produces one, inside the same transaction.  The
    payload carries ``old_values`` and ``new_values`` for the touched row.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import JSON, BigInteger, Index, String, event
from sqlalchemy.orm import Mapped, mapped_column

from bursary_kernel.db.base import Base, UTCDateTime, UUIDString
from bursary_kernel.exceptions import ImmutabilityViolationError


class AuditAction(str, Enum):
    """Types of auditable actions."""

    # Payments
    PAYMENT_RECORDED = "payment_recorded"
    PAYMENT_VOIDED = "payment_voided"

    # Invoices
    INVOICE_CREATED = "invoice_created"
    INVOICE_CANCELLED = "invoice_cancelled"

    # Student credit
    CREDIT_ADDED = "credit_added"
    CREDIT_APPLIED = "credit_applied"
    CREDIT_REVERSED = "credit_reversed"

    # General ledger
    JOURNAL_POSTED = "journal_posted"
    JOURNAL_VOIDED = "journal_voided"

    # Approval lifecycle
    APPROVAL_REQUESTED = "approval_requested"
    APPROVAL_LEVEL_APPROVED = "approval_level_approved"
    APPROVAL_GRANTED = "approval_granted"
    APPROVAL_REJECTED = "approval_rejected"
    APPROVAL_CANCELLED = "approval_cancelled"
    APPROVAL_CONFIGURED = "approval_configured"

    # Diagnostics
    RECONCILIATION_RUN = "reconciliation_run"


class AuditEvent(Base):
    """
    Audit event with hash chain for tamper evidence.

    Guarantees:
        - seq is globally unique and monotonically increasing.
        - prev_hash is None only for the genesis event.

    Non-goals:
        - This model does NOT compute hashes; AuditorService does.
    """

    __tablename__ = "audit_events"

    __table_args__ = (
        Index("idx_audit_entity", "entity_type", "entity_id"),
        Index("idx_audit_action", "action"),
        Index("idx_audit_occurred", "occurred_at"),
    )

    seq: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)

    # Table name of the audited row (e.g. "ledger_transactions")
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    action: Mapped[AuditAction] = mapped_column(String(50), nullable=False)
    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    # {"old_values": {...} | None, "new_values": {...}}
    payload: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    payload_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    prev_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    hash: Mapped[str] = mapped_column(String(64), nullable=False)

    def __repr__(self) -> str:
        return f"<AuditEvent #{self.seq} {self.action} on {self.entity_type}:{self.entity_id}>"

    @property
    def is_genesis(self) -> bool:
        return self.prev_hash is None


@event.listens_for(AuditEvent, "before_update")
def _forbid_audit_update(mapper, connection, target):
    raise ImmutabilityViolationError(
        "AuditEvent", str(target.id), "audit events are append-only",
    )


@event.listens_for(AuditEvent, "before_delete")
def _forbid_audit_delete(mapper, connection, target):
    raise ImmutabilityViolationError(
        "AuditEvent", str(target.id), "audit events are append-only",
    )
