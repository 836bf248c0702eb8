"""
Module: bursary_kernel.models.reconciliation
Responsibility: Append-only history of reconciliation runs.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Rows are never updated or deleted (ORM listeners).

Audit relevance:
    Each row is a point-in-time snapshot of the consistency checks, kept
    for trend history.  A FAIL describes the books, not the run.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import JSON, Index, String, event
from sqlalchemy.orm import Mapped, mapped_column

from bursary_kernel.db.base import Base, UTCDateTime, UUIDString
from bursary_kernel.exceptions import ImmutabilityViolationError


class ReconciliationReport(Base):
    """One run of the reconciliation checks."""

    __tablename__ = "ledger_reconciliations"

    __table_args__ = (
        Index("idx_ledger_reconciliations_run_at", "run_at"),
    )

    run_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    overall_status: Mapped[str] = mapped_column(String(10), nullable=False)
    total_checks: Mapped[int] = mapped_column(nullable=False)
    passed_checks: Mapped[int] = mapped_column(nullable=False)
    failed_checks: Mapped[int] = mapped_column(nullable=False)
    warning_checks: Mapped[int] = mapped_column(nullable=False)
    details: Mapped[list] = mapped_column(JSON, nullable=False)
    performed_by_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)


@event.listens_for(ReconciliationReport, "before_update")
def _forbid_report_update(mapper, connection, target):
    raise ImmutabilityViolationError(
        "ReconciliationReport", str(target.id), "reconciliation history is append-only",
    )


@event.listens_for(ReconciliationReport, "before_delete")
def _forbid_report_delete(mapper, connection, target):
    raise ImmutabilityViolationError(
        "ReconciliationReport", str(target.id), "reconciliation history is append-only",
    )
