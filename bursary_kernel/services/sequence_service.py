"""
SequenceService -- monotonic sequence allocation via locked counter rows.

Responsibility:
    Provides strictly increasing numbers for audit events and for the
    human-readable document references (receipts, transaction refs,
    invoice numbers, journal entries).  A dedicated counter table with
    row-level locking (``SELECT ... FOR UPDATE``) guarantees uniqueness
    under concurrent access.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.  Called by
    AuditorService, JournalWriter and the payment/invoice services.

Invariants enforced:
    - Monotonicity: the locked counter row is the sole source of truth.
      The SQL aggregate-max-plus-one pattern is never used.
    - Transactional: an increment is only visible after the caller's
      transaction commits.  Rollback returns the value.

Failure modes:
    - IntegrityError: concurrent counter creation race (handled via
      savepoint rollback and retry).

Audit relevance:
    Receipt numbers are legal documents; their uniqueness rests on this
    service plus the UNIQUE constraints on the reference columns.
"""

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from bursary_kernel.logging_config import get_logger
from bursary_kernel.models.sequence import SequenceCounter

logger = get_logger("services.sequence")


class SequenceService:
    """
    Service for generating transactional sequence numbers.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
    """

    # Well-known sequence names
    AUDIT_EVENT = "audit_event"
    JOURNAL_ENTRY = "journal_entry"
    LEDGER_TRANSACTION = "ledger_transaction"
    RECEIPT = "receipt"
    INVOICE = "invoice"
    VOID = "void"

    def __init__(self, session: Session):
        self._session = session

    def _lock_counter(self, sequence_name: str) -> SequenceCounter | None:
        return self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def next_value(self, sequence_name: str) -> int:
        """
        Get the next value for a named sequence.

        Locks the counter row (creating it on first use), increments it and
        returns the new value.  The increment is only committed when the
        caller's transaction commits.

        Returns:
            The next sequence value (always > 0).
        """
        counter = self._lock_counter(sequence_name)

        if counter is None:
            # First use.  Another session may create the row concurrently,
            # so insert inside a savepoint and fall back to the locked read.
            savepoint = self._session.begin_nested()
            try:
                counter = SequenceCounter(name=sequence_name, current_value=1)
                self._session.add(counter)
                self._session.flush()
                savepoint.commit()
                logger.debug(
                    "sequence_allocated",
                    extra={"sequence_name": sequence_name, "value": 1},
                )
                return 1
            except IntegrityError:
                logger.debug(
                    "sequence_counter_race_retry",
                    extra={"sequence_name": sequence_name},
                )
                savepoint.rollback()
                counter = self._lock_counter(sequence_name)
                if counter is None:
                    raise

        counter.current_value += 1
        self._session.flush()
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": counter.current_value},
        )
        return counter.current_value

    def current_value(self, sequence_name: str) -> int | None:
        """Current value of a sequence without incrementing, or None."""
        counter = self._session.execute(
            select(SequenceCounter).where(SequenceCounter.name == sequence_name)
        ).scalar_one_or_none()
        return counter.current_value if counter else None
