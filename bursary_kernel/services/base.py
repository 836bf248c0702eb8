"""
BaseService -- abstract base for the bursary kernel services.

Responsibility:
    Provides the common constructor (session, clock, policy) and the
    transaction-boundary helper shared by every mutating service.  Internal
    steps use ``session.flush()``; only the public entry points, through
    ``_atomic()``, decide to commit or roll back.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Invariants enforced:
    - Atomicity: with ``auto_commit=True`` a successful result is committed
      and a failure result is rolled back, so a rejected payment leaves
      nothing behind.  An exception always rolls back and is re-raised.
    - With ``auto_commit=False`` the caller owns commit/rollback.  This is
      how services compose: InvoiceService drives CreditService inside its
      own transaction.

Audit relevance:
    Every public operation logs ``<operation>_started`` and
    ``<operation>_completed`` (or ``_rejected``/``_failed``) with its
    duration, under a LogContext carrying the actor and subject ids.
"""

import time
from abc import ABC
from typing import Any, Callable, TypeVar
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from bursary_kernel.domain.clock import Clock, SystemClock
from bursary_kernel.domain.policy import LedgerPolicy
from bursary_kernel.logging_config import LogContext, get_logger
from bursary_kernel.services.auditor_service import AuditorService
from bursary_kernel.services.journal_writer import JournalWriter

R = TypeVar("R")


class BaseService(ABC):
    """
    Abstract base class for kernel services.

    Contract:
        Accepts a SQLAlchemy ``Session`` from the caller.  Never creates a
        session of its own.
    """

    log_name: str = "base"

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        policy: LedgerPolicy | None = None,
        auto_commit: bool = True,
        auditor: AuditorService | None = None,
    ):
        self.session = session
        self._clock = clock or SystemClock()
        self._policy = policy or LedgerPolicy()
        self._auto_commit = auto_commit
        self._auditor = auditor or AuditorService(session, self._clock)
        self._journal = JournalWriter(session, self._auditor, self._clock)
        self._logger = get_logger(f"services.{self.log_name}")

    @property
    def policy(self) -> LedgerPolicy:
        return self._policy

    def _atomic(
        self,
        operation: str,
        work: Callable[[], R],
        *,
        log_context: dict[str, Any] | None = None,
        extra: dict[str, Any] | None = None,
    ) -> R:
        """Run ``work`` as one unit of work and log its outcome.

        ``work`` returns a result object with a ``success`` attribute.
        """
        context = {"correlation_id": str(uuid4())}
        context.update(log_context or {})
        with LogContext.bind(**context):
            self._logger.info(f"{operation}_started", extra=extra or {})
            t0 = time.monotonic()
            try:
                result = work()

                if self._auto_commit:
                    if result.success:
                        self.session.commit()
                    else:
                        self.session.rollback()

                duration_ms = round((time.monotonic() - t0) * 1000, 2)
                if result.success:
                    self._logger.info(
                        f"{operation}_completed",
                        extra={"duration_ms": duration_ms},
                    )
                else:
                    self._logger.warning(
                        f"{operation}_rejected",
                        extra={"duration_ms": duration_ms, "error": result.error},
                    )
                return result

            except Exception:
                duration_ms = round((time.monotonic() - t0) * 1000, 2)
                if self._auto_commit:
                    self.session.rollback()
                self._logger.error(
                    f"{operation}_failed",
                    extra={"duration_ms": duration_ms},
                    exc_info=True,
                )
                raise

    def _lock(self, model: type, row_id: Any) -> Any:
        """Load one row FOR UPDATE, or None when the id is unknown."""
        if row_id is None:
            return None
        return self.session.execute(
            select(model).where(model.id == row_id).with_for_update()
        ).scalar_one_or_none()
