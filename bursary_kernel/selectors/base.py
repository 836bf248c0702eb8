"""
Module: bursary_kernel.selectors.base
Responsibility: Abstract base class for the read-only query selectors.
    Selectors are the "Q" side of the kernel: structured read access to
    payments, invoices and approvals without mutation capability.
Architecture position: Kernel > Selectors.  May import from db/, models/
    and the pure domain value objects.  MUST NOT import from services/ or
    outer layers.

Invariants enforced:
    - Read-only access: selectors never call session.add(), delete(),
      flush() or commit().
    - DTO return convention: selectors return frozen dataclasses, not ORM
      instances, so callers cannot mutate rows through them.
    - Session ownership: the caller owns the session and its transaction.
"""

from abc import ABC

from sqlalchemy.orm import Session


class BaseSelector(ABC):
    """
    Abstract base class for all selectors.

    Contract:
        Selectors accept a Session from the caller, perform read-only
        queries and return DTOs.  They MUST NOT mutate any data.
    """

    def __init__(self, session: Session):
        self.session = session
