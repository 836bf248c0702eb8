"""
Invoice settlement status (``bursary_kernel.domain.invoice_status``).

Responsibility
--------------
Derives a fee invoice's status from its cached ``amount_paid`` and
``total_amount``.  Every code path that touches ``amount_paid`` (payment
allocation, void reversal, credit application) calls
``derive_invoice_status`` so status never drifts from the arithmetic.

Architecture position
---------------------
**Kernel domain layer** -- pure functions.  ZERO I/O.

Invariants enforced
-------------------
* Status is a pure function of (amount_paid, total_amount), except that
  CANCELLED is sticky.
* ``amount_paid`` may exceed ``total_amount`` only by the rounding
  tolerance (1 minor unit).
"""

from __future__ import annotations

from enum import Enum

ROUNDING_TOLERANCE = 1


class InvoiceStatus(str, Enum):
    """Fee invoice settlement states."""

    OUTSTANDING = "OUTSTANDING"
    PARTIALLY_PAID = "PARTIALLY_PAID"
    PAID = "PAID"
    CANCELLED = "CANCELLED"


# Statuses that can still receive a payment or credit allocation.
OPEN_INVOICE_STATUSES: frozenset[InvoiceStatus] = frozenset({
    InvoiceStatus.OUTSTANDING,
    InvoiceStatus.PARTIALLY_PAID,
})


def derive_invoice_status(
    total_amount: int,
    amount_paid: int,
    current: InvoiceStatus | str | None = None,
) -> InvoiceStatus:
    """Return the status implied by the paid amount.

    A cancelled invoice stays cancelled.  A zero-total invoice counts as
    paid.
    """
    if current is not None and InvoiceStatus(current) == InvoiceStatus.CANCELLED:
        return InvoiceStatus.CANCELLED
    if amount_paid >= total_amount:
        return InvoiceStatus.PAID
    if amount_paid > 0:
        return InvoiceStatus.PARTIALLY_PAID
    return InvoiceStatus.OUTSTANDING


def outstanding_balance(total_amount: int, amount_paid: int) -> int:
    """Amount still owed, never negative."""
    return max(0, total_amount - amount_paid)


def within_tolerance(a: int, b: int, tolerance: int = ROUNDING_TOLERANCE) -> bool:
    """True when two minor-unit amounts differ by at most ``tolerance``."""
    return abs(a - b) <= tolerance
