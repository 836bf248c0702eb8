"""
Oldest-due-first allocation (``bursary_kernel.domain.allocation``).

Responsibility
--------------
Splits an amount of money across a student's open invoices.  Used for
cash payments and for applying stored student credit.

Architecture position
---------------------
**Kernel domain layer** -- pure functions over frozen value objects.
The services load invoice snapshots, call ``allocate_oldest_first`` and
then persist the plan.

Invariants enforced
-------------------
* Conservation: ``sum(line.amount for line in plan.lines) + plan.remainder
  == amount`` for every non-negative amount.
* Ordering: invoices are filled completely, in the order given, before
  the next one is touched.  Callers pass invoices sorted by due date.
* Only positive applications produce a line.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from uuid import UUID


@dataclass(frozen=True)
class InvoiceBalance:
    """Point-in-time view of an invoice eligible for allocation."""

    invoice_id: UUID
    invoice_number: str
    due_date: date
    total_amount: int
    amount_paid: int

    @property
    def balance(self) -> int:
        return max(0, self.total_amount - self.amount_paid)


@dataclass(frozen=True)
class AllocationLine:
    """One slice of a payment or credit applied to a single invoice."""

    invoice_id: UUID
    invoice_number: str
    amount: int
    balance_before: int

    @property
    def settles_invoice(self) -> bool:
        return self.amount == self.balance_before


@dataclass(frozen=True)
class AllocationPlan:
    """Result of allocating an amount across invoices."""

    amount: int
    lines: tuple[AllocationLine, ...]
    remainder: int

    @property
    def allocated(self) -> int:
        return self.amount - self.remainder

    @property
    def invoice_count(self) -> int:
        return len(self.lines)


def allocate_oldest_first(
    invoices: list[InvoiceBalance] | tuple[InvoiceBalance, ...],
    amount: int,
) -> AllocationPlan:
    """Apply ``amount`` across ``invoices`` in the order given.

    Each invoice receives ``min(remaining, balance)``; allocation stops
    once the amount is exhausted.  Whatever is left after every invoice
    is settled is returned as ``remainder``.
    """
    if amount < 0:
        raise ValueError(f"Cannot allocate a negative amount: {amount}")

    remaining = amount
    lines: list[AllocationLine] = []
    for invoice in invoices:
        if remaining == 0:
            break
        balance = invoice.balance
        applied = min(remaining, balance)
        if applied <= 0:
            continue
        lines.append(
            AllocationLine(
                invoice_id=invoice.invoice_id,
                invoice_number=invoice.invoice_number,
                amount=applied,
                balance_before=balance,
            )
        )
        remaining -= applied

    return AllocationPlan(amount=amount, lines=tuple(lines), remainder=remaining)
