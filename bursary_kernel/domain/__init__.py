"""
Pure domain layer.

Value objects and pure functions with NO dependencies on the ORM, the
database or I/O (the SystemClock is the one sanctioned exception for time).
"""

from bursary_kernel.domain.allocation import (
    AllocationLine,
    AllocationPlan,
    InvoiceBalance,
    allocate_oldest_first,
)
from bursary_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from bursary_kernel.domain.invoice_status import (
    InvoiceStatus,
    derive_invoice_status,
    outstanding_balance,
)
from bursary_kernel.domain.policy import AccountRoles, LedgerPolicy

__all__ = [
    "AccountRoles",
    "AllocationLine",
    "AllocationPlan",
    "Clock",
    "DeterministicClock",
    "InvoiceBalance",
    "InvoiceStatus",
    "LedgerPolicy",
    "SystemClock",
    "allocate_oldest_first",
    "derive_invoice_status",
    "outstanding_balance",
]
