"""
DTOs -- request and result objects for the bursary services.

Responsibility:
    Immutable plain-data requests accepted by the mutating services and the
    results they return.  These are the shapes the IPC / presentation layer
    exchanges with the kernel.

Architecture position:
    Kernel > Domain -- pure, zero I/O, free of ORM types.

Invariants enforced:
    - Amounts are ints in minor currency units.
    - Failure results carry ``success=False`` and a user-safe ``error``;
      they are never raised.

Audit relevance:
    Results echo the generated transaction reference and receipt number so
    the caller can print or reconcile the exact documents written.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from uuid import UUID

from bursary_kernel.domain.allocation import InvoiceBalance


class PaymentMethod(str, Enum):
    """How the money reached the school."""

    CASH = "CASH"
    MPESA = "MPESA"
    BANK_TRANSFER = "BANK_TRANSFER"
    CHEQUE = "CHEQUE"


# =============================================================================
# Shared
# =============================================================================


@dataclass(frozen=True)
class AllocatedInvoice:
    """How much of a payment or credit landed on one invoice."""

    invoice_id: UUID
    invoice_number: str
    applied_amount: int
    status: str


# =============================================================================
# Invoice validation
# =============================================================================


@dataclass(frozen=True)
class InvoiceValidation:
    """Outcome of checking a proposed amount against open invoices."""

    valid: bool
    message: str
    invoices: tuple[InvoiceBalance, ...] = ()
    total_outstanding: int = 0
    overpayment: int = 0


# =============================================================================
# Payments
# =============================================================================


@dataclass(frozen=True)
class PaymentRequest:
    """A fee payment as submitted by the bursar's desk."""

    student_id: UUID | None
    amount: int | None
    transaction_date: date | None
    payment_method: PaymentMethod | str | None
    recorded_by_id: UUID | None
    payment_reference: str | None = None
    invoice_id: UUID | None = None
    description: str | None = None
    idempotency_key: str | None = None
    approval_request_id: UUID | None = None


@dataclass(frozen=True)
class PaymentResult:
    """Outcome of ``PaymentProcessor.record_payment``."""

    success: bool
    message: str = ""
    transaction_id: UUID | None = None
    transaction_ref: str | None = None
    receipt_number: str | None = None
    allocations: tuple[AllocatedInvoice, ...] = ()
    credited_amount: int = 0
    error: str | None = None
    is_replay: bool = False
    is_duplicate: bool = False

    @classmethod
    def failure(cls, error: str) -> PaymentResult:
        return cls(success=False, message=error, error=error)

    @property
    def allocated_amount(self) -> int:
        return sum(a.applied_amount for a in self.allocations)


@dataclass(frozen=True)
class VoidRequest:
    """Request to void a recorded fee payment."""

    transaction_id: UUID | None
    void_reason: str | None
    voided_by_id: UUID | None
    recovery_method: str | None = None


@dataclass(frozen=True)
class RestoredInvoice:
    """Invoice balance after a payment allocation was reversed."""

    invoice_id: UUID
    invoice_number: str
    amount_reversed: int
    amount_paid: int
    status: str


@dataclass(frozen=True)
class VoidResult:
    """Outcome of ``VoidProcessor.void_payment``."""

    success: bool
    message: str = ""
    reversal_ref: str | None = None
    restored_invoices: tuple[RestoredInvoice, ...] = ()
    credit_reversed: int = 0
    error: str | None = None

    @classmethod
    def failure(cls, error: str) -> VoidResult:
        return cls(success=False, message=error, error=error)


# =============================================================================
# Invoices
# =============================================================================


@dataclass(frozen=True)
class InvoiceItemSpec:
    """One fee line on a new invoice."""

    description: str
    amount: int
    revenue_account_code: str | None = None


@dataclass(frozen=True)
class InvoiceRequest:
    """A new fee invoice for a student."""

    student_id: UUID | None
    invoice_date: date | None
    due_date: date | None
    items: tuple[InvoiceItemSpec, ...]
    created_by_id: UUID | None
    term: str | None = None
    description: str | None = None


@dataclass(frozen=True)
class InvoiceResult:
    """Outcome of ``InvoiceService.create_invoice`` / ``cancel_invoice``."""

    success: bool
    message: str = ""
    invoice_id: UUID | None = None
    invoice_number: str | None = None
    total_amount: int = 0
    credit_applied: int = 0
    error: str | None = None
    is_duplicate: bool = False

    @classmethod
    def failure(cls, error: str) -> InvoiceResult:
        return cls(success=False, message=error, error=error)


# =============================================================================
# Credits
# =============================================================================


@dataclass(frozen=True)
class CreditResult:
    """Outcome of a student credit operation."""

    success: bool
    message: str = ""
    credit_id: UUID | None = None
    amount: int = 0
    new_balance: int = 0
    applications: tuple[AllocatedInvoice, ...] = field(default_factory=tuple)
    error: str | None = None

    @classmethod
    def failure(cls, error: str) -> CreditResult:
        return cls(success=False, message=error, error=error)
