"""
InvoiceValidator -- checks a proposed amount against a student's open invoices.

Responsibility:
    Loads the invoices a payment (or credit) could settle, oldest due date
    first, and decides whether the amount is acceptable: within the
    outstanding total, or above it with the excess going to student credit.

Architecture position:
    Kernel > Services.  Read-only: never flushes, never commits.  Used by
    PaymentProcessor before allocation and available to the presentation
    layer for a pre-submit preview.

Invariants enforced:
    - Only OUTSTANDING / PARTIALLY_PAID invoices with a positive balance
      are eligible.  Ordering is due_date, then invoice_date, then
      invoice_number, so allocation is reproducible.
    - ``overpayment`` is never negative.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from bursary_kernel.domain.allocation import InvoiceBalance
from bursary_kernel.domain.dtos import InvoiceValidation
from bursary_kernel.domain.invoice_status import OPEN_INVOICE_STATUSES
from bursary_kernel.domain.policy import LedgerPolicy
from bursary_kernel.logging_config import get_logger
from bursary_kernel.models.invoice import FeeInvoice

logger = get_logger("services.invoice_validator")

MSG_AMOUNT_NOT_POSITIVE = "Payment amount must be greater than zero"
MSG_NO_OUTSTANDING = "No outstanding invoices for this student"
MSG_OVERPAYMENT = "Payment exceeds outstanding balance. Overpayment will be credited."
MSG_OVERPAYMENT_REFUSED = "Payment exceeds outstanding balance"


def applied_message(invoice_count: int) -> str:
    return f"Payment applied to {invoice_count} outstanding invoice(s)"


def is_positive_amount(amount: object) -> bool:
    """True for a strictly positive int (bools excluded)."""
    return isinstance(amount, int) and not isinstance(amount, bool) and amount > 0


def load_open_invoices(
    session: Session,
    student_id: UUID,
    invoice_id: UUID | None = None,
    lock: bool = False,
) -> list[FeeInvoice]:
    """Invoices that can still receive money, oldest due first.

    With ``lock=True`` the rows are selected FOR UPDATE so concurrent
    payments for the same student serialise on them.
    """
    stmt = (
        select(FeeInvoice)
        .where(FeeInvoice.student_id == student_id)
        .where(FeeInvoice.status.in_([s.value for s in OPEN_INVOICE_STATUSES]))
        .where(FeeInvoice.total_amount > FeeInvoice.amount_paid)
        .order_by(FeeInvoice.due_date, FeeInvoice.invoice_date, FeeInvoice.invoice_number)
    )
    if invoice_id is not None:
        stmt = stmt.where(FeeInvoice.id == invoice_id)
    if lock:
        stmt = stmt.with_for_update()
    return list(session.execute(stmt).scalars())


def to_invoice_balance(invoice: FeeInvoice) -> InvoiceBalance:
    return InvoiceBalance(
        invoice_id=invoice.id,
        invoice_number=invoice.invoice_number,
        due_date=invoice.due_date,
        total_amount=invoice.total_amount,
        amount_paid=invoice.amount_paid,
    )


class InvoiceValidator:
    """Validates a payment amount against outstanding invoices."""

    def __init__(self, session: Session, policy: LedgerPolicy | None = None):
        self._session = session
        self._policy = policy or LedgerPolicy()

    def validate(
        self,
        student_id: UUID,
        amount: int,
        invoice_id: UUID | None = None,
        lock: bool = False,
    ) -> InvoiceValidation:
        """
        Decide whether ``amount`` can be accepted for ``student_id``.

        With ``invoice_id`` only that invoice is considered.  The returned
        ``invoices`` are the allocation candidates, in allocation order.
        """
        if not is_positive_amount(amount):
            return InvoiceValidation(valid=False, message=MSG_AMOUNT_NOT_POSITIVE)

        invoices = tuple(
            to_invoice_balance(inv)
            for inv in load_open_invoices(self._session, student_id, invoice_id, lock=lock)
        )
        total_outstanding = sum(inv.balance for inv in invoices)
        allow_credit = self._policy.overpayment_to_credit

        if total_outstanding == 0:
            validation = InvoiceValidation(
                valid=allow_credit,
                message=MSG_NO_OUTSTANDING,
                invoices=invoices,
                total_outstanding=0,
                overpayment=amount if allow_credit else 0,
            )
        elif amount > total_outstanding:
            validation = InvoiceValidation(
                valid=allow_credit,
                message=MSG_OVERPAYMENT if allow_credit else MSG_OVERPAYMENT_REFUSED,
                invoices=invoices,
                total_outstanding=total_outstanding,
                overpayment=amount - total_outstanding if allow_credit else 0,
            )
        else:
            validation = InvoiceValidation(
                valid=True,
                message=applied_message(len(invoices)),
                invoices=invoices,
                total_outstanding=total_outstanding,
                overpayment=0,
            )

        logger.debug(
            "invoice_validation",
            extra={
                "student_id": str(student_id),
                "amount": amount,
                "valid": validation.valid,
                "total_outstanding": total_outstanding,
                "overpayment": validation.overpayment,
            },
        )
        return validation
