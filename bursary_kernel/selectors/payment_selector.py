"""
Module: bursary_kernel.selectors.payment_selector
Responsibility: Read-side queries over payments: a student's payment
    history, the allocations of one payment, the invoices still open for a
    student, and the void report for a date range.
Architecture position: Kernel > Selectors.  Read-only.

Audit relevance:
    The void report is built from ``void_audits`` joined to the original
    ledger rows, so it lists who voided what, when and why.
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from uuid import UUID

from sqlalchemy import func, select

from bursary_kernel.domain.allocation import InvoiceBalance
from bursary_kernel.domain.invoice_status import OPEN_INVOICE_STATUSES
from bursary_kernel.models.credit import CreditTransaction, CreditType
from bursary_kernel.models.invoice import FeeInvoice
from bursary_kernel.models.ledger import (
    LedgerTransaction,
    PaymentAllocation,
    Receipt,
    TransactionType,
    VoidAudit,
)
from bursary_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class PaymentSummary:
    transaction_id: UUID
    transaction_ref: str
    receipt_number: str | None
    amount: int
    transaction_date: date
    payment_method: str | None
    payment_reference: str | None
    is_voided: bool
    allocated_amount: int
    credited_amount: int


@dataclass(frozen=True)
class AllocationView:
    invoice_id: UUID
    invoice_number: str
    applied_amount: int
    created_at: datetime
    reversed_at: datetime | None

    @property
    def is_reversed(self) -> bool:
        return self.reversed_at is not None


@dataclass(frozen=True)
class VoidReportRow:
    transaction_id: UUID
    transaction_ref: str
    student_id: UUID | None
    original_amount: int
    void_reason: str
    voided_by_id: UUID
    voided_at: datetime
    recovery_method: str | None


class PaymentSelector(BaseSelector):
    """Read-only access to payments and their allocations."""

    def payment_history(self, student_id: UUID, include_voided: bool = True) -> list[PaymentSummary]:
        """Fee payments for a student, most recent first."""
        stmt = (
            select(LedgerTransaction, Receipt.receipt_number)
            .outerjoin(Receipt, Receipt.transaction_id == LedgerTransaction.id)
            .where(LedgerTransaction.student_id == student_id)
            .where(LedgerTransaction.transaction_type == TransactionType.FEE_PAYMENT.value)
            .order_by(LedgerTransaction.transaction_date.desc(), LedgerTransaction.created_at.desc())
        )
        if not include_voided:
            stmt = stmt.where(LedgerTransaction.is_voided.is_(False))
        rows = self.session.execute(stmt).all()
        if not rows:
            return []

        ids = [txn.id for txn, _ in rows]
        allocated = dict(
            self.session.execute(
                select(PaymentAllocation.transaction_id, func.sum(PaymentAllocation.applied_amount))
                .where(PaymentAllocation.transaction_id.in_(ids))
                .group_by(PaymentAllocation.transaction_id)
            ).all()
        )
        credited = dict(
            self.session.execute(
                select(CreditTransaction.source_transaction_id, func.sum(CreditTransaction.amount))
                .where(CreditTransaction.source_transaction_id.in_(ids))
                .where(CreditTransaction.transaction_type == CreditType.CREDIT_RECEIVED.value)
                .group_by(CreditTransaction.source_transaction_id)
            ).all()
        )

        return [
            PaymentSummary(
                transaction_id=txn.id,
                transaction_ref=txn.transaction_ref,
                receipt_number=receipt_number,
                amount=txn.amount,
                transaction_date=txn.transaction_date,
                payment_method=txn.payment_method,
                payment_reference=txn.payment_reference,
                is_voided=txn.is_voided,
                allocated_amount=int(allocated.get(txn.id, 0)),
                credited_amount=int(credited.get(txn.id, 0)),
            )
            for txn, receipt_number in rows
        ]

    def allocations_for(self, transaction_id: UUID) -> list[AllocationView]:
        """Allocations of one payment, reversed ones included, by due date."""
        rows = self.session.execute(
            select(PaymentAllocation, FeeInvoice.invoice_number)
            .join(FeeInvoice, FeeInvoice.id == PaymentAllocation.invoice_id)
            .where(PaymentAllocation.transaction_id == transaction_id)
            .order_by(FeeInvoice.due_date, FeeInvoice.invoice_number)
        ).all()
        return [
            AllocationView(
                invoice_id=allocation.invoice_id,
                invoice_number=invoice_number,
                applied_amount=allocation.applied_amount,
                created_at=allocation.created_at,
                reversed_at=allocation.reversed_at,
            )
            for allocation, invoice_number in rows
        ]

    def outstanding_invoices(self, student_id: UUID) -> list[InvoiceBalance]:
        """Open invoices in allocation order (oldest due first)."""
        invoices = self.session.execute(
            select(FeeInvoice)
            .where(FeeInvoice.student_id == student_id)
            .where(FeeInvoice.status.in_([s.value for s in OPEN_INVOICE_STATUSES]))
            .where(FeeInvoice.total_amount > FeeInvoice.amount_paid)
            .order_by(FeeInvoice.due_date, FeeInvoice.invoice_date, FeeInvoice.invoice_number)
        ).scalars()
        return [
            InvoiceBalance(
                invoice_id=inv.id,
                invoice_number=inv.invoice_number,
                due_date=inv.due_date,
                total_amount=inv.total_amount,
                amount_paid=inv.amount_paid,
            )
            for inv in invoices
        ]

    def void_report(self, start: date, end: date) -> list[VoidReportRow]:
        """Voids performed between ``start`` and ``end`` (inclusive dates)."""
        window_start = datetime.combine(start, time.min, tzinfo=timezone.utc)
        window_end = datetime.combine(end + timedelta(days=1), time.min, tzinfo=timezone.utc)
        rows = self.session.execute(
            select(VoidAudit, LedgerTransaction.transaction_ref)
            .join(LedgerTransaction, LedgerTransaction.id == VoidAudit.transaction_id)
            .where(VoidAudit.voided_at >= window_start)
            .where(VoidAudit.voided_at < window_end)
            .order_by(VoidAudit.voided_at.desc())
        ).all()
        return [
            VoidReportRow(
                transaction_id=audit.transaction_id,
                transaction_ref=transaction_ref,
                student_id=audit.student_id,
                original_amount=audit.original_amount,
                void_reason=audit.void_reason,
                voided_by_id=audit.voided_by_id,
                voided_at=audit.voided_at,
                recovery_method=audit.recovery_method,
            )
            for audit, transaction_ref in rows
        ]
