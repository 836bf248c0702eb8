"""
InvoiceService -- issues and cancels fee invoices.

Responsibility:
    Creates a fee invoice with its line items, bills it to the GL
    (DR accounts receivable / CR revenue per item) and, when the policy
    allows, settles it immediately from the student's stored credit.
    Cancels unpaid invoices.

Architecture position:
    Kernel > Services.  Atomic public operations ``create_invoice`` and
    ``cancel_invoice``.  Drives CreditService with ``auto_commit=False`` so
    the credit application shares the invoice's transaction.

Invariants enforced:
    - total_amount == sum(item amounts), every item amount > 0.
    - due_date is not before invoice_date.
    - Duplicate guard: an identical request from the same user within the
      duplicate window returns the existing invoice.
    - Only an invoice with nothing paid against it can be cancelled.

Audit relevance:
    INVOICE_CREATED / INVOICE_CANCELLED audit events; the FEE_INVOICE
    journal entry carries ``source_invoice_id``.
"""

from collections import defaultdict
from datetime import timedelta
from uuid import UUID

from sqlalchemy import select

from bursary_kernel.domain.dtos import InvoiceRequest, InvoiceResult
from bursary_kernel.domain.invoice_status import InvoiceStatus
from bursary_kernel.domain.references import ReferencePrefix, format_reference
from bursary_kernel.logging_config import get_logger
from bursary_kernel.models.audit_event import AuditAction
from bursary_kernel.models.invoice import FeeInvoice, InvoiceItem
from bursary_kernel.models.journal import JournalEntryType
from bursary_kernel.models.student import Student, User
from bursary_kernel.services.base import BaseService
from bursary_kernel.services.credit_service import CreditService
from bursary_kernel.services.invoice_validator import is_positive_amount
from bursary_kernel.services.journal_writer import JournalLineSpec
from bursary_kernel.services.sequence_service import SequenceService

logger = get_logger("services.invoice")

MSG_DUPLICATE = "Duplicate invoice request detected; returning existing invoice"


class InvoiceService(BaseService):
    """Creates and cancels fee invoices."""

    log_name = "invoice"

    def __init__(self, session, clock=None, policy=None, auto_commit=True, auditor=None):
        super().__init__(session, clock, policy, auto_commit, auditor)
        self._credits = CreditService(
            session, self._clock, self._policy, auto_commit=False, auditor=self._auditor,
        )
        self._sequences = SequenceService(session)

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def create_invoice(self, request: InvoiceRequest) -> InvoiceResult:
        return self._atomic(
            "invoice_create",
            lambda: self._create_invoice(request),
            log_context={"student_id": request.student_id, "actor_id": request.created_by_id},
            extra={"item_count": len(request.items), "term": request.term},
        )

    def _create_invoice(self, request: InvoiceRequest) -> InvoiceResult:
        missing = [
            name for name in ("student_id", "invoice_date", "due_date", "created_by_id")
            if getattr(request, name) is None
        ]
        if missing:
            return InvoiceResult.failure(
                f"Missing required invoice fields: {', '.join(missing)}"
            )
        if not request.items:
            return InvoiceResult.failure("Invoice must have at least one item")
        for item in request.items:
            if not is_positive_amount(item.amount):
                return InvoiceResult.failure(
                    f"Invoice item amount must be greater than zero: {item.description}"
                )
        if request.due_date < request.invoice_date:
            return InvoiceResult.failure("Due date cannot be before the invoice date")

        student = self._lock(Student, request.student_id)
        if student is None:
            return InvoiceResult.failure("Student not found.")
        creator = self.session.get(User, request.created_by_id)
        if creator is None or not creator.is_active:
            return InvoiceResult.failure("Recording user not found.")

        total = sum(item.amount for item in request.items)

        duplicate = self._find_duplicate(request, total)
        if duplicate is not None:
            logger.warning(
                "invoice_duplicate_detected",
                extra={"invoice_number": duplicate.invoice_number},
            )
            return InvoiceResult(
                success=True,
                message=MSG_DUPLICATE,
                invoice_id=duplicate.id,
                invoice_number=duplicate.invoice_number,
                total_amount=duplicate.total_amount,
                is_duplicate=True,
            )

        now = self._clock.now()
        invoice_number = format_reference(
            ReferencePrefix.INVOICE,
            request.invoice_date,
            self._sequences.next_value(SequenceService.INVOICE),
        )
        invoice = FeeInvoice(
            invoice_number=invoice_number,
            student_id=student.id,
            term=request.term,
            invoice_date=request.invoice_date,
            due_date=request.due_date,
            total_amount=total,
            amount_paid=0,
            status=InvoiceStatus.OUTSTANDING.value,
            description=request.description,
            created_by_id=creator.id,
            created_at=now,
        )
        self.session.add(invoice)
        self.session.flush()

        for number, item in enumerate(request.items, start=1):
            self.session.add(
                InvoiceItem(
                    invoice_id=invoice.id,
                    line_number=number,
                    description=item.description,
                    amount=item.amount,
                    revenue_account_code=item.revenue_account_code,
                )
            )
        self.session.flush()

        # GL: receivable against revenue, one credit line per revenue account
        accounts = self._policy.accounts
        revenue: dict[str, int] = defaultdict(int)
        for item in request.items:
            revenue[item.revenue_account_code or accounts.default_revenue] += item.amount
        self._journal.post_entry(
            entry_type=JournalEntryType.FEE_INVOICE,
            entry_date=request.invoice_date,
            lines=[
                JournalLineSpec.dr(accounts.accounts_receivable, total, "Fees billed"),
                *(
                    JournalLineSpec.cr(code, amount, "Fee revenue")
                    for code, amount in sorted(revenue.items())
                ),
            ],
            description=f"Invoice {invoice_number} for {student.admission_number}",
            created_by_id=creator.id,
            student_id=student.id,
            source_invoice_id=invoice.id,
        )

        self._auditor.record_change(
            entity_type=FeeInvoice.__tablename__,
            entity_id=invoice.id,
            action=AuditAction.INVOICE_CREATED,
            actor_id=creator.id,
            new_values={
                "invoice_number": invoice_number,
                "student_id": student.id,
                "term": request.term,
                "total_amount": total,
                "due_date": request.due_date,
                "items": [
                    {"description": item.description, "amount": item.amount}
                    for item in request.items
                ],
            },
        )
        logger.info(
            "invoice_created",
            extra={"invoice_number": invoice_number, "total_amount": total},
        )

        credit_applied = 0
        if self._policy.auto_apply_credit_on_invoice:
            applications = self._credits.apply_available_credit(student, creator.id)
            credit_applied = sum(a.applied_amount for a in applications)

        return InvoiceResult(
            success=True,
            message="Invoice created",
            invoice_id=invoice.id,
            invoice_number=invoice_number,
            total_amount=total,
            credit_applied=credit_applied,
        )

    def _find_duplicate(self, request: InvoiceRequest, total: int) -> FeeInvoice | None:
        window_start = self._clock.now() - timedelta(
            seconds=self._policy.duplicate_window_seconds,
        )
        candidates = self.session.execute(
            select(FeeInvoice)
            .where(FeeInvoice.student_id == request.student_id)
            .where(FeeInvoice.term == request.term)
            .where(FeeInvoice.invoice_date == request.invoice_date)
            .where(FeeInvoice.due_date == request.due_date)
            .where(FeeInvoice.total_amount == total)
            .where(FeeInvoice.created_by_id == request.created_by_id)
            .where(FeeInvoice.status != InvoiceStatus.CANCELLED.value)
            .where(FeeInvoice.created_at >= window_start)
            .order_by(FeeInvoice.created_at.desc())
        ).scalars()

        wanted = sorted((item.description, item.amount) for item in request.items)
        for candidate in candidates:
            existing = sorted(
                (item.description, item.amount)
                for item in self.session.execute(
                    select(InvoiceItem).where(InvoiceItem.invoice_id == candidate.id)
                ).scalars()
            )
            if existing == wanted:
                return candidate
        return None

    # ------------------------------------------------------------------
    # Cancel
    # ------------------------------------------------------------------

    def cancel_invoice(
        self,
        invoice_id: UUID,
        reason: str | None,
        actor_id: UUID,
    ) -> InvoiceResult:
        return self._atomic(
            "invoice_cancel",
            lambda: self._cancel_invoice(invoice_id, reason, actor_id),
            log_context={"actor_id": actor_id},
            extra={"invoice_id": str(invoice_id)},
        )

    def _cancel_invoice(
        self,
        invoice_id: UUID,
        reason: str | None,
        actor_id: UUID,
    ) -> InvoiceResult:
        reason = (reason or "").strip()
        if not reason:
            return InvoiceResult.failure("Cancellation reason is required")
        actor = self.session.get(User, actor_id)
        if actor is None or not actor.is_active:
            return InvoiceResult.failure("Recording user not found.")

        invoice = self._lock(FeeInvoice, invoice_id)
        if invoice is None:
            return InvoiceResult.failure("Invoice not found.")
        if invoice.status == InvoiceStatus.CANCELLED.value:
            return InvoiceResult.failure("Invoice is already cancelled")
        if invoice.amount_paid > 0:
            return InvoiceResult.failure(
                "Invoice has payments applied; void the payments before cancelling"
            )

        old_status = invoice.status
        invoice.status = InvoiceStatus.CANCELLED.value
        invoice.cancelled_reason = reason
        invoice.cancelled_by_id = actor.id
        invoice.cancelled_at = self._clock.now()
        self.session.flush()

        self._journal.void_entries_for_invoice(invoice.id, reason, actor.id)

        self._auditor.record_change(
            entity_type=FeeInvoice.__tablename__,
            entity_id=invoice.id,
            action=AuditAction.INVOICE_CANCELLED,
            actor_id=actor.id,
            old_values={"status": old_status},
            new_values={"status": invoice.status, "cancelled_reason": reason},
        )
        logger.info("invoice_cancelled", extra={"invoice_number": invoice.invoice_number})

        return InvoiceResult(
            success=True,
            message="Invoice cancelled",
            invoice_id=invoice.id,
            invoice_number=invoice.invoice_number,
            total_amount=invoice.total_amount,
        )
