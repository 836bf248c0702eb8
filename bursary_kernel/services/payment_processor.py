"""
PaymentProcessor -- records a fee payment end to end.

Responsibility:
    Validates a ``PaymentRequest``, allocates the money across the
    student's invoices oldest-due-first, books any excess as student credit,
    issues the receipt and transaction reference, posts the GL entry and
    audits the whole thing -- as one atomic unit of work.

Architecture position:
    Kernel > Services.  The entry point the bursar's desk (IPC layer) calls.
    Composes InvoiceValidator, CreditService, JournalWriter, SequenceService
    and AuditorService inside a single session transaction.

Invariants enforced:
    - Conservation: sum(allocations) + credited remainder == amount.
    - Oldest-due-first allocation; one PaymentAllocation per invoice
      touched, only for positive amounts.
    - Idempotency: a repeated ``idempotency_key`` returns the original
      transaction and writes nothing.
    - Duplicate guard: the same submission within the duplicate window
      returns the existing transaction.  The student row is locked before
      the check, so check and insert cannot interleave with another
      submission for the same student.
    - Approval gating: a supplied approval request must be APPROVED and
      cover the amount; above the configured threshold one is mandatory.

Failure modes:
    - Validation problems come back as ``PaymentResult(success=False)``
      and the transaction is rolled back.
    - PostingError (unbalanced or invalid GL posting) is raised and the
      whole payment is rolled back.

Audit relevance:
    PAYMENT_RECORDED audit event on ledger_transactions, plus the
    CREDIT_ADDED / JOURNAL_POSTED events of the collaborators.
"""

from datetime import timedelta

from sqlalchemy import func, select

from bursary_kernel.domain.allocation import allocate_oldest_first
from bursary_kernel.domain.approval import ApprovalStatus
from bursary_kernel.domain.dtos import (
    AllocatedInvoice,
    PaymentMethod,
    PaymentRequest,
    PaymentResult,
)
from bursary_kernel.domain.invoice_status import (
    OPEN_INVOICE_STATUSES,
    derive_invoice_status,
)
from bursary_kernel.domain.references import ReferencePrefix, format_reference
from bursary_kernel.logging_config import get_logger
from bursary_kernel.models.approval import ApprovalRequestModel
from bursary_kernel.models.audit_event import AuditAction
from bursary_kernel.models.credit import CreditTransaction, CreditType
from bursary_kernel.models.invoice import FeeInvoice
from bursary_kernel.models.journal import JournalEntryType
from bursary_kernel.models.ledger import (
    DebitCredit,
    LedgerTransaction,
    PaymentAllocation,
    Receipt,
    TransactionType,
)
from bursary_kernel.models.student import Student, User
from bursary_kernel.services.base import BaseService
from bursary_kernel.services.credit_service import CreditService
from bursary_kernel.services.invoice_validator import (
    MSG_AMOUNT_NOT_POSITIVE,
    InvoiceValidator,
    applied_message,
    is_positive_amount,
)
from bursary_kernel.services.journal_writer import JournalLineSpec
from bursary_kernel.services.sequence_service import SequenceService

logger = get_logger("services.payment_processor")

REQUIRED_PAYMENT_FIELDS = (
    "student_id",
    "amount",
    "transaction_date",
    "payment_method",
    "recorded_by_id",
)

MSG_FUTURE_DATE = "Transaction date cannot be in the future"
MSG_REPLAY = "Idempotent replay detected; returning existing transaction"
MSG_DUPLICATE = "Duplicate payment request detected; returning existing transaction"
MSG_STUDENT_NOT_FOUND = "Student not found."
MSG_USER_NOT_FOUND = "Recording user not found."
MSG_INVOICE_NOT_FOUND = "Invoice not found."
MSG_INVOICE_WRONG_STUDENT = "Invoice does not belong to the selected student."


class PaymentProcessor(BaseService):
    """
    Records fee payments.

    Contract:
        ``record_payment`` never raises for bad input; it returns a failure
        result.  It raises only for integrity errors (GL posting, storage).
    """

    log_name = "payment"

    def __init__(self, session, clock=None, policy=None, auto_commit=True, auditor=None):
        super().__init__(session, clock, policy, auto_commit, auditor)
        self._validator = InvoiceValidator(session, self._policy)
        self._credits = CreditService(
            session, self._clock, self._policy, auto_commit=False, auditor=self._auditor,
        )
        self._sequences = SequenceService(session)

    def record_payment(self, request: PaymentRequest) -> PaymentResult:
        """
        Record a fee payment.

        Postconditions (on success, not replay/duplicate):
            - One FEE_PAYMENT LedgerTransaction, one Receipt, zero or more
              PaymentAllocations, at most one CREDIT_RECEIVED row, one
              balanced FEE_PAYMENT journal entry and a PAYMENT_RECORDED
              audit event are committed together.
        """
        return self._atomic(
            "payment",
            lambda: self._record_payment(request),
            log_context={
                "student_id": request.student_id,
                "actor_id": request.recorded_by_id,
            },
            extra={
                "amount": request.amount,
                "payment_method": str(getattr(request.payment_method, "value", request.payment_method)),
            },
        )

    def _record_payment(self, request: PaymentRequest) -> PaymentResult:
        # 1. Shape of the request
        missing = [
            name for name in REQUIRED_PAYMENT_FIELDS
            if getattr(request, name) in (None, "")
        ]
        if missing:
            return PaymentResult.failure(
                f"Missing required payment fields: {', '.join(missing)}"
            )
        if not is_positive_amount(request.amount):
            return PaymentResult.failure(MSG_AMOUNT_NOT_POSITIVE)
        try:
            method = PaymentMethod(request.payment_method)
        except ValueError:
            return PaymentResult.failure(f"Invalid payment method: {request.payment_method}")

        # 2. Date
        if request.transaction_date > self._clock.today():
            return PaymentResult.failure(MSG_FUTURE_DATE)

        # 3. Idempotency
        idempotency_key = (request.idempotency_key or "").strip() or None
        if idempotency_key is not None:
            max_length = self._policy.idempotency_key_max_length
            if len(idempotency_key) > max_length:
                return PaymentResult.failure(
                    f"Idempotency key is too long (max {max_length} characters)"
                )
            existing = self.session.execute(
                select(LedgerTransaction)
                .where(LedgerTransaction.idempotency_key == idempotency_key)
            ).scalar_one_or_none()
            if existing is not None:
                logger.info(
                    "payment_idempotent_replay",
                    extra={"transaction_ref": existing.transaction_ref},
                )
                return self._existing_result(existing, MSG_REPLAY, is_replay=True)

        # 4. Parties
        student = self._lock(Student, request.student_id)
        if student is None:
            return PaymentResult.failure(MSG_STUDENT_NOT_FOUND)
        recorder = self.session.get(User, request.recorded_by_id)
        if recorder is None or not recorder.is_active:
            return PaymentResult.failure(MSG_USER_NOT_FOUND)

        amount = request.amount

        # 5. Approval gating
        approval_error = self._check_approval(request, method)
        if approval_error is not None:
            return PaymentResult.failure(approval_error)

        # 6. Targeted invoice
        if request.invoice_id is not None:
            invoice = self._lock(FeeInvoice, request.invoice_id)
            if invoice is None:
                return PaymentResult.failure(MSG_INVOICE_NOT_FOUND)
            if invoice.student_id != student.id:
                return PaymentResult.failure(MSG_INVOICE_WRONG_STUDENT)
            if invoice.status not in {s.value for s in OPEN_INVOICE_STATUSES}:
                return PaymentResult.failure(
                    f"Invoice {invoice.invoice_number} is not open for payment ({invoice.status})"
                )

        # 7. Duplicate submission
        duplicate = self._find_duplicate(request, method)
        if duplicate is not None:
            logger.warning(
                "payment_duplicate_detected",
                extra={"transaction_ref": duplicate.transaction_ref},
            )
            return self._existing_result(duplicate, MSG_DUPLICATE, is_duplicate=True)

        # 8. Validate against open invoices
        validation = self._validator.validate(
            student.id, amount, invoice_id=request.invoice_id, lock=True,
        )
        if not validation.valid:
            return PaymentResult.failure(validation.message)

        # 9. Persist the transaction and its allocations
        now = self._clock.now()
        today = self._clock.today()
        txn_seq = self._sequences.next_value(SequenceService.LEDGER_TRANSACTION)
        transaction_ref = format_reference(
            ReferencePrefix.TRANSACTION, today, txn_seq, with_nonce=True,
        )

        txn = LedgerTransaction(
            transaction_ref=transaction_ref,
            transaction_type=TransactionType.FEE_PAYMENT.value,
            amount=amount,
            debit_credit=DebitCredit.CREDIT.value,
            student_id=student.id,
            invoice_id=request.invoice_id,
            payment_method=method.value,
            payment_reference=request.payment_reference,
            description=request.description or "Fee payment",
            transaction_date=request.transaction_date,
            recorded_by_id=recorder.id,
            idempotency_key=idempotency_key,
            approval_request_id=request.approval_request_id,
            created_at=now,
        )
        self.session.add(txn)
        self.session.flush()

        plan = allocate_oldest_first(validation.invoices, amount)
        allocations: list[AllocatedInvoice] = []
        for line in plan.lines:
            invoice = self.session.get(FeeInvoice, line.invoice_id)
            invoice.amount_paid += line.amount
            invoice.status = derive_invoice_status(
                invoice.total_amount, invoice.amount_paid, invoice.status,
            ).value
            self.session.add(
                PaymentAllocation(
                    transaction_id=txn.id,
                    invoice_id=invoice.id,
                    applied_amount=line.amount,
                    created_at=now,
                )
            )
            allocations.append(
                AllocatedInvoice(
                    invoice_id=invoice.id,
                    invoice_number=invoice.invoice_number,
                    applied_amount=line.amount,
                    status=invoice.status,
                )
            )
        self.session.flush()

        # 10. Remainder becomes student credit
        if plan.remainder > 0:
            self._credits.record_credit(
                student,
                plan.remainder,
                CreditType.CREDIT_RECEIVED,
                recorder.id,
                notes=f"Overpayment from transaction {transaction_ref}",
                source_transaction_id=txn.id,
            )

        # 11. Receipt
        receipt_seq = self._sequences.next_value(SequenceService.RECEIPT)
        receipt = Receipt(
            receipt_number=format_reference(ReferencePrefix.RECEIPT, today, receipt_seq),
            transaction_id=txn.id,
            student_id=student.id,
            amount=amount,
            receipt_date=request.transaction_date,
            payment_method=method.value,
            payment_reference=request.payment_reference,
            created_by_id=recorder.id,
            created_at=now,
        )
        self.session.add(receipt)
        self.session.flush()

        # 12. GL posting
        accounts = self._policy.accounts
        lines = [
            JournalLineSpec.dr(
                accounts.cash if method == PaymentMethod.CASH else accounts.bank,
                amount,
                f"{method.value} received",
            ),
        ]
        if plan.allocated > 0:
            lines.append(JournalLineSpec.cr(accounts.accounts_receivable, plan.allocated, "Fees settled"))
        if plan.remainder > 0:
            lines.append(JournalLineSpec.cr(accounts.student_credit, plan.remainder, "Overpayment credited"))
        self._journal.post_entry(
            entry_type=JournalEntryType.FEE_PAYMENT,
            entry_date=request.transaction_date,
            lines=lines,
            description=f"Fee payment {transaction_ref} from {student.admission_number}",
            created_by_id=recorder.id,
            student_id=student.id,
            source_ledger_txn_id=txn.id,
        )

        # 13. Audit
        self._auditor.record_change(
            entity_type=LedgerTransaction.__tablename__,
            entity_id=txn.id,
            action=AuditAction.PAYMENT_RECORDED,
            actor_id=recorder.id,
            new_values={
                "transaction_ref": transaction_ref,
                "receipt_number": receipt.receipt_number,
                "student_id": student.id,
                "amount": amount,
                "payment_method": method.value,
                "transaction_date": request.transaction_date,
                "allocations": [
                    {"invoice_id": a.invoice_id, "amount": a.applied_amount}
                    for a in allocations
                ],
                "credited_amount": plan.remainder,
            },
        )

        logger.info(
            "payment_recorded",
            extra={
                "transaction_ref": transaction_ref,
                "receipt_number": receipt.receipt_number,
                "allocated": plan.allocated,
                "credited": plan.remainder,
                "invoice_count": plan.invoice_count,
            },
        )

        # The validator counts candidate invoices; report the ones actually paid
        message = applied_message(plan.invoice_count) if plan.remainder == 0 else validation.message
        return PaymentResult(
            success=True,
            message=message,
            transaction_id=txn.id,
            transaction_ref=transaction_ref,
            receipt_number=receipt.receipt_number,
            allocations=tuple(allocations),
            credited_amount=plan.remainder,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _check_approval(self, request: PaymentRequest, method: PaymentMethod) -> str | None:
        approval_request_id = request.approval_request_id
        amount = request.amount
        threshold = self._policy.payment_approval_threshold
        if approval_request_id is None:
            if threshold is not None and amount >= threshold:
                return f"Payments of {threshold} or more require an approved approval request"
            return None

        approval = self._lock(ApprovalRequestModel, approval_request_id)
        if approval is None:
            return "Approval request not found"
        if approval.request_type != self._policy.payment_request_type:
            return (
                f"Approval request is for {approval.request_type}; "
                f"payment requires a {self._policy.payment_request_type} approval"
            )
        if approval.status != ApprovalStatus.APPROVED.value:
            return f"Approval request is {approval.status}; payment requires an approved request"
        if approval.amount < amount:
            return (
                f"Approved amount {approval.amount} is less than the payment amount {amount}"
            )

        # One approval authorises one payment; a void releases it
        consumer = self.session.execute(
            select(LedgerTransaction)
            .where(LedgerTransaction.approval_request_id == approval.id)
            .where(LedgerTransaction.transaction_type == TransactionType.FEE_PAYMENT.value)
            .where(LedgerTransaction.is_voided.is_(False))
            .limit(1)
        ).scalar_one_or_none()
        if consumer is not None:
            duplicate = self._find_duplicate(request, method)
            if duplicate is None or duplicate.id != consumer.id:
                return (
                    f"Approval request has already been used by transaction "
                    f"{consumer.transaction_ref}"
                )
        return None

    def _find_duplicate(
        self, request: PaymentRequest, method: PaymentMethod,
    ) -> LedgerTransaction | None:
        window_start = self._clock.now() - timedelta(
            seconds=self._policy.duplicate_window_seconds,
        )
        return self.session.execute(
            select(LedgerTransaction)
            .where(LedgerTransaction.transaction_type == TransactionType.FEE_PAYMENT.value)
            .where(LedgerTransaction.student_id == request.student_id)
            .where(LedgerTransaction.amount == request.amount)
            .where(LedgerTransaction.transaction_date == request.transaction_date)
            .where(LedgerTransaction.payment_reference == request.payment_reference)
            .where(LedgerTransaction.payment_method == method.value)
            .where(LedgerTransaction.recorded_by_id == request.recorded_by_id)
            .where(LedgerTransaction.is_voided.is_(False))
            .where(LedgerTransaction.created_at >= window_start)
            .order_by(LedgerTransaction.created_at.desc())
            .limit(1)
        ).scalar_one_or_none()

    def _existing_result(
        self,
        txn: LedgerTransaction,
        message: str,
        is_replay: bool = False,
        is_duplicate: bool = False,
    ) -> PaymentResult:
        receipt = self.session.execute(
            select(Receipt).where(Receipt.transaction_id == txn.id)
        ).scalar_one_or_none()
        rows = self.session.execute(
            select(PaymentAllocation, FeeInvoice)
            .join(FeeInvoice, FeeInvoice.id == PaymentAllocation.invoice_id)
            .where(PaymentAllocation.transaction_id == txn.id)
            .order_by(FeeInvoice.due_date, FeeInvoice.invoice_number)
        ).all()
        credited = self.session.execute(
            select(func.coalesce(func.sum(CreditTransaction.amount), 0))
            .where(CreditTransaction.source_transaction_id == txn.id)
            .where(CreditTransaction.transaction_type == CreditType.CREDIT_RECEIVED.value)
        ).scalar_one()
        return PaymentResult(
            success=True,
            message=message,
            transaction_id=txn.id,
            transaction_ref=txn.transaction_ref,
            receipt_number=receipt.receipt_number if receipt else None,
            allocations=tuple(
                AllocatedInvoice(
                    invoice_id=invoice.id,
                    invoice_number=invoice.invoice_number,
                    applied_amount=allocation.applied_amount,
                    status=invoice.status,
                )
                for allocation, invoice in rows
            ),
            credited_amount=int(credited),
            is_replay=is_replay,
            is_duplicate=is_duplicate,
        )
