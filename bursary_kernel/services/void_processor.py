"""
VoidProcessor -- voids a recorded fee payment.

Responsibility:
    Undoes the effects of a FEE_PAYMENT without deleting anything: the
    allocations are reversed (invoice balances restored), the credited
    remainder is taken back, the payment and its receipt are flagged
    voided, a REFUND ledger row is written, the GL entry is voided and a
    forensic snapshot is kept in ``void_audits``.

Architecture position:
    Kernel > Services.  Atomic public operation ``void_payment``.

Invariants enforced:
    - Reversibility: after a void every touched invoice has the
      ``amount_paid`` it had before the payment (floored at zero).
    - A payment can be voided once.  The ledger row is locked, so two
      concurrent voids cannot both succeed.
    - Credit taken back never exceeds the student's current credit
      balance, so the balance cannot go negative.
    - Nothing is deleted: allocations get ``reversed_at``, the payment
      keeps its row.

Audit relevance:
    PAYMENT_VOIDED audit event plus the VoidAudit snapshot, which holds
    enough of the pre-void state to re-key the payment if the void was a
    mistake.
"""

from sqlalchemy import select

from bursary_kernel.domain.dtos import RestoredInvoice, VoidRequest, VoidResult
from bursary_kernel.domain.invoice_status import derive_invoice_status
from bursary_kernel.domain.references import ReferencePrefix, format_reference
from bursary_kernel.logging_config import get_logger
from bursary_kernel.models.audit_event import AuditAction
from bursary_kernel.models.credit import CreditTransaction, CreditType
from bursary_kernel.models.invoice import FeeInvoice
from bursary_kernel.models.ledger import (
    DebitCredit,
    LedgerTransaction,
    PaymentAllocation,
    Receipt,
    TransactionType,
    VoidAudit,
)
from bursary_kernel.models.student import Student, User
from bursary_kernel.services.base import BaseService
from bursary_kernel.services.credit_service import CreditService
from bursary_kernel.services.sequence_service import SequenceService

logger = get_logger("services.void_processor")

MSG_REASON_REQUIRED = "Void reason is required"
MSG_ACTOR_REQUIRED = "Voiding user is required"
MSG_ACTOR_NOT_FOUND = "Voiding user not found."
MSG_NOT_FOUND_OR_VOIDED = "Transaction not found or already voided"
MSG_ONLY_FEE_PAYMENTS = "Only fee payments can be voided"


class VoidProcessor(BaseService):
    """Voids fee payments."""

    log_name = "void"

    def __init__(self, session, clock=None, policy=None, auto_commit=True, auditor=None):
        super().__init__(session, clock, policy, auto_commit, auditor)
        self._credits = CreditService(
            session, self._clock, self._policy, auto_commit=False, auditor=self._auditor,
        )
        self._sequences = SequenceService(session)

    def void_payment(self, request: VoidRequest) -> VoidResult:
        """Void a fee payment and restore the balances it changed."""
        return self._atomic(
            "payment_void",
            lambda: self._void_payment(request),
            log_context={
                "transaction_id": request.transaction_id,
                "actor_id": request.voided_by_id,
            },
        )

    def _void_payment(self, request: VoidRequest) -> VoidResult:
        reason = (request.void_reason or "").strip()
        if not reason:
            return VoidResult.failure(MSG_REASON_REQUIRED)
        if request.voided_by_id is None:
            return VoidResult.failure(MSG_ACTOR_REQUIRED)
        actor = self.session.get(User, request.voided_by_id)
        if actor is None or not actor.is_active:
            return VoidResult.failure(MSG_ACTOR_NOT_FOUND)

        txn = self._lock(LedgerTransaction, request.transaction_id)
        if txn is None or txn.is_voided:
            return VoidResult.failure(MSG_NOT_FOUND_OR_VOIDED)
        if txn.transaction_type != TransactionType.FEE_PAYMENT.value:
            return VoidResult.failure(MSG_ONLY_FEE_PAYMENTS)

        now = self._clock.now()
        allocations = list(
            self.session.execute(
                select(PaymentAllocation)
                .where(PaymentAllocation.transaction_id == txn.id)
                .where(PaymentAllocation.reversed_at.is_(None))
                .order_by(PaymentAllocation.created_at)
            ).scalars()
        )
        receipt = self.session.execute(
            select(Receipt).where(Receipt.transaction_id == txn.id)
        ).scalar_one_or_none()
        received = list(
            self.session.execute(
                select(CreditTransaction)
                .where(CreditTransaction.source_transaction_id == txn.id)
                .where(CreditTransaction.transaction_type == CreditType.CREDIT_RECEIVED.value)
                .order_by(CreditTransaction.created_at)
            ).scalars()
        )
        credited = sum(c.amount for c in received)

        self.session.add(
            VoidAudit(
                transaction_id=txn.id,
                transaction_type=txn.transaction_type,
                original_amount=txn.amount,
                student_id=txn.student_id,
                description=txn.description,
                void_reason=reason,
                voided_by_id=actor.id,
                voided_at=now,
                recovery_method=request.recovery_method,
                snapshot=self._snapshot(txn, allocations, receipt, credited),
            )
        )

        # Restore invoice balances
        restored: list[RestoredInvoice] = []
        for allocation in allocations:
            invoice = self._lock(FeeInvoice, allocation.invoice_id)
            invoice.amount_paid = max(0, invoice.amount_paid - allocation.applied_amount)
            invoice.status = derive_invoice_status(
                invoice.total_amount, invoice.amount_paid, invoice.status,
            ).value
            allocation.reversed_at = now
            allocation.reversed_by_id = actor.id
            restored.append(
                RestoredInvoice(
                    invoice_id=invoice.id,
                    invoice_number=invoice.invoice_number,
                    amount_reversed=allocation.applied_amount,
                    amount_paid=invoice.amount_paid,
                    status=invoice.status,
                )
            )
        self.session.flush()

        # Take back the credited remainder, as far as it is still unapplied
        credit_reversed = 0
        student = self._lock(Student, txn.student_id)
        if received and student is not None:
            # Credit already given back through CreditService.reverse_credit
            refunded = self._credits.refunded_amounts([c.id for c in received])
            outstanding = [(c, c.amount - refunded.get(c.id, 0)) for c in received]
            still_credited = sum(amount for _, amount in outstanding if amount > 0)
            available = min(
                self._credits.get_credit_balance(student.id), student.credit_balance,
            )
            remaining = min(still_credited, available)
            for credit, amount in outstanding:
                take = min(amount, remaining)
                if take <= 0:
                    continue
                self._credits.record_credit(
                    student,
                    take,
                    CreditType.CREDIT_REFUNDED,
                    actor.id,
                    notes=f"Void of transaction {txn.transaction_ref}",
                    source_transaction_id=txn.id,
                    reverses_credit_id=credit.id,
                )
                credit_reversed += take
                remaining -= take
            if credit_reversed < still_credited:
                logger.warning(
                    "payment_void_credit_shortfall",
                    extra={
                        "transaction_ref": txn.transaction_ref,
                        "credited": still_credited,
                        "reversed": credit_reversed,
                    },
                )

        # Flag the payment and its receipt
        txn.is_voided = True
        txn.voided_reason = reason
        txn.voided_by_id = actor.id
        txn.voided_at = now
        if receipt is not None:
            receipt.is_voided = True
        self.session.flush()

        # Reversal row
        today = self._clock.today()
        reversal_ref = format_reference(
            ReferencePrefix.VOID, today, self._sequences.next_value(SequenceService.VOID),
        )
        self.session.add(
            LedgerTransaction(
                transaction_ref=reversal_ref,
                transaction_type=TransactionType.REFUND.value,
                amount=txn.amount,
                debit_credit=DebitCredit.DEBIT.value,
                student_id=txn.student_id,
                invoice_id=txn.invoice_id,
                payment_method=txn.payment_method,
                payment_reference=txn.payment_reference,
                description=f"Void of {txn.transaction_ref}: {reason}",
                transaction_date=today,
                recorded_by_id=actor.id,
                reversal_of_id=txn.id,
                created_at=now,
            )
        )
        self.session.flush()

        # GL: the payment entry no longer counts
        self._journal.void_entries_for_source(txn.id, reason, actor.id)

        self._auditor.record_change(
            entity_type=LedgerTransaction.__tablename__,
            entity_id=txn.id,
            action=AuditAction.PAYMENT_VOIDED,
            actor_id=actor.id,
            old_values={"is_voided": False},
            new_values={
                "is_voided": True,
                "voided_reason": reason,
                "reversal_ref": reversal_ref,
                "restored_invoices": [
                    {"invoice_id": r.invoice_id, "amount_reversed": r.amount_reversed}
                    for r in restored
                ],
                "credit_reversed": credit_reversed,
            },
        )

        logger.info(
            "payment_voided",
            extra={
                "transaction_ref": txn.transaction_ref,
                "reversal_ref": reversal_ref,
                "invoices_restored": len(restored),
                "credit_reversed": credit_reversed,
            },
        )

        return VoidResult(
            success=True,
            message="Payment voided successfully",
            reversal_ref=reversal_ref,
            restored_invoices=tuple(restored),
            credit_reversed=credit_reversed,
        )

    @staticmethod
    def _snapshot(
        txn: LedgerTransaction,
        allocations: list[PaymentAllocation],
        receipt: Receipt | None,
        credited: int,
    ) -> dict:
        return {
            "transaction": {
                "transaction_ref": txn.transaction_ref,
                "amount": txn.amount,
                "student_id": str(txn.student_id) if txn.student_id else None,
                "invoice_id": str(txn.invoice_id) if txn.invoice_id else None,
                "payment_method": txn.payment_method,
                "payment_reference": txn.payment_reference,
                "transaction_date": txn.transaction_date.isoformat(),
                "recorded_by_id": str(txn.recorded_by_id),
            },
            "allocations": [
                {"invoice_id": str(a.invoice_id), "applied_amount": a.applied_amount}
                for a in allocations
            ],
            "receipt_number": receipt.receipt_number if receipt else None,
            "credited_amount": credited,
        }
