"""
CreditService -- student credit: overpayments, manual credits, application.

Responsibility:
    Owns every movement of a student's unapplied credit.  Overpayment
    remainders (from PaymentProcessor) and manual credits become
    CREDIT_RECEIVED rows; available credit is consumed against outstanding
    invoices as CREDIT_APPLIED rows; voids and reversals write
    CREDIT_REFUNDED rows.  Keeps the ``Student.credit_balance`` cache in
    step with the rows.

Architecture position:
    Kernel > Services.  Public operations (``add_credit``,
    ``apply_credits``, ``reverse_credit``) are atomic units.  The
    flush-only building blocks (``record_credit``,
    ``apply_available_credit``) are used inside the transactions of
    PaymentProcessor, VoidProcessor and InvoiceService.

Invariants enforced:
    - Authoritative balance = sum(RECEIVED) - sum(APPLIED) - sum(REFUNDED).
    - A credit application never exceeds the available balance or the
      invoice's outstanding balance.
    - Only CREDIT_RECEIVED rows can be reversed, and only once.

Audit relevance:
    CREDIT_ADDED / CREDIT_APPLIED / CREDIT_REVERSED audit events.  GL:
    manual credit DR credit adjustments / CR student credit; application
    DR student credit / CR accounts receivable.
"""

from uuid import UUID

from sqlalchemy import case, func, select

from bursary_kernel.domain.allocation import allocate_oldest_first
from bursary_kernel.domain.dtos import AllocatedInvoice, CreditResult, PaymentMethod
from bursary_kernel.domain.invoice_status import derive_invoice_status
from bursary_kernel.logging_config import get_logger
from bursary_kernel.models.audit_event import AuditAction
from bursary_kernel.models.credit import CREDIT_SIGN, CreditTransaction, CreditType
from bursary_kernel.models.journal import JournalEntryType
from bursary_kernel.models.ledger import LedgerTransaction
from bursary_kernel.models.student import Student, User
from bursary_kernel.services.base import BaseService
from bursary_kernel.services.invoice_validator import (
    is_positive_amount,
    load_open_invoices,
    to_invoice_balance,
)
from bursary_kernel.services.journal_writer import JournalLineSpec

logger = get_logger("services.credit")

MSG_NO_CREDIT = "No credit balance available for allocation"
MSG_NO_INVOICES = "No outstanding invoices to apply credit to"
MSG_ONLY_RECEIVED = "Only received credits can be reversed"
MSG_ALREADY_REVERSED = "Credit has already been reversed"


class CreditService(BaseService):
    """Records, applies and reverses student credit."""

    log_name = "credit"

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_credit_balance(self, student_id: UUID) -> int:
        """Net unapplied credit, derived from the credit transactions."""
        signed = case(
            (CreditTransaction.transaction_type == CreditType.CREDIT_RECEIVED.value,
             CreditTransaction.amount),
            else_=-CreditTransaction.amount,
        )
        total = self.session.execute(
            select(func.coalesce(func.sum(signed), 0))
            .where(CreditTransaction.student_id == student_id)
        ).scalar_one()
        return int(total)

    def list_credit_transactions(
        self, student_id: UUID, limit: int | None = None,
    ) -> list[CreditTransaction]:
        """Credit movements for a student, newest first."""
        stmt = (
            select(CreditTransaction)
            .where(CreditTransaction.student_id == student_id)
            .order_by(CreditTransaction.created_at.desc())
        )
        if limit is not None:
            stmt = stmt.limit(max(1, min(limit, 500)))
        return list(self.session.execute(stmt).scalars())

    def refunded_amounts(self, credit_ids: list[UUID]) -> dict[UUID, int]:
        """Amount already refunded against each received credit."""
        if not credit_ids:
            return {}
        rows = self.session.execute(
            select(
                CreditTransaction.reverses_credit_id,
                func.sum(CreditTransaction.amount),
            )
            .where(CreditTransaction.reverses_credit_id.in_(credit_ids))
            .group_by(CreditTransaction.reverses_credit_id)
        ).all()
        return {credit_id: int(total) for credit_id, total in rows}

    # ------------------------------------------------------------------
    # Building blocks (flush only, caller's transaction)
    # ------------------------------------------------------------------

    def record_credit(
        self,
        student: Student,
        amount: int,
        credit_type: CreditType,
        actor_id: UUID,
        notes: str | None = None,
        source_transaction_id: UUID | None = None,
        reference_invoice_id: UUID | None = None,
        reverses_credit_id: UUID | None = None,
    ) -> CreditTransaction:
        """
        Write one credit movement and adjust the cached balance.

        Preconditions:
            - ``student`` is locked by the caller.
            - ``amount`` > 0.
        """
        credit = CreditTransaction(
            student_id=student.id,
            amount=amount,
            transaction_type=credit_type.value,
            reference_invoice_id=reference_invoice_id,
            source_transaction_id=source_transaction_id,
            reverses_credit_id=reverses_credit_id,
            notes=notes,
            created_by_id=actor_id,
            created_at=self._clock.now(),
        )
        self.session.add(credit)

        old_balance = student.credit_balance
        student.credit_balance = max(0, old_balance + CREDIT_SIGN[credit_type] * amount)
        self.session.flush()

        action = {
            CreditType.CREDIT_RECEIVED: AuditAction.CREDIT_ADDED,
            CreditType.CREDIT_APPLIED: AuditAction.CREDIT_APPLIED,
            CreditType.CREDIT_REFUNDED: AuditAction.CREDIT_REVERSED,
        }[credit_type]
        self._auditor.record_change(
            entity_type=CreditTransaction.__tablename__,
            entity_id=credit.id,
            action=action,
            actor_id=actor_id,
            old_values={"credit_balance": old_balance},
            new_values={
                "student_id": student.id,
                "amount": amount,
                "transaction_type": credit_type.value,
                "reference_invoice_id": reference_invoice_id,
                "source_transaction_id": source_transaction_id,
                "credit_balance": student.credit_balance,
            },
        )
        return credit

    def apply_available_credit(
        self,
        student: Student,
        actor_id: UUID,
    ) -> tuple[AllocatedInvoice, ...]:
        """
        Consume the student's available credit against open invoices.

        Invoices are settled oldest due first.  Posts one CREDIT_APPLICATION
        journal entry for the total applied.  Returns the per-invoice
        applications (empty when there was nothing to do).
        """
        available = min(self.get_credit_balance(student.id), student.credit_balance)
        if available <= 0:
            return ()

        invoices = load_open_invoices(self.session, student.id, lock=True)
        if not invoices:
            return ()

        by_id = {inv.id: inv for inv in invoices}
        plan = allocate_oldest_first([to_invoice_balance(inv) for inv in invoices], available)

        applications: list[AllocatedInvoice] = []
        for line in plan.lines:
            invoice = by_id[line.invoice_id]
            invoice.amount_paid += line.amount
            invoice.status = derive_invoice_status(
                invoice.total_amount, invoice.amount_paid, invoice.status,
            ).value
            self.record_credit(
                student,
                line.amount,
                CreditType.CREDIT_APPLIED,
                actor_id,
                notes=f"Applied to invoice {invoice.invoice_number}",
                reference_invoice_id=invoice.id,
            )
            applications.append(
                AllocatedInvoice(
                    invoice_id=invoice.id,
                    invoice_number=invoice.invoice_number,
                    applied_amount=line.amount,
                    status=invoice.status,
                )
            )

        if plan.allocated > 0:
            accounts = self._policy.accounts
            self._journal.post_entry(
                entry_type=JournalEntryType.CREDIT_APPLICATION,
                entry_date=self._clock.today(),
                lines=[
                    JournalLineSpec.dr(accounts.student_credit, plan.allocated, "Student credit applied"),
                    JournalLineSpec.cr(accounts.accounts_receivable, plan.allocated, "Fees settled from credit"),
                ],
                description=(
                    f"Credit applied for student {student.admission_number}: "
                    f"{plan.allocated} to {plan.invoice_count} invoice(s)"
                ),
                created_by_id=actor_id,
                student_id=student.id,
            )

        logger.info(
            "credit_applied",
            extra={
                "student_id": str(student.id),
                "total_applied": plan.allocated,
                "invoices_affected": plan.invoice_count,
            },
        )
        return tuple(applications)

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def add_credit(
        self,
        student_id: UUID,
        amount: int,
        notes: str | None,
        created_by_id: UUID,
    ) -> CreditResult:
        """Grant a manual credit (bursary award, goodwill adjustment)."""
        return self._atomic(
            "credit_add",
            lambda: self._add_credit(student_id, amount, notes, created_by_id),
            log_context={"student_id": student_id, "actor_id": created_by_id},
            extra={"amount": amount},
        )

    def _add_credit(
        self,
        student_id: UUID,
        amount: int,
        notes: str | None,
        created_by_id: UUID,
    ) -> CreditResult:
        if not is_positive_amount(amount):
            return CreditResult.failure("Credit amount must be greater than zero")
        student = self._lock(Student, student_id)
        if student is None:
            return CreditResult.failure("Student not found.")
        if self.session.get(User, created_by_id) is None:
            return CreditResult.failure("Recording user not found.")

        credit = self.record_credit(
            student, amount, CreditType.CREDIT_RECEIVED, created_by_id,
            notes=notes or "Manual credit adjustment",
        )
        accounts = self._policy.accounts
        self._journal.post_entry(
            entry_type=JournalEntryType.CREDIT_ADJUSTMENT,
            entry_date=self._clock.today(),
            lines=[
                JournalLineSpec.dr(accounts.credit_adjustment_expense, amount, "Credit granted"),
                JournalLineSpec.cr(accounts.student_credit, amount, "Student credit"),
            ],
            description=f"Manual credit for student {student.admission_number}",
            created_by_id=created_by_id,
            student_id=student.id,
        )
        return CreditResult(
            success=True,
            message="Credit added",
            credit_id=credit.id,
            amount=amount,
            new_balance=student.credit_balance,
        )

    def apply_credits(self, student_id: UUID, actor_id: UUID) -> CreditResult:
        """Apply all available credit to the student's outstanding invoices."""
        return self._atomic(
            "credit_apply",
            lambda: self._apply_credits(student_id, actor_id),
            log_context={"student_id": student_id, "actor_id": actor_id},
        )

    def _apply_credits(self, student_id: UUID, actor_id: UUID) -> CreditResult:
        student = self._lock(Student, student_id)
        if student is None:
            return CreditResult.failure("Student not found.")
        if self.get_credit_balance(student.id) <= 0 or student.credit_balance <= 0:
            return CreditResult.failure(MSG_NO_CREDIT)
        if not load_open_invoices(self.session, student.id):
            return CreditResult.failure(MSG_NO_INVOICES)

        applications = self.apply_available_credit(student, actor_id)
        total = sum(a.applied_amount for a in applications)
        return CreditResult(
            success=True,
            message=f"Applied {total} credit to {len(applications)} invoice(s)",
            amount=total,
            new_balance=student.credit_balance,
            applications=applications,
        )

    def reverse_credit(
        self,
        credit_transaction_id: UUID,
        reason: str | None,
        actor_id: UUID,
    ) -> CreditResult:
        """Reverse a received credit that should not have been granted."""
        return self._atomic(
            "credit_reverse",
            lambda: self._reverse_credit(credit_transaction_id, reason, actor_id),
            log_context={"actor_id": actor_id},
            extra={"credit_transaction_id": str(credit_transaction_id)},
        )

    def _reverse_credit(
        self,
        credit_transaction_id: UUID,
        reason: str | None,
        actor_id: UUID,
    ) -> CreditResult:
        if not reason or not reason.strip():
            return CreditResult.failure("Reversal reason is required")

        original = self.session.get(CreditTransaction, credit_transaction_id)
        if original is None:
            return CreditResult.failure("Credit transaction not found")
        if original.transaction_type != CreditType.CREDIT_RECEIVED.value:
            return CreditResult.failure(MSG_ONLY_RECEIVED)

        student = self._lock(Student, original.student_id)
        if self.refunded_amounts([original.id]):
            return CreditResult.failure(MSG_ALREADY_REVERSED)

        available = min(self.get_credit_balance(student.id), student.credit_balance)
        if available < original.amount:
            return CreditResult.failure(
                f"Insufficient credit balance to reverse ({available} available)"
            )

        reversal = self.record_credit(
            student,
            original.amount,
            CreditType.CREDIT_REFUNDED,
            actor_id,
            notes=f"Reversal: {reason.strip()}",
            reverses_credit_id=original.id,
        )

        accounts = self._policy.accounts
        offset_account = accounts.credit_adjustment_expense
        if original.source_transaction_id is not None:
            # Overpayment credit: the money goes back out the way it came in
            payment = self.session.get(LedgerTransaction, original.source_transaction_id)
            offset_account = (
                accounts.cash
                if payment is not None and payment.payment_method == PaymentMethod.CASH.value
                else accounts.bank
            )
        self._journal.post_entry(
            entry_type=JournalEntryType.CREDIT_ADJUSTMENT,
            entry_date=self._clock.today(),
            lines=[
                JournalLineSpec.dr(accounts.student_credit, original.amount, "Student credit reversed"),
                JournalLineSpec.cr(offset_account, original.amount, reason.strip()[:200]),
            ],
            description=f"Credit reversal for student {student.admission_number}",
            created_by_id=actor_id,
            student_id=student.id,
        )

        return CreditResult(
            success=True,
            message="Credit reversed",
            credit_id=reversal.id,
            amount=original.amount,
            new_balance=student.credit_balance,
        )
