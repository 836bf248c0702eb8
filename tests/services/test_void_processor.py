"""
Tests for VoidProcessor -- voiding recorded fee payments.

Covers:
- Reversibility: invoice balances and statuses return to their pre-payment
  state, allocations are marked reversed, nothing is deleted
- Credit taken back on void, capped by the remaining balance
- An overpayment credit is reversed once, whichever path comes first
- A payment can be voided once
- Validation of reason, actor and transaction type
- REFUND reversal row, VoidAudit snapshot, voided GL entry, audit event
"""

from uuid import uuid4

import pytest
from sqlalchemy import select

from bursary_kernel.domain.dtos import VoidRequest
from bursary_kernel.models.audit_event import AuditAction, AuditEvent
from bursary_kernel.models.credit import CreditTransaction, CreditType
from bursary_kernel.models.journal import JournalEntry
from bursary_kernel.models.ledger import (
    LedgerTransaction,
    PaymentAllocation,
    Receipt,
    TransactionType,
    VoidAudit,
)


@pytest.fixture
def void(void_processor, bursar):
    def _void(transaction_id, reason="Duplicate M-Pesa entry", **overrides):
        fields = {
            "transaction_id": transaction_id,
            "void_reason": reason,
            "voided_by_id": bursar.id,
        }
        fields.update(overrides)
        return void_processor.void_payment(VoidRequest(**fields))

    return _void


def _overpayment_credit(session, transaction_id) -> CreditTransaction:
    return session.execute(
        select(CreditTransaction)
        .where(CreditTransaction.source_transaction_id == transaction_id)
        .where(CreditTransaction.transaction_type == CreditType.CREDIT_RECEIVED.value)
    ).scalar_one()


class TestReversibility:

    def test_restores_invoices_to_pre_payment_state(
        self, session, student, create_invoice, record_payment, void,
    ):
        inv1 = create_invoice(student, 50_000)
        inv2 = create_invoice(student, 30_000)
        record_payment(student, 20_000)
        before = [(inv1.amount_paid, inv1.status), (inv2.amount_paid, inv2.status)]

        payment = record_payment(student, 45_000)
        assert inv1.status == "PAID"
        assert inv2.status == "PARTIALLY_PAID"

        result = void(payment.transaction_id)

        assert result.success, result.message
        assert result.message == "Payment voided successfully"
        assert [(inv1.amount_paid, inv1.status), (inv2.amount_paid, inv2.status)] == before
        assert {r.invoice_id: r.amount_reversed for r in result.restored_invoices} == {
            inv1.id: 30_000,
            inv2.id: 15_000,
        }

    def test_allocations_kept_and_marked_reversed(
        self, session, student, create_invoice, record_payment, void, bursar,
    ):
        create_invoice(student, 10_000)
        payment = record_payment(student, 10_000)

        void(payment.transaction_id)

        allocations = session.execute(
            select(PaymentAllocation)
            .where(PaymentAllocation.transaction_id == payment.transaction_id)
        ).scalars().all()
        assert len(allocations) == 1
        assert allocations[0].reversed_at is not None
        assert allocations[0].reversed_by_id == bursar.id

    def test_payment_and_receipt_flagged(
        self, session, student, create_invoice, record_payment, void,
    ):
        create_invoice(student, 10_000)
        payment = record_payment(student, 10_000)

        void(payment.transaction_id, "Bounced cheque")

        txn = session.get(LedgerTransaction, payment.transaction_id)
        assert txn.is_voided
        assert txn.voided_reason == "Bounced cheque"
        receipt = session.execute(
            select(Receipt).where(Receipt.transaction_id == txn.id)
        ).scalar_one()
        assert receipt.is_voided

    def test_reversal_row_written(self, session, student, create_invoice, record_payment, void):
        create_invoice(student, 10_000)
        payment = record_payment(student, 10_000)

        result = void(payment.transaction_id)

        assert result.reversal_ref.startswith("VOID-20240315-")
        reversal = session.execute(
            select(LedgerTransaction)
            .where(LedgerTransaction.reversal_of_id == payment.transaction_id)
        ).scalar_one()
        assert reversal.transaction_type == TransactionType.REFUND.value
        assert reversal.amount == 10_000
        assert reversal.debit_credit == "DEBIT"
        assert reversal.transaction_ref == result.reversal_ref

    def test_gl_entry_voided(self, session, student, create_invoice, record_payment, void):
        create_invoice(student, 10_000)
        payment = record_payment(student, 10_000)

        void(payment.transaction_id, "Keyed twice")

        entry = session.execute(
            select(JournalEntry)
            .where(JournalEntry.source_ledger_txn_id == payment.transaction_id)
        ).scalar_one()
        assert entry.is_voided
        assert entry.voided_reason == "Keyed twice"

    def test_void_audit_snapshot(
        self, session, student, create_invoice, record_payment, void,
    ):
        invoice = create_invoice(student, 10_000)
        payment = record_payment(student, 12_000)

        void(payment.transaction_id, "Wrong student", recovery_method="Re-key against ADM00002")

        audit = session.execute(
            select(VoidAudit).where(VoidAudit.transaction_id == payment.transaction_id)
        ).scalar_one()
        assert audit.original_amount == 12_000
        assert audit.recovery_method == "Re-key against ADM00002"
        assert audit.snapshot["allocations"] == [
            {"invoice_id": str(invoice.id), "applied_amount": 10_000},
        ]
        assert audit.snapshot["credited_amount"] == 2_000
        assert audit.snapshot["receipt_number"] == payment.receipt_number

    def test_audit_event(self, session, student, record_payment, void, bursar):
        payment = record_payment(student, 1_000)
        void(payment.transaction_id)

        event = session.execute(
            select(AuditEvent)
            .where(AuditEvent.entity_id == payment.transaction_id)
            .where(AuditEvent.action == AuditAction.PAYMENT_VOIDED.value)
        ).scalar_one()
        assert event.actor_id == bursar.id
        assert event.payload["old_values"] == {"is_voided": False}


class TestCreditReversal:

    def test_credited_remainder_taken_back(self, student, create_invoice, record_payment, void):
        create_invoice(student, 10_000)
        payment = record_payment(student, 13_000)
        assert student.credit_balance == 3_000

        result = void(payment.transaction_id)

        assert result.credit_reversed == 3_000
        assert student.credit_balance == 0

    def test_reversal_capped_by_remaining_credit(
        self, student, record_payment, create_invoice, void, captured_logs,
    ):
        payment = record_payment(student, 5_000)
        # Spends 4,000 of the 5,000 credit.
        create_invoice(student, 4_000)
        assert student.credit_balance == 1_000

        result = void(payment.transaction_id)

        assert result.success
        assert result.credit_reversed == 1_000
        assert student.credit_balance == 0
        assert any(
            r["message"] == "payment_void_credit_shortfall" and r["reversed"] == 1_000
            for r in captured_logs()
        )

    def test_refund_row_points_at_received_credit(self, session, student, record_payment, void):
        payment = record_payment(student, 2_000)
        received = _overpayment_credit(session, payment.transaction_id)

        void(payment.transaction_id)

        refund = session.execute(
            select(CreditTransaction)
            .where(CreditTransaction.transaction_type == CreditType.CREDIT_REFUNDED.value)
        ).scalar_one()
        assert refund.reverses_credit_id == received.id
        assert refund.source_transaction_id == payment.transaction_id


class TestCreditReversedOnce:
    """An overpayment credit is given back by a void or by reverse_credit, never both."""

    @pytest.fixture
    def bursary_award(self, credit_service, student, bursar):
        result = credit_service.add_credit(student.id, 10_000, "Bursary award", bursar.id)
        assert result.success, result.message
        return result

    def test_void_after_reverse_credit(
        self, session, student, bursary_award, record_payment, credit_service, void, bursar,
    ):
        payment = record_payment(student, 10_000)
        assert student.credit_balance == 20_000
        received = _overpayment_credit(session, payment.transaction_id)
        reversed_ = credit_service.reverse_credit(received.id, "Refunded at the counter", bursar.id)
        assert reversed_.success, reversed_.message

        result = void(payment.transaction_id)

        assert result.success, result.message
        assert result.credit_reversed == 0
        assert student.credit_balance == 10_000
        assert credit_service.get_credit_balance(student.id) == 10_000

    def test_reverse_credit_after_void(
        self, session, student, bursary_award, record_payment, credit_service, void, bursar,
    ):
        payment = record_payment(student, 10_000)
        received = _overpayment_credit(session, payment.transaction_id)
        assert void(payment.transaction_id).credit_reversed == 10_000

        again = credit_service.reverse_credit(received.id, "Refunded at the counter", bursar.id)

        assert not again.success
        assert again.error == "Credit has already been reversed"
        assert student.credit_balance == 10_000
        assert credit_service.get_credit_balance(student.id) == 10_000


class TestVoidGuards:

    def test_double_void_fails(self, student, create_invoice, record_payment, void):
        invoice = create_invoice(student, 10_000)
        payment = record_payment(student, 10_000)

        assert void(payment.transaction_id).success
        second = void(payment.transaction_id)

        assert not second.success
        assert second.error == "Transaction not found or already voided"
        assert invoice.amount_paid == 0

    def test_unknown_transaction(self, void):
        assert void(uuid4()).error == "Transaction not found or already voided"

    @pytest.mark.parametrize("reason", [None, "", "   "])
    def test_reason_required(self, student, record_payment, void, reason):
        payment = record_payment(student, 1_000)
        assert void(payment.transaction_id, reason).error == "Void reason is required"

    def test_actor_required(self, student, record_payment, void):
        payment = record_payment(student, 1_000)
        assert void(payment.transaction_id, voided_by_id=None).error == "Voiding user is required"

    def test_unknown_actor(self, student, record_payment, void):
        payment = record_payment(student, 1_000)
        assert void(payment.transaction_id, voided_by_id=uuid4()).error == "Voiding user not found."

    def test_refund_rows_cannot_be_voided(self, session, student, record_payment, void):
        payment = record_payment(student, 1_000)
        void(payment.transaction_id)
        reversal = session.execute(
            select(LedgerTransaction)
            .where(LedgerTransaction.reversal_of_id == payment.transaction_id)
        ).scalar_one()

        assert void(reversal.id).error == "Only fee payments can be voided"

    def test_voided_payment_no_longer_a_duplicate(
        self, student, create_invoice, record_payment, void,
    ):
        create_invoice(student, 10_000)
        first = record_payment(student, 5_000, payment_reference="QK77")
        void(first.transaction_id)

        again = record_payment(student, 5_000, payment_reference="QK77")

        assert again.success
        assert not again.is_duplicate
        assert again.transaction_id != first.transaction_id
