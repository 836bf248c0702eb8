"""
Tests for CreditService -- manual credits, application and reversal.

Covers:
- add_credit(): CREDIT_RECEIVED row, cached balance, GL adjustment entry
- apply_credits(): oldest-due-first application, partial application,
  nothing-to-do failures
- reverse_credit(): only received credits, only once, capped by balance,
  overpayment credits reverse against the cash/bank account
- get_credit_balance(): derived from the rows, not the cache
"""

from datetime import date
from uuid import uuid4

from sqlalchemy import select

from bursary_kernel.models.account import GLAccount
from bursary_kernel.models.credit import CreditTransaction, CreditType
from bursary_kernel.models.journal import JournalEntry, JournalEntryType


def _latest_entry(session, entry_type: JournalEntryType) -> JournalEntry:
    return session.execute(
        select(JournalEntry)
        .where(JournalEntry.entry_type == entry_type.value)
        .order_by(JournalEntry.entry_ref.desc())
        .limit(1)
    ).scalar_one()


def _lines_by_code(session, entry: JournalEntry) -> dict[str, tuple[int, int]]:
    codes = {a.id: a.code for a in session.execute(select(GLAccount)).scalars()}
    return {
        codes[line.gl_account_id]: (line.debit_amount, line.credit_amount)
        for line in entry.lines
    }


class TestAddCredit:

    def test_manual_credit(self, session, credit_service, student, bursar):
        result = credit_service.add_credit(student.id, 7_500, "Sports bursary", bursar.id)

        assert result.success
        assert result.message == "Credit added"
        assert result.amount == 7_500
        assert result.new_balance == 7_500
        assert student.credit_balance == 7_500
        row = session.get(CreditTransaction, result.credit_id)
        assert row.transaction_type == CreditType.CREDIT_RECEIVED.value
        assert row.notes == "Sports bursary"

    def test_manual_credit_gl(self, session, credit_service, student, bursar):
        credit_service.add_credit(student.id, 7_500, None, bursar.id)

        entry = _latest_entry(session, JournalEntryType.CREDIT_ADJUSTMENT)
        assert _lines_by_code(session, entry) == {"5200": (7_500, 0), "2050": (0, 7_500)}

    def test_manual_credit_does_not_auto_apply(
        self, credit_service, student, create_invoice, bursar,
    ):
        invoice = create_invoice(student, 5_000)
        credit_service.add_credit(student.id, 2_000, None, bursar.id)
        assert invoice.amount_paid == 0
        assert student.credit_balance == 2_000

    def test_amount_must_be_positive(self, credit_service, student, bursar):
        result = credit_service.add_credit(student.id, 0, None, bursar.id)
        assert result.error == "Credit amount must be greater than zero"

    def test_unknown_student(self, credit_service, bursar):
        assert credit_service.add_credit(uuid4(), 100, None, bursar.id).error == "Student not found."


class TestApplyCredits:

    def test_applies_oldest_first(self, credit_service, student, create_invoice, bursar):
        older = create_invoice(student, 3_000, due_date=date(2024, 1, 31))
        newer = create_invoice(student, 4_000, due_date=date(2024, 2, 29))
        credit_service.add_credit(student.id, 5_000, None, bursar.id)

        result = credit_service.apply_credits(student.id, bursar.id)

        assert result.success
        assert result.message == "Applied 5000 credit to 2 invoice(s)"
        assert [(a.invoice_id, a.applied_amount) for a in result.applications] == [
            (older.id, 3_000),
            (newer.id, 2_000),
        ]
        assert older.status == "PAID"
        assert newer.status == "PARTIALLY_PAID"
        assert result.new_balance == 0

    def test_partial_application_leaves_balance(
        self, credit_service, student, create_invoice, bursar,
    ):
        create_invoice(student, 1_000)
        credit_service.add_credit(student.id, 2_500, None, bursar.id)

        result = credit_service.apply_credits(student.id, bursar.id)

        assert result.amount == 1_000
        assert result.new_balance == 1_500
        assert credit_service.get_credit_balance(student.id) == 1_500

    def test_application_gl(self, session, credit_service, student, create_invoice, bursar):
        create_invoice(student, 1_000)
        credit_service.add_credit(student.id, 1_000, None, bursar.id)
        credit_service.apply_credits(student.id, bursar.id)

        entry = _latest_entry(session, JournalEntryType.CREDIT_APPLICATION)
        assert _lines_by_code(session, entry) == {"2050": (1_000, 0), "1100": (0, 1_000)}

    def test_no_credit(self, credit_service, student, create_invoice, bursar):
        create_invoice(student, 1_000)
        result = credit_service.apply_credits(student.id, bursar.id)
        assert result.error == "No credit balance available for allocation"

    def test_no_invoices(self, credit_service, student, bursar):
        credit_service.add_credit(student.id, 1_000, None, bursar.id)
        result = credit_service.apply_credits(student.id, bursar.id)
        assert result.error == "No outstanding invoices to apply credit to"


class TestReverseCredit:

    def test_reverse_manual_credit(self, session, credit_service, student, bursar):
        added = credit_service.add_credit(student.id, 2_000, None, bursar.id)

        result = credit_service.reverse_credit(added.credit_id, "Granted in error", bursar.id)

        assert result.success
        assert result.message == "Credit reversed"
        assert result.new_balance == 0
        reversal = session.get(CreditTransaction, result.credit_id)
        assert reversal.transaction_type == CreditType.CREDIT_REFUNDED.value
        assert reversal.reverses_credit_id == added.credit_id
        entry = _latest_entry(session, JournalEntryType.CREDIT_ADJUSTMENT)
        assert _lines_by_code(session, entry) == {"2050": (2_000, 0), "5200": (0, 2_000)}

    def test_reverse_overpayment_credit_hits_cash(
        self, session, credit_service, student, record_payment, bursar,
    ):
        payment = record_payment(student, 3_000, payment_method="CASH")
        credit = session.execute(
            select(CreditTransaction)
            .where(CreditTransaction.source_transaction_id == payment.transaction_id)
        ).scalar_one()

        result = credit_service.reverse_credit(credit.id, "Refunded over the counter", bursar.id)

        assert result.success
        entry = _latest_entry(session, JournalEntryType.CREDIT_ADJUSTMENT)
        assert _lines_by_code(session, entry) == {"2050": (3_000, 0), "1010": (0, 3_000)}

    def test_only_once(self, credit_service, student, bursar):
        added = credit_service.add_credit(student.id, 2_000, None, bursar.id)
        credit_service.add_credit(student.id, 2_000, None, bursar.id)
        credit_service.reverse_credit(added.credit_id, "error", bursar.id)

        again = credit_service.reverse_credit(added.credit_id, "error", bursar.id)

        assert again.error == "Credit has already been reversed"

    def test_only_received_credits(self, session, credit_service, student, create_invoice, bursar):
        credit_service.add_credit(student.id, 1_000, None, bursar.id)
        create_invoice(student, 1_000)
        applied = session.execute(
            select(CreditTransaction)
            .where(CreditTransaction.transaction_type == CreditType.CREDIT_APPLIED.value)
        ).scalar_one()

        result = credit_service.reverse_credit(applied.id, "nope", bursar.id)

        assert result.error == "Only received credits can be reversed"

    def test_insufficient_balance(self, credit_service, student, create_invoice, bursar):
        added = credit_service.add_credit(student.id, 1_000, None, bursar.id)
        create_invoice(student, 600)

        result = credit_service.reverse_credit(added.credit_id, "error", bursar.id)

        assert result.error == "Insufficient credit balance to reverse (400 available)"

    def test_reason_required(self, credit_service, student, bursar):
        added = credit_service.add_credit(student.id, 1_000, None, bursar.id)
        assert credit_service.reverse_credit(added.credit_id, "  ", bursar.id).error == (
            "Reversal reason is required"
        )


class TestCreditBalance:

    def test_balance_is_derived_from_rows(self, session, credit_service, student, bursar):
        credit_service.add_credit(student.id, 1_000, None, bursar.id)
        credit_service.add_credit(student.id, 500, None, bursar.id)
        student.credit_balance = 99_999
        session.flush()

        assert credit_service.get_credit_balance(student.id) == 1_500

    def test_list_newest_first(self, credit_service, student, bursar, deterministic_clock):
        credit_service.add_credit(student.id, 1_000, "first", bursar.id)
        deterministic_clock.advance(60)
        credit_service.add_credit(student.id, 500, "second", bursar.id)

        rows = credit_service.list_credit_transactions(student.id)
        assert [r.notes for r in rows] == ["second", "first"]
        assert len(credit_service.list_credit_transactions(student.id, limit=1)) == 1
