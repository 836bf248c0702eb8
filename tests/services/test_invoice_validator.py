"""
Tests for InvoiceValidator -- pre-allocation checks on a payment amount.
"""

from dataclasses import replace
from datetime import date

import pytest

from bursary_kernel.services.invoice_validator import InvoiceValidator


@pytest.fixture
def validator(session, ledger_policy, reference_data):
    return InvoiceValidator(session, ledger_policy)


class TestInvoiceValidator:

    def test_within_outstanding(self, validator, student, create_invoice):
        create_invoice(student, 30_000)
        create_invoice(student, 20_000)

        result = validator.validate(student.id, 40_000)

        assert result.valid
        assert result.message == "Payment applied to 2 outstanding invoice(s)"
        assert result.total_outstanding == 50_000
        assert result.overpayment == 0

    def test_exact_outstanding_is_not_overpayment(self, validator, student, create_invoice):
        create_invoice(student, 30_000)
        result = validator.validate(student.id, 30_000)
        assert result.valid
        assert result.overpayment == 0

    def test_overpayment_credited(self, validator, student, create_invoice):
        create_invoice(student, 30_000)

        result = validator.validate(student.id, 35_000)

        assert result.valid
        assert result.message == "Payment exceeds outstanding balance. Overpayment will be credited."
        assert result.overpayment == 5_000

    def test_overpayment_refused_without_credit(self, session, ledger_policy, student, create_invoice):
        create_invoice(student, 30_000)
        strict = InvoiceValidator(session, replace(ledger_policy, overpayment_to_credit=False))

        result = strict.validate(student.id, 35_000)

        assert not result.valid
        assert result.message == "Payment exceeds outstanding balance"
        assert result.overpayment == 0

    def test_no_outstanding_invoices(self, validator, student):
        result = validator.validate(student.id, 1_000)
        assert result.valid
        assert result.message == "No outstanding invoices for this student"
        assert result.overpayment == 1_000
        assert result.invoices == ()

    @pytest.mark.parametrize("amount", [0, -5, True, 10.5])
    def test_amount_must_be_positive_int(self, validator, student, amount):
        result = validator.validate(student.id, amount)
        assert not result.valid
        assert result.message == "Payment amount must be greater than zero"

    def test_candidates_ordered_by_due_date(self, validator, student, create_invoice):
        later = create_invoice(student, 1_000, due_date=date(2024, 4, 30))
        sooner = create_invoice(student, 1_000, due_date=date(2024, 2, 29))

        result = validator.validate(student.id, 500)

        assert [i.invoice_id for i in result.invoices] == [sooner.id, later.id]

    def test_paid_and_cancelled_invoices_excluded(
        self, validator, invoice_service, student, create_invoice, record_payment, bursar,
    ):
        paid = create_invoice(student, 1_000, due_date=date(2024, 1, 31))
        record_payment(student, 1_000)
        cancelled = create_invoice(student, 2_000)
        invoice_service.cancel_invoice(cancelled.id, "Wrong term", bursar.id)
        open_invoice = create_invoice(student, 3_000)

        result = validator.validate(student.id, 500)

        assert paid.status == "PAID"
        assert [i.invoice_id for i in result.invoices] == [open_invoice.id]

    def test_single_invoice_target(self, validator, student, create_invoice):
        create_invoice(student, 1_000)
        target = create_invoice(student, 4_000)

        result = validator.validate(student.id, 4_500, invoice_id=target.id)

        assert [i.invoice_id for i in result.invoices] == [target.id]
        assert result.overpayment == 500

    def test_partial_invoice_contributes_remaining_balance(
        self, validator, student, create_invoice, record_payment,
    ):
        create_invoice(student, 10_000)
        record_payment(student, 4_000)

        result = validator.validate(student.id, 1_000)

        assert result.total_outstanding == 6_000
        assert result.invoices[0].balance == 6_000
