"""
Tests for oldest-due-first allocation (``bursary_kernel.domain.allocation``).
"""

from datetime import date
from uuid import uuid4

import pytest

from bursary_kernel.domain.allocation import InvoiceBalance, allocate_oldest_first


def _invoice(number: str, total: int, paid: int = 0, due: date = date(2024, 1, 31)) -> InvoiceBalance:
    return InvoiceBalance(
        invoice_id=uuid4(),
        invoice_number=number,
        due_date=due,
        total_amount=total,
        amount_paid=paid,
    )


class TestAllocateOldestFirst:

    def test_fills_invoices_in_order(self):
        invoices = [
            _invoice("INV-1", 50_000, due=date(2024, 1, 10)),
            _invoice("INV-2", 30_000, due=date(2024, 2, 10)),
            _invoice("INV-3", 20_000, due=date(2024, 3, 10)),
        ]
        plan = allocate_oldest_first(invoices, 60_000)

        assert [(line.invoice_number, line.amount) for line in plan.lines] == [
            ("INV-1", 50_000),
            ("INV-2", 10_000),
        ]
        assert plan.lines[0].settles_invoice
        assert not plan.lines[1].settles_invoice
        assert plan.remainder == 0
        assert plan.allocated == 60_000
        assert plan.invoice_count == 2

    def test_partially_paid_invoice_takes_only_its_balance(self):
        plan = allocate_oldest_first([_invoice("INV-1", 10_000, paid=7_500)], 5_000)
        assert plan.lines[0].amount == 2_500
        assert plan.lines[0].balance_before == 2_500
        assert plan.remainder == 2_500

    def test_excess_becomes_remainder(self):
        plan = allocate_oldest_first([_invoice("INV-1", 100_000)], 120_000)
        assert plan.allocated == 100_000
        assert plan.remainder == 20_000

    def test_no_invoices_everything_is_remainder(self):
        plan = allocate_oldest_first([], 5_000)
        assert plan.lines == ()
        assert plan.remainder == 5_000

    def test_settled_invoices_produce_no_line(self):
        invoices = [_invoice("INV-1", 1_000, paid=1_000), _invoice("INV-2", 1_000)]
        plan = allocate_oldest_first(invoices, 500)
        assert [line.invoice_number for line in plan.lines] == ["INV-2"]

    def test_zero_amount(self):
        plan = allocate_oldest_first([_invoice("INV-1", 1_000)], 0)
        assert plan.lines == ()
        assert plan.remainder == 0

    def test_negative_amount_rejected(self):
        with pytest.raises(ValueError):
            allocate_oldest_first([_invoice("INV-1", 1_000)], -1)

    def test_overpaid_invoice_balance_floors_at_zero(self):
        assert _invoice("INV-1", 1_000, paid=1_001).balance == 0
