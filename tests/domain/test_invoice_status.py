"""
Tests for invoice status derivation (``bursary_kernel.domain.invoice_status``).
"""

import pytest

from bursary_kernel.domain.invoice_status import (
    OPEN_INVOICE_STATUSES,
    InvoiceStatus,
    derive_invoice_status,
    outstanding_balance,
    within_tolerance,
)


class TestDeriveInvoiceStatus:

    @pytest.mark.parametrize(
        "total, paid, expected",
        [
            (10_000, 0, InvoiceStatus.OUTSTANDING),
            (10_000, 1, InvoiceStatus.PARTIALLY_PAID),
            (10_000, 9_999, InvoiceStatus.PARTIALLY_PAID),
            (10_000, 10_000, InvoiceStatus.PAID),
            (10_000, 10_001, InvoiceStatus.PAID),
            (0, 0, InvoiceStatus.PAID),
        ],
    )
    def test_status_follows_arithmetic(self, total, paid, expected):
        assert derive_invoice_status(total, paid) == expected

    def test_cancelled_is_sticky(self):
        assert derive_invoice_status(10_000, 10_000, "CANCELLED") == InvoiceStatus.CANCELLED
        assert derive_invoice_status(10_000, 0, InvoiceStatus.CANCELLED) == InvoiceStatus.CANCELLED

    def test_current_status_otherwise_ignored(self):
        assert derive_invoice_status(10_000, 0, "PAID") == InvoiceStatus.OUTSTANDING

    def test_only_unsettled_statuses_are_open(self):
        assert OPEN_INVOICE_STATUSES == {InvoiceStatus.OUTSTANDING, InvoiceStatus.PARTIALLY_PAID}


class TestBalanceHelpers:

    def test_outstanding_never_negative(self):
        assert outstanding_balance(1_000, 400) == 600
        assert outstanding_balance(1_000, 1_200) == 0

    def test_tolerance_is_one_minor_unit(self):
        assert within_tolerance(100, 101)
        assert not within_tolerance(100, 102)
