"""
Concurrent payments against the same invoice.

Two bursar desks record payments for one student at the same moment.
Invoice rows are locked FOR UPDATE during allocation, so the second
payment must see the first one's allocation: the invoice is never
over-settled and the excess lands in student credit.

Requires PostgreSQL (SQLite serialises writers and cannot show the race).
"""

from concurrent.futures import ThreadPoolExecutor
from datetime import date, datetime, timedelta, timezone
from threading import Barrier

import pytest
from sqlalchemy import func, select, text

from bursary_kernel.db.engine import get_session_factory
from bursary_kernel.domain.dtos import InvoiceItemSpec, InvoiceRequest, PaymentMethod, PaymentRequest
from bursary_kernel.models.invoice import FeeInvoice
from bursary_kernel.models.ledger import PaymentAllocation
from bursary_kernel.models.student import Student, User
from bursary_kernel.services.invoice_service import InvoiceService
from bursary_kernel.services.payment_processor import PaymentProcessor
from bursary_services.bootstrap import bootstrap_reference_data

pytestmark = pytest.mark.postgres

_TABLES = (
    "journal_lines, journal_entries, payment_allocations, receipts, void_audits, "
    "credit_transactions, ledger_transactions, invoice_items, fee_invoices, "
    "approval_levels, approval_requests, approval_configurations, "
    "ledger_reconciliations, audit_events, sequence_counters, gl_accounts, "
    "students, users"
)


def cleanup_test_data(session):
    # TRUNCATE bypasses the ORM immutability listeners; test cleanup only.
    session.execute(text(f"TRUNCATE TABLE {_TABLES} CASCADE"))
    session.commit()


@pytest.fixture
def committed_books(db_engine, ledger_config, ledger_policy):
    factory = get_session_factory()
    session = factory()
    try:
        cleanup_test_data(session)
        bootstrap_reference_data(session, ledger_config)
        bursar = User(username="race_bursar", full_name="Race Bursar", role="BURSAR", is_active=True)
        session.add(bursar)
        session.flush()
        student = Student(
            admission_number="ADM-RACE",
            first_name="Wanjiru",
            last_name="Kamau",
            is_active=True,
            credit_balance=0,
            created_at=datetime.now(timezone.utc),
        )
        session.add(student)
        session.commit()

        today = date.today()
        invoice = InvoiceService(session, policy=ledger_policy).create_invoice(
            InvoiceRequest(
                student_id=student.id,
                invoice_date=today - timedelta(days=7),
                due_date=today + timedelta(days=7),
                items=(InvoiceItemSpec("Tuition", 10_000),),
                created_by_id=bursar.id,
                term="RACE",
            )
        )
        assert invoice.success, invoice.message
        yield {"student_id": student.id, "bursar_id": bursar.id, "invoice_id": invoice.invoice_id}
    finally:
        session.rollback()
        cleanup_test_data(session)
        session.close()


class TestConcurrentPayments:

    def test_invoice_never_over_settled(self, committed_books, ledger_policy):
        factory = get_session_factory()
        barrier = Barrier(2)

        def pay(reference: str):
            session = factory()
            try:
                barrier.wait()
                return PaymentProcessor(session, policy=ledger_policy).record_payment(
                    PaymentRequest(
                        student_id=committed_books["student_id"],
                        amount=6_000,
                        transaction_date=date.today(),
                        payment_method=PaymentMethod.MPESA,
                        recorded_by_id=committed_books["bursar_id"],
                        payment_reference=reference,
                    )
                )
            finally:
                session.close()

        with ThreadPoolExecutor(max_workers=2) as pool:
            results = list(pool.map(pay, ["QKRACE0001", "QKRACE0002"]))

        assert all(r.success for r in results), [r.message for r in results]
        assert sorted(r.allocated_amount for r in results) == [4_000, 6_000]
        assert sorted(r.credited_amount for r in results) == [0, 2_000]

        with factory() as session:
            invoice = session.get(FeeInvoice, committed_books["invoice_id"])
            allocated = session.execute(
                select(func.sum(PaymentAllocation.applied_amount))
                .where(PaymentAllocation.invoice_id == invoice.id)
            ).scalar_one()
            student = session.get(Student, committed_books["student_id"])

            assert invoice.amount_paid == 10_000
            assert invoice.status == "PAID"
            assert allocated == 10_000
            assert student.credit_balance == 2_000
