"""
Pytest fixtures for the bursary ledger test suite.

Provides:
- A database engine (in-memory SQLite by default) and per-test sessions
  that roll back everything at teardown
- The default configuration set, the LedgerPolicy built from it, and the
  seeded chart of accounts / approval brackets
- Factories for users, students, invoices and payments
- Service fixtures wired to a DeterministicClock

Environment Variables:
- DATABASE_URL: SQLAlchemy URL of the test database.  Defaults to an
  in-memory SQLite database.  Point it at PostgreSQL to exercise row
  locking (tests marked ``postgres`` are skipped otherwise).
"""

import itertools
import json
import logging
import os
from datetime import date, datetime, timedelta, timezone
from io import StringIO
from typing import Generator
from uuid import UUID

import pytest
from sqlalchemy.orm import Session

from bursary_config import get_active_config
from bursary_config.bridges import build_ledger_policy
from bursary_kernel.db.engine import (
    create_tables,
    drop_tables,
    init_engine_from_url,
    reset_engine,
)
from bursary_kernel.domain.clock import DeterministicClock
from bursary_kernel.domain.dtos import (
    InvoiceItemSpec,
    InvoiceRequest,
    PaymentMethod,
    PaymentRequest,
)
from bursary_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from bursary_kernel.models.invoice import FeeInvoice
from bursary_kernel.models.student import Student, User
from bursary_kernel.services.approval_workflow_service import ApprovalWorkflowService
from bursary_kernel.services.auditor_service import AuditorService
from bursary_kernel.services.credit_service import CreditService
from bursary_kernel.services.invoice_service import InvoiceService
from bursary_kernel.services.journal_writer import JournalWriter
from bursary_kernel.services.payment_processor import PaymentProcessor
from bursary_kernel.services.void_processor import VoidProcessor
from bursary_services import ReconciliationService, bootstrap_reference_data

DEFAULT_DATABASE_URL = "sqlite://"

# 2024-03-15 09:00 UTC; every test runs "on" this day unless it moves the clock.
TEST_NOW = datetime(2024, 3, 15, 9, 0, tzinfo=timezone.utc)
TEST_TODAY = TEST_NOW.date()


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture bursary_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, record_payment):
            record_payment(student, 1000)
            logs = captured_logs()
            assert any(r["message"] == "payment_completed" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("bursary_kernel")
    old_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(old_level)


# =============================================================================
# Database
# =============================================================================


def get_database_url() -> str:
    return os.environ.get("DATABASE_URL", DEFAULT_DATABASE_URL)


def pytest_collection_modifyitems(config, items):
    if get_database_url().startswith("postgresql"):
        return
    skip_pg = pytest.mark.skip(reason="requires DATABASE_URL pointing at PostgreSQL")
    for item in items:
        if "postgres" in item.keywords:
            item.add_marker(skip_pg)


@pytest.fixture(scope="session")
def db_engine():
    engine = init_engine_from_url(get_database_url(), echo=False)
    drop_tables()
    create_tables()
    yield engine
    reset_engine()


@pytest.fixture(scope="function")
def session(db_engine) -> Generator[Session, None, None]:
    """Provide a database session for testing.

    Opens a dedicated connection with an outer transaction and joins the
    session to it in ``create_savepoint`` mode: a ``session.commit()``
    inside the test only releases a savepoint, and the outer transaction
    is rolled back at teardown.
    """
    conn = db_engine.connect()
    trans = conn.begin()
    sess = Session(bind=conn, join_transaction_mode="create_savepoint", expire_on_commit=False)
    yield sess
    try:
        sess.close()
    finally:
        try:
            trans.rollback()
        finally:
            conn.close()


# =============================================================================
# Clock, configuration and reference data
# =============================================================================


@pytest.fixture
def deterministic_clock() -> DeterministicClock:
    return DeterministicClock(TEST_NOW)


@pytest.fixture(scope="session")
def ledger_config():
    return get_active_config()


@pytest.fixture(scope="session")
def ledger_policy(ledger_config):
    return build_ledger_policy(ledger_config)


@pytest.fixture
def reference_data(session, ledger_config, deterministic_clock):
    """Chart of accounts and approval brackets from the default set."""
    return bootstrap_reference_data(session, ledger_config, clock=deterministic_clock)


# =============================================================================
# Factories
#
# Every factory commits, which releases the current savepoint.  A service
# that later rolls back a rejected operation only rolls back to the next
# savepoint, so the fixture rows survive.
# =============================================================================


_counter = itertools.count(1)


@pytest.fixture
def create_user(session):
    def _create(role: str = "BURSAR", full_name: str | None = None, is_active: bool = True) -> User:
        n = next(_counter)
        user = User(
            username=f"{role.lower()}{n}",
            full_name=full_name or f"{role.title()} {n}",
            role=role,
            is_active=is_active,
        )
        session.add(user)
        session.commit()
        return user

    return _create


@pytest.fixture
def bursar(create_user) -> User:
    return create_user("BURSAR")


@pytest.fixture
def principal(create_user) -> User:
    return create_user("PRINCIPAL")


@pytest.fixture
def create_student(session, deterministic_clock):
    def _create(first_name: str = "Amina", last_name: str = "Otieno", is_active: bool = True) -> Student:
        n = next(_counter)
        student = Student(
            admission_number=f"ADM{n:05d}",
            first_name=first_name,
            last_name=last_name,
            is_active=is_active,
            credit_balance=0,
            created_at=deterministic_clock.now(),
        )
        session.add(student)
        session.commit()
        return student

    return _create


@pytest.fixture
def student(create_student) -> Student:
    return create_student()


@pytest.fixture
def create_invoice(session, invoice_service, bursar):
    """Issue an invoice through InvoiceService and return the FeeInvoice row.

    Each call gets its own term so the duplicate guard never folds two
    test invoices together.
    """

    def _create(
        student: Student,
        amount: int,
        due_date: date | None = None,
        invoice_date: date | None = None,
        items: tuple[InvoiceItemSpec, ...] | None = None,
    ) -> FeeInvoice:
        invoice_date = invoice_date or TEST_TODAY - timedelta(days=30)
        result = invoice_service.create_invoice(
            InvoiceRequest(
                student_id=student.id,
                invoice_date=invoice_date,
                due_date=due_date or invoice_date + timedelta(days=14),
                items=items or (InvoiceItemSpec("Tuition", amount),),
                created_by_id=bursar.id,
                term=f"TERM-{next(_counter)}",
            )
        )
        assert result.success, result.message
        return session.get(FeeInvoice, result.invoice_id)

    return _create


@pytest.fixture
def record_payment(payment_processor, bursar, deterministic_clock):
    """Record a payment with sensible defaults; keyword arguments override."""

    def _record(student: Student, amount: int, **overrides):
        fields = {
            "student_id": student.id,
            "amount": amount,
            "transaction_date": deterministic_clock.today(),
            "payment_method": PaymentMethod.MPESA,
            "recorded_by_id": bursar.id,
            "payment_reference": f"QK{next(_counter):08d}",
        }
        fields.update(overrides)
        return payment_processor.record_payment(PaymentRequest(**fields))

    return _record


@pytest.fixture
def test_actor_id(bursar) -> UUID:
    return bursar.id


# =============================================================================
# Service fixtures
# =============================================================================


@pytest.fixture
def auditor_service(session, deterministic_clock) -> AuditorService:
    return AuditorService(session, deterministic_clock)


@pytest.fixture
def journal_writer(session, auditor_service, deterministic_clock) -> JournalWriter:
    return JournalWriter(session, auditor_service, deterministic_clock)


@pytest.fixture
def payment_processor(session, deterministic_clock, ledger_policy, reference_data):
    return PaymentProcessor(session, deterministic_clock, ledger_policy)


@pytest.fixture
def void_processor(session, deterministic_clock, ledger_policy, reference_data):
    return VoidProcessor(session, deterministic_clock, ledger_policy)


@pytest.fixture
def invoice_service(session, deterministic_clock, ledger_policy, reference_data):
    return InvoiceService(session, deterministic_clock, ledger_policy)


@pytest.fixture
def credit_service(session, deterministic_clock, ledger_policy, reference_data):
    return CreditService(session, deterministic_clock, ledger_policy)


@pytest.fixture
def approval_service(session, deterministic_clock, ledger_policy, reference_data):
    return ApprovalWorkflowService(session, deterministic_clock, ledger_policy)


@pytest.fixture
def reconciliation_service(session, deterministic_clock, ledger_policy, reference_data):
    return ReconciliationService(session, deterministic_clock, ledger_policy)
