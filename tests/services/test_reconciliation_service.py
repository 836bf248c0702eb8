"""
Tests for ReconciliationService -- the seven book-consistency checks.

Each check is driven into its non-PASS state by corrupting exactly one
thing, either through a direct row write that bypasses the services or
through a balanced but unusual journal entry.
"""

from datetime import date, timedelta

import pytest
from sqlalchemy import select

from bursary_kernel.domain.dtos import VoidRequest
from bursary_kernel.models.account import GLAccount
from bursary_kernel.models.audit_event import AuditAction, AuditEvent
from bursary_kernel.models.journal import JournalEntry, JournalEntryType, JournalLine
from bursary_kernel.models.ledger import LedgerTransaction, TransactionType
from bursary_kernel.models.reconciliation import ReconciliationReport
from bursary_kernel.services.journal_writer import JournalLineSpec
from bursary_services.reconciliation_service import (
    CHECK_ABNORMAL_BALANCES,
    CHECK_INVOICE_PAYMENTS,
    CHECK_LINKAGE,
    CHECK_ORPHANS,
    CHECK_SETTLEMENT_DRIFT,
    CHECK_STUDENT_CREDIT,
    CHECK_TRIAL_BALANCE,
    CheckResult,
    CheckStatus,
    overall_status_of,
)

ALL_CHECKS = [
    CHECK_STUDENT_CREDIT,
    CHECK_TRIAL_BALANCE,
    CHECK_ORPHANS,
    CHECK_INVOICE_PAYMENTS,
    CHECK_SETTLEMENT_DRIFT,
    CHECK_ABNORMAL_BALANCES,
    CHECK_LINKAGE,
]


@pytest.fixture
def healthy_books(student, create_invoice, record_payment, credit_service, bursar):
    """A few ordinary operations: invoice, partial payment, overpayment, credit use."""
    create_invoice(student, 20_000)
    record_payment(student, 5_000)
    record_payment(student, 18_000)
    create_invoice(student, 1_000)
    credit_service.add_credit(student.id, 500, "Sibling discount", bursar.id)


def _orphan_payment(session, bursar, clock, ref="TXN-ORPHAN-1", amount=700):
    session.add(
        LedgerTransaction(
            transaction_ref=ref,
            transaction_type=TransactionType.FEE_PAYMENT.value,
            amount=amount,
            debit_credit="CREDIT",
            student_id=None,
            transaction_date=clock.today(),
            recorded_by_id=bursar.id,
            created_at=clock.now(),
        )
    )
    session.flush()


class TestCleanBooks:

    def test_all_checks_pass(self, reconciliation_service, healthy_books, bursar):
        run = reconciliation_service.run_all_checks(bursar.id)

        assert [c.check_name for c in run.checks] == ALL_CHECKS
        assert [c.status for c in run.checks] == [CheckStatus.PASS] * 7
        assert run.overall_status == CheckStatus.PASS
        assert run.summary.passed == 7
        assert run.check(CHECK_TRIAL_BALANCE).message.startswith(
            "Books are balanced. Debits = Credits = "
        )
        assert run.check(CHECK_STUDENT_CREDIT).message == (
            "All 1 student balances match credit transactions."
        )

    def test_void_keeps_books_clean(
        self, reconciliation_service, student, create_invoice, record_payment,
        void_processor, bursar,
    ):
        create_invoice(student, 10_000)
        payment = record_payment(student, 12_000)
        void_processor.void_payment(VoidRequest(payment.transaction_id, "bounced", bursar.id))

        run = reconciliation_service.run_all_checks(bursar.id)

        assert run.overall_status == CheckStatus.PASS

    def test_empty_ledger_warns(self, reconciliation_service, bursar):
        run = reconciliation_service.run_all_checks(bursar.id)

        trial = run.check(CHECK_TRIAL_BALANCE)
        assert trial.status == CheckStatus.WARNING
        assert trial.message == "No posted journal entries found."
        assert run.overall_status == CheckStatus.WARNING


class TestFindings:

    def test_credit_cache_drift(self, session, reconciliation_service, healthy_books, student, bursar):
        student.credit_balance += 5_000
        session.flush()

        result = reconciliation_service.run_all_checks(bursar.id).check(CHECK_STUDENT_CREDIT)

        assert result.status == CheckStatus.FAIL
        assert result.message == "1 students have balance discrepancies."
        assert result.variance == 5_000
        assert result.details[0]["admission_number"] == student.admission_number

    def test_unbalanced_ledger(
        self, session, reconciliation_service, healthy_books, bursar, deterministic_clock,
    ):
        cash = session.execute(select(GLAccount).where(GLAccount.code == "1010")).scalar_one()
        entry = JournalEntry(
            entry_ref="JE-IMPORT-000001",
            entry_type=JournalEntryType.CREDIT_ADJUSTMENT.value,
            entry_date=date(2024, 3, 15),
            description="Half an import",
            is_posted=True,
            created_by_id=bursar.id,
            created_at=deterministic_clock.now(),
        )
        session.add(entry)
        session.flush()
        session.add(
            JournalLine(
                journal_entry_id=entry.id,
                line_number=1,
                gl_account_id=cash.id,
                debit_amount=500,
                credit_amount=0,
            )
        )
        session.flush()

        result = reconciliation_service.run_all_checks(bursar.id).check(CHECK_TRIAL_BALANCE)

        assert result.status == CheckStatus.FAIL
        assert result.message == "Trial Balance is OUT OF BALANCE!"
        assert result.variance == 500

    def test_orphaned_payment_warns(
        self, session, reconciliation_service, healthy_books, bursar, deterministic_clock,
    ):
        _orphan_payment(session, bursar, deterministic_clock)

        run = reconciliation_service.run_all_checks(bursar.id)

        orphans = run.check(CHECK_ORPHANS)
        assert orphans.status == CheckStatus.WARNING
        assert orphans.message == "Found 1 transactions without student linkage."
        assert orphans.details["total_amount"] == 700
        # Imported without a GL entry either.
        assert run.check(CHECK_LINKAGE).status == CheckStatus.WARNING

    def test_many_orphans_fail(self, session, reconciliation_service, bursar, deterministic_clock):
        for n in range(11):
            _orphan_payment(session, bursar, deterministic_clock, ref=f"TXN-ORPHAN-{n}")

        result = reconciliation_service.run_all_checks(bursar.id).check(CHECK_ORPHANS)

        assert result.status == CheckStatus.FAIL

    def test_invoice_paid_cache_drift(
        self, session, reconciliation_service, student, create_invoice, record_payment, bursar,
    ):
        invoice = create_invoice(student, 10_000)
        record_payment(student, 4_000)
        invoice.amount_paid = 4_500
        session.flush()

        run = reconciliation_service.run_all_checks(bursar.id)

        payments = run.check(CHECK_INVOICE_PAYMENTS)
        assert payments.status == CheckStatus.FAIL
        assert payments.message == "1 invoices have payment mismatches."
        assert payments.details[0]["calculated_paid"] == 4_000
        assert run.check(CHECK_SETTLEMENT_DRIFT).status == CheckStatus.FAIL

    def test_credit_settled_invoice_only_in_drift_check(
        self, session, reconciliation_service, student, create_invoice, credit_service, bursar,
    ):
        credit_service.add_credit(student.id, 3_000, None, bursar.id)
        invoice = create_invoice(student, 10_000)
        assert invoice.amount_paid == 3_000
        invoice.amount_paid = 2_000
        session.flush()

        run = reconciliation_service.run_all_checks(bursar.id)

        assert run.check(CHECK_INVOICE_PAYMENTS).status == CheckStatus.PASS
        drift = run.check(CHECK_SETTLEMENT_DRIFT)
        assert drift.status == CheckStatus.FAIL
        assert drift.message == "1 invoices have settlement drift."
        assert drift.variance == 1_000

    def test_negative_asset_warns(
        self, reconciliation_service, journal_writer, healthy_books, bursar,
    ):
        journal_writer.post_entry(
            JournalEntryType.CREDIT_ADJUSTMENT,
            date(2024, 3, 15),
            [JournalLineSpec.dr("5200", 50_000), JournalLineSpec.cr("1010", 50_000)],
            "Cash refund with no receipts",
            bursar.id,
        )

        result = reconciliation_service.run_all_checks(bursar.id).check(CHECK_ABNORMAL_BALANCES)

        assert result.status == CheckStatus.WARNING
        assert result.message == "Found 1 GL accounts with unexpected negative balances."
        assert result.details[0]["type"] == "Negative Asset"

    def test_old_unlinked_payment_ignored(
        self, session, reconciliation_service, student, bursar, deterministic_clock,
    ):
        session.add(
            LedgerTransaction(
                transaction_ref="TXN-LEGACY-1",
                transaction_type=TransactionType.FEE_PAYMENT.value,
                amount=100,
                debit_credit="CREDIT",
                student_id=student.id,
                transaction_date=deterministic_clock.today() - timedelta(days=30),
                recorded_by_id=bursar.id,
                created_at=deterministic_clock.now(),
            )
        )
        session.flush()

        result = reconciliation_service.run_all_checks(bursar.id).check(CHECK_LINKAGE)

        assert result.status == CheckStatus.PASS

    def test_failing_check_is_isolated(self, reconciliation_service, healthy_books, bursar, monkeypatch):
        def boom():
            raise RuntimeError("lost connection")

        monkeypatch.setattr(reconciliation_service, "_check_orphaned_transactions", boom)

        run = reconciliation_service.run_all_checks(bursar.id)

        orphans = run.check(CHECK_ORPHANS)
        assert orphans.status == CheckStatus.FAIL
        assert orphans.message == "Error during check: lost connection"
        assert run.check(CHECK_LINKAGE).status == CheckStatus.PASS
        assert run.summary.failed == 1


class TestHistory:

    def test_run_is_persisted_and_audited(self, session, reconciliation_service, healthy_books, bursar):
        run = reconciliation_service.run_all_checks(bursar.id)

        report = session.get(ReconciliationReport, run.report_id)
        assert report.overall_status == "PASS"
        assert len(report.details) == 7
        event = session.execute(
            select(AuditEvent).where(AuditEvent.entity_id == run.report_id)
        ).scalar_one()
        assert event.action == AuditAction.RECONCILIATION_RUN.value

    def test_history_newest_first(
        self, session, reconciliation_service, healthy_books, student, bursar, deterministic_clock,
    ):
        first = reconciliation_service.run_all_checks(bursar.id)
        deterministic_clock.advance(3600)
        student.credit_balance += 1_000
        session.flush()
        second = reconciliation_service.run_all_checks(bursar.id)

        history = reconciliation_service.get_reconciliation_history()

        assert [r.report_id for r in history] == [second.report_id, first.report_id]
        assert history[0].overall_status == CheckStatus.FAIL
        assert history[0].check(CHECK_STUDENT_CREDIT).variance == 1_000
        assert reconciliation_service.get_latest_summary().report_id == second.report_id
        assert len(reconciliation_service.get_reconciliation_history(limit=1)) == 1

    def test_no_history(self, reconciliation_service):
        assert reconciliation_service.get_reconciliation_history() == []
        assert reconciliation_service.get_latest_summary() is None

    def test_actor_required(self, reconciliation_service):
        with pytest.raises(ValueError):
            reconciliation_service.run_all_checks(None)


class TestOverallStatus:

    @pytest.mark.parametrize(
        "statuses, expected",
        [
            ([], CheckStatus.PASS),
            ([CheckStatus.PASS, CheckStatus.PASS], CheckStatus.PASS),
            ([CheckStatus.PASS, CheckStatus.WARNING], CheckStatus.WARNING),
            ([CheckStatus.WARNING, CheckStatus.FAIL, CheckStatus.PASS], CheckStatus.FAIL),
        ],
    )
    def test_worst_status_wins(self, statuses, expected):
        checks = [CheckResult(f"check {n}", s, "") for n, s in enumerate(statuses)]
        assert overall_status_of(checks) == expected
