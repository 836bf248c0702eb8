"""
ReconciliationService -- consistency checks over the bursary books.

Responsibility:
    Runs the seven diagnostic checks that tie the denormalised caches
    (student credit balances, invoice ``amount_paid``) back to the rows
    they summarise, and the general ledger back to itself:

    1. Student Credit Balance Verification
    2. Trial Balance Verification
    3. Orphaned Transactions Check
    4. Invoice Payment Verification
    5. Invoice Settlement Drift Check
    6. Abnormal Balance Detection
    7. Ledger-Journal Linkage Check

    Each run is persisted as a ``ReconciliationReport`` with its check
    results, and is audited.

Architecture position:
    Services -- orchestration above the kernel.  Reads kernel models and
    reuses ``JournalWriter.account_balances()`` for GL totals.

Invariants enforced:
    - Never mutates financial data.  The only writes are the report row
      and its audit event.
    - Check isolation: every check runs inside a savepoint.  A check that
      raises yields a FAIL result ("Error during check: ...") and the
      remaining checks still run.
    - Overall status ranks FAIL over WARNING over PASS.

Failure modes:
    - Findings are data, not errors: an unbalanced ledger produces a FAIL
      result and a persisted report, not an exception.
    - Storage failures while persisting the report propagate after
      rollback.

Audit relevance:
    RECONCILIATION_RUN audit event per run; the report history is
    append-only and gives the trend of book health over time.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable
from uuid import UUID

from sqlalchemy import case, func, select

from bursary_kernel.domain.invoice_status import InvoiceStatus
from bursary_kernel.models.account import AccountType
from bursary_kernel.models.audit_event import AuditAction
from bursary_kernel.models.credit import CreditTransaction, CreditType
from bursary_kernel.models.invoice import FeeInvoice
from bursary_kernel.models.journal import JournalEntry
from bursary_kernel.models.ledger import (
    LedgerTransaction,
    PaymentAllocation,
    TransactionType,
)
from bursary_kernel.models.reconciliation import ReconciliationReport
from bursary_kernel.models.student import Student
from bursary_kernel.services.base import BaseService
from bursary_kernel.utils.hashing import to_json_safe

CHECK_STUDENT_CREDIT = "Student Credit Balance Verification"
CHECK_TRIAL_BALANCE = "Trial Balance Verification"
CHECK_ORPHANS = "Orphaned Transactions Check"
CHECK_INVOICE_PAYMENTS = "Invoice Payment Verification"
CHECK_SETTLEMENT_DRIFT = "Invoice Settlement Drift Check"
CHECK_ABNORMAL_BALANCES = "Abnormal Balance Detection"
CHECK_LINKAGE = "Ledger-Journal Linkage Check"

# Cap on the rows listed in a check's details
_DETAIL_LIMIT = 50


class CheckStatus(str, Enum):
    PASS = "PASS"
    WARNING = "WARNING"
    FAIL = "FAIL"


_STATUS_RANK = {CheckStatus.PASS: 0, CheckStatus.WARNING: 1, CheckStatus.FAIL: 2}


@dataclass(frozen=True)
class CheckResult:
    check_name: str
    status: CheckStatus
    message: str
    variance: int | None = None
    details: Any = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return to_json_safe(data)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CheckResult:
        return cls(
            check_name=data["check_name"],
            status=CheckStatus(data["status"]),
            message=data["message"],
            variance=data.get("variance"),
            details=data.get("details"),
        )


@dataclass(frozen=True)
class ReconciliationSummary:
    total_checks: int
    passed: int
    failed: int
    warnings: int


@dataclass(frozen=True)
class ReconciliationRun:
    """Outcome of one reconciliation run."""

    run_at: datetime
    overall_status: CheckStatus
    checks: tuple[CheckResult, ...]
    summary: ReconciliationSummary
    performed_by_id: UUID | None = None
    report_id: UUID | None = None
    # The run itself always completes; a FAIL describes the books.
    success: bool = True
    error: str | None = None

    def check(self, name: str) -> CheckResult | None:
        for result in self.checks:
            if result.check_name == name:
                return result
        return None


def overall_status_of(checks: list[CheckResult] | tuple[CheckResult, ...]) -> CheckStatus:
    """Worst status among ``checks``; PASS when there are none."""
    worst = CheckStatus.PASS
    for result in checks:
        if _STATUS_RANK[result.status] > _STATUS_RANK[worst]:
            worst = result.status
    return worst


def summarize(checks: list[CheckResult] | tuple[CheckResult, ...]) -> ReconciliationSummary:
    return ReconciliationSummary(
        total_checks=len(checks),
        passed=sum(1 for c in checks if c.status is CheckStatus.PASS),
        failed=sum(1 for c in checks if c.status is CheckStatus.FAIL),
        warnings=sum(1 for c in checks if c.status is CheckStatus.WARNING),
    )


class ReconciliationService(BaseService):
    """Runs, persists and reports reconciliation checks."""

    log_name = "reconciliation"

    def run_all_checks(self, performed_by_id: UUID) -> ReconciliationRun:
        """Run every check, persist the report and audit the run."""
        if performed_by_id is None:
            raise ValueError("performed_by_id is required")
        return self._atomic(
            "reconciliation",
            lambda: self._run_all_checks(performed_by_id),
            log_context={"actor_id": performed_by_id},
        )

    def _run_all_checks(self, performed_by_id: UUID) -> ReconciliationRun:
        checks = [
            self._run_check(CHECK_STUDENT_CREDIT, self._check_student_credit_balances),
            self._run_check(CHECK_TRIAL_BALANCE, self._check_trial_balance),
            self._run_check(CHECK_ORPHANS, self._check_orphaned_transactions),
            self._run_check(CHECK_INVOICE_PAYMENTS, self._check_invoice_payments),
            self._run_check(CHECK_SETTLEMENT_DRIFT, self._check_settlement_drift),
            self._run_check(CHECK_ABNORMAL_BALANCES, self._check_abnormal_balances),
            self._run_check(CHECK_LINKAGE, self._check_ledger_linkage),
        ]
        overall = overall_status_of(checks)
        summary = summarize(checks)
        run_at = self._clock.now()

        report = ReconciliationReport(
            run_at=run_at,
            overall_status=overall.value,
            total_checks=summary.total_checks,
            passed_checks=summary.passed,
            failed_checks=summary.failed,
            warning_checks=summary.warnings,
            details=[c.to_dict() for c in checks],
            performed_by_id=performed_by_id,
        )
        self.session.add(report)
        self.session.flush()

        self._auditor.record_change(
            entity_type=ReconciliationReport.__tablename__,
            entity_id=report.id,
            action=AuditAction.RECONCILIATION_RUN,
            actor_id=performed_by_id,
            new_values={
                "overall_status": overall.value,
                "total_checks": summary.total_checks,
                "failed_checks": summary.failed,
                "warning_checks": summary.warnings,
            },
        )
        self._logger.info(
            "reconciliation_completed",
            extra={
                "overall_status": overall.value,
                "total_checks": summary.total_checks,
                "passed": summary.passed,
                "failed": summary.failed,
                "warnings": summary.warnings,
            },
        )
        return ReconciliationRun(
            run_at=run_at,
            overall_status=overall,
            checks=tuple(checks),
            summary=summary,
            performed_by_id=performed_by_id,
            report_id=report.id,
        )

    def _run_check(self, name: str, check: Callable[[], CheckResult]) -> CheckResult:
        try:
            with self.session.begin_nested():
                result = check()
        except Exception as exc:
            self._logger.error(
                "reconciliation_check_error",
                extra={"check_name": name},
                exc_info=True,
            )
            result = CheckResult(name, CheckStatus.FAIL, f"Error during check: {exc}")
        log = self._logger.warning if result.status is not CheckStatus.PASS else self._logger.info
        log(
            "reconciliation_check_completed",
            extra={
                "check_name": result.check_name,
                "status": result.status.value,
                "variance": result.variance,
            },
        )
        return result

    # ------------------------------------------------------------------
    # Checks
    # ------------------------------------------------------------------

    def _check_student_credit_balances(self) -> CheckResult:
        tolerance = self._policy.balance_tolerance
        signed = case(
            (CreditTransaction.transaction_type == CreditType.CREDIT_RECEIVED.value,
             CreditTransaction.amount),
            else_=-CreditTransaction.amount,
        )
        derived = dict(
            self.session.execute(
                select(CreditTransaction.student_id, func.sum(signed))
                .group_by(CreditTransaction.student_id)
            ).all()
        )
        students = self.session.execute(
            select(Student).where(Student.is_active.is_(True)).order_by(Student.admission_number)
        ).scalars().all()

        discrepancies = []
        for student in students:
            calculated = int(derived.get(student.id) or 0)
            if abs(student.credit_balance - calculated) > tolerance:
                discrepancies.append({
                    "student_id": student.id,
                    "admission_number": student.admission_number,
                    "recorded_balance": student.credit_balance,
                    "calculated_balance": calculated,
                    "variance": student.credit_balance - calculated,
                })

        if not discrepancies:
            return CheckResult(
                CHECK_STUDENT_CREDIT,
                CheckStatus.PASS,
                f"All {len(students)} student balances match credit transactions.",
            )
        return CheckResult(
            CHECK_STUDENT_CREDIT,
            CheckStatus.FAIL,
            f"{len(discrepancies)} students have balance discrepancies.",
            variance=sum(abs(d["variance"]) for d in discrepancies),
            details=discrepancies[:_DETAIL_LIMIT],
        )

    def _check_trial_balance(self) -> CheckResult:
        entry_count = self.session.execute(
            select(func.count(JournalEntry.id))
            .where(JournalEntry.is_posted.is_(True))
            .where(JournalEntry.is_voided.is_(False))
        ).scalar_one()
        if entry_count == 0:
            return CheckResult(
                CHECK_TRIAL_BALANCE, CheckStatus.WARNING, "No posted journal entries found.",
            )

        balances = self._journal.account_balances()
        total_debits = sum(b.debits for b in balances.values())
        total_credits = sum(b.credits for b in balances.values())
        variance = abs(total_debits - total_credits)
        if variance <= self._policy.balance_tolerance:
            return CheckResult(
                CHECK_TRIAL_BALANCE,
                CheckStatus.PASS,
                f"Books are balanced. Debits = Credits = {total_debits}",
            )
        return CheckResult(
            CHECK_TRIAL_BALANCE,
            CheckStatus.FAIL,
            "Trial Balance is OUT OF BALANCE!",
            variance=variance,
            details={
                "total_debits": total_debits,
                "total_credits": total_credits,
                "variance": variance,
            },
        )

    def _check_orphaned_transactions(self) -> CheckResult:
        rows = self.session.execute(
            select(LedgerTransaction.transaction_ref, LedgerTransaction.amount)
            .outerjoin(Student, Student.id == LedgerTransaction.student_id)
            .where(LedgerTransaction.transaction_type == TransactionType.FEE_PAYMENT.value)
            .where(Student.id.is_(None))
            .order_by(LedgerTransaction.transaction_ref)
        ).all()
        if not rows:
            return CheckResult(CHECK_ORPHANS, CheckStatus.PASS, "No orphaned transactions found.")

        status = (
            CheckStatus.FAIL if len(rows) > self._policy.orphan_fail_threshold
            else CheckStatus.WARNING
        )
        return CheckResult(
            CHECK_ORPHANS,
            status,
            f"Found {len(rows)} transactions without student linkage.",
            details={
                "count": len(rows),
                "total_amount": sum(amount for _, amount in rows),
                "transaction_refs": [ref for ref, _ in rows[:_DETAIL_LIMIT]],
            },
        )

    def _active_allocation_totals(self) -> dict[UUID, int]:
        """Allocated amount per invoice from live, unreversed fee payments."""
        return {
            invoice_id: int(total)
            for invoice_id, total in self.session.execute(
                select(PaymentAllocation.invoice_id, func.sum(PaymentAllocation.applied_amount))
                .join(LedgerTransaction, LedgerTransaction.id == PaymentAllocation.transaction_id)
                .where(PaymentAllocation.reversed_at.is_(None))
                .where(LedgerTransaction.is_voided.is_(False))
                .where(LedgerTransaction.transaction_type == TransactionType.FEE_PAYMENT.value)
                .group_by(PaymentAllocation.invoice_id)
            )
        }

    def _applied_credit_totals(self) -> dict[UUID, int]:
        return {
            invoice_id: int(total)
            for invoice_id, total in self.session.execute(
                select(CreditTransaction.reference_invoice_id, func.sum(CreditTransaction.amount))
                .where(CreditTransaction.transaction_type == CreditType.CREDIT_APPLIED.value)
                .where(CreditTransaction.reference_invoice_id.is_not(None))
                .group_by(CreditTransaction.reference_invoice_id)
            )
        }

    def _check_invoice_payments(self) -> CheckResult:
        """amount_paid against payment allocations, for invoices never touched by credit."""
        allocated = self._active_allocation_totals()
        credited = self._applied_credit_totals()
        invoices = self.session.execute(
            select(FeeInvoice).order_by(FeeInvoice.invoice_number)
        ).scalars()

        discrepancies = []
        for invoice in invoices:
            if invoice.id in credited:
                continue
            calculated = allocated.get(invoice.id, 0)
            if abs(invoice.amount_paid - calculated) > self._policy.balance_tolerance:
                discrepancies.append(self._invoice_discrepancy(invoice, calculated))

        if not discrepancies:
            return CheckResult(
                CHECK_INVOICE_PAYMENTS,
                CheckStatus.PASS,
                "All invoice payment totals match transactions.",
            )
        return CheckResult(
            CHECK_INVOICE_PAYMENTS,
            CheckStatus.FAIL,
            f"{len(discrepancies)} invoices have payment mismatches.",
            variance=sum(abs(d["variance"]) for d in discrepancies),
            details=discrepancies[:_DETAIL_LIMIT],
        )

    def _check_settlement_drift(self) -> CheckResult:
        """amount_paid against allocations plus applied credit, for every live invoice."""
        allocated = self._active_allocation_totals()
        credited = self._applied_credit_totals()
        invoices = self.session.execute(
            select(FeeInvoice)
            .where(FeeInvoice.status != InvoiceStatus.CANCELLED.value)
            .order_by(FeeInvoice.invoice_number)
        ).scalars()

        drifted = []
        for invoice in invoices:
            calculated = allocated.get(invoice.id, 0) + credited.get(invoice.id, 0)
            if abs(invoice.amount_paid - calculated) > self._policy.balance_tolerance:
                drifted.append(self._invoice_discrepancy(invoice, calculated))

        if not drifted:
            return CheckResult(
                CHECK_SETTLEMENT_DRIFT,
                CheckStatus.PASS,
                "All invoice settlements match payments and applied credits.",
            )
        return CheckResult(
            CHECK_SETTLEMENT_DRIFT,
            CheckStatus.FAIL,
            f"{len(drifted)} invoices have settlement drift.",
            variance=sum(abs(d["variance"]) for d in drifted),
            details=drifted[:_DETAIL_LIMIT],
        )

    @staticmethod
    def _invoice_discrepancy(invoice: FeeInvoice, calculated: int) -> dict[str, Any]:
        return {
            "invoice_id": invoice.id,
            "invoice_number": invoice.invoice_number,
            "recorded_paid": invoice.amount_paid,
            "calculated_paid": calculated,
            "variance": invoice.amount_paid - calculated,
        }

    def _check_abnormal_balances(self) -> CheckResult:
        threshold = self._policy.abnormal_balance_threshold
        abnormal = []
        for balance in self._journal.account_balances().values():
            if balance.account_type == AccountType.ASSET and balance.net_debit < -threshold:
                abnormal.append({
                    "type": "Negative Asset",
                    "account": f"{balance.code} - {balance.name}",
                    "balance": balance.net_debit,
                })
            elif balance.account_type == AccountType.LIABILITY and balance.net_credit < -threshold:
                abnormal.append({
                    "type": "Negative Liability",
                    "account": f"{balance.code} - {balance.name}",
                    "balance": balance.net_credit,
                })

        if not abnormal:
            return CheckResult(
                CHECK_ABNORMAL_BALANCES,
                CheckStatus.PASS,
                "No abnormal GL account balances detected.",
            )
        return CheckResult(
            CHECK_ABNORMAL_BALANCES,
            CheckStatus.WARNING,
            f"Found {len(abnormal)} GL accounts with unexpected negative balances.",
            details=abnormal,
        )

    def _check_ledger_linkage(self) -> CheckResult:
        since = self._clock.today() - timedelta(days=self._policy.linkage_lookback_days)
        linked = (
            select(JournalEntry.id)
            .where(JournalEntry.source_ledger_txn_id == LedgerTransaction.id)
            .exists()
        )
        refs = self.session.execute(
            select(LedgerTransaction.transaction_ref)
            .where(LedgerTransaction.transaction_type == TransactionType.FEE_PAYMENT.value)
            .where(LedgerTransaction.is_voided.is_(False))
            .where(LedgerTransaction.transaction_date >= since)
            .where(~linked)
            .order_by(LedgerTransaction.transaction_ref)
        ).scalars().all()

        if not refs:
            return CheckResult(
                CHECK_LINKAGE,
                CheckStatus.PASS,
                "All recent payments are linked to journal entries.",
            )
        return CheckResult(
            CHECK_LINKAGE,
            CheckStatus.WARNING,
            f"{len(refs)} recent transactions not linked to journal entries.",
            details={"count": len(refs), "transaction_refs": refs[:_DETAIL_LIMIT]},
        )

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def get_reconciliation_history(self, limit: int | None = None) -> list[ReconciliationRun]:
        """Past runs, most recent first."""
        if limit is None:
            limit = self._policy.reconciliation_history_limit
        reports = self.session.execute(
            select(ReconciliationReport)
            .order_by(ReconciliationReport.run_at.desc())
            .limit(limit)
        ).scalars()
        return [self._to_run(report) for report in reports]

    def get_latest_summary(self) -> ReconciliationRun | None:
        history = self.get_reconciliation_history(limit=1)
        return history[0] if history else None

    @staticmethod
    def _to_run(report: ReconciliationReport) -> ReconciliationRun:
        return ReconciliationRun(
            run_at=report.run_at,
            overall_status=CheckStatus(report.overall_status),
            checks=tuple(CheckResult.from_dict(d) for d in report.details),
            summary=ReconciliationSummary(
                total_checks=report.total_checks,
                passed=report.passed_checks,
                failed=report.failed_checks,
                warnings=report.warning_checks,
            ),
            performed_by_id=report.performed_by_id,
            report_id=report.id,
        )
