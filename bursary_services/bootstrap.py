"""
Reference-data bootstrap.

Seeds the chart of accounts and the approval brackets declared in a
configuration set into the database.  Idempotent: accounts that already
exist are left alone and unchanged brackets are skipped, so it is safe to
run at every start-up.
"""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy.orm import Session

from bursary_config.bridges import build_approval_brackets, build_ledger_policy
from bursary_config.schema import BursaryConfig
from bursary_kernel.domain.clock import Clock, SystemClock
from bursary_kernel.logging_config import get_logger
from bursary_kernel.services.approval_workflow_service import ApprovalWorkflowService
from bursary_kernel.services.auditor_service import AuditorService
from bursary_kernel.services.journal_writer import JournalWriter

logger = get_logger("services.bootstrap")


@dataclass(frozen=True)
class BootstrapResult:
    accounts_seeded: int
    bracket_message: str


def bootstrap_reference_data(
    session: Session,
    config: BursaryConfig,
    actor_id: UUID | None = None,
    clock: Clock | None = None,
    auto_commit: bool = True,
) -> BootstrapResult:
    """Seed GL accounts and approval brackets from ``config``."""
    clock = clock or SystemClock()
    auditor = AuditorService(session, clock)
    journal = JournalWriter(session, auditor, clock)
    for account in config.accounts:
        journal.ensure_account(account.code, account.name, account.account_type)

    approvals = ApprovalWorkflowService(
        session,
        clock,
        build_ledger_policy(config),
        auto_commit=False,
        auditor=auditor,
    )
    installed = approvals.install_configurations(build_approval_brackets(config), actor_id)

    if auto_commit:
        session.commit()

    logger.info(
        "reference_data_bootstrapped",
        extra={
            "config_set_name": config.name,
            "account_count": len(config.accounts),
            "brackets": installed.message,
        },
    )
    return BootstrapResult(
        accounts_seeded=len(config.accounts),
        bracket_message=installed.message,
    )
