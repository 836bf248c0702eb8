"""
Ledger policy (``bursary_kernel.domain.policy``).

Frozen value objects carrying the tunable rules the kernel services
follow: GL account roles, duplicate-submission window, tolerances and
reconciliation thresholds.  The kernel never reads configuration files;
``bursary_config.bridges.build_ledger_policy`` produces a ``LedgerPolicy``
from a YAML configuration set, and services fall back to the defaults
below when none is injected.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class AccountRoles:
    """GL account codes the services post to."""

    cash: str = "1010"
    bank: str = "1020"
    accounts_receivable: str = "1100"
    student_credit: str = "2050"
    default_revenue: str = "4300"
    credit_adjustment_expense: str = "5200"


@dataclass(frozen=True)
class LedgerPolicy:
    """Rules governing payment recording, crediting and reconciliation."""

    accounts: AccountRoles = field(default_factory=AccountRoles)
    duplicate_window_seconds: int = 15
    balance_tolerance: int = 1
    orphan_fail_threshold: int = 10
    abnormal_balance_threshold: int = 100
    linkage_lookback_days: int = 7
    overpayment_to_credit: bool = True
    auto_apply_credit_on_invoice: bool = True
    payment_approval_threshold: int | None = None
    payment_request_type: str = "PAYMENT"
    idempotency_key_max_length: int = 128
    reconciliation_history_limit: int = 30
