"""
Config -> Kernel Bridges.

Functions that convert a ``BursaryConfig`` into kernel-compatible inputs.
These live in bursary_config (the producer) because the kernel must NEVER
import bursary_config.

Usage:
    from bursary_config import get_active_config
    from bursary_config.bridges import build_approval_brackets, build_ledger_policy

    config = get_active_config()
    policy = build_ledger_policy(config)
    brackets = build_approval_brackets(config)
"""

from __future__ import annotations

from bursary_config.schema import BursaryConfig
from bursary_kernel.domain.approval import ApprovalBracket
from bursary_kernel.domain.policy import AccountRoles, LedgerPolicy


def build_ledger_policy(config: BursaryConfig) -> LedgerPolicy:
    """Build the frozen LedgerPolicy the kernel services consume."""
    roles = config.account_roles
    policy = config.policy
    return LedgerPolicy(
        accounts=AccountRoles(
            cash=roles.cash,
            bank=roles.bank,
            accounts_receivable=roles.accounts_receivable,
            student_credit=roles.student_credit,
            default_revenue=roles.default_revenue,
            credit_adjustment_expense=roles.credit_adjustment_expense,
        ),
        duplicate_window_seconds=policy.duplicate_window_seconds,
        balance_tolerance=policy.balance_tolerance,
        orphan_fail_threshold=policy.orphan_fail_threshold,
        abnormal_balance_threshold=policy.abnormal_balance_threshold,
        linkage_lookback_days=policy.linkage_lookback_days,
        overpayment_to_credit=policy.overpayment_to_credit,
        auto_apply_credit_on_invoice=policy.auto_apply_credit_on_invoice,
        payment_approval_threshold=policy.payment_approval_threshold,
        payment_request_type=policy.payment_request_type,
        idempotency_key_max_length=policy.idempotency_key_max_length,
        reconciliation_history_limit=policy.reconciliation_history_limit,
    )


def build_approval_brackets(config: BursaryConfig) -> list[ApprovalBracket]:
    """Approval brackets in install order (type, level, min amount)."""
    return [
        ApprovalBracket(
            request_type=b.request_type,
            min_amount=b.min_amount,
            max_amount=b.max_amount,
            required_level=b.required_level,
            approver_role=b.approver_role,
        )
        for b in sorted(
            config.approval_brackets,
            key=lambda b: (b.request_type, b.required_level, b.min_amount),
        )
    ]
