"""
Bursary configuration set schema.

Defines the human-authored, reviewable source artifact for the bursary
ledger: the chart of accounts, the posting roles that point into it, the
approval brackets and the ledger policy knobs.  YAML files are parsed into
these types by the loader and checked by the validator before anything is
handed to the kernel through the bridges.
"""

from __future__ import annotations

from dataclasses import dataclass, field

ACCOUNT_TYPES = ("ASSET", "LIABILITY", "EQUITY", "REVENUE", "EXPENSE")

ACCOUNT_ROLE_NAMES = (
    "cash",
    "bank",
    "accounts_receivable",
    "student_credit",
    "default_revenue",
    "credit_adjustment_expense",
)


# ---------------------------------------------------------------------------
# Chart of accounts
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AccountDef:
    """One GL account to seed."""

    code: str
    name: str
    account_type: str  # ASSET, LIABILITY, EQUITY, REVENUE, EXPENSE


@dataclass(frozen=True)
class AccountRolesDef:
    """Account codes the services post to, by role."""

    cash: str
    bank: str
    accounts_receivable: str
    student_credit: str
    default_revenue: str
    credit_adjustment_expense: str

    def as_dict(self) -> dict[str, str]:
        return {name: getattr(self, name) for name in ACCOUNT_ROLE_NAMES}


# ---------------------------------------------------------------------------
# Approval
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BracketDef:
    """Amount range [min_amount, max_amount) and the approval depth it needs."""

    request_type: str
    min_amount: int
    max_amount: int | None
    required_level: int
    approver_role: str | None = None


# ---------------------------------------------------------------------------
# Policy
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PolicyDef:
    """Tunable ledger rules.  Defaults match the kernel's LedgerPolicy."""

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


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BursaryConfig:
    """A complete, parsed configuration set."""

    name: str
    version: int
    currency: str
    accounts: tuple[AccountDef, ...]
    account_roles: AccountRolesDef
    approval_brackets: tuple[BracketDef, ...] = ()
    policy: PolicyDef = field(default_factory=PolicyDef)
    checksum: str = ""

    def account(self, code: str) -> AccountDef | None:
        for account in self.accounts:
            if account.code == code:
                return account
        return None

    def brackets_for(self, request_type: str) -> tuple[BracketDef, ...]:
        return tuple(b for b in self.approval_brackets if b.request_type == request_type)
