"""
Configuration Validator (``bursary_config.validator``).

Responsibility
--------------
Checks a parsed ``BursaryConfig`` for structural integrity before any of
it reaches the kernel.

Architecture position
---------------------
**Config layer**.  Called by ``get_active_config()`` after loading.  No
dependency on the kernel.

Invariants enforced
-------------------
* Account codes are unique and every account type is known.
* Every posting role points at a declared account of a sensible type
  (cash/bank/receivable are assets, student credit is a liability,
  default revenue is revenue).
* Brackets have ``required_level >= 1``, ``min_amount >= 0`` and
  ``max_amount > min_amount`` when bounded.
* Within one request type and level, bracket ranges do not overlap.
* Policy numbers are non-negative.

Failure modes
-------------
* Errors -> the configuration must not be used.
* Warnings -> usable but worth a look (e.g. an amount range with no
  bracket covering it).
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field

from bursary_config.schema import ACCOUNT_TYPES, BursaryConfig

_ROLE_TYPES = {
    "cash": "ASSET",
    "bank": "ASSET",
    "accounts_receivable": "ASSET",
    "student_credit": "LIABILITY",
    "default_revenue": "REVENUE",
}


@dataclass
class ConfigValidationResult:
    """``is_valid`` is True only when ``errors`` is empty."""

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return len(self.errors) == 0

    def add_error(self, msg: str) -> None:
        self.errors.append(msg)

    def add_warning(self, msg: str) -> None:
        self.warnings.append(msg)


def validate_configuration(config: BursaryConfig) -> ConfigValidationResult:
    """Validate a configuration set.  Never raises."""
    result = ConfigValidationResult()
    _validate_accounts(config, result)
    _validate_roles(config, result)
    _validate_brackets(config, result)
    _validate_policy(config, result)
    return result


def _validate_accounts(config: BursaryConfig, result: ConfigValidationResult) -> None:
    seen: set[str] = set()
    for account in config.accounts:
        if account.code in seen:
            result.add_error(f"Duplicate account code: {account.code}")
        seen.add(account.code)
        if account.account_type not in ACCOUNT_TYPES:
            result.add_error(
                f"Account {account.code} has unknown type {account.account_type!r}"
            )


def _validate_roles(config: BursaryConfig, result: ConfigValidationResult) -> None:
    for role, code in config.account_roles.as_dict().items():
        account = config.account(code)
        if account is None:
            result.add_error(f"Account role {role} points at undeclared account {code}")
            continue
        expected = _ROLE_TYPES.get(role)
        if expected and account.account_type != expected:
            result.add_error(
                f"Account role {role} expects a {expected} account, "
                f"{code} is {account.account_type}"
            )


def _validate_brackets(config: BursaryConfig, result: ConfigValidationResult) -> None:
    by_key = defaultdict(list)
    for bracket in config.approval_brackets:
        label = f"{bracket.request_type} bracket from {bracket.min_amount}"
        if bracket.required_level < 1:
            result.add_error(f"{label}: required_level must be at least 1")
        if bracket.min_amount < 0:
            result.add_error(f"{label}: min_amount must not be negative")
        if bracket.max_amount is not None and bracket.max_amount <= bracket.min_amount:
            result.add_error(f"{label}: max_amount must be greater than min_amount")
        by_key[(bracket.request_type, bracket.required_level)].append(bracket)

    for (request_type, level), brackets in sorted(by_key.items()):
        ordered = sorted(brackets, key=lambda b: b.min_amount)
        for lower, upper in zip(ordered, ordered[1:]):
            if lower.max_amount is None or lower.max_amount > upper.min_amount:
                result.add_error(
                    f"{request_type} level {level}: brackets starting at "
                    f"{lower.min_amount} and {upper.min_amount} overlap"
                )

    for request_type in sorted({b.request_type for b in config.approval_brackets}):
        ordered = sorted(config.brackets_for(request_type), key=lambda b: b.min_amount)
        if ordered[0].min_amount > 0:
            result.add_warning(
                f"{request_type}: amounts below {ordered[0].min_amount} match no bracket"
            )


def _validate_policy(config: BursaryConfig, result: ConfigValidationResult) -> None:
    policy = config.policy
    for name in (
        "duplicate_window_seconds",
        "balance_tolerance",
        "orphan_fail_threshold",
        "abnormal_balance_threshold",
        "linkage_lookback_days",
    ):
        if getattr(policy, name) < 0:
            result.add_error(f"policy.{name} must not be negative")
    if policy.idempotency_key_max_length < 1:
        result.add_error("policy.idempotency_key_max_length must be at least 1")
    if policy.reconciliation_history_limit < 1:
        result.add_error("policy.reconciliation_history_limit must be at least 1")
    if policy.payment_approval_threshold is not None and policy.payment_approval_threshold < 0:
        result.add_error("policy.payment_approval_threshold must not be negative")
