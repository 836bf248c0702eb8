"""
Configuration Loader (``bursary_config.loader``).

Responsibility
--------------
Loads a configuration set YAML file and parses it into the typed
``bursary_config.schema`` dataclasses.  Runtime callers go through
``bursary_config.get_active_config()``; the loader is exposed for tests
and tooling.

Architecture position
---------------------
**Config layer**.  No dependency on the kernel or services.

Invariants enforced
-------------------
* Parse errors raise ``ValueError`` or ``KeyError`` with descriptive
  messages; required fields have no silent defaults.
* Money amounts and counts must be YAML integers (booleans rejected).
* ``compute_checksum`` produces a deterministic SHA-256 hash of the raw
  parsed document, so reformatting the YAML does not change identity but
  any value change does.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
* Wrong value types  -> ``ValueError``.

Audit relevance
---------------
The checksum is logged with every ``get_active_config()`` call so that
an auditor can tie the books to the exact configuration that governed
them.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from bursary_config.schema import (
    ACCOUNT_ROLE_NAMES,
    AccountDef,
    AccountRolesDef,
    BracketDef,
    BursaryConfig,
    PolicyDef,
)

_POLICY_INT_FIELDS = (
    "duplicate_window_seconds",
    "balance_tolerance",
    "orphan_fail_threshold",
    "abnormal_balance_threshold",
    "linkage_lookback_days",
    "idempotency_key_max_length",
    "reconciliation_history_limit",
)
_POLICY_BOOL_FIELDS = ("overpayment_to_credit", "auto_apply_credit_on_invoice")


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the top-level document is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top-level YAML document must be a mapping")
    return data


def parse_int(value: Any, field_name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{field_name} must be an integer, got {value!r}")
    return value


def parse_optional_int(value: Any, field_name: str) -> int | None:
    if value is None:
        return None
    return parse_int(value, field_name)


def parse_account(data: dict[str, Any]) -> AccountDef:
    return AccountDef(
        code=str(data["code"]),
        name=data["name"],
        account_type=str(data["account_type"]).upper(),
    )


def parse_account_roles(data: dict[str, Any]) -> AccountRolesDef:
    """Parse the role -> account code map.  Every role is required."""
    return AccountRolesDef(**{name: str(data[name]) for name in ACCOUNT_ROLE_NAMES})


def parse_bracket(data: dict[str, Any]) -> BracketDef:
    return BracketDef(
        request_type=data["request_type"],
        min_amount=parse_int(data["min_amount"], "min_amount"),
        max_amount=parse_optional_int(data.get("max_amount"), "max_amount"),
        required_level=parse_int(data["required_level"], "required_level"),
        approver_role=data.get("approver_role"),
    )


def parse_policy(data: dict[str, Any]) -> PolicyDef:
    """
    Parse the policy block.  Keys left out fall back to ``PolicyDef``
    defaults; unknown keys are rejected so typos do not go unnoticed.
    """
    known = set(_POLICY_INT_FIELDS) | set(_POLICY_BOOL_FIELDS) | {
        "payment_approval_threshold",
        "payment_request_type",
    }
    unknown = sorted(set(data) - known)
    if unknown:
        raise ValueError(f"Unknown policy keys: {', '.join(unknown)}")

    kwargs: dict[str, Any] = {}
    for name in _POLICY_INT_FIELDS:
        if name in data:
            kwargs[name] = parse_int(data[name], name)
    for name in _POLICY_BOOL_FIELDS:
        if name in data:
            if not isinstance(data[name], bool):
                raise ValueError(f"{name} must be true or false, got {data[name]!r}")
            kwargs[name] = data[name]
    if "payment_approval_threshold" in data:
        kwargs["payment_approval_threshold"] = parse_optional_int(
            data["payment_approval_threshold"], "payment_approval_threshold",
        )
    if "payment_request_type" in data:
        kwargs["payment_request_type"] = str(data["payment_request_type"])
    return PolicyDef(**kwargs)


def parse_config_set(data: dict[str, Any]) -> BursaryConfig:
    """Parse a whole configuration set document."""
    return BursaryConfig(
        name=data["name"],
        version=parse_int(data["version"], "version"),
        currency=data["currency"],
        accounts=tuple(parse_account(a) for a in data["accounts"]),
        account_roles=parse_account_roles(data["account_roles"]),
        approval_brackets=tuple(
            parse_bracket(b) for b in data.get("approval_brackets") or ()
        ),
        policy=parse_policy(data.get("policy") or {}),
        checksum=compute_checksum(data),
    )


def load_config_set(path: Path) -> BursaryConfig:
    return parse_config_set(load_yaml_file(path))


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
