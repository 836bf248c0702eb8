#!/usr/bin/env python3
"""
Run the ledger reconciliation checks against a database and print the
result, or show the history of past runs.

Usage:
  python3 scripts/run_reconciliation.py --performed-by USER_UUID [--db-url URL]
  python3 scripts/run_reconciliation.py --history 10
  python3 scripts/run_reconciliation.py --init --performed-by USER_UUID

``--init`` creates missing tables and seeds the chart of accounts and
approval brackets from the configuration set before running.

Exit status is 0 for PASS, 1 for WARNING, 2 for FAIL.
"""

import argparse
import os
import sys
from pathlib import Path
from uuid import UUID

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

DB_URL = os.environ.get("BURSARY_DATABASE_URL", "sqlite:///bursary.db")

W = 78

_EXIT_CODES = {"PASS": 0, "WARNING": 1, "FAIL": 2}


def _parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Run bursary ledger reconciliation checks")
    p.add_argument("--db-url", default=DB_URL, help="Database URL (default: BURSARY_DATABASE_URL)")
    p.add_argument("--config-set", default="default", help="Configuration set name")
    p.add_argument("--performed-by", type=UUID, help="User id recorded on the report")
    p.add_argument("--init", action="store_true", help="Create tables and seed reference data first")
    p.add_argument("--history", type=int, metavar="N", help="Print the last N runs instead of running")
    return p.parse_args()


def _print_run(run) -> None:
    print("=" * W)
    print(f"  Reconciliation {run.run_at:%Y-%m-%d %H:%M:%S}  overall: {run.overall_status.value}")
    print(
        f"  {run.summary.total_checks} checks: {run.summary.passed} passed, "
        f"{run.summary.warnings} warnings, {run.summary.failed} failed"
    )
    print("-" * W)
    for check in run.checks:
        variance = f"  (variance {check.variance})" if check.variance else ""
        print(f"  [{check.status.value:7}] {check.check_name}")
        print(f"            {check.message}{variance}")
    print("=" * W)


def main() -> int:
    args = _parse_args()

    from bursary_config import get_active_config
    from bursary_config.bridges import build_ledger_policy
    from bursary_kernel.db.engine import create_tables, init_engine_from_url, session_scope
    from bursary_services import ReconciliationService, bootstrap_reference_data

    config = get_active_config(args.config_set)
    policy = build_ledger_policy(config)

    try:
        init_engine_from_url(args.db_url, echo=False)
    except Exception as exc:
        print(f"  ERROR: {exc}", file=sys.stderr)
        return 2

    if args.init:
        create_tables()
        with session_scope() as session:
            result = bootstrap_reference_data(
                session, config, actor_id=args.performed_by, auto_commit=False,
            )
        print(f"  Seeded {result.accounts_seeded} accounts; {result.bracket_message}")

    if args.history is not None:
        with session_scope() as session:
            runs = ReconciliationService(session, policy=policy).get_reconciliation_history(
                args.history,
            )
            if not runs:
                print("  No reconciliation runs recorded.")
            for run in runs:
                _print_run(run)
        return 0

    if args.performed_by is None:
        print("  ERROR: --performed-by is required to run the checks", file=sys.stderr)
        return 2

    with session_scope() as session:
        run = ReconciliationService(session, policy=policy).run_all_checks(args.performed_by)
        _print_run(run)
    return _EXIT_CODES[run.overall_status.value]


if __name__ == "__main__":
    sys.exit(main())
