"""
bursary_services -- Package init and public API.

Responsibility:
    Orchestration above the kernel: the reconciliation service and the
    reference-data bootstrap that wires a configuration set into the
    database.

Architecture position:
    Services.

    Dependency direction (enforced by tests/architecture/test_kernel_boundary.py):
        bursary_services/ -> bursary_kernel/  (allowed)
        bursary_services/ -> bursary_config/  (allowed)
        bursary_kernel/   -> bursary_services/ (FORBIDDEN)
"""

from bursary_services.bootstrap import BootstrapResult, bootstrap_reference_data
from bursary_services.reconciliation_service import (
    CheckResult,
    CheckStatus,
    ReconciliationRun,
    ReconciliationService,
    ReconciliationSummary,
)

__all__ = [
    "BootstrapResult",
    "CheckResult",
    "CheckStatus",
    "ReconciliationRun",
    "ReconciliationService",
    "ReconciliationSummary",
    "bootstrap_reference_data",
]
