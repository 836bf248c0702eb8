"""Read-only query selectors."""

from bursary_kernel.selectors.approval_selector import ApprovalCounts, ApprovalSelector
from bursary_kernel.selectors.base import BaseSelector
from bursary_kernel.selectors.payment_selector import (
    AllocationView,
    PaymentSelector,
    PaymentSummary,
    VoidReportRow,
)

__all__ = [
    "AllocationView",
    "ApprovalCounts",
    "ApprovalSelector",
    "BaseSelector",
    "PaymentSelector",
    "PaymentSummary",
    "VoidReportRow",
]
