"""Kernel services: the imperative shell around the pure domain."""

from bursary_kernel.services.approval_workflow_service import ApprovalWorkflowService
from bursary_kernel.services.auditor_service import AuditorService, AuditTrace
from bursary_kernel.services.base import BaseService
from bursary_kernel.services.credit_service import CreditService
from bursary_kernel.services.invoice_service import InvoiceService
from bursary_kernel.services.invoice_validator import InvoiceValidator
from bursary_kernel.services.journal_writer import (
    AccountBalance,
    JournalLineSpec,
    JournalWriter,
)
from bursary_kernel.services.payment_processor import PaymentProcessor
from bursary_kernel.services.sequence_service import SequenceService
from bursary_kernel.services.void_processor import VoidProcessor

__all__ = [
    "AccountBalance",
    "ApprovalWorkflowService",
    "AuditTrace",
    "AuditorService",
    "BaseService",
    "CreditService",
    "InvoiceService",
    "InvoiceValidator",
    "JournalLineSpec",
    "JournalWriter",
    "PaymentProcessor",
    "SequenceService",
    "VoidProcessor",
]
