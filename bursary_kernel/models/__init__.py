"""ORM models for the bursary kernel."""

from bursary_kernel.models.account import AccountType, GLAccount
from bursary_kernel.models.approval import (
    ApprovalConfigurationModel,
    ApprovalLevelModel,
    ApprovalRequestModel,
)
from bursary_kernel.models.audit_event import AuditAction, AuditEvent
from bursary_kernel.models.credit import CreditTransaction, CreditType
from bursary_kernel.models.invoice import FeeInvoice, InvoiceItem
from bursary_kernel.models.journal import JournalEntry, JournalEntryType, JournalLine
from bursary_kernel.models.ledger import (
    DebitCredit,
    LedgerTransaction,
    PaymentAllocation,
    Receipt,
    TransactionType,
    VoidAudit,
)
from bursary_kernel.models.reconciliation import ReconciliationReport
from bursary_kernel.models.sequence import SequenceCounter
from bursary_kernel.models.student import Student, User

__all__ = [
    "AccountType",
    "ApprovalConfigurationModel",
    "ApprovalLevelModel",
    "ApprovalRequestModel",
    "AuditAction",
    "AuditEvent",
    "CreditTransaction",
    "CreditType",
    "DebitCredit",
    "FeeInvoice",
    "GLAccount",
    "InvoiceItem",
    "JournalEntry",
    "JournalEntryType",
    "JournalLine",
    "LedgerTransaction",
    "PaymentAllocation",
    "Receipt",
    "ReconciliationReport",
    "SequenceCounter",
    "Student",
    "TransactionType",
    "User",
    "VoidAudit",
]
