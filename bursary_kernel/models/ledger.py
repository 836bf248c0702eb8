"""
Module: bursary_kernel.models.ledger
Responsibility: ORM persistence for the student money ledger: fee payments
    and refunds (LedgerTransaction), receipts, per-invoice payment
    allocations, and the forensic void audit trail.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/.

Invariants enforced:
    - LedgerTransaction rows are never deleted.  After insert the only
      permitted change is the ACTIVE -> VOIDED transition and its metadata
      (guarded by the before_update listener below).
    - transaction_ref, receipt_number and idempotency_key are unique.
    - PaymentAllocation.applied_amount > 0.  Allocations for a payment sum
      to at most the payment amount.  Voiding stamps reversed_at instead of
      deleting the allocation.

Failure modes:
    - ImmutabilityViolationError when a financial column of a recorded
      transaction is modified.
    - IntegrityError on a duplicate reference, receipt number or
      idempotency key.

Audit relevance:
    VoidAudit keeps a pre-void snapshot of every voided payment so it can
    be re-keyed if the void itself was a mistake.
"""

from datetime import date, datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    String,
    Text,
    event,
    inspect,
)
from sqlalchemy.orm import Mapped, mapped_column

from bursary_kernel.db.base import Base, UTCDateTime, UUIDString
from bursary_kernel.exceptions import ImmutabilityViolationError


class TransactionType(str, Enum):
    FEE_PAYMENT = "FEE_PAYMENT"
    REFUND = "REFUND"
    CREDIT_ADJUSTMENT = "CREDIT_ADJUSTMENT"


class DebitCredit(str, Enum):
    DEBIT = "DEBIT"
    CREDIT = "CREDIT"


class LedgerTransaction(Base):
    """
    A movement of money for a student.

    Contract:
        FEE_PAYMENT rows are written once by PaymentProcessor.  VoidProcessor
        may flip is_voided and fill the voided_* columns; everything else is
        frozen.  A void writes a separate REFUND row pointing back through
        reversal_of_id.
    """

    __tablename__ = "ledger_transactions"

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_ledger_transactions_positive"),
        Index("idx_ledger_student_date", "student_id", "transaction_date"),
        Index("idx_ledger_type_voided", "transaction_type", "is_voided"),
    )

    transaction_ref: Mapped[str] = mapped_column(String(60), nullable=False, unique=True)
    transaction_type: Mapped[TransactionType] = mapped_column(String(30), nullable=False)
    amount: Mapped[int] = mapped_column(nullable=False)
    debit_credit: Mapped[DebitCredit] = mapped_column(String(6), nullable=False)

    # Nullable so that orphaned rows from imports remain detectable
    student_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("students.id"), nullable=True,
    )
    invoice_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("fee_invoices.id"), nullable=True,
    )
    payment_method: Mapped[str | None] = mapped_column(String(30), nullable=True)
    payment_reference: Mapped[str | None] = mapped_column(String(100), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    transaction_date: Mapped[date] = mapped_column(Date, nullable=False)
    recorded_by_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("users.id"), nullable=False,
    )
    idempotency_key: Mapped[str | None] = mapped_column(
        String(128), nullable=True, unique=True,
    )
    approval_request_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    reversal_of_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("ledger_transactions.id"), nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    is_voided: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    voided_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    voided_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    voided_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    def __repr__(self) -> str:
        return f"<LedgerTransaction {self.transaction_ref} {self.transaction_type} {self.amount}>"


_VOID_MUTABLE_COLUMNS = frozenset({
    "is_voided",
    "voided_reason",
    "voided_by_id",
    "voided_at",
})


@event.listens_for(LedgerTransaction, "before_update")
def _guard_ledger_transaction(mapper, connection, target):
    """Only the void transition may touch a recorded transaction."""
    state = inspect(target)
    for attr in state.attrs:
        if attr.key in _VOID_MUTABLE_COLUMNS:
            continue
        if attr.history.has_changes():
            raise ImmutabilityViolationError(
                "LedgerTransaction", str(target.id), f"column {attr.key} is immutable",
            )
    if state.attrs.is_voided.history.deleted == [True]:
        raise ImmutabilityViolationError(
            "LedgerTransaction", str(target.id), "a voided transaction cannot be reinstated",
        )


@event.listens_for(LedgerTransaction, "before_delete")
def _forbid_ledger_delete(mapper, connection, target):
    raise ImmutabilityViolationError(
        "LedgerTransaction", str(target.id), "ledger transactions are never deleted",
    )


class Receipt(Base):
    """The receipt handed to the payer for a FEE_PAYMENT."""

    __tablename__ = "receipts"

    receipt_number: Mapped[str] = mapped_column(String(40), nullable=False, unique=True)
    transaction_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("ledger_transactions.id"), nullable=False, unique=True,
    )
    student_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("students.id"), nullable=False,
    )
    amount: Mapped[int] = mapped_column(nullable=False)
    receipt_date: Mapped[date] = mapped_column(Date, nullable=False)
    payment_method: Mapped[str] = mapped_column(String(30), nullable=False)
    payment_reference: Mapped[str | None] = mapped_column(String(100), nullable=True)
    created_by_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    is_voided: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)


class PaymentAllocation(Base):
    """The slice of one payment applied to one invoice."""

    __tablename__ = "payment_allocations"

    __table_args__ = (
        CheckConstraint("applied_amount > 0", name="ck_payment_allocations_positive"),
        Index("idx_allocations_transaction", "transaction_id"),
        Index("idx_allocations_invoice", "invoice_id"),
    )

    transaction_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("ledger_transactions.id"), nullable=False,
    )
    invoice_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("fee_invoices.id"), nullable=False,
    )
    applied_amount: Mapped[int] = mapped_column(nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    reversed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    reversed_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    @property
    def is_reversed(self) -> bool:
        return self.reversed_at is not None


class VoidAudit(Base):
    """Forensic record written when a payment is voided."""

    __tablename__ = "void_audits"

    transaction_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("ledger_transactions.id"), nullable=False,
    )
    transaction_type: Mapped[str] = mapped_column(String(30), nullable=False)
    original_amount: Mapped[int] = mapped_column(nullable=False)
    student_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    void_reason: Mapped[str] = mapped_column(Text, nullable=False)
    voided_by_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    voided_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    recovery_method: Mapped[str | None] = mapped_column(String(100), nullable=True)
    # Transaction, allocations and receipt as they were before the void
    snapshot: Mapped[dict] = mapped_column(JSON, nullable=False)
