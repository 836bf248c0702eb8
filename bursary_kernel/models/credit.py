"""
Module: bursary_kernel.models.credit
Responsibility: ORM persistence for student credit movements.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - amount > 0 on every row; the sign of the effect comes from the type:
      CREDIT_RECEIVED adds, CREDIT_APPLIED and CREDIT_REFUNDED subtract.
    - CREDIT_APPLIED rows always name the invoice they settled
      (reference_invoice_id).

Audit relevance:
    The sum of effects per student is the authoritative credit balance;
    Student.credit_balance is only a cache of it.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from bursary_kernel.db.base import Base, UTCDateTime, UUIDString


class CreditType(str, Enum):
    CREDIT_RECEIVED = "CREDIT_RECEIVED"
    CREDIT_APPLIED = "CREDIT_APPLIED"
    CREDIT_REFUNDED = "CREDIT_REFUNDED"


CREDIT_SIGN: dict[CreditType, int] = {
    CreditType.CREDIT_RECEIVED: 1,
    CreditType.CREDIT_APPLIED: -1,
    CreditType.CREDIT_REFUNDED: -1,
}


class CreditTransaction(Base):
    """One change to a student's unapplied credit."""

    __tablename__ = "credit_transactions"

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_credit_transactions_positive"),
        CheckConstraint(
            "transaction_type IN ('CREDIT_RECEIVED', 'CREDIT_APPLIED', 'CREDIT_REFUNDED')",
            name="ck_credit_transactions_valid_type",
        ),
        Index("idx_credit_student", "student_id", "transaction_type"),
        Index("idx_credit_invoice", "reference_invoice_id"),
    )

    student_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("students.id"), nullable=False,
    )
    amount: Mapped[int] = mapped_column(nullable=False)
    transaction_type: Mapped[CreditType] = mapped_column(String(20), nullable=False)
    reference_invoice_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("fee_invoices.id"), nullable=True,
    )
    # Payment whose overpayment created (or whose void removed) this credit
    source_transaction_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("ledger_transactions.id"), nullable=True,
    )
    reverses_credit_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("credit_transactions.id"), nullable=True,
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    @property
    def signed_amount(self) -> int:
        return CREDIT_SIGN[CreditType(self.transaction_type)] * self.amount
