"""
Module: bursary_kernel.models.invoice
Responsibility: ORM persistence for fee invoices and their line items.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/invoice_status.py.

Invariants enforced:
    - amount_paid >= 0 and amount_paid <= total_amount + 1 (DB check).
    - status is derived from (amount_paid, total_amount) by
      domain.invoice_status.derive_invoice_status; CANCELLED is sticky.
    - invoice_number is unique (legal document).

Failure modes:
    - IntegrityError when a code path overpays an invoice beyond the
      rounding tolerance.

Audit relevance:
    amount_paid and status are caches.  The reconciliation service compares
    them against payment allocations and applied credits.
"""

from datetime import date, datetime
from uuid import UUID

from sqlalchemy import CheckConstraint, Date, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from bursary_kernel.db.base import Base, UTCDateTime, UUIDString
from bursary_kernel.domain.invoice_status import InvoiceStatus, outstanding_balance


class FeeInvoice(Base):
    """A bill issued to a student for one or more fee items."""

    __tablename__ = "fee_invoices"

    __table_args__ = (
        CheckConstraint("total_amount >= 0", name="ck_fee_invoices_total_non_negative"),
        CheckConstraint("amount_paid >= 0", name="ck_fee_invoices_paid_non_negative"),
        CheckConstraint(
            "amount_paid <= total_amount + 1",
            name="ck_fee_invoices_not_overpaid",
        ),
        CheckConstraint(
            "status IN ('OUTSTANDING', 'PARTIALLY_PAID', 'PAID', 'CANCELLED')",
            name="ck_fee_invoices_valid_status",
        ),
        Index("idx_fee_invoices_student_due", "student_id", "due_date"),
    )

    invoice_number: Mapped[str] = mapped_column(String(40), nullable=False, unique=True)
    student_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("students.id"), nullable=False,
    )
    term: Mapped[str | None] = mapped_column(String(50), nullable=True)
    invoice_date: Mapped[date] = mapped_column(Date, nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    total_amount: Mapped[int] = mapped_column(nullable=False)
    amount_paid: Mapped[int] = mapped_column(nullable=False, default=0)
    status: Mapped[InvoiceStatus] = mapped_column(
        String(20), nullable=False, default=InvoiceStatus.OUTSTANDING,
    )
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("users.id"), nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    cancelled_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    cancelled_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    items: Mapped[list["InvoiceItem"]] = relationship(
        "InvoiceItem",
        back_populates="invoice",
        order_by="InvoiceItem.line_number",
        lazy="selectin",
    )

    @property
    def balance(self) -> int:
        return outstanding_balance(self.total_amount, self.amount_paid)

    def __repr__(self) -> str:
        return f"<FeeInvoice {self.invoice_number} {self.amount_paid}/{self.total_amount} {self.status}>"


class InvoiceItem(Base):
    """One fee line on an invoice (tuition, boarding, transport...)."""

    __tablename__ = "invoice_items"

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_invoice_items_positive"),
    )

    invoice_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("fee_invoices.id"), nullable=False,
    )
    line_number: Mapped[int] = mapped_column(nullable=False)
    description: Mapped[str] = mapped_column(String(200), nullable=False)
    amount: Mapped[int] = mapped_column(nullable=False)
    # Revenue GL account credited for this line; None means the policy default.
    revenue_account_code: Mapped[str | None] = mapped_column(String(20), nullable=True)

    invoice: Mapped[FeeInvoice] = relationship("FeeInvoice", back_populates="items")
