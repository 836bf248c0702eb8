"""
Module: bursary_kernel.models.journal
Responsibility: ORM persistence for double-entry journal entries and their
    debit/credit lines.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Each line carries exactly one positive side (DB check).
    - Lines are append-only: no UPDATE or DELETE (ORM listeners).
    - An entry's only permitted change after posting is the void flag and
      its metadata.
    - Balance (sum of debits == sum of credits) is enforced by JournalWriter
      at posting time and re-checked system-wide by reconciliation.

Failure modes:
    - ImmutabilityViolationError on any UPDATE/DELETE of a JournalLine.

Audit relevance:
    source_ledger_txn_id links a payment to its GL posting; the
    ledger-journal linkage check relies on it.
"""

from datetime import date, datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
    event,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from bursary_kernel.db.base import Base, UTCDateTime, UUIDString
from bursary_kernel.exceptions import ImmutabilityViolationError


class JournalEntryType(str, Enum):
    FEE_PAYMENT = "FEE_PAYMENT"
    FEE_INVOICE = "FEE_INVOICE"
    CREDIT_APPLICATION = "CREDIT_APPLICATION"
    CREDIT_ADJUSTMENT = "CREDIT_ADJUSTMENT"


class JournalEntry(Base):
    """
    Journal entry header -- the atomic unit of double-entry accounting.

    Non-goals:
        This model does NOT enforce balance at the ORM level; enforcement
        lives in JournalWriter.  is_balanced is a read-side convenience.
    """

    __tablename__ = "journal_entries"

    __table_args__ = (
        Index("idx_journal_source_txn", "source_ledger_txn_id"),
        Index("idx_journal_source_invoice", "source_invoice_id"),
        Index("idx_journal_entry_date", "entry_date"),
    )

    entry_ref: Mapped[str] = mapped_column(String(40), nullable=False, unique=True)
    entry_type: Mapped[JournalEntryType] = mapped_column(String(30), nullable=False)
    entry_date: Mapped[date] = mapped_column(Date, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    student_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    source_ledger_txn_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("ledger_transactions.id"), nullable=True,
    )
    source_invoice_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("fee_invoices.id"), nullable=True,
    )
    is_posted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_by_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    is_voided: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    voided_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    voided_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    voided_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    lines: Mapped[list["JournalLine"]] = relationship(
        "JournalLine",
        back_populates="entry",
        order_by="JournalLine.line_number",
        lazy="selectin",
    )

    @property
    def total_debits(self) -> int:
        return sum(line.debit_amount for line in self.lines)

    @property
    def total_credits(self) -> int:
        return sum(line.credit_amount for line in self.lines)

    @property
    def is_balanced(self) -> bool:
        return self.total_debits == self.total_credits

    def __repr__(self) -> str:
        return f"<JournalEntry {self.entry_ref} {self.entry_type}>"


class JournalLine(Base):
    """A single debit or credit against one GL account."""

    __tablename__ = "journal_lines"

    __table_args__ = (
        UniqueConstraint("journal_entry_id", "line_number", name="uq_journal_line_number"),
        CheckConstraint(
            "debit_amount >= 0 AND credit_amount >= 0",
            name="ck_journal_lines_non_negative",
        ),
        CheckConstraint(
            "(debit_amount = 0) <> (credit_amount = 0)",
            name="ck_journal_lines_one_side",
        ),
        Index("idx_journal_lines_account", "gl_account_id"),
    )

    journal_entry_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("journal_entries.id"), nullable=False,
    )
    line_number: Mapped[int] = mapped_column(nullable=False)
    gl_account_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("gl_accounts.id"), nullable=False,
    )
    debit_amount: Mapped[int] = mapped_column(nullable=False, default=0)
    credit_amount: Mapped[int] = mapped_column(nullable=False, default=0)
    description: Mapped[str | None] = mapped_column(String(200), nullable=True)

    entry: Mapped[JournalEntry] = relationship("JournalEntry", back_populates="lines")


@event.listens_for(JournalLine, "before_update")
def _forbid_line_update(mapper, connection, target):
    raise ImmutabilityViolationError(
        "JournalLine", str(target.id), "journal lines are append-only",
    )


@event.listens_for(JournalLine, "before_delete")
def _forbid_line_delete(mapper, connection, target):
    raise ImmutabilityViolationError(
        "JournalLine", str(target.id), "journal lines are append-only",
    )
