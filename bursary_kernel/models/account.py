"""
Module: bursary_kernel.models.account
Responsibility: ORM persistence for the chart of accounts -- the target of
    every journal line.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - code is unique.  JournalWriter only posts to active accounts.

Failure modes:
    - InvalidAccountError (raised by JournalWriter) when a posting names an
      unknown or inactive code.

Audit relevance:
    The abnormal-balance reconciliation check reads account_type to decide
    which side an account should normally carry.
"""

from enum import Enum

from sqlalchemy import Boolean, String
from sqlalchemy.orm import Mapped, mapped_column

from bursary_kernel.db.base import Base


class AccountType(str, Enum):
    """Types of accounts in the chart of accounts."""

    ASSET = "ASSET"
    LIABILITY = "LIABILITY"
    EQUITY = "EQUITY"
    REVENUE = "REVENUE"
    EXPENSE = "EXPENSE"


class GLAccount(Base):
    """A general ledger account."""

    __tablename__ = "gl_accounts"

    code: Mapped[str] = mapped_column(String(20), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    account_type: Mapped[AccountType] = mapped_column(String(20), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<GLAccount {self.code} {self.name}>"
