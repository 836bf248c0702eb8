"""
Module: bursary_kernel.models.student
Responsibility: ORM persistence for students (fee payers) and system users
    (actors recorded on every financial mutation).
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Student.credit_balance is a cache of net unapplied credit.  It should
      equal sum(CREDIT_RECEIVED) - sum(CREDIT_APPLIED) - sum(CREDIT_REFUNDED)
      for the student.  Checked (not enforced) by reconciliation.

Audit relevance:
    Users are the actor_id on every audit event.  Only active users may
    record payments or decide approvals.
"""

from datetime import datetime

from sqlalchemy import Boolean, CheckConstraint, String
from sqlalchemy.orm import Mapped, mapped_column

from bursary_kernel.db.base import Base, UTCDateTime


class User(Base):
    """A staff member who records, voids, or approves financial activity."""

    __tablename__ = "users"

    username: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    full_name: Mapped[str] = mapped_column(String(200), nullable=False)
    role: Mapped[str] = mapped_column(String(50), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<User {self.username} ({self.role})>"


class Student(Base):
    """A fee-paying student."""

    __tablename__ = "students"

    __table_args__ = (
        CheckConstraint("credit_balance >= 0", name="ck_students_credit_non_negative"),
    )

    admission_number: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # Denormalised net unapplied credit, minor units
    credit_balance: Mapped[int] = mapped_column(nullable=False, default=0)

    created_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    def __repr__(self) -> str:
        return f"<Student {self.admission_number}>"
