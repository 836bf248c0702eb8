"""
Module: bursary_kernel.models.sequence
Responsibility: Named monotonic counters behind receipt numbers, document
    references and audit sequence numbers.
Architecture position: Kernel > Models.  Written only by SequenceService,
    which locks the row (SELECT ... FOR UPDATE) before incrementing.
"""

from sqlalchemy import BigInteger, String
from sqlalchemy.orm import Mapped, mapped_column

from bursary_kernel.db.base import Base


class SequenceCounter(Base):
    """Each row is a named sequence with its current value."""

    __tablename__ = "sequence_counters"

    name: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    current_value: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
