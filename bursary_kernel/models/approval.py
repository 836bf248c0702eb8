"""
Module: bursary_kernel.models.approval
Responsibility: ORM persistence for approval requests, their per-level
    decisions, and the amount-bracket configuration that decides how many
    levels a request needs.

Architecture position: Kernel > Models.  May import from db/base.py,
    exceptions.py and domain/approval.py.

Invariants enforced:
    - Status values are limited by DB check constraints.
    - UNIQUE(request_id, level): one row per level per request.
    - A request in a terminal status (APPROVED, REJECTED, CANCELLED) can no
      longer be modified (before_update listener).
    - current_level never exceeds required_levels.

Failure modes:
    - ImmutabilityViolationError when a terminal request is modified.
    - IntegrityError on a duplicate level row.

Audit relevance:
    Approval requests and levels form the governance trail for large
    payments.  Every transition is also written to the audit chain by
    ApprovalWorkflowService.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
    event,
    inspect,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from bursary_kernel.db.base import Base, UTCDateTime, UUIDString
from bursary_kernel.domain.approval import (
    TERMINAL_APPROVAL_STATUSES,
    ApprovalBracket,
    ApprovalDecision,
    ApprovalLevelView,
    ApprovalRequestView,
    ApprovalStatus,
    LevelStatus,
    entity_ref_from_parts,
)
from bursary_kernel.exceptions import ImmutabilityViolationError


class ApprovalRequestModel(Base):
    """Persistent approval request.

    Contract:
        Created PENDING at level 1.  Advances one level per approval and
        terminates on rejection, on approval of the last level, or on
        cancellation by the requester.
    """

    __tablename__ = "approval_requests"

    __table_args__ = (
        CheckConstraint(
            "status IN ('PENDING', 'APPROVED', 'REJECTED', 'CANCELLED')",
            name="ck_approval_requests_valid_status",
        ),
        CheckConstraint("amount >= 0", name="ck_approval_requests_amount"),
        CheckConstraint(
            "current_level >= 1 AND current_level <= required_levels",
            name="ck_approval_requests_level_range",
        ),
        Index("ix_approval_requests_queue", "status", "current_level", "requested_at"),
        Index("ix_approval_requests_entity", "entity_type", "entity_id", "status"),
    )

    request_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(30), nullable=False)
    entity_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    amount: Mapped[int] = mapped_column(nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    requested_by_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("users.id"), nullable=False,
    )
    requested_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ApprovalStatus.PENDING.value,
    )
    current_level: Mapped[int] = mapped_column(nullable=False, default=1)
    required_levels: Mapped[int] = mapped_column(nullable=False)
    final_decision: Mapped[str | None] = mapped_column(String(20), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    levels: Mapped[list[ApprovalLevelModel]] = relationship(
        "ApprovalLevelModel",
        back_populates="request",
        order_by="ApprovalLevelModel.level",
        lazy="selectin",
    )

    def to_view(self) -> ApprovalRequestView:
        return ApprovalRequestView(
            request_id=self.id,
            request_type=self.request_type,
            entity=entity_ref_from_parts(self.entity_type, self.entity_id),
            amount=self.amount,
            description=self.description,
            requested_by_id=self.requested_by_id,
            requested_at=self.requested_at,
            status=ApprovalStatus(self.status),
            current_level=self.current_level,
            required_levels=self.required_levels,
            final_decision=(
                ApprovalDecision(self.final_decision) if self.final_decision else None
            ),
            completed_at=self.completed_at,
        )

    def __repr__(self) -> str:
        return (
            f"<ApprovalRequest {self.request_type} {self.entity_type}:{self.entity_id} "
            f"{self.status} L{self.current_level}/{self.required_levels}>"
        )


class ApprovalLevelModel(Base):
    """One approval step of a request."""

    __tablename__ = "approval_levels"

    __table_args__ = (
        UniqueConstraint("request_id", "level", name="uq_approval_levels_request_level"),
        CheckConstraint(
            "status IN ('PENDING', 'APPROVED', 'REJECTED')",
            name="ck_approval_levels_valid_status",
        ),
    )

    request_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("approval_requests.id"), nullable=False,
    )
    level: Mapped[int] = mapped_column(nullable=False)
    approver_role: Mapped[str | None] = mapped_column(String(50), nullable=True)
    approver_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=LevelStatus.PENDING.value,
    )
    comments: Mapped[str | None] = mapped_column(Text, nullable=True)
    decided_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    request: Mapped[ApprovalRequestModel] = relationship(
        "ApprovalRequestModel", back_populates="levels",
    )

    def to_view(self) -> ApprovalLevelView:
        return ApprovalLevelView(
            level=self.level,
            status=LevelStatus(self.status),
            approver_role=self.approver_role,
            approver_id=self.approver_id,
            comments=self.comments,
            decided_at=self.decided_at,
        )


class ApprovalConfigurationModel(Base):
    """Amount bracket -> required approval depth, per request type."""

    __tablename__ = "approval_configurations"

    __table_args__ = (
        CheckConstraint("min_amount >= 0", name="ck_approval_config_min"),
        CheckConstraint(
            "max_amount IS NULL OR max_amount > min_amount",
            name="ck_approval_config_range",
        ),
        CheckConstraint("required_level >= 1", name="ck_approval_config_level"),
        UniqueConstraint(
            "request_type", "min_amount", "required_level",
            name="uq_approval_config_bracket",
        ),
    )

    request_type: Mapped[str] = mapped_column(String(50), nullable=False)
    min_amount: Mapped[int] = mapped_column(nullable=False)
    max_amount: Mapped[int | None] = mapped_column(nullable=True)
    required_level: Mapped[int] = mapped_column(nullable=False)
    approver_role: Mapped[str | None] = mapped_column(String(50), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def to_bracket(self) -> ApprovalBracket:
        return ApprovalBracket(
            request_type=self.request_type,
            min_amount=self.min_amount,
            max_amount=self.max_amount,
            required_level=self.required_level,
            approver_role=self.approver_role,
        )


@event.listens_for(ApprovalRequestModel, "before_update")
def _guard_terminal_request(mapper, connection, target):
    """A terminal request is frozen; the transition into it is allowed."""
    history = inspect(target).attrs.status.history
    previous = history.deleted[0] if history.deleted else target.status
    if previous in {s.value for s in TERMINAL_APPROVAL_STATUSES}:
        raise ImmutabilityViolationError(
            "ApprovalRequest", str(target.id), f"request is already {previous}",
        )
