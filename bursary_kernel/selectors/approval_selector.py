"""
Module: bursary_kernel.selectors.approval_selector
Responsibility: Read-side queries over approval requests: the approver's
    queue, a request's level-by-level history and status counts.
Architecture position: Kernel > Selectors.  Used by ApprovalWorkflowService
    for its query operations and directly by the presentation layer.
"""

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import func, select

from bursary_kernel.domain.approval import (
    ApprovalHistory,
    ApprovalRequestView,
    ApprovalStatus,
    EntityRef,
)
from bursary_kernel.models.approval import ApprovalLevelModel, ApprovalRequestModel
from bursary_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class ApprovalCounts:
    """Number of approval requests per status."""

    pending: int = 0
    approved: int = 0
    rejected: int = 0
    cancelled: int = 0

    @property
    def total(self) -> int:
        return self.pending + self.approved + self.rejected + self.cancelled


class ApprovalSelector(BaseSelector):
    """Read-only access to approval requests and their levels."""

    def queue(self, level: int, request_type: str | None = None) -> list[ApprovalRequestView]:
        """PENDING requests waiting at ``level``, newest first."""
        stmt = (
            select(ApprovalRequestModel)
            .where(ApprovalRequestModel.status == ApprovalStatus.PENDING.value)
            .where(ApprovalRequestModel.current_level == level)
            .order_by(ApprovalRequestModel.requested_at.desc())
        )
        if request_type is not None:
            stmt = stmt.where(ApprovalRequestModel.request_type == request_type)
        return [row.to_view() for row in self.session.execute(stmt).scalars()]

    def history(self, request_id: UUID) -> ApprovalHistory | None:
        """The request and its levels in ascending order, or None."""
        row = self.session.get(ApprovalRequestModel, request_id)
        if row is None:
            return None
        return ApprovalHistory(
            request=row.to_view(),
            levels=tuple(
                level.to_view()
                for level in self.session.execute(
                    select(ApprovalLevelModel)
                    .where(ApprovalLevelModel.request_id == row.id)
                    .order_by(ApprovalLevelModel.level)
                ).scalars()
            ),
        )

    def counts(self, request_type: str | None = None) -> ApprovalCounts:
        stmt = select(ApprovalRequestModel.status, func.count()).group_by(
            ApprovalRequestModel.status,
        )
        if request_type is not None:
            stmt = stmt.where(ApprovalRequestModel.request_type == request_type)
        by_status = {status: count for status, count in self.session.execute(stmt)}
        return ApprovalCounts(
            pending=by_status.get(ApprovalStatus.PENDING.value, 0),
            approved=by_status.get(ApprovalStatus.APPROVED.value, 0),
            rejected=by_status.get(ApprovalStatus.REJECTED.value, 0),
            cancelled=by_status.get(ApprovalStatus.CANCELLED.value, 0),
        )

    def for_entity(
        self,
        request_type: str,
        entity: EntityRef,
        status: ApprovalStatus | None = None,
    ) -> list[ApprovalRequestView]:
        """Requests raised for one entity, newest first."""
        stmt = (
            select(ApprovalRequestModel)
            .where(ApprovalRequestModel.request_type == request_type)
            .where(ApprovalRequestModel.entity_type == entity.entity_type)
            .where(ApprovalRequestModel.entity_id == entity.id)
            .order_by(ApprovalRequestModel.requested_at.desc())
        )
        if status is not None:
            stmt = stmt.where(ApprovalRequestModel.status == status.value)
        return [row.to_view() for row in self.session.execute(stmt).scalars()]
