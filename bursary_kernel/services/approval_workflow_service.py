"""
ApprovalWorkflowService -- multi-level monetary approval workflow.

Responsibility:
    Opens approval requests whose depth is decided by the configured
    amount brackets, records each approver's decision level by level,
    lets the requester withdraw a pending request, and answers queue,
    history and status questions.

Architecture position:
    Kernel > Services.  Mutations (``create_approval_request``,
    ``process_approval``, ``cancel_request``, ``install_configurations``)
    are atomic units.  Queries delegate to ApprovalSelector.

Invariants enforced:
    - Lifecycle: PENDING -> APPROVED | REJECTED | CANCELLED; terminal
      states are final (also guarded by the ORM listener on the model).
    - Monotonic progression: a request is decided strictly at its
      ``current_level``; approval advances it by exactly one level.
    - One open request per (request type, entity).
    - The request row is locked for every decision, so two approvers
      cannot decide the same level concurrently.

Failure modes:
    - Bad decisions and configuration gaps come back as
      ``ApprovalResult(success=False)``.
    - ApprovalRequestNotFoundError from ``get_approval_history``.

Audit relevance:
    APPROVAL_REQUESTED, APPROVAL_LEVEL_APPROVED, APPROVAL_GRANTED,
    APPROVAL_REJECTED, APPROVAL_CANCELLED and APPROVAL_CONFIGURED events on
    approval_requests / approval_configurations.
"""

from collections.abc import Iterable
from uuid import UUID

from sqlalchemy import select

from bursary_kernel.domain.approval import (
    ApprovalBracket,
    ApprovalDecision,
    ApprovalDecisionRequest,
    ApprovalHistory,
    ApprovalRequestView,
    ApprovalResult,
    ApprovalStatus,
    EntityRef,
    LevelStatus,
    approver_roles_by_level,
    is_valid_transition,
    required_level_for,
)
from bursary_kernel.exceptions import ApprovalRequestNotFoundError
from bursary_kernel.logging_config import get_logger
from bursary_kernel.models.approval import (
    ApprovalConfigurationModel,
    ApprovalLevelModel,
    ApprovalRequestModel,
)
from bursary_kernel.models.audit_event import AuditAction
from bursary_kernel.models.student import User
from bursary_kernel.selectors.approval_selector import ApprovalCounts, ApprovalSelector
from bursary_kernel.services.base import BaseService

logger = get_logger("services.approval")

MSG_NOT_FOUND = "Approval request not found"
MSG_PENDING_EXISTS = "A pending approval request already exists for this entity"
MSG_ONLY_PENDING_CANCEL = "Only pending requests can be cancelled"
MSG_ONLY_REQUESTER_CANCEL = "Only the requester can cancel this request"


class ApprovalWorkflowService(BaseService):
    """Runs approval requests through their levels."""

    log_name = "approval"

    def __init__(self, session, clock=None, policy=None, auto_commit=True, auditor=None):
        super().__init__(session, clock, policy, auto_commit, auditor)
        self._selector = ApprovalSelector(session)

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def active_brackets(self, request_type: str) -> list[ApprovalBracket]:
        rows = self.session.execute(
            select(ApprovalConfigurationModel)
            .where(ApprovalConfigurationModel.request_type == request_type)
            .where(ApprovalConfigurationModel.is_active.is_(True))
            .order_by(ApprovalConfigurationModel.min_amount)
        ).scalars()
        return [row.to_bracket() for row in rows]

    def install_configurations(
        self,
        brackets: Iterable[ApprovalBracket],
        actor_id: UUID | None = None,
    ) -> ApprovalResult:
        """Insert or update bracket rows; running it twice changes nothing."""
        brackets = list(brackets)
        return self._atomic(
            "approval_configuration",
            lambda: self._install_configurations(brackets, actor_id),
            log_context={"actor_id": actor_id},
            extra={"bracket_count": len(brackets)},
        )

    def _install_configurations(
        self,
        brackets: list[ApprovalBracket],
        actor_id: UUID | None,
    ) -> ApprovalResult:
        changed = 0
        for bracket in brackets:
            row = self.session.execute(
                select(ApprovalConfigurationModel)
                .where(ApprovalConfigurationModel.request_type == bracket.request_type)
                .where(ApprovalConfigurationModel.min_amount == bracket.min_amount)
                .where(ApprovalConfigurationModel.required_level == bracket.required_level)
            ).scalar_one_or_none()
            if row is None:
                row = ApprovalConfigurationModel(
                    request_type=bracket.request_type,
                    min_amount=bracket.min_amount,
                    max_amount=bracket.max_amount,
                    required_level=bracket.required_level,
                    approver_role=bracket.approver_role,
                    is_active=True,
                )
                self.session.add(row)
            elif (
                row.max_amount == bracket.max_amount
                and row.approver_role == bracket.approver_role
                and row.is_active
            ):
                continue
            else:
                row.max_amount = bracket.max_amount
                row.approver_role = bracket.approver_role
                row.is_active = True
            self.session.flush()
            changed += 1

            if actor_id is not None:
                self._auditor.record_change(
                    entity_type=ApprovalConfigurationModel.__tablename__,
                    entity_id=row.id,
                    action=AuditAction.APPROVAL_CONFIGURED,
                    actor_id=actor_id,
                    new_values={
                        "request_type": bracket.request_type,
                        "min_amount": bracket.min_amount,
                        "max_amount": bracket.max_amount,
                        "required_level": bracket.required_level,
                        "approver_role": bracket.approver_role,
                    },
                )

        return ApprovalResult(
            success=True,
            message=f"{changed} approval bracket(s) installed",
        )

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def create_approval_request(
        self,
        request_type: str,
        entity: EntityRef,
        amount: int,
        requested_by_id: UUID,
        description: str | None = None,
    ) -> ApprovalResult:
        """
        Open a request for ``entity`` with the depth its amount demands.

        Postconditions (success):
            - Request PENDING at level 1 with one PENDING level row per
              required level, and an APPROVAL_REQUESTED audit event.
        """
        return self._atomic(
            "approval_request",
            lambda: self._create_approval_request(
                request_type, entity, amount, requested_by_id, description,
            ),
            log_context={"actor_id": requested_by_id},
            extra={
                "request_type": request_type,
                "entity_type": entity.entity_type,
                "amount": amount,
            },
        )

    def _create_approval_request(
        self,
        request_type: str,
        entity: EntityRef,
        amount: int,
        requested_by_id: UUID,
        description: str | None,
    ) -> ApprovalResult:
        if not isinstance(amount, int) or isinstance(amount, bool) or amount < 0:
            return ApprovalResult.failure("Approval amount must be a non-negative whole number")
        requester = self.session.get(User, requested_by_id)
        if requester is None or not requester.is_active:
            return ApprovalResult.failure("Requesting user not found.")

        brackets = self.active_brackets(request_type)
        required_levels = required_level_for(brackets, amount)
        if required_levels is None:
            return ApprovalResult.failure(
                f"No approval configuration found for {request_type} for amount {amount}"
            )

        if self._selector.for_entity(request_type, entity, ApprovalStatus.PENDING):
            return ApprovalResult.failure(MSG_PENDING_EXISTS)

        roles = approver_roles_by_level(brackets)
        request = ApprovalRequestModel(
            request_type=request_type,
            entity_type=entity.entity_type,
            entity_id=entity.id,
            amount=amount,
            description=description,
            requested_by_id=requester.id,
            requested_at=self._clock.now(),
            status=ApprovalStatus.PENDING.value,
            current_level=1,
            required_levels=required_levels,
        )
        self.session.add(request)
        self.session.flush()

        for level in range(1, required_levels + 1):
            self.session.add(
                ApprovalLevelModel(
                    request_id=request.id,
                    level=level,
                    approver_role=roles.get(level),
                    status=LevelStatus.PENDING.value,
                )
            )
        self.session.flush()

        self._auditor.record_change(
            entity_type=ApprovalRequestModel.__tablename__,
            entity_id=request.id,
            action=AuditAction.APPROVAL_REQUESTED,
            actor_id=requester.id,
            new_values={
                "request_type": request_type,
                "entity_type": entity.entity_type,
                "entity_id": entity.id,
                "amount": amount,
                "required_levels": required_levels,
                "status": request.status,
            },
        )
        logger.info(
            "approval_request_created",
            extra={
                "request_id": str(request.id),
                "request_type": request_type,
                "required_levels": required_levels,
            },
        )
        return ApprovalResult(
            success=True,
            message=f"Approval request created - requires Level {required_levels} approval",
            request_id=request.id,
            status=ApprovalStatus.PENDING,
            current_level=1,
            required_levels=required_levels,
        )

    # ------------------------------------------------------------------
    # Decide
    # ------------------------------------------------------------------

    def process_approval(self, decision: ApprovalDecisionRequest) -> ApprovalResult:
        """Record an approver's decision at the request's current level."""
        return self._atomic(
            "approval_decision",
            lambda: self._process_approval(decision),
            log_context={"request_id": decision.request_id, "actor_id": decision.approver_id},
            extra={"level": decision.level, "decision": str(decision.decision)},
        )

    def _process_approval(self, decision: ApprovalDecisionRequest) -> ApprovalResult:
        try:
            verdict = ApprovalDecision(decision.decision)
        except ValueError:
            return ApprovalResult.failure(f"Invalid decision: {decision.decision}")
        approver = self.session.get(User, decision.approver_id)
        if approver is None or not approver.is_active:
            return ApprovalResult.failure("Approver not found.")

        request = self._lock(ApprovalRequestModel, decision.request_id)
        if request is None:
            return ApprovalResult.failure(MSG_NOT_FOUND)
        # A level approval only moves toward APPROVED; REJECTED ends the request
        target = (
            ApprovalStatus.REJECTED if verdict == ApprovalDecision.REJECTED
            else ApprovalStatus.APPROVED
        )
        if not is_valid_transition(ApprovalStatus(request.status), target):
            return ApprovalResult.failure(f"Approval request is already {request.status}")

        level_row = self.session.execute(
            select(ApprovalLevelModel)
            .where(ApprovalLevelModel.request_id == request.id)
            .where(ApprovalLevelModel.level == decision.level)
        ).scalar_one_or_none()
        if level_row is None:
            return ApprovalResult.failure(
                f"Approval level {decision.level} not found for request"
            )
        if decision.level != request.current_level:
            return ApprovalResult.failure(
                "Request is not at the current approval level "
                f"(current level is {request.current_level})"
            )

        now = self._clock.now()
        old_values = {"status": request.status, "current_level": request.current_level}

        level_row.status = verdict.value
        level_row.approver_id = approver.id
        level_row.comments = decision.comments
        level_row.decided_at = now

        if verdict == ApprovalDecision.REJECTED:
            request.status = ApprovalStatus.REJECTED.value
            request.final_decision = ApprovalDecision.REJECTED.value
            request.completed_at = now
            action = AuditAction.APPROVAL_REJECTED
            message = "Approval request rejected"
        elif decision.level < request.required_levels:
            request.current_level = decision.level + 1
            action = AuditAction.APPROVAL_LEVEL_APPROVED
            message = (
                f"Level {decision.level} approval completed, "
                f"pending Level {request.current_level}"
            )
        else:
            request.status = ApprovalStatus.APPROVED.value
            request.final_decision = ApprovalDecision.APPROVED.value
            request.completed_at = now
            action = AuditAction.APPROVAL_GRANTED
            message = "Request fully approved"
        self.session.flush()

        self._auditor.record_change(
            entity_type=ApprovalRequestModel.__tablename__,
            entity_id=request.id,
            action=action,
            actor_id=approver.id,
            old_values=old_values,
            new_values={
                "status": request.status,
                "current_level": request.current_level,
                "decided_level": decision.level,
                "decision": verdict.value,
                "comments": decision.comments,
            },
        )
        logger.info(
            "approval_level_decided",
            extra={
                "level": decision.level,
                "decision": verdict.value,
                "status": request.status,
                "current_level": request.current_level,
            },
        )
        return ApprovalResult(
            success=True,
            message=message,
            request_id=request.id,
            status=ApprovalStatus(request.status),
            current_level=request.current_level,
            required_levels=request.required_levels,
        )

    # ------------------------------------------------------------------
    # Cancel
    # ------------------------------------------------------------------

    def cancel_request(
        self,
        request_id: UUID,
        actor_id: UUID,
        reason: str | None = None,
    ) -> ApprovalResult:
        """Withdraw a pending request.  Only its requester may do so."""
        return self._atomic(
            "approval_cancel",
            lambda: self._cancel_request(request_id, actor_id, reason),
            log_context={"request_id": request_id, "actor_id": actor_id},
        )

    def _cancel_request(
        self,
        request_id: UUID,
        actor_id: UUID,
        reason: str | None,
    ) -> ApprovalResult:
        request = self._lock(ApprovalRequestModel, request_id)
        if request is None:
            return ApprovalResult.failure(MSG_NOT_FOUND)
        if not is_valid_transition(ApprovalStatus(request.status), ApprovalStatus.CANCELLED):
            return ApprovalResult.failure(MSG_ONLY_PENDING_CANCEL)
        if request.requested_by_id != actor_id:
            return ApprovalResult.failure(MSG_ONLY_REQUESTER_CANCEL)

        previous = request.status
        request.status = ApprovalStatus.CANCELLED.value
        request.completed_at = self._clock.now()
        self.session.flush()

        self._auditor.record_change(
            entity_type=ApprovalRequestModel.__tablename__,
            entity_id=request.id,
            action=AuditAction.APPROVAL_CANCELLED,
            actor_id=actor_id,
            old_values={"status": previous},
            new_values={"status": request.status, "reason": reason},
        )
        return ApprovalResult(
            success=True,
            message="Approval request cancelled",
            request_id=request.id,
            status=ApprovalStatus.CANCELLED,
            current_level=request.current_level,
            required_levels=request.required_levels,
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_approval_queue(
        self, level: int, request_type: str | None = None,
    ) -> list[ApprovalRequestView]:
        return self._selector.queue(level, request_type)

    def get_approval_history(self, request_id: UUID) -> ApprovalHistory:
        history = self._selector.history(request_id)
        if history is None:
            raise ApprovalRequestNotFoundError(str(request_id))
        return history

    def get_approval_counts(self, request_type: str | None = None) -> ApprovalCounts:
        return self._selector.counts(request_type)

    def is_entity_approved(self, request_type: str, entity: EntityRef) -> bool:
        return bool(self._selector.for_entity(request_type, entity, ApprovalStatus.APPROVED))
