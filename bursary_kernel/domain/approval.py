"""
Approval domain types (``bursary_kernel.domain.approval``).

Responsibility
--------------
Pure value objects for the multi-level monetary approval workflow:
request and level lifecycle states, amount brackets, and the typed
reference to the thing being approved.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``services/``, ``selectors/``, or outer layers.

Invariants enforced
-------------------
* Lifecycle: ``APPROVAL_TRANSITIONS`` defines the only valid request
  status transitions.  Terminal states have no outgoing edges.
* Brackets are half-open: ``min_amount <= amount < max_amount``, with
  ``max_amount=None`` meaning unbounded.  When several brackets match,
  the highest ``required_level`` wins.
* Entity references are a closed set of tagged variants.  The
  ``(entity_type, entity_id)`` column pair is only ever produced by
  ``EntityRef.entity_type`` and parsed back by ``entity_ref_from_parts``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import ClassVar, Union
from uuid import UUID


# =========================================================================
# Lifecycle
# =========================================================================


class ApprovalStatus(str, Enum):
    """Approval request lifecycle states."""

    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"


APPROVAL_TRANSITIONS: dict[ApprovalStatus, frozenset[ApprovalStatus]] = {
    ApprovalStatus.PENDING: frozenset({
        ApprovalStatus.APPROVED,
        ApprovalStatus.REJECTED,
        ApprovalStatus.CANCELLED,
    }),
    ApprovalStatus.APPROVED: frozenset(),
    ApprovalStatus.REJECTED: frozenset(),
    ApprovalStatus.CANCELLED: frozenset(),
}

TERMINAL_APPROVAL_STATUSES: frozenset[ApprovalStatus] = frozenset({
    ApprovalStatus.APPROVED,
    ApprovalStatus.REJECTED,
    ApprovalStatus.CANCELLED,
})


def is_valid_transition(current: ApprovalStatus, target: ApprovalStatus) -> bool:
    return target in APPROVAL_TRANSITIONS.get(current, frozenset())


class LevelStatus(str, Enum):
    """State of a single approval level."""

    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class ApprovalDecision(str, Enum):
    """Decision an approver records at a level."""

    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


# =========================================================================
# Entity references
# =========================================================================


@dataclass(frozen=True)
class PaymentRef:
    """A fee payment (ledger transaction) awaiting approval."""

    id: UUID
    entity_type: ClassVar[str] = "PAYMENT"


@dataclass(frozen=True)
class InvoiceRef:
    """A fee invoice awaiting approval."""

    id: UUID
    entity_type: ClassVar[str] = "INVOICE"


@dataclass(frozen=True)
class CreditRef:
    """A manual student credit awaiting approval."""

    id: UUID
    entity_type: ClassVar[str] = "CREDIT"


@dataclass(frozen=True)
class RefundRef:
    """A refund awaiting approval."""

    id: UUID
    entity_type: ClassVar[str] = "REFUND"


EntityRef = Union[PaymentRef, InvoiceRef, CreditRef, RefundRef]

_ENTITY_REF_TYPES: dict[str, type] = {
    cls.entity_type: cls for cls in (PaymentRef, InvoiceRef, CreditRef, RefundRef)
}


def entity_ref_from_parts(entity_type: str, entity_id: UUID) -> EntityRef:
    """Rebuild the typed reference from its stored column pair.

    Raises:
        ValueError: if ``entity_type`` is not a known variant.
    """
    try:
        ref_cls = _ENTITY_REF_TYPES[entity_type]
    except KeyError:
        raise ValueError(f"Unknown approval entity type: {entity_type!r}") from None
    return ref_cls(id=entity_id)


# =========================================================================
# Amount brackets
# =========================================================================


@dataclass(frozen=True)
class ApprovalBracket:
    """An amount range and the approval depth it demands."""

    request_type: str
    min_amount: int
    max_amount: int | None
    required_level: int
    approver_role: str | None = None

    def contains(self, amount: int) -> bool:
        if amount < self.min_amount:
            return False
        return self.max_amount is None or amount < self.max_amount


def required_level_for(brackets: list[ApprovalBracket], amount: int) -> int | None:
    """Highest ``required_level`` among brackets containing ``amount``.

    Returns None when no bracket matches, which callers report as a
    configuration gap rather than an error.
    """
    levels = [b.required_level for b in brackets if b.contains(amount)]
    return max(levels) if levels else None


def approver_roles_by_level(brackets: list[ApprovalBracket]) -> dict[int, str]:
    """Map each configured level to the role that decides it."""
    roles: dict[int, str] = {}
    for bracket in sorted(brackets, key=lambda b: (b.required_level, b.min_amount)):
        if bracket.approver_role and bracket.required_level not in roles:
            roles[bracket.required_level] = bracket.approver_role
    return roles


# =========================================================================
# Requests, results and read models
# =========================================================================


@dataclass(frozen=True)
class ApprovalDecisionRequest:
    """An approver's decision on one level of a request."""

    request_id: UUID
    level: int
    decision: ApprovalDecision | str
    approver_id: UUID
    comments: str | None = None


@dataclass(frozen=True)
class ApprovalResult:
    """Outcome of a workflow mutation."""

    success: bool
    message: str = ""
    request_id: UUID | None = None
    status: ApprovalStatus | None = None
    current_level: int | None = None
    required_levels: int | None = None
    error: str | None = None

    @classmethod
    def failure(cls, error: str) -> ApprovalResult:
        return cls(success=False, message=error, error=error)


@dataclass(frozen=True)
class ApprovalLevelView:
    level: int
    status: LevelStatus
    approver_role: str | None
    approver_id: UUID | None
    comments: str | None
    decided_at: datetime | None


@dataclass(frozen=True)
class ApprovalRequestView:
    request_id: UUID
    request_type: str
    entity: EntityRef
    amount: int
    description: str | None
    requested_by_id: UUID
    requested_at: datetime
    status: ApprovalStatus
    current_level: int
    required_levels: int
    final_decision: ApprovalDecision | None
    completed_at: datetime | None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_APPROVAL_STATUSES


@dataclass(frozen=True)
class ApprovalHistory:
    """A request with its levels in ascending order."""

    request: ApprovalRequestView
    levels: tuple[ApprovalLevelView, ...]
