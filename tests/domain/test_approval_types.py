"""
Tests for Approval Domain Types (``bursary_kernel.domain.approval``).

Covers the pure value objects behind the multi-level approval workflow:
the request lifecycle state machine, half-open amount brackets, level
resolution and the typed entity references.
"""

from dataclasses import FrozenInstanceError
from uuid import uuid4

import pytest

from bursary_kernel.domain.approval import (
    APPROVAL_TRANSITIONS,
    TERMINAL_APPROVAL_STATUSES,
    ApprovalBracket,
    ApprovalResult,
    ApprovalStatus,
    CreditRef,
    InvoiceRef,
    PaymentRef,
    RefundRef,
    approver_roles_by_level,
    entity_ref_from_parts,
    is_valid_transition,
    required_level_for,
)

PAYMENT_BRACKETS = [
    ApprovalBracket("PAYMENT", 0, 50_000, 1, "BURSAR"),
    ApprovalBracket("PAYMENT", 50_000, None, 2, "PRINCIPAL"),
]


# =========================================================================
# Lifecycle
# =========================================================================


class TestApprovalLifecycle:
    """PENDING is the only state with outgoing transitions."""

    def test_pending_can_reach_every_terminal_state(self):
        for target in TERMINAL_APPROVAL_STATUSES:
            assert is_valid_transition(ApprovalStatus.PENDING, target)

    def test_terminal_states_have_no_exits(self):
        for status in TERMINAL_APPROVAL_STATUSES:
            assert APPROVAL_TRANSITIONS[status] == frozenset()
            for target in ApprovalStatus:
                assert not is_valid_transition(status, target)

    def test_pending_is_not_terminal(self):
        assert ApprovalStatus.PENDING not in TERMINAL_APPROVAL_STATUSES

    def test_failure_result_carries_error_as_message(self):
        result = ApprovalResult.failure("nope")
        assert result.success is False
        assert result.error == "nope"
        assert result.message == "nope"


# =========================================================================
# Brackets
# =========================================================================


class TestApprovalBracket:
    """Brackets are half-open: min <= amount < max."""

    def test_lower_bound_inclusive(self):
        assert PAYMENT_BRACKETS[0].contains(0)
        assert PAYMENT_BRACKETS[1].contains(50_000)

    def test_upper_bound_exclusive(self):
        assert PAYMENT_BRACKETS[0].contains(49_999)
        assert not PAYMENT_BRACKETS[0].contains(50_000)

    def test_unbounded_top_bracket(self):
        assert PAYMENT_BRACKETS[1].contains(10**12)

    def test_below_minimum(self):
        bracket = ApprovalBracket("REFUND", 1_000, 5_000, 1)
        assert not bracket.contains(999)

    def test_bracket_is_frozen(self):
        with pytest.raises(FrozenInstanceError):
            PAYMENT_BRACKETS[0].required_level = 3


class TestRequiredLevel:

    @pytest.mark.parametrize(
        "amount, expected",
        [(0, 1), (49_999, 1), (50_000, 2), (2_000_000, 2)],
    )
    def test_level_by_amount(self, amount, expected):
        assert required_level_for(PAYMENT_BRACKETS, amount) == expected

    def test_no_bracket_means_none(self):
        assert required_level_for([], 100) is None
        gap = [ApprovalBracket("PAYMENT", 1_000, None, 1)]
        assert required_level_for(gap, 500) is None

    def test_overlapping_brackets_take_the_highest_level(self):
        brackets = [
            ApprovalBracket("PAYMENT", 0, None, 1),
            ApprovalBracket("PAYMENT", 10_000, None, 3),
        ]
        assert required_level_for(brackets, 5_000) == 1
        assert required_level_for(brackets, 10_000) == 3

    def test_roles_by_level(self):
        assert approver_roles_by_level(PAYMENT_BRACKETS) == {1: "BURSAR", 2: "PRINCIPAL"}

    def test_roles_skip_brackets_without_role(self):
        brackets = [ApprovalBracket("PAYMENT", 0, None, 1)]
        assert approver_roles_by_level(brackets) == {}


# =========================================================================
# Entity references
# =========================================================================


class TestEntityRefs:

    @pytest.mark.parametrize(
        "ref_cls, entity_type",
        [
            (PaymentRef, "PAYMENT"),
            (InvoiceRef, "INVOICE"),
            (CreditRef, "CREDIT"),
            (RefundRef, "REFUND"),
        ],
    )
    def test_parts_rebuild_the_same_ref(self, ref_cls, entity_type):
        ref = ref_cls(id=uuid4())
        assert ref.entity_type == entity_type
        assert entity_ref_from_parts(entity_type, ref.id) == ref

    def test_unknown_entity_type_rejected(self):
        with pytest.raises(ValueError, match="Unknown approval entity type"):
            entity_ref_from_parts("LIBRARY_FINE", uuid4())

    def test_refs_of_different_kinds_are_not_equal(self):
        entity_id = uuid4()
        assert PaymentRef(entity_id) != InvoiceRef(entity_id)
