"""
Tests for step gating (``procure_kernel.domain.gating``).

Eligibility is a pure function of each step's ``depends_on`` set and the
current step statuses.
"""

from dataclasses import replace
from uuid import uuid4

import pytest

from procure_kernel.domain import gating
from procure_kernel.domain.approval import (
    STEP_TRANSITIONS,
    ApprovalMode,
    ApprovalOutcome,
    ApprovalStep,
    StepDecision,
    StepStatus,
)

REQUISITION_ID = uuid4()


def _step(order_index, depends_on=(), mode=ApprovalMode.SEQUENTIAL, status=StepStatus.PENDING):
    return ApprovalStep(
        id=uuid4(),
        requisition_id=REQUISITION_ID,
        approver_id=f"approver-{order_index}",
        order_index=order_index,
        mode=mode,
        depends_on=tuple(depends_on),
        status=status,
        rule_id="r",
    )


def _with_status(steps, order_index, status):
    return [replace(s, status=status) if s.order_index == order_index else s for s in steps]


class TestStepLifecycle:

    def test_pending_is_the_only_non_terminal_status(self):
        for status, targets in STEP_TRANSITIONS.items():
            if status is StepStatus.PENDING:
                assert targets == {StepStatus.APPROVED, StepStatus.REJECTED, StepStatus.SKIPPED}
            else:
                assert targets == frozenset()

    def test_decision_maps_to_status(self):
        assert StepDecision.APPROVE.resulting_status is StepStatus.APPROVED
        assert StepDecision.REJECT.resulting_status is StepStatus.REJECTED


class TestSequentialChain:
    """A (0) then B (1) depending on A."""

    @pytest.fixture
    def steps(self):
        return [_step(0), _step(1, depends_on=(0,))]

    def test_only_first_step_eligible(self, steps):
        assert [s.order_index for s in gating.eligible_steps(steps)] == [0]

    def test_second_step_waits_on_first(self, steps):
        assert gating.unmet_dependencies(steps[1], steps) == (0,)
        assert not gating.is_eligible(steps[1], steps)

    def test_second_step_eligible_after_first_approved(self, steps):
        steps = _with_status(steps, 0, StepStatus.APPROVED)
        assert gating.next_eligible_step(steps).order_index == 1

    def test_rejected_dependency_never_unblocks(self, steps):
        steps = _with_status(steps, 0, StepStatus.REJECTED)
        assert gating.eligible_steps(steps) == ()

    def test_newly_eligible_after_approval(self, steps):
        after = _with_status(steps, 0, StepStatus.APPROVED)
        newly = gating.newly_eligible(steps, after)
        assert [s.order_index for s in newly] == [1]


class TestParallelSteps:
    """Manager (0), then IT (1) and security (2) in parallel, then finance (3)."""

    @pytest.fixture
    def steps(self):
        return [
            _step(0),
            _step(1, depends_on=(0,), mode=ApprovalMode.PARALLEL),
            _step(2, depends_on=(0,), mode=ApprovalMode.PARALLEL),
            _step(3, depends_on=(0,)),
        ]

    def test_parallel_steps_open_together(self, steps):
        steps = _with_status(steps, 0, StepStatus.APPROVED)
        assert [s.order_index for s in gating.eligible_steps(steps)] == [1, 2, 3]

    def test_parallel_steps_gate_nothing(self, steps):
        steps = _with_status(steps, 0, StepStatus.APPROVED)
        assert gating.unmet_dependencies(steps[3], steps) == ()


class TestAggregation:

    def test_all_approved(self):
        steps = [_step(0, status=StepStatus.APPROVED), _step(1, status=StepStatus.APPROVED)]
        assert gating.is_complete(steps)
        assert gating.aggregate_outcome(steps) is ApprovalOutcome.APPROVED

    def test_any_rejected(self):
        steps = [_step(0, status=StepStatus.REJECTED), _step(1, status=StepStatus.PENDING)]
        assert not gating.is_complete(steps)
        assert gating.aggregate_outcome(steps) is ApprovalOutcome.REJECTED

    def test_partially_approved_is_pending(self):
        steps = [_step(0, status=StepStatus.APPROVED), _step(1)]
        assert gating.aggregate_outcome(steps) is ApprovalOutcome.PENDING

    def test_skipped_steps_complete_but_do_not_approve(self):
        steps = [_step(0, status=StepStatus.APPROVED), _step(1, status=StepStatus.SKIPPED)]
        assert gating.is_complete(steps)
        assert gating.aggregate_outcome(steps) is ApprovalOutcome.PENDING

    def test_empty_step_set_is_never_approved(self):
        assert not gating.is_complete([])
        assert gating.aggregate_outcome([]) is ApprovalOutcome.PENDING
        assert gating.next_eligible_step([]) is None
