"""
Step gating (``procure_kernel.domain.gating``).

Responsibility
--------------
Pure functions over a requisition's approval steps: which steps are
decidable now, whether every step is decided, and the aggregate outcome.
Eligibility depends only on each step's ``depends_on`` set and the
current step statuses.

Architecture position
---------------------
**Kernel domain layer** -- pure functions.  ZERO I/O.

Invariants enforced
-------------------
* A step is eligible only while pending and only when every order index
  in its ``depends_on`` belongs to an approved step.
* An empty step set is never complete and never approved.
"""

from __future__ import annotations

from collections.abc import Sequence

from procure_kernel.domain.approval import ApprovalOutcome, ApprovalStep, StepStatus


def approved_indices(steps: Sequence[ApprovalStep]) -> frozenset[int]:
    return frozenset(s.order_index for s in steps if s.status is StepStatus.APPROVED)


def unmet_dependencies(
    step: ApprovalStep,
    steps: Sequence[ApprovalStep],
) -> tuple[int, ...]:
    """Order indices ``step`` is still waiting on."""
    approved = approved_indices(steps)
    return tuple(sorted(i for i in step.depends_on if i not in approved))


def is_eligible(step: ApprovalStep, steps: Sequence[ApprovalStep]) -> bool:
    return step.is_pending and not unmet_dependencies(step, steps)


def eligible_steps(steps: Sequence[ApprovalStep]) -> tuple[ApprovalStep, ...]:
    """Every decidable step, lowest order index first."""
    approved = approved_indices(steps)
    return tuple(
        s for s in sorted(steps, key=lambda s: s.order_index)
        if s.is_pending and all(i in approved for i in s.depends_on)
    )


def next_eligible_step(steps: Sequence[ApprovalStep]) -> ApprovalStep | None:
    eligible = eligible_steps(steps)
    return eligible[0] if eligible else None


def is_complete(steps: Sequence[ApprovalStep]) -> bool:
    return bool(steps) and all(not s.is_pending for s in steps)


def aggregate_outcome(steps: Sequence[ApprovalStep]) -> ApprovalOutcome:
    """``rejected`` iff any step is rejected, ``approved`` iff all are approved."""
    if any(s.status is StepStatus.REJECTED for s in steps):
        return ApprovalOutcome.REJECTED
    if steps and all(s.status is StepStatus.APPROVED for s in steps):
        return ApprovalOutcome.APPROVED
    return ApprovalOutcome.PENDING


def newly_eligible(
    before: Sequence[ApprovalStep],
    after: Sequence[ApprovalStep],
) -> tuple[ApprovalStep, ...]:
    """Steps eligible in ``after`` that were not eligible in ``before``."""
    previously = {s.id for s in eligible_steps(before)}
    return tuple(s for s in eligible_steps(after) if s.id not in previously)
