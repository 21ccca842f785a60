"""
Notification events (``procure_kernel.domain.events``).

Responsibility
--------------
Frozen records describing that a notification is due and to whom.  The
kernel decides *that* a notification is due; delivery belongs to a
``NotificationDispatcher`` supplied by the caller.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol, Union
from uuid import UUID

from procure_kernel.domain.approval import ApprovalOutcome, StepDecision
from procure_kernel.domain.requisition import RequisitionStatus


@dataclass(frozen=True)
class ApprovalRequested:
    """A step became decidable; its approver should act."""

    requisition_id: UUID
    requisition_number: str
    step_id: UUID
    approver_id: str
    order_index: int
    occurred_at: datetime

    event_type = "approval_requested"

    @property
    def recipients(self) -> tuple[str, ...]:
        return (self.approver_id,)


@dataclass(frozen=True)
class DecisionRecorded:
    """An approver decided a step; the requester is told the result."""

    requisition_id: UUID
    requisition_number: str
    requester_id: str
    step_id: UUID
    approver_id: str
    decision: StepDecision
    outcome: ApprovalOutcome
    occurred_at: datetime

    event_type = "decision_recorded"

    @property
    def recipients(self) -> tuple[str, ...]:
        return (self.requester_id,)


@dataclass(frozen=True)
class RequisitionStatusChanged:
    requisition_id: UUID
    requisition_number: str
    requester_id: str
    from_status: RequisitionStatus
    to_status: RequisitionStatus
    actor_id: str
    occurred_at: datetime

    event_type = "requisition_status_changed"

    @property
    def recipients(self) -> tuple[str, ...]:
        return (self.requester_id,)


NotificationEvent = Union[ApprovalRequested, DecisionRecorded, RequisitionStatusChanged]


class NotificationDispatcher(Protocol):
    """Delivery boundary for notification events."""

    def dispatch(self, event: NotificationEvent) -> None: ...
