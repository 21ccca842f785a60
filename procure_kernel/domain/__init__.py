"""
Pure domain layer.

This module contains value objects and domain logic with NO dependencies on:
- ORM (SQLAlchemy)
- Database
- I/O

All domain objects are immutable and deterministic.  Time enters only
through an injected ``Clock``.
"""

from procure_kernel.domain.approval import (
    ApprovalMode,
    ApprovalOutcome,
    ApprovalPlan,
    ApprovalRule,
    ApprovalStep,
    ConditionField,
    ConditionOperator,
    FieldKind,
    RequisitionSnapshot,
    RuleAction,
    RuleCondition,
    RuleSet,
    StepAssignment,
    StepDecision,
    StepStatus,
)
from procure_kernel.domain.budget import BudgetBalance, compute_remaining
from procure_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from procure_kernel.domain.gating import (
    aggregate_outcome,
    eligible_steps,
    is_complete,
    next_eligible_step,
    unmet_dependencies,
)
from procure_kernel.domain.events import (
    ApprovalRequested,
    DecisionRecorded,
    NotificationDispatcher,
    NotificationEvent,
    RequisitionStatusChanged,
)
from procure_kernel.domain.requisition import (
    MONEY_DECIMAL_PLACES,
    REQUISITION_WORKFLOW,
    BudgetEffect,
    LineItemSpec,
    Requisition,
    RequisitionAction,
    RequisitionItem,
    RequisitionStatus,
    RequisitionTransition,
    has_money_scale,
    line_total,
    requisition_total,
    resolve_transition,
)

__all__ = [
    "ApprovalMode",
    "ApprovalOutcome",
    "ApprovalPlan",
    "ApprovalRequested",
    "ApprovalRule",
    "ApprovalStep",
    "BudgetBalance",
    "BudgetEffect",
    "Clock",
    "ConditionField",
    "ConditionOperator",
    "DecisionRecorded",
    "DeterministicClock",
    "FieldKind",
    "LineItemSpec",
    "MONEY_DECIMAL_PLACES",
    "NotificationDispatcher",
    "NotificationEvent",
    "REQUISITION_WORKFLOW",
    "Requisition",
    "RequisitionAction",
    "RequisitionItem",
    "RequisitionSnapshot",
    "RequisitionStatus",
    "RequisitionStatusChanged",
    "RequisitionTransition",
    "RuleAction",
    "RuleCondition",
    "RuleSet",
    "StepAssignment",
    "StepDecision",
    "StepStatus",
    "SystemClock",
    "aggregate_outcome",
    "compute_remaining",
    "eligible_steps",
    "has_money_scale",
    "is_complete",
    "line_total",
    "next_eligible_step",
    "requisition_total",
    "resolve_transition",
    "unmet_dependencies",
]
