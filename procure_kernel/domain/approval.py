"""
Approval domain types (``procure_kernel.domain.approval``).

Responsibility
--------------
Pure value objects for approval routing: the approval step lifecycle,
rule conditions as data, immutable rule-set snapshots, the requisition
snapshot that rules are evaluated against, and the step plan the rule
engine produces.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``services/``, or outer layers.

Invariants enforced
-------------------
* Step lifecycle -- ``STEP_TRANSITIONS`` allows a step to leave
  ``PENDING`` exactly once.  Every other status is terminal.
* Typed conditions -- ``SUPPORTED_OPERATORS`` declares which operators
  apply to each field kind.  ``ApprovalRule`` rejects any other pairing
  when it is built, so a malformed rule never reaches evaluation.
* Deterministic ordering -- ``RuleSet.ordered_active_rules`` sorts by
  ``(priority, rule_id)``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from procure_kernel.exceptions import InvalidRuleError


# =========================================================================
# Step lifecycle
# =========================================================================


class StepStatus(str, Enum):
    """Approval step states. ``SKIPPED`` is set by rejection or cancellation."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    SKIPPED = "skipped"


STEP_TRANSITIONS: dict[StepStatus, frozenset[StepStatus]] = {
    StepStatus.PENDING: frozenset({
        StepStatus.APPROVED,
        StepStatus.REJECTED,
        StepStatus.SKIPPED,
    }),
    StepStatus.APPROVED: frozenset(),
    StepStatus.REJECTED: frozenset(),
    StepStatus.SKIPPED: frozenset(),
}


class StepDecision(str, Enum):
    """Decisions an approver can record on a step."""

    APPROVE = "approve"
    REJECT = "reject"

    @property
    def resulting_status(self) -> StepStatus:
        if self is StepDecision.APPROVE:
            return StepStatus.APPROVED
        return StepStatus.REJECTED


class ApprovalMode(str, Enum):
    SEQUENTIAL = "sequential"
    PARALLEL = "parallel"


class ApprovalOutcome(str, Enum):
    """Aggregate outcome over all steps of one requisition."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


# =========================================================================
# Conditions
# =========================================================================


class FieldKind(str, Enum):
    NUMERIC = "numeric"
    TEXT = "text"
    SET = "set"


class ConditionField(str, Enum):
    """Requisition attributes a rule condition can test."""

    AMOUNT = "amount"
    ITEM_COUNT = "item_count"
    CATEGORY = "category"
    DEPARTMENT = "department"
    CURRENCY = "currency"
    REQUESTER = "requester"
    ITEM_CATEGORIES = "item_categories"

    @property
    def kind(self) -> FieldKind:
        return FIELD_KINDS[self]


FIELD_KINDS: dict[ConditionField, FieldKind] = {
    ConditionField.AMOUNT: FieldKind.NUMERIC,
    ConditionField.ITEM_COUNT: FieldKind.NUMERIC,
    ConditionField.CATEGORY: FieldKind.TEXT,
    ConditionField.DEPARTMENT: FieldKind.TEXT,
    ConditionField.CURRENCY: FieldKind.TEXT,
    ConditionField.REQUESTER: FieldKind.TEXT,
    ConditionField.ITEM_CATEGORIES: FieldKind.SET,
}


class ConditionOperator(str, Enum):
    EQUALS = "equals"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    CONTAINS = "contains"


SUPPORTED_OPERATORS: dict[FieldKind, frozenset[ConditionOperator]] = {
    FieldKind.NUMERIC: frozenset({
        ConditionOperator.EQUALS,
        ConditionOperator.GREATER_THAN,
        ConditionOperator.LESS_THAN,
    }),
    FieldKind.TEXT: frozenset({
        ConditionOperator.EQUALS,
        ConditionOperator.CONTAINS,
    }),
    FieldKind.SET: frozenset({
        ConditionOperator.CONTAINS,
    }),
}


@dataclass(frozen=True)
class RuleCondition:
    """One (field, operator, value) test.

    ``value`` is a ``Decimal`` for numeric fields and a ``str`` otherwise.
    """

    field: ConditionField
    operator: ConditionOperator
    value: Decimal | str


@dataclass(frozen=True)
class RuleAction:
    """Approvers added to the plan when the owning rule matches."""

    approvers: tuple[str, ...]
    mode: ApprovalMode = ApprovalMode.SEQUENTIAL


@dataclass(frozen=True)
class ApprovalRule:
    """A routing rule. All conditions must hold (AND) for it to match.

    Lower ``priority`` evaluates first.  A rule with no conditions matches
    every requisition.
    """

    rule_id: str
    priority: int
    conditions: tuple[RuleCondition, ...] = ()
    actions: tuple[RuleAction, ...] = ()
    is_active: bool = True
    description: str = ""

    def __post_init__(self) -> None:
        if not self.rule_id:
            raise InvalidRuleError("<unnamed>", "rule id is required")
        if not self.actions:
            raise InvalidRuleError(self.rule_id, "at least one action is required")
        for action in self.actions:
            if not action.approvers:
                raise InvalidRuleError(self.rule_id, "action has no approvers")
            if any(not approver for approver in action.approvers):
                raise InvalidRuleError(self.rule_id, "approver ids must be non-empty")
        for condition in self.conditions:
            _validate_condition(self.rule_id, condition)


def _validate_condition(rule_id: str, condition: RuleCondition) -> None:
    kind = condition.field.kind
    if condition.operator not in SUPPORTED_OPERATORS[kind]:
        raise InvalidRuleError(
            rule_id,
            f"operator {condition.operator.value!r} is not supported "
            f"for {kind.value} field {condition.field.value!r}",
        )
    if kind is FieldKind.NUMERIC:
        if not isinstance(condition.value, Decimal) or not condition.value.is_finite():
            raise InvalidRuleError(
                rule_id,
                f"field {condition.field.value!r} requires a finite Decimal value",
            )
    elif not isinstance(condition.value, str):
        raise InvalidRuleError(
            rule_id,
            f"field {condition.field.value!r} requires a string value",
        )


@dataclass(frozen=True)
class RuleSet:
    """Immutable, versioned snapshot of the routing rules.

    Updates produce a new snapshot; a submitted requisition records the
    version and checksum it was routed against.
    """

    version: int
    rules: tuple[ApprovalRule, ...]
    checksum: str = ""

    def ordered_active_rules(self) -> tuple[ApprovalRule, ...]:
        return tuple(sorted(
            (r for r in self.rules if r.is_active),
            key=lambda r: (r.priority, r.rule_id),
        ))


# =========================================================================
# Evaluation input and output
# =========================================================================


@dataclass(frozen=True)
class RequisitionSnapshot:
    """The requisition attributes visible to routing rules."""

    amount: Decimal
    item_count: int
    requester: str
    currency: str = "USD"
    category: str | None = None
    department: str | None = None
    item_categories: frozenset[str] = field(default_factory=frozenset)


@dataclass(frozen=True)
class StepAssignment:
    """One planned approval step."""

    approver_id: str
    order_index: int
    mode: ApprovalMode
    depends_on: tuple[int, ...]
    rule_id: str


@dataclass(frozen=True)
class ApprovalPlan:
    """Ordered step assignments produced by the rule engine."""

    assignments: tuple[StepAssignment, ...]
    matched_rule_ids: tuple[str, ...]
    rule_set_version: int
    rule_set_checksum: str = ""

    @property
    def is_empty(self) -> bool:
        return not self.assignments


# =========================================================================
# Persisted step snapshot
# =========================================================================


@dataclass(frozen=True)
class ApprovalStep:
    """Immutable snapshot of a persisted approval step."""

    id: UUID
    requisition_id: UUID
    approver_id: str
    order_index: int
    mode: ApprovalMode
    depends_on: tuple[int, ...]
    status: StepStatus
    rule_id: str
    notes: str | None = None
    decided_at: datetime | None = None
    decided_by: str | None = None
    is_override: bool = False

    @property
    def is_pending(self) -> bool:
        return self.status is StepStatus.PENDING
