"""
procure_engines.approval_rules -- Pure approval routing engine.

Responsibility:
    Evaluate an immutable rule set against a requisition snapshot and
    produce the ordered approval plan: which approvers, in what order,
    in which mode, and which earlier steps each one waits on.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import procure_kernel.domain types and procure_kernel.exceptions.

Invariants enforced:
    - Deterministic rule ordering: active rules sorted by
      ``(priority, rule_id)``; every matching rule contributes.
    - Conditions are data.  One comparison function per
      (field kind, operator) pair lives in ``COMPARATORS``; the pairs are
      exactly ``SUPPORTED_OPERATORS``, so every rule that could be built
      can be evaluated.
    - An approver appears at most once; the earliest assignment wins.
    - Dependencies: a sequential step waits on the closest earlier
      sequential step; a parallel step waits on the closest earlier
      sequential step and gates nothing.
    - No matching rule yields an empty plan, never an approval.

Failure modes:
    - Returns ``ApprovalPlan(assignments=())`` when nothing matches.  The
      workflow turns that into NoApprovalPathError.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from procure_kernel.domain.approval import (
    ApprovalMode,
    ApprovalPlan,
    ApprovalRule,
    ConditionField,
    ConditionOperator,
    FieldKind,
    RequisitionSnapshot,
    RuleCondition,
    RuleSet,
    StepAssignment,
)
from procure_engines.tracer import traced_engine


# =========================================================================
# Comparator table
# =========================================================================


def _as_decimal(value: Any) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(value)


def _numeric_equals(actual: Any, expected: Decimal) -> bool:
    return _as_decimal(actual) == expected


def _numeric_greater_than(actual: Any, expected: Decimal) -> bool:
    return _as_decimal(actual) > expected


def _numeric_less_than(actual: Any, expected: Decimal) -> bool:
    return _as_decimal(actual) < expected


def _text_equals(actual: str, expected: str) -> bool:
    return actual.casefold() == expected.casefold()


def _text_contains(actual: str, expected: str) -> bool:
    return expected.casefold() in actual.casefold()


def _set_contains(actual: frozenset[str], expected: str) -> bool:
    wanted = expected.casefold()
    return any(member.casefold() == wanted for member in actual)


Comparator = Callable[[Any, Any], bool]

COMPARATORS: dict[tuple[FieldKind, ConditionOperator], Comparator] = {
    (FieldKind.NUMERIC, ConditionOperator.EQUALS): _numeric_equals,
    (FieldKind.NUMERIC, ConditionOperator.GREATER_THAN): _numeric_greater_than,
    (FieldKind.NUMERIC, ConditionOperator.LESS_THAN): _numeric_less_than,
    (FieldKind.TEXT, ConditionOperator.EQUALS): _text_equals,
    (FieldKind.TEXT, ConditionOperator.CONTAINS): _text_contains,
    (FieldKind.SET, ConditionOperator.CONTAINS): _set_contains,
}


# =========================================================================
# Evaluation
# =========================================================================


def field_value(snapshot: RequisitionSnapshot, field: ConditionField) -> Any:
    """The snapshot attribute a condition field reads."""
    return getattr(snapshot, field.value)


def evaluate_condition(condition: RuleCondition, snapshot: RequisitionSnapshot) -> bool:
    """True iff the condition holds. An absent (None) value never holds."""
    actual = field_value(snapshot, condition.field)
    if actual is None:
        return False
    comparator = COMPARATORS[(condition.field.kind, condition.operator)]
    return comparator(actual, condition.value)


def rule_matches(rule: ApprovalRule, snapshot: RequisitionSnapshot) -> bool:
    return all(evaluate_condition(c, snapshot) for c in rule.conditions)


@dataclass(frozen=True)
class RuleEvaluation:
    """Per-rule explanation of a routing decision."""

    rule_id: str
    priority: int
    matched: bool
    failed_conditions: tuple[RuleCondition, ...]


def explain(snapshot: RequisitionSnapshot, rule_set: RuleSet) -> tuple[RuleEvaluation, ...]:
    """Evaluate every active rule in order and report which conditions failed."""
    results = []
    for rule in rule_set.ordered_active_rules():
        failed = tuple(c for c in rule.conditions if not evaluate_condition(c, snapshot))
        results.append(RuleEvaluation(
            rule_id=rule.rule_id,
            priority=rule.priority,
            matched=not failed,
            failed_conditions=failed,
        ))
    return tuple(results)


def matching_rules(snapshot: RequisitionSnapshot, rule_set: RuleSet) -> tuple[ApprovalRule, ...]:
    return tuple(r for r in rule_set.ordered_active_rules() if rule_matches(r, snapshot))


@traced_engine("approval_rules", "1.0", fingerprint_fields=("snapshot", "rule_set"))
def build_approval_plan(snapshot: RequisitionSnapshot, rule_set: RuleSet) -> ApprovalPlan:
    """Produce the ordered step plan for ``snapshot`` under ``rule_set``.

    Matching rules contribute in priority order, each action's approvers in
    listed order.  New approvers take order indices 0, 1, 2, ...
    """
    matched = matching_rules(snapshot, rule_set)

    assignments: list[StepAssignment] = []
    assigned: set[str] = set()
    last_sequential: int | None = None

    for rule in matched:
        for action in rule.actions:
            for approver_id in action.approvers:
                if approver_id in assigned:
                    continue
                assigned.add(approver_id)
                order_index = len(assignments)
                depends_on = () if last_sequential is None else (last_sequential,)
                assignments.append(StepAssignment(
                    approver_id=approver_id,
                    order_index=order_index,
                    mode=action.mode,
                    depends_on=depends_on,
                    rule_id=rule.rule_id,
                ))
                if action.mode is ApprovalMode.SEQUENTIAL:
                    last_sequential = order_index

    return ApprovalPlan(
        assignments=tuple(assignments),
        matched_rule_ids=tuple(r.rule_id for r in matched),
        rule_set_version=rule_set.version,
        rule_set_checksum=rule_set.checksum,
    )
