"""
Tests for the approval routing engine (``procure_engines.approval_rules``).

Invariants tested:
- Every matching rule contributes, lowest priority first.
- Text comparisons are case-insensitive; ``contains`` is substring for
  text and membership for sets.
- An absent (None) value never satisfies a condition.
- An approver appears once; the earliest assignment wins.
- Sequential steps chain; parallel steps depend on the latest earlier
  sequential step and gate nothing.
- No match produces an empty plan, never an approval.
"""

import logging
from decimal import Decimal

import pytest

from procure_config import parse_rule_set
from procure_engines.approval_rules import (
    build_approval_plan,
    evaluate_condition,
    explain,
    matching_rules,
)
from procure_kernel.domain.approval import (
    ApprovalMode,
    ConditionField,
    ConditionOperator,
    RequisitionSnapshot,
    RuleCondition,
)

F = ConditionField
Op = ConditionOperator


def _snapshot(amount="500", **kwargs):
    kwargs.setdefault("item_count", 1)
    kwargs.setdefault("requester", "alice")
    return RequisitionSnapshot(amount=Decimal(amount), **kwargs)


def _rules(*rules, version=1):
    return parse_rule_set({"version": version, "rules": list(rules)})


def _rule(rule_id, approvers, priority=100, conditions=(), mode="sequential", active=True):
    return {
        "id": rule_id,
        "priority": priority,
        "active": active,
        "conditions": list(conditions),
        "actions": [{"approvers": approvers, "mode": mode}],
    }


def _cond(field, operator, value):
    return {"field": field, "operator": operator, "value": value}


def _plan(snapshot, rule_set):
    return build_approval_plan(snapshot=snapshot, rule_set=rule_set)


class TestConditionEvaluation:

    @pytest.mark.parametrize(
        "operator, value, expected",
        [
            (Op.GREATER_THAN, "499.99", True),
            (Op.GREATER_THAN, "500", False),
            (Op.LESS_THAN, "500.01", True),
            (Op.EQUALS, "500.00", True),
        ],
    )
    def test_numeric_amount(self, operator, value, expected):
        condition = RuleCondition(F.AMOUNT, operator, Decimal(value))
        assert evaluate_condition(condition, _snapshot("500")) is expected

    def test_item_count_compares_as_number(self):
        condition = RuleCondition(F.ITEM_COUNT, Op.GREATER_THAN, Decimal("2"))
        assert evaluate_condition(condition, _snapshot(item_count=3))
        assert not evaluate_condition(condition, _snapshot(item_count=2))

    def test_text_equals_ignores_case(self):
        condition = RuleCondition(F.DEPARTMENT, Op.EQUALS, "Engineering")
        assert evaluate_condition(condition, _snapshot(department="ENGINEERING"))

    def test_text_contains_is_substring(self):
        condition = RuleCondition(F.CATEGORY, Op.CONTAINS, "soft")
        assert evaluate_condition(condition, _snapshot(category="Software licences"))
        assert not evaluate_condition(condition, _snapshot(category="hardware"))

    def test_set_contains_is_membership(self):
        condition = RuleCondition(F.ITEM_CATEGORIES, Op.CONTAINS, "Hardware")
        assert evaluate_condition(
            condition, _snapshot(item_categories=frozenset({"hardware", "furniture"}))
        )
        # membership, not substring
        assert not evaluate_condition(
            condition, _snapshot(item_categories=frozenset({"hardware-support"}))
        )

    def test_absent_value_never_matches(self):
        condition = RuleCondition(F.DEPARTMENT, Op.EQUALS, "it")
        assert not evaluate_condition(condition, _snapshot(department=None))


class TestRuleMatching:

    def test_all_conditions_must_hold(self):
        rule_set = _rules(_rule("r", ["a"], conditions=[
            _cond("amount", "greater_than", "100"),
            _cond("department", "equals", "it"),
        ]))
        assert matching_rules(_snapshot("500", department="it"), rule_set)
        assert not matching_rules(_snapshot("500", department="hr"), rule_set)

    def test_inactive_rule_never_matches(self):
        rule_set = _rules(_rule("r", ["a"], active=False))
        assert matching_rules(_snapshot(), rule_set) == ()

    def test_explain_reports_failed_conditions(self):
        rule_set = _rules(
            _rule("small", ["a"], priority=1, conditions=[_cond("amount", "less_than", "1000")]),
            _rule("big", ["b"], priority=2, conditions=[_cond("amount", "greater_than", "1000")]),
        )
        small, big = explain(_snapshot("500"), rule_set)
        assert small.matched and small.failed_conditions == ()
        assert not big.matched
        assert big.failed_conditions[0].field is F.AMOUNT


class TestPlanBuilding:

    def test_below_threshold_yields_empty_plan(self):
        rule_set = _rules(_rule("large", ["approverA"], conditions=[
            _cond("amount", "greater_than", "1000"),
        ]))
        plan = _plan(_snapshot("500"), rule_set)
        assert plan.is_empty
        assert plan.matched_rule_ids == ()

    def test_rules_contribute_in_priority_order(self):
        rule_set = _rules(
            _rule("finance", ["controller"], priority=30),
            _rule("manager", ["manager"], priority=10),
        )
        plan = _plan(_snapshot(), rule_set)
        assert [a.approver_id for a in plan.assignments] == ["manager", "controller"]
        assert [a.order_index for a in plan.assignments] == [0, 1]
        assert plan.matched_rule_ids == ("manager", "finance")

    def test_equal_priority_ordered_by_rule_id(self):
        rule_set = _rules(_rule("b", ["second"], priority=5), _rule("a", ["first"], priority=5))
        plan = _plan(_snapshot(), rule_set)
        assert [a.approver_id for a in plan.assignments] == ["first", "second"]

    def test_sequential_steps_chain(self):
        rule_set = _rules(_rule("r", ["a", "b", "c"]))
        plan = _plan(_snapshot(), rule_set)
        assert [a.depends_on for a in plan.assignments] == [(), (0,), (1,)]

    def test_parallel_steps_share_the_preceding_sequential_step(self):
        rule_set = _rules(
            _rule("manager", ["manager"], priority=10),
            _rule("it", ["it-lead", "security"], priority=20, mode="parallel"),
            _rule("finance", ["controller"], priority=30),
        )
        plan = _plan(_snapshot(), rule_set)
        by_approver = {a.approver_id: a for a in plan.assignments}
        assert by_approver["it-lead"].depends_on == (0,)
        assert by_approver["security"].depends_on == (0,)
        assert by_approver["it-lead"].mode is ApprovalMode.PARALLEL
        # parallel steps never gate
        assert by_approver["controller"].depends_on == (0,)

    def test_leading_parallel_steps_have_no_dependencies(self):
        rule_set = _rules(_rule("r", ["a", "b"], mode="parallel"))
        plan = _plan(_snapshot(), rule_set)
        assert [a.depends_on for a in plan.assignments] == [(), ()]

    def test_duplicate_approver_keeps_earliest_assignment(self):
        rule_set = _rules(
            _rule("first", ["manager", "director"], priority=1),
            _rule("second", ["director", "cfo"], priority=2),
        )
        plan = _plan(_snapshot(), rule_set)
        assert [a.approver_id for a in plan.assignments] == ["manager", "director", "cfo"]
        director = plan.assignments[1]
        assert director.rule_id == "first"
        assert director.order_index == 1
        assert plan.assignments[2].depends_on == (1,)

    def test_plan_records_rule_set_snapshot(self):
        rule_set = _rules(_rule("r", ["a"]), version=7)
        plan = _plan(_snapshot(), rule_set)
        assert plan.rule_set_version == 7
        assert plan.rule_set_checksum == rule_set.checksum

    def test_deterministic(self):
        rule_set = _rules(
            _rule("a", ["x", "y"], priority=1, mode="parallel"),
            _rule("b", ["z"], priority=2),
        )
        snapshot = _snapshot()
        assert _plan(snapshot, rule_set) == _plan(snapshot, rule_set)

    def test_emits_engine_trace(self, captured_logs):
        _plan(_snapshot(), _rules(_rule("r", ["a"])))
        traces = [r for r in captured_logs() if r["message"] == "ENGINE_TRACE"]
        assert len(traces) == 1
        assert traces[0]["engine_name"] == "approval_rules"
        assert len(traces[0]["input_fingerprint"]) == 16
