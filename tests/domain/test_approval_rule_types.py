"""
Tests for approval rule value objects (``procure_kernel.domain.approval``).

Invariants tested:
- Operators are typed per field kind; invalid pairings are rejected when
  the rule is built.
- Numeric conditions carry Decimal values, text and set conditions strings.
- ``RuleSet.ordered_active_rules`` sorts by (priority, rule id) and drops
  inactive rules.
"""

from dataclasses import FrozenInstanceError
from decimal import Decimal

import pytest

from procure_kernel.domain.approval import (
    FIELD_KINDS,
    SUPPORTED_OPERATORS,
    ApprovalMode,
    ApprovalRule,
    ConditionField,
    ConditionOperator,
    FieldKind,
    RuleAction,
    RuleCondition,
    RuleSet,
)
from procure_kernel.exceptions import ConfigurationError, InvalidRuleError

F = ConditionField
Op = ConditionOperator
ACTION = (RuleAction(approvers=("manager",)),)


def _rule(rule_id="r", priority=100, conditions=(), actions=ACTION, is_active=True):
    return ApprovalRule(
        rule_id=rule_id,
        priority=priority,
        conditions=tuple(conditions),
        actions=actions,
        is_active=is_active,
    )


class TestFieldKinds:

    def test_every_field_has_a_kind(self):
        assert set(FIELD_KINDS) == set(ConditionField)

    def test_kinds(self):
        assert F.AMOUNT.kind is FieldKind.NUMERIC
        assert F.ITEM_COUNT.kind is FieldKind.NUMERIC
        assert F.DEPARTMENT.kind is FieldKind.TEXT
        assert F.ITEM_CATEGORIES.kind is FieldKind.SET

    def test_set_fields_only_support_contains(self):
        assert SUPPORTED_OPERATORS[FieldKind.SET] == {Op.CONTAINS}


class TestRuleValidation:

    def test_valid_rule(self):
        rule = _rule(conditions=[RuleCondition(F.AMOUNT, Op.GREATER_THAN, Decimal("1000"))])
        assert rule.actions[0].mode is ApprovalMode.SEQUENTIAL

    def test_rule_without_conditions_is_valid(self):
        assert _rule().conditions == ()

    @pytest.mark.parametrize(
        "condition",
        [
            RuleCondition(F.AMOUNT, Op.CONTAINS, Decimal("1")),
            RuleCondition(F.DEPARTMENT, Op.GREATER_THAN, "it"),
            RuleCondition(F.ITEM_CATEGORIES, Op.EQUALS, "hardware"),
        ],
    )
    def test_operator_not_supported_for_field(self, condition):
        with pytest.raises(InvalidRuleError) as exc_info:
            _rule(rule_id="bad", conditions=[condition])
        assert exc_info.value.rule_id == "bad"
        assert "not supported" in exc_info.value.reason

    def test_numeric_field_requires_decimal(self):
        with pytest.raises(InvalidRuleError):
            _rule(conditions=[RuleCondition(F.AMOUNT, Op.GREATER_THAN, "1000")])

    def test_text_field_requires_string(self):
        with pytest.raises(InvalidRuleError):
            _rule(conditions=[RuleCondition(F.CATEGORY, Op.EQUALS, Decimal("1"))])

    def test_rule_requires_an_action(self):
        with pytest.raises(InvalidRuleError):
            _rule(actions=())

    def test_action_requires_approvers(self):
        with pytest.raises(InvalidRuleError):
            _rule(actions=(RuleAction(approvers=()),))

    def test_invalid_rule_is_a_configuration_error(self):
        with pytest.raises(ConfigurationError):
            _rule(actions=())

    def test_rule_is_frozen(self):
        with pytest.raises(FrozenInstanceError):
            _rule().priority = 1


class TestRuleSetOrdering:

    def test_sorted_by_priority_then_id(self):
        rule_set = RuleSet(
            version=1,
            rules=(_rule("b", 20), _rule("z", 10), _rule("a", 20)),
        )
        assert [r.rule_id for r in rule_set.ordered_active_rules()] == ["z", "a", "b"]

    def test_inactive_rules_dropped(self):
        rule_set = RuleSet(version=1, rules=(_rule("on"), _rule("off", is_active=False)))
        assert [r.rule_id for r in rule_set.ordered_active_rules()] == ["on"]
