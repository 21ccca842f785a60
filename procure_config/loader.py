"""
Rule-set loader (``procure_config.loader``).

Responsibility
--------------
Loads a routing-rule YAML file and parses it into an immutable
``procure_kernel.domain.approval.RuleSet``.  Runtime callers go through
``procure_config.get_active_rule_set()``; the functions here are the
tooling underneath it.

Architecture position
---------------------
**Config layer**.  Depends on ``procure_kernel.domain`` and
``procure_kernel.exceptions`` only.  Never imported by the kernel.

Invariants enforced
-------------------
* Every rule is validated when it is built: unknown fields or operators,
  operators that do not apply to a field's kind, and non-numeric values
  for numeric fields all raise ``InvalidRuleError``.
* Rule ids are unique within a rule set.
* ``compute_checksum`` is a deterministic SHA-256 over the canonical JSON
  form of the parsed YAML document.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Schema problems  -> ``InvalidRuleError``.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from procure_kernel.domain.approval import (
    ApprovalMode,
    ApprovalRule,
    ConditionField,
    ConditionOperator,
    FieldKind,
    RuleAction,
    RuleCondition,
    RuleSet,
)
from procure_kernel.exceptions import InvalidRuleError


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def _parse_enum(rule_id: str, enum_cls, raw: Any, what: str):
    try:
        return enum_cls(str(raw).strip().lower())
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise InvalidRuleError(rule_id, f"unknown {what} {raw!r} (expected one of: {allowed})")


def parse_condition(rule_id: str, data: dict[str, Any]) -> RuleCondition:
    """Parse ``{field, operator, value}`` into a typed condition."""
    if not isinstance(data, dict):
        raise InvalidRuleError(rule_id, f"condition must be a mapping, got {data!r}")
    for key in ("field", "operator", "value"):
        if key not in data:
            raise InvalidRuleError(rule_id, f"condition is missing '{key}'")

    field = _parse_enum(rule_id, ConditionField, data["field"], "field")
    operator = _parse_enum(rule_id, ConditionOperator, data["operator"], "operator")
    raw_value = data["value"]

    if isinstance(raw_value, (dict, list, bool)) or raw_value is None:
        raise InvalidRuleError(rule_id, f"condition value must be a scalar, got {raw_value!r}")

    if field.kind is FieldKind.NUMERIC:
        try:
            value: Decimal | str = Decimal(str(raw_value))
        except InvalidOperation:
            raise InvalidRuleError(
                rule_id, f"field {field.value!r} requires a number, got {raw_value!r}",
            )
    else:
        value = str(raw_value)

    return RuleCondition(field=field, operator=operator, value=value)


def parse_action(rule_id: str, data: dict[str, Any]) -> RuleAction:
    if not isinstance(data, dict):
        raise InvalidRuleError(rule_id, f"action must be a mapping, got {data!r}")
    approvers = data.get("approvers")
    if isinstance(approvers, str):
        approvers = [approvers]
    if not approvers or not isinstance(approvers, list):
        raise InvalidRuleError(rule_id, "action requires a non-empty 'approvers' list")
    mode = _parse_enum(rule_id, ApprovalMode, data.get("mode", "sequential"), "mode")
    return RuleAction(approvers=tuple(str(a) for a in approvers), mode=mode)


def parse_rule(data: dict[str, Any]) -> ApprovalRule:
    """
    Parse one rule.

    Raises:
        InvalidRuleError: on any schema problem.
    """
    if not isinstance(data, dict):
        raise InvalidRuleError("<unnamed>", f"rule must be a mapping, got {data!r}")
    rule_id = str(data.get("id") or "").strip()
    if not rule_id:
        raise InvalidRuleError("<unnamed>", "rule id is required")

    priority = data.get("priority", 100)
    if isinstance(priority, bool) or not isinstance(priority, int):
        raise InvalidRuleError(rule_id, f"priority must be an integer, got {priority!r}")

    active = data.get("active", True)
    if not isinstance(active, bool):
        raise InvalidRuleError(rule_id, f"active must be true or false, got {active!r}")

    conditions = data.get("conditions") or []
    actions = data.get("actions") or []
    if not isinstance(conditions, list) or not isinstance(actions, list):
        raise InvalidRuleError(rule_id, "conditions and actions must be lists")

    return ApprovalRule(
        rule_id=rule_id,
        priority=priority,
        conditions=tuple(parse_condition(rule_id, c) for c in conditions),
        actions=tuple(parse_action(rule_id, a) for a in actions),
        is_active=active,
        description=str(data.get("description", "")),
    )


def parse_rule_set(data: dict[str, Any]) -> RuleSet:
    """
    Build an immutable rule-set snapshot from a parsed YAML document.

    Raises:
        InvalidRuleError: on a missing version, a malformed rule or a
            duplicate rule id.
    """
    version = data.get("version")
    if isinstance(version, bool) or not isinstance(version, int) or version < 1:
        raise InvalidRuleError("<rule set>", f"version must be a positive integer, got {version!r}")

    raw_rules = data.get("rules") or []
    if not isinstance(raw_rules, list):
        raise InvalidRuleError("<rule set>", "rules must be a list")

    rules = tuple(parse_rule(r) for r in raw_rules)
    seen: set[str] = set()
    for rule in rules:
        if rule.rule_id in seen:
            raise InvalidRuleError(rule.rule_id, "duplicate rule id")
        seen.add(rule.rule_id)

    return RuleSet(version=version, rules=rules, checksum=compute_checksum(data))


def load_rule_set(path: Path | str) -> RuleSet:
    """Load and validate a rule-set YAML file."""
    return parse_rule_set(load_yaml_file(Path(path)))
