"""
Module: procure_engines
Responsibility:
    Package entrypoint re-exporting the pure approval routing engine.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import procure_kernel.domain and procure_kernel.exceptions.
    MUST NOT import procure_services or procure_config.

Invariants enforced:
    - Purity: engines never read the clock or touch the database.
    - Decimal-only arithmetic for amounts.
    - Determinism: identical inputs always produce identical outputs.

Usage:
    from procure_engines import build_approval_plan
    plan = build_approval_plan(snapshot=snapshot, rule_set=rule_set)
"""

from procure_engines.approval_rules import (
    COMPARATORS,
    RuleEvaluation,
    build_approval_plan,
    evaluate_condition,
    explain,
    matching_rules,
    rule_matches,
)

__all__ = [
    "COMPARATORS",
    "RuleEvaluation",
    "build_approval_plan",
    "evaluate_condition",
    "explain",
    "matching_rules",
    "rule_matches",
]
