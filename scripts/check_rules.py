#!/usr/bin/env python3
"""
Validate a routing-rule YAML file and optionally show how it routes a sample
requisition.

Usage:
    python3 scripts/check_rules.py                         # bundled rules
    python3 scripts/check_rules.py rules.yaml
    python3 scripts/check_rules.py rules.yaml --amount 25000 --category hardware

Exit status is 0 when the file is valid, 1 otherwise.
"""

import argparse
import sys
from decimal import Decimal, InvalidOperation
from pathlib import Path

# ---------------------------------------------------------------------------
# Project root on sys.path
# ---------------------------------------------------------------------------
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from procure_config.loader import load_rule_set
from procure_config.settings import DEFAULT_RULES_PATH
from procure_engines.approval_rules import build_approval_plan, explain
from procure_kernel.domain.approval import RequisitionSnapshot
from procure_kernel.exceptions import InvalidRuleError


def _decimal(raw: str) -> Decimal:
    try:
        return Decimal(raw)
    except InvalidOperation:
        raise argparse.ArgumentTypeError(f"not a number: {raw!r}")


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description=__doc__.split("\n\n")[0])
    parser.add_argument("path", nargs="?", type=Path, default=DEFAULT_RULES_PATH)
    parser.add_argument("--amount", type=_decimal, help="sample requisition total")
    parser.add_argument("--items", type=int, default=1, help="sample item count")
    parser.add_argument("--requester", default="sample-requester")
    parser.add_argument("--currency", default="USD")
    parser.add_argument("--department")
    parser.add_argument(
        "--category", action="append", default=[],
        help="item category (repeatable)",
    )
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)

    try:
        rule_set = load_rule_set(args.path)
    except FileNotFoundError:
        print(f"Error: file not found: {args.path}", file=sys.stderr)
        return 1
    except InvalidRuleError as exc:
        print(f"INVALID: {exc}", file=sys.stderr)
        return 1

    active = rule_set.ordered_active_rules()
    print(f"File:      {args.path}")
    print(f"Version:   {rule_set.version}")
    print(f"Checksum:  {rule_set.checksum}")
    print(f"Rules:     {len(rule_set.rules)} ({len(active)} active)")
    for rule in active:
        print(f"  [{rule.priority:>4}] {rule.rule_id}")

    if args.amount is None:
        return 0

    snapshot = RequisitionSnapshot(
        amount=args.amount,
        item_count=args.items,
        requester=args.requester,
        currency=args.currency,
        department=args.department,
        category=args.category[0] if args.category else None,
        item_categories=frozenset(args.category),
    )

    print()
    print(f"Sample: amount={snapshot.amount} items={snapshot.item_count} "
          f"categories={sorted(snapshot.item_categories)}")
    for evaluation in explain(snapshot, rule_set):
        mark = "match" if evaluation.matched else "skip "
        failed = ", ".join(
            f"{c.field.value} {c.operator.value} {c.value}"
            for c in evaluation.failed_conditions
        )
        print(f"  {mark} {evaluation.rule_id}" + (f"  (failed: {failed})" if failed else ""))

    plan = build_approval_plan(snapshot=snapshot, rule_set=rule_set)
    if plan.is_empty:
        print("\nNo approval path: submission would fail with NO_APPROVAL_PATH.")
        return 0

    print("\nApproval plan:")
    for step in plan.assignments:
        waits = f" after {list(step.depends_on)}" if step.depends_on else ""
        print(f"  {step.order_index}: {step.approver_id} ({step.mode.value}){waits}"
              f"  <- {step.rule_id}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
