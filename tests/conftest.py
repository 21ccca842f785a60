"""
Pytest fixtures for the procurement kernel test suite.

Provides:
- Structured logging configured per test, plus ``captured_logs``
- A fresh file-backed SQLite database per test (in ``tmp_path``) so
  concurrency tests can open one session per thread
- Deterministic clock, recording dispatcher and a private lock registry
- Rule-set and workflow factories

Environment Variables:
- PROCURE_TEST_DATABASE_URL: run against another database (e.g. PostgreSQL).
  The schema is dropped and recreated for every test.
"""

import json
import logging
import os
from collections.abc import Callable
from decimal import Decimal
from io import StringIO
from typing import Any

import pytest
from sqlalchemy.orm import Session

from procure_config import parse_rule_set
from procure_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from procure_kernel.domain.approval import RuleSet
from procure_kernel.domain.clock import DeterministicClock
from procure_kernel.domain.requisition import LineItemSpec
from procure_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from procure_services import EntityLockRegistry, RecordingDispatcher, RequisitionWorkflow

REQUESTER = "alice"
ADMIN = "procurement-admin"


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def _configure_test_logging():
    """Configure structured logging for each test."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()


@pytest.fixture
def captured_logs():
    """
    Capture procure_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, workflow):
            workflow.submit(...)
            logs = captured_logs()
            assert any(r["message"] == "requisition_pending_approval" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("procure_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture
def engine(tmp_path):
    url = os.environ.get("PROCURE_TEST_DATABASE_URL") or f"sqlite:///{tmp_path / 'procure.db'}"
    db_engine = init_engine_from_url(url)
    drop_tables()
    create_tables()
    yield db_engine
    reset_engine()


@pytest.fixture
def session_factory(engine):
    return get_session_factory()


@pytest.fixture
def session(session_factory) -> Session:
    db_session = session_factory()
    yield db_session
    db_session.rollback()
    db_session.close()


# =============================================================================
# Collaborators
# =============================================================================


@pytest.fixture
def deterministic_clock() -> DeterministicClock:
    return DeterministicClock()


@pytest.fixture
def recording_dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def lock_registry() -> EntityLockRegistry:
    return EntityLockRegistry(default_timeout=10.0)


# =============================================================================
# Rule sets
# =============================================================================


def rule(
    rule_id: str,
    approvers: list[str],
    *,
    priority: int = 100,
    conditions: list[dict[str, Any]] | None = None,
    mode: str = "sequential",
    active: bool = True,
) -> dict[str, Any]:
    """One rule in the YAML document shape."""
    return {
        "id": rule_id,
        "priority": priority,
        "active": active,
        "conditions": conditions or [],
        "actions": [{"approvers": approvers, "mode": mode}],
    }


def amount_above(value: str) -> dict[str, Any]:
    return {"field": "amount", "operator": "greater_than", "value": value}


@pytest.fixture
def make_rule_set() -> Callable[..., RuleSet]:
    """Build a ``RuleSet`` from rule dicts (see ``rule()``)."""

    def _make(*rules: dict[str, Any], version: int = 1) -> RuleSet:
        return parse_rule_set({"version": version, "rules": list(rules)})

    return _make


@pytest.fixture
def two_step_rule_set(make_rule_set) -> RuleSet:
    """manager (order 0) then director (order 1), for any positive amount."""
    return make_rule_set(
        rule("manager", ["manager"], priority=10, conditions=[amount_above("0")]),
        rule("director", ["director"], priority=20, conditions=[amount_above("0")]),
    )


# =============================================================================
# Workflow
# =============================================================================


@pytest.fixture
def make_workflow(session, deterministic_clock, recording_dispatcher, lock_registry):
    """
    Build a ``RequisitionWorkflow`` bound to a rule set.

    Pass ``session=`` to bind a workflow to another session (one per thread).
    """

    def _make(rule_set: RuleSet, *, session: Session = session) -> RequisitionWorkflow:
        return RequisitionWorkflow(
            session,
            rule_set_provider=lambda: rule_set,
            clock=deterministic_clock,
            dispatcher=recording_dispatcher,
            locks=lock_registry,
            lock_timeout_seconds=10.0,
        )

    return _make


@pytest.fixture
def workflow(make_workflow, two_step_rule_set) -> RequisitionWorkflow:
    return make_workflow(two_step_rule_set)


@pytest.fixture
def budget(workflow):
    return workflow.create_budget("IT-2024", "IT equipment", Decimal("10000.00"), ADMIN)


@pytest.fixture
def make_draft(workflow, budget):
    """Create a draft for ``REQUESTER`` against ``budget``."""

    def _make(*items: LineItemSpec, **kwargs):
        if not items:
            items = (LineItemSpec("Laptop", 2, Decimal("1200.00"), "hardware"),)
        kwargs.setdefault("budget_id", budget.budget_id)
        return workflow.create_draft(REQUESTER, "Team laptops", items=items, **kwargs)

    return _make
