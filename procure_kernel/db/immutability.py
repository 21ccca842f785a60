"""
ORM-Level Immutability Enforcement.

===============================================================================
HOW IT WORKS
===============================================================================

SQLAlchemy fires events before UPDATE/DELETE operations reach the database.
We register listeners that intercept these events and check our invariants:

    session.flush()
         |
         v
    [before_update event] --> _check_*_immutability() --> ImmutabilityViolationError
         |                                                        ^
         v                                                        |
    [before_delete event] --> _check_*_delete() -----------------+
         |
         v
    SQL sent to database (only if checks pass)

If a check fails, ImmutabilityViolationError aborts the flush and the
caller's transaction is rolled back.

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity            | When Immutable                     | Delete
------------------|------------------------------------|------------------
Requisition       | After reaching a terminal status   | Never
RequisitionItem   | When parent is not in draft        | Only in draft
ApprovalStep      | After leaving pending              | Never
Budget            | Never (ledger-controlled)          | Never
AuditEvent        | ALWAYS (from creation)             | Never

updated_at/updated_by are audit metadata and may always change.

===============================================================================
USAGE
===============================================================================

    from procure_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # idempotent, called by create_tables()

To temporarily disable (TESTS ONLY):

    unregister_immutability_listeners()
"""

from sqlalchemy import event, inspect, select
from sqlalchemy.orm.attributes import get_history

from procure_kernel.exceptions import ImmutabilityViolationError
from procure_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_AUDIT_METADATA_FIELDS = frozenset({"updated_at", "updated_by"})


def _previous_value(target, field: str):
    """The value ``field`` held before this flush began."""
    history = get_history(target, field)
    if history.deleted:
        return history.deleted[0]
    if history.unchanged:
        return history.unchanged[0]
    return getattr(target, field)


def _first_changed_field(target) -> str | None:
    for attr in inspect(target).attrs:
        if attr.key in _AUDIT_METADATA_FIELDS:
            continue
        if attr.history.has_changes():
            return attr.key
    return None


def _block(entity_type: str, entity_id, operation: str, reason: str, **extra):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "operation": operation,
            **extra,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(entity_id),
        reason=reason,
    )


# =============================================================================
# Requisitions and items
# =============================================================================


def _check_requisition_immutability(mapper, connection, target):
    from procure_kernel.domain.requisition import TERMINAL_REQUISITION_STATUSES

    terminal_values = {s.value for s in TERMINAL_REQUISITION_STATUSES}
    if _previous_value(target, "status") not in terminal_values:
        return
    changed = _first_changed_field(target)
    if changed is not None:
        _block(
            "Requisition", target.id, "UPDATE",
            f"Cannot modify field '{changed}' on a {target.status} requisition",
            field=changed,
        )


def _check_requisition_delete(mapper, connection, target):
    _block(
        "Requisition", target.id, "DELETE",
        "Requisitions are never deleted; cancel instead",
    )


def _parent_status(connection, requisition_id) -> str | None:
    from procure_kernel.models.requisition import RequisitionModel

    table = RequisitionModel.__table__
    return connection.execute(
        select(table.c.status).where(table.c.id == requisition_id)
    ).scalar_one_or_none()


def _check_item_immutability(mapper, connection, target):
    status = _parent_status(connection, target.requisition_id)
    if status is not None and status != "draft":
        _block(
            "RequisitionItem", target.id, "UPDATE",
            f"Line items are frozen once the requisition is {status}",
        )


def _check_item_delete(mapper, connection, target):
    status = _parent_status(connection, target.requisition_id)
    if status is not None and status != "draft":
        _block(
            "RequisitionItem", target.id, "DELETE",
            f"Line items cannot be removed once the requisition is {status}",
        )


# =============================================================================
# Approval steps
# =============================================================================


def _check_step_immutability(mapper, connection, target):
    if _previous_value(target, "status") == "pending":
        return
    changed = _first_changed_field(target)
    if changed is not None:
        _block(
            "ApprovalStep", target.id, "UPDATE",
            f"Cannot modify field '{changed}' on a decided approval step",
            field=changed,
        )


def _check_step_delete(mapper, connection, target):
    _block("ApprovalStep", target.id, "DELETE", "Approval steps are never deleted")


# =============================================================================
# Budgets and audit events
# =============================================================================


def _check_budget_delete(mapper, connection, target):
    _block("Budget", target.id, "DELETE", "Budgets are never deleted")


def _check_audit_event_immutability(mapper, connection, target):
    _block(
        "AuditEvent", target.id, "UPDATE",
        "Audit events are immutable and cannot be modified",
    )


def _check_audit_event_delete(mapper, connection, target):
    _block("AuditEvent", target.id, "DELETE", "Audit events cannot be deleted")


# =============================================================================
# Registration
# =============================================================================


def _listener_table():
    from procure_kernel.models.approval import ApprovalStepModel
    from procure_kernel.models.audit_event import AuditEvent
    from procure_kernel.models.budget import BudgetModel
    from procure_kernel.models.requisition import (
        RequisitionItemModel,
        RequisitionModel,
    )

    return (
        (RequisitionModel, "before_update", _check_requisition_immutability),
        (RequisitionModel, "before_delete", _check_requisition_delete),
        (RequisitionItemModel, "before_update", _check_item_immutability),
        (RequisitionItemModel, "before_delete", _check_item_delete),
        (ApprovalStepModel, "before_update", _check_step_immutability),
        (ApprovalStepModel, "before_delete", _check_step_delete),
        (BudgetModel, "before_delete", _check_budget_delete),
        (AuditEvent, "before_update", _check_audit_event_immutability),
        (AuditEvent, "before_delete", _check_audit_event_delete),
    )


def register_immutability_listeners() -> None:
    """Register all immutability listeners. Safe to call more than once."""
    for target, event_name, listener_fn in _listener_table():
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)


def unregister_immutability_listeners() -> None:
    """Remove all immutability listeners. Only for tests."""
    for target, event_name, listener_fn in _listener_table():
        if event.contains(target, event_name, listener_fn):
            event.remove(target, event_name, listener_fn)
