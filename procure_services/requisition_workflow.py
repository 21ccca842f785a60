"""
Requisition Workflow (``procure_services.requisition_workflow``).

Responsibility
--------------
Sole public entry point for requisition operations: draft editing,
submission, step decisions, cancellation, purchase and revision.  Every
status change is resolved through ``resolve_transition`` and drives the
approval step ledger, the budget ledger and the audit chain inside one
transaction.

Architecture position
---------------------
**Services layer** -- imperative shell.  Composes the pure rule engine
(``procure_engines.approval_rules``), the flush-only kernel services
(``ApprovalStepLedger``, ``BudgetLedger``, ``AuditorService``,
``SequenceService``) and the rule configuration entrypoint
(``procure_config.get_active_rule_set``).

Invariants enforced
-------------------
* Each public method owns the transaction boundary (``commit`` on
  success, ``rollback`` on any exception).  Persisted state after a failed
  call equals the state before it.
* Each mutation holds the entity locks for ``{requisition, budget}`` for
  its whole read-check-write-commit sequence, and expires the session
  identity map on entry so every read is fresh.
* Guards run before anything is written.
* Requisition total equals the sum of item totals after every item edit.
* Notification events are dispatched only after a successful commit.

Failure modes
-------------
* GuardViolationError / OrderingViolationError -- nothing mutated.
* BudgetInvariantViolationError -- whole transition rolled back.
* ConfigurationError -- no rule matched on submit; requisition stays draft.
* ConsistencyFaultError -- rolled back, logged at CRITICAL.
* LockTimeoutError -- lock not acquired; nothing was attempted.

Audit relevance
---------------
Every operation writes Requisition audit events (creation, edits, status
changes); the ledgers add ApprovalStep and Budget events in the same
transaction.  A structured ``transition_failed`` record is logged for
every rolled-back call.

Usage::

    workflow = RequisitionWorkflow(session, clock=clock, dispatcher=dispatcher)
    req = workflow.create_draft(
        requester_id="alice", title="Laptops",
        items=[LineItemSpec("Laptop", 2, Decimal("1200.00"), "hardware")],
        budget_id=budget.budget_id,
    )
    req = workflow.submit(req.id, actor_id="alice")
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from procure_config import get_active_rule_set, load_settings
from procure_engines.approval_rules import build_approval_plan
from procure_kernel.db.types import validate_currency
from procure_kernel.domain import gating
from procure_kernel.domain.approval import (
    ApprovalOutcome,
    ApprovalStep,
    RequisitionSnapshot,
    RuleSet,
    StepDecision,
)
from procure_kernel.domain.budget import BudgetBalance
from procure_kernel.domain.clock import Clock, SystemClock
from procure_kernel.domain.events import (
    ApprovalRequested,
    DecisionRecorded,
    NotificationDispatcher,
    NotificationEvent,
    RequisitionStatusChanged,
)
from procure_kernel.domain.requisition import (
    EDITABLE_REQUISITION_STATUSES,
    BudgetEffect,
    LineItemSpec,
    Requisition,
    RequisitionAction,
    RequisitionStatus,
    RequisitionTransition,
    line_total,
    requisition_total,
    resolve_transition,
)
from procure_kernel.exceptions import (
    BudgetNotFoundError,
    ConsistencyFaultError,
    EmptyRequisitionError,
    InvalidTransitionError,
    LineItemNotFoundError,
    NoApprovalPathError,
    NonPositiveTotalError,
    RequisitionNotEditableError,
    RequisitionNotFoundError,
    TotalMismatchError,
    UnauthorizedActorError,
)
from procure_kernel.logging_config import LogContext, get_logger, kernel_error_fields
from procure_kernel.models.audit_event import AuditAction
from procure_kernel.models.budget import BudgetModel
from procure_kernel.models.requisition import RequisitionItemModel, RequisitionModel
from procure_kernel.services.approval_ledger import ApprovalStepLedger
from procure_kernel.services.auditor_service import AuditorService, AuditTrace
from procure_kernel.services.budget_ledger import BudgetLedger
from procure_kernel.services.sequence_service import SequenceService
from procure_services.entity_locks import (
    EntityLockRegistry,
    budget_key,
    default_lock_registry,
    requisition_key,
    sequence_key,
)
from procure_services.notifications import LoggingDispatcher

logger = get_logger("services.requisition_workflow")

_UNSET: Any = object()

_TIMESTAMP_FIELDS: dict[RequisitionStatus, str] = {
    RequisitionStatus.PENDING_APPROVAL: "submitted_at",
    RequisitionStatus.APPROVED: "approved_at",
    RequisitionStatus.REJECTED: "rejected_at",
    RequisitionStatus.PURCHASED: "purchased_at",
    RequisitionStatus.CANCELLED: "cancelled_at",
}

_TRANSITION_AUDIT_ACTIONS: dict[RequisitionAction, AuditAction] = {
    RequisitionAction.SUBMIT: AuditAction.REQUISITION_SUBMITTED,
    RequisitionAction.APPROVE: AuditAction.REQUISITION_APPROVED,
    RequisitionAction.REJECT: AuditAction.REQUISITION_REJECTED,
    RequisitionAction.CANCEL: AuditAction.REQUISITION_CANCELLED,
    RequisitionAction.MARK_PURCHASED: AuditAction.REQUISITION_PURCHASED,
}

_DECISION_ACTIONS: dict[StepDecision, RequisitionAction] = {
    StepDecision.APPROVE: RequisitionAction.APPROVE,
    StepDecision.REJECT: RequisitionAction.REJECT,
}


@dataclass(frozen=True)
class DecisionResult:
    """Outcome of one step decision."""

    step: ApprovalStep
    outcome: ApprovalOutcome
    requisition: Requisition

    @property
    def completed(self) -> bool:
        return self.outcome is not ApprovalOutcome.PENDING


class RequisitionWorkflow:
    """
    Orchestrates requisition operations through the kernel ledgers.

    Contract
    --------
    * Mutating methods return frozen DTOs built after the final flush.
    * Authorization arrives as booleans (``as_admin``, ``override``); the
      workflow never resolves identity.

    Guarantees
    ----------
    * Session is committed only when the whole operation succeeds.
    * Clock and rule-set source are injectable for deterministic testing.

    Non-goals
    ---------
    * Does NOT deliver notifications; it hands events to the dispatcher.
    * Does NOT re-route requisitions already submitted when rules change.
    """

    def __init__(
        self,
        session: Session,
        rule_set_provider: Callable[[], RuleSet] | None = None,
        clock: Clock | None = None,
        dispatcher: NotificationDispatcher | None = None,
        locks: EntityLockRegistry | None = None,
        lock_timeout_seconds: float | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._rule_set_provider = rule_set_provider or get_active_rule_set
        self._dispatcher = dispatcher or LoggingDispatcher()
        self._locks = locks or default_lock_registry()
        self._lock_timeout = (
            lock_timeout_seconds
            if lock_timeout_seconds is not None
            else load_settings().lock_timeout_seconds
        )

        self._auditor = AuditorService(session, self._clock)
        self._steps = ApprovalStepLedger(session, self._clock, self._auditor)
        self._budgets = BudgetLedger(session, self._clock, self._auditor)
        self._sequences = SequenceService(session)

    # =========================================================================
    # Transaction and lock scaffolding
    # =========================================================================

    @contextmanager
    def _transaction(self, operation: str) -> Iterator[None]:
        with LogContext.bind(operation=operation):
            try:
                yield
                self._session.commit()
            except Exception as exc:
                self._session.rollback()
                level = (
                    logging.CRITICAL
                    if isinstance(exc, ConsistencyFaultError)
                    else logging.WARNING
                )
                logger.log(level, "transition_failed", extra=kernel_error_fields(exc))
                raise

    @contextmanager
    def _requisition_locks(self, requisition_id: UUID) -> Iterator[None]:
        """Hold the requisition lock, then the lock of its budget."""
        with self._locks.hold(requisition_key(requisition_id), timeout=self._lock_timeout):
            self._session.expire_all()
            budget_id = self._session.execute(
                select(RequisitionModel.budget_id).where(RequisitionModel.id == requisition_id)
            ).scalar_one_or_none()
            keys = (budget_key(budget_id),) if budget_id is not None else ()
            with self._locks.hold(*keys, timeout=self._lock_timeout):
                yield

    @contextmanager
    def _budget_lock(self, budget_id: UUID) -> Iterator[None]:
        with self._locks.hold(budget_key(budget_id), timeout=self._lock_timeout):
            self._session.expire_all()
            yield

    @contextmanager
    def _sequence_lock(self) -> Iterator[None]:
        with self._locks.hold(
            sequence_key(SequenceService.REQUISITION), timeout=self._lock_timeout,
        ):
            yield

    def _dispatch(self, events: Sequence[NotificationEvent]) -> None:
        for event in events:
            try:
                self._dispatcher.dispatch(event)
            except Exception:
                logger.exception(
                    "notification_dispatch_failed",
                    extra={
                        "event_type": event.event_type,
                        "requisition_id": str(event.requisition_id),
                    },
                )

    # =========================================================================
    # Loading and guards
    # =========================================================================

    def _load_for_update(self, requisition_id: UUID) -> RequisitionModel:
        requisition = self._session.execute(
            select(RequisitionModel)
            .where(RequisitionModel.id == requisition_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if requisition is None:
            raise RequisitionNotFoundError(str(requisition_id))
        return requisition

    def _require_budget(self, budget_id: UUID | None) -> None:
        if budget_id is not None and self._session.get(BudgetModel, budget_id) is None:
            raise BudgetNotFoundError(str(budget_id))

    def _require_requester(
        self,
        requisition: RequisitionModel,
        actor_id: str,
        as_admin: bool,
        action: str,
    ) -> None:
        if as_admin or actor_id == requisition.requester_id:
            return
        logger.warning(
            "requisition_actor_unauthorized",
            extra={
                "requisition_id": str(requisition.id),
                "actor_id": actor_id,
                "action": action,
            },
        )
        raise UnauthorizedActorError(str(requisition.id), actor_id, action)

    def _require_editable(self, requisition: RequisitionModel) -> None:
        if requisition.status_enum not in EDITABLE_REQUISITION_STATUSES:
            raise RequisitionNotEditableError(str(requisition.id), requisition.status)

    def _find_item(self, requisition: RequisitionModel, item_id: UUID) -> RequisitionItemModel:
        for item in requisition.items:
            if item.id == item_id:
                return item
        raise LineItemNotFoundError(str(requisition.id), str(item_id))

    def _assert_total(self, requisition: RequisitionModel) -> None:
        computed = requisition_total(
            [line_total(item.quantity, item.unit_price) for item in requisition.items]
        )
        stored_items = requisition_total([item.total_price for item in requisition.items])
        if requisition.total_amount != computed or stored_items != computed:
            logger.critical(
                "requisition_total_mismatch",
                extra={
                    "requisition_id": str(requisition.id),
                    "stored": str(requisition.total_amount),
                    "computed": str(computed),
                },
            )
            raise TotalMismatchError(str(requisition.id), requisition.total_amount, computed)

    def _recompute_total(self, requisition: RequisitionModel) -> None:
        requisition.total_amount = requisition_total(
            [item.total_price for item in requisition.items]
        )
        self._assert_total(requisition)

    def _snapshot(self, requisition: RequisitionModel) -> RequisitionSnapshot:
        return RequisitionSnapshot(
            amount=requisition.total_amount,
            item_count=len(requisition.items),
            requester=requisition.requester_id,
            currency=requisition.currency,
            category=requisition.category,
            department=requisition.department,
            item_categories=frozenset(
                item.category for item in requisition.items if item.category
            ),
        )

    # =========================================================================
    # Transitions
    # =========================================================================

    def _apply_budget_effect(
        self,
        requisition: RequisitionModel,
        effect: BudgetEffect,
        actor_id: str,
    ) -> None:
        if requisition.budget_id is None or effect is BudgetEffect.NONE:
            return
        if effect is BudgetEffect.RESERVE:
            self._budgets.reserve(
                requisition.budget_id,
                requisition.total_amount,
                actor_id,
                requisition_id=requisition.id,
                currency=requisition.currency,
            )
            return
        operation = {
            BudgetEffect.RELEASE: self._budgets.release,
            BudgetEffect.COMMIT: self._budgets.commit,
        }[effect]
        operation(
            requisition.budget_id,
            requisition.total_amount,
            actor_id,
            requisition_id=requisition.id,
        )

    def _apply_transition(
        self,
        requisition: RequisitionModel,
        transition: RequisitionTransition,
        actor_id: str,
        events: list[NotificationEvent],
        reason: str | None = None,
    ) -> None:
        """Apply a resolved transition and every side effect bound to it."""
        from_status = requisition.status_enum
        now = self._clock.now()

        if transition.skips_pending_steps:
            self._steps.skip_pending(requisition.id, actor_id, reason or transition.action.value)
        self._apply_budget_effect(requisition, transition.budget_effect, actor_id)

        requisition.status = transition.to_status.value
        setattr(requisition, _TIMESTAMP_FIELDS[transition.to_status], now)
        requisition.updated_by = actor_id
        self._session.flush()

        self._auditor.record(
            AuditorService.REQUISITION,
            requisition.id,
            _TRANSITION_AUDIT_ACTIONS[transition.action],
            actor_id,
            {
                "from_status": from_status.value,
                "to_status": transition.to_status.value,
                "total_amount": requisition.total_amount,
                "budget_id": requisition.budget_id,
                "budget_effect": transition.budget_effect.value,
                "reason": reason,
            },
        )
        logger.info(
            f"requisition_{transition.to_status.value}",
            extra={
                "requisition_id": str(requisition.id),
                "requisition_number": requisition.requisition_number,
                "from_status": from_status.value,
                "to_status": transition.to_status.value,
                "actor_id": actor_id,
                "total_amount": str(requisition.total_amount),
            },
        )
        events.append(RequisitionStatusChanged(
            requisition_id=requisition.id,
            requisition_number=requisition.requisition_number,
            requester_id=requisition.requester_id,
            from_status=from_status,
            to_status=transition.to_status,
            actor_id=actor_id,
            occurred_at=now,
        ))

    def _approval_requests(
        self,
        requisition: RequisitionModel,
        steps: Sequence[ApprovalStep],
    ) -> list[NotificationEvent]:
        now = self._clock.now()
        return [
            ApprovalRequested(
                requisition_id=requisition.id,
                requisition_number=requisition.requisition_number,
                step_id=step.id,
                approver_id=step.approver_id,
                order_index=step.order_index,
                occurred_at=now,
            )
            for step in steps
        ]

    # =========================================================================
    # Drafts
    # =========================================================================

    def _new_requisition(
        self,
        requester_id: str,
        title: str,
        currency: str,
        department: str | None,
        category: str | None,
        budget_id: UUID | None,
        items: Sequence[LineItemSpec],
        actor_id: str,
        revision_of_id: UUID | None = None,
    ) -> RequisitionModel:
        number = self._sequences.next_value(SequenceService.REQUISITION)
        requisition = RequisitionModel(
            requisition_number=f"REQ-{number:06d}",
            requester_id=requester_id,
            title=title,
            status=RequisitionStatus.DRAFT.value,
            total_amount=Decimal("0"),
            currency=currency,
            department=department,
            category=category,
            budget_id=budget_id,
            revision_of_id=revision_of_id,
            created_by=actor_id,
        )
        for line_number, spec in enumerate(items, start=1):
            requisition.items.append(RequisitionItemModel(
                line_number=line_number,
                description=spec.description,
                quantity=spec.quantity,
                unit_price=spec.unit_price,
                total_price=spec.total_price,
                category=spec.category,
                created_by=actor_id,
            ))
        self._session.add(requisition)
        self._recompute_total(requisition)
        self._session.flush()

        self._auditor.record(
            AuditorService.REQUISITION,
            requisition.id,
            AuditAction.REQUISITION_CREATED,
            actor_id,
            {
                "requisition_number": requisition.requisition_number,
                "requester_id": requester_id,
                "title": title,
                "currency": currency,
                "budget_id": budget_id,
                "revision_of_id": revision_of_id,
                "item_count": len(requisition.items),
                "total_amount": requisition.total_amount,
            },
        )
        logger.info(
            "requisition_created",
            extra={
                "requisition_id": str(requisition.id),
                "requisition_number": requisition.requisition_number,
                "requester_id": requester_id,
                "item_count": len(requisition.items),
                "total_amount": str(requisition.total_amount),
            },
        )
        return requisition

    def create_draft(
        self,
        requester_id: str,
        title: str,
        items: Sequence[LineItemSpec] = (),
        department: str | None = None,
        category: str | None = None,
        currency: str = "USD",
        budget_id: UUID | None = None,
    ) -> Requisition:
        """Create a draft requisition owned by ``requester_id``."""
        currency = validate_currency(currency)
        for spec in items:
            line_total(spec.quantity, spec.unit_price)

        with LogContext.bind(actor_id=requester_id), self._sequence_lock():
            with self._transaction("create_draft"):
                self._require_budget(budget_id)
                requisition = self._new_requisition(
                    requester_id, title, currency, department, category,
                    budget_id, items, actor_id=requester_id,
                )
                return requisition.to_dto()

    def _audit_edit(
        self,
        requisition: RequisitionModel,
        action: AuditAction,
        actor_id: str,
        payload: dict[str, Any],
    ) -> None:
        payload = {**payload, "total_amount": requisition.total_amount}
        self._auditor.record(AuditorService.REQUISITION, requisition.id, action, actor_id, payload)
        logger.info(
            action.value,
            extra={
                "requisition_id": str(requisition.id),
                "actor_id": actor_id,
                "total_amount": str(requisition.total_amount),
            },
        )

    def add_item(
        self,
        requisition_id: UUID,
        actor_id: str,
        item: LineItemSpec,
        as_admin: bool = False,
    ) -> Requisition:
        """Append a line item to a draft and recompute the total."""
        with LogContext.bind(requisition_id=str(requisition_id), actor_id=actor_id):
            with self._requisition_locks(requisition_id), self._transaction("add_item"):
                requisition = self._load_for_update(requisition_id)
                self._require_editable(requisition)
                self._require_requester(requisition, actor_id, as_admin, "edit")
                total_price = item.total_price

                line_number = requisition.next_line_number()
                requisition.items.append(RequisitionItemModel(
                    line_number=line_number,
                    description=item.description,
                    quantity=item.quantity,
                    unit_price=item.unit_price,
                    total_price=total_price,
                    category=item.category,
                    created_by=actor_id,
                ))
                self._recompute_total(requisition)
                requisition.updated_by = actor_id
                self._session.flush()

                self._audit_edit(requisition, AuditAction.ITEM_ADDED, actor_id, {
                    "line_number": line_number,
                    "description": item.description,
                    "quantity": item.quantity,
                    "unit_price": item.unit_price,
                    "total_price": total_price,
                })
                return requisition.to_dto()

    def update_item(
        self,
        requisition_id: UUID,
        item_id: UUID,
        actor_id: str,
        *,
        description: str = _UNSET,
        quantity: int = _UNSET,
        unit_price: Decimal = _UNSET,
        category: str | None = _UNSET,
        as_admin: bool = False,
    ) -> Requisition:
        """Change fields of a draft line item. Unpassed fields are kept."""
        with LogContext.bind(requisition_id=str(requisition_id), actor_id=actor_id):
            with self._requisition_locks(requisition_id), self._transaction("update_item"):
                requisition = self._load_for_update(requisition_id)
                self._require_editable(requisition)
                self._require_requester(requisition, actor_id, as_admin, "edit")
                item = self._find_item(requisition, item_id)

                new_quantity = item.quantity if quantity is _UNSET else quantity
                new_price = item.unit_price if unit_price is _UNSET else unit_price
                total_price = line_total(new_quantity, new_price)

                if description is not _UNSET:
                    item.description = description
                if category is not _UNSET:
                    item.category = category
                item.quantity = new_quantity
                item.unit_price = new_price
                item.total_price = total_price
                item.updated_by = actor_id
                self._recompute_total(requisition)
                requisition.updated_by = actor_id
                self._session.flush()

                self._audit_edit(requisition, AuditAction.ITEM_UPDATED, actor_id, {
                    "line_number": item.line_number,
                    "description": item.description,
                    "quantity": new_quantity,
                    "unit_price": new_price,
                    "total_price": total_price,
                    "category": item.category,
                })
                return requisition.to_dto()

    def remove_item(
        self,
        requisition_id: UUID,
        item_id: UUID,
        actor_id: str,
        as_admin: bool = False,
    ) -> Requisition:
        with LogContext.bind(requisition_id=str(requisition_id), actor_id=actor_id):
            with self._requisition_locks(requisition_id), self._transaction("remove_item"):
                requisition = self._load_for_update(requisition_id)
                self._require_editable(requisition)
                self._require_requester(requisition, actor_id, as_admin, "edit")
                item = self._find_item(requisition, item_id)

                line_number = item.line_number
                requisition.items.remove(item)
                self._recompute_total(requisition)
                requisition.updated_by = actor_id
                self._session.flush()

                self._audit_edit(requisition, AuditAction.ITEM_REMOVED, actor_id, {
                    "line_number": line_number,
                })
                return requisition.to_dto()

    def update_header(
        self,
        requisition_id: UUID,
        actor_id: str,
        *,
        title: str = _UNSET,
        department: str | None = _UNSET,
        category: str | None = _UNSET,
        currency: str = _UNSET,
        budget_id: UUID | None = _UNSET,
        as_admin: bool = False,
    ) -> Requisition:
        """Change header fields of a draft. Unpassed fields are kept."""
        with LogContext.bind(requisition_id=str(requisition_id), actor_id=actor_id):
            with self._requisition_locks(requisition_id), self._transaction("update_header"):
                requisition = self._load_for_update(requisition_id)
                self._require_editable(requisition)
                self._require_requester(requisition, actor_id, as_admin, "edit")

                changes: dict[str, Any] = {}
                if currency is not _UNSET:
                    changes["currency"] = validate_currency(currency)
                if budget_id is not _UNSET:
                    self._require_budget(budget_id)
                    changes["budget_id"] = budget_id
                if title is not _UNSET:
                    changes["title"] = title
                if department is not _UNSET:
                    changes["department"] = department
                if category is not _UNSET:
                    changes["category"] = category

                for field_name, value in changes.items():
                    setattr(requisition, field_name, value)
                requisition.updated_by = actor_id
                self._session.flush()

                self._audit_edit(requisition, AuditAction.REQUISITION_UPDATED, actor_id, changes)
                return requisition.to_dto()

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def submit(
        self,
        requisition_id: UUID,
        actor_id: str,
        as_admin: bool = False,
    ) -> Requisition:
        """
        Route a draft for approval.

        Evaluates the active rule set, materializes the approval steps,
        reserves the total against the budget and moves the requisition to
        ``pending_approval``.

        Raises:
            EmptyRequisitionError: no line items.
            NonPositiveTotalError: total <= 0.
            NoApprovalPathError: no active rule matched.
            InsufficientBudgetError: the budget cannot cover the total.
        """
        events: list[NotificationEvent] = []
        with LogContext.bind(requisition_id=str(requisition_id), actor_id=actor_id):
            with self._requisition_locks(requisition_id), self._transaction("submit"):
                requisition = self._load_for_update(requisition_id)
                transition = resolve_transition(
                    requisition.id, requisition.status_enum, RequisitionAction.SUBMIT,
                )
                self._require_requester(requisition, actor_id, as_admin, "submit")

                if not requisition.items:
                    raise EmptyRequisitionError(str(requisition.id))
                self._assert_total(requisition)
                if requisition.total_amount <= 0:
                    raise NonPositiveTotalError(str(requisition.id), requisition.total_amount)

                rule_set = self._rule_set_provider()
                plan = build_approval_plan(snapshot=self._snapshot(requisition), rule_set=rule_set)
                if plan.is_empty:
                    logger.warning(
                        "no_approval_path",
                        extra={
                            "requisition_id": str(requisition.id),
                            "rule_set_version": rule_set.version,
                            "total_amount": str(requisition.total_amount),
                        },
                    )
                    raise NoApprovalPathError(str(requisition.id), rule_set.version)

                self._steps.materialize(requisition.id, plan, actor_id)
                requisition.rule_set_version = plan.rule_set_version
                requisition.rule_set_checksum = plan.rule_set_checksum
                self._apply_transition(requisition, transition, actor_id, events)

                events.extend(
                    self._approval_requests(requisition, self._steps.eligible_steps(requisition.id))
                )
                result = requisition.to_dto()

        self._dispatch(events)
        return result

    def decide(
        self,
        step_id: UUID,
        actor_id: str,
        decision: StepDecision,
        notes: str | None = None,
        override: bool = False,
    ) -> DecisionResult:
        """
        Record a decision on one approval step and aggregate.

        The last approval moves the requisition to ``approved`` (reservation
        kept).  Any rejection moves it to ``rejected``, skips the remaining
        pending steps and releases the reservation.  Otherwise approvers of
        newly eligible steps are notified.
        """
        requisition_id = self._steps.get_step(step_id).requisition_id
        events: list[NotificationEvent] = []

        with LogContext.bind(
            requisition_id=str(requisition_id), actor_id=actor_id, step_id=str(step_id),
        ):
            with self._requisition_locks(requisition_id), self._transaction("decide"):
                requisition = self._load_for_update(requisition_id)
                if self._steps.get_step(step_id).is_pending:
                    resolve_transition(
                        requisition.id, requisition.status_enum, _DECISION_ACTIONS[decision],
                    )

                before = self._steps.get_steps(requisition.id)
                step = self._steps.record_decision(step_id, actor_id, decision, notes, override)
                after = self._steps.get_steps(requisition.id)
                outcome = gating.aggregate_outcome(after)

                events.append(DecisionRecorded(
                    requisition_id=requisition.id,
                    requisition_number=requisition.requisition_number,
                    requester_id=requisition.requester_id,
                    step_id=step.id,
                    approver_id=step.approver_id,
                    decision=decision,
                    outcome=outcome,
                    occurred_at=self._clock.now(),
                ))

                if outcome is ApprovalOutcome.APPROVED:
                    transition = resolve_transition(
                        requisition.id, requisition.status_enum, RequisitionAction.APPROVE,
                    )
                    self._apply_transition(requisition, transition, actor_id, events)
                elif outcome is ApprovalOutcome.REJECTED:
                    transition = resolve_transition(
                        requisition.id, requisition.status_enum, RequisitionAction.REJECT,
                    )
                    self._apply_transition(
                        requisition, transition, actor_id, events,
                        reason=f"rejected at step {step.order_index} by {actor_id}",
                    )
                else:
                    events.extend(
                        self._approval_requests(requisition, gating.newly_eligible(before, after))
                    )

                result = DecisionResult(
                    step=step,
                    outcome=outcome,
                    requisition=requisition.to_dto(),
                )

        self._dispatch(events)
        return result

    def approve_step(
        self,
        step_id: UUID,
        actor_id: str,
        notes: str | None = None,
        override: bool = False,
    ) -> DecisionResult:
        return self.decide(step_id, actor_id, StepDecision.APPROVE, notes, override)

    def reject_step(
        self,
        step_id: UUID,
        actor_id: str,
        notes: str | None = None,
        override: bool = False,
    ) -> DecisionResult:
        return self.decide(step_id, actor_id, StepDecision.REJECT, notes, override)

    def cancel(
        self,
        requisition_id: UUID,
        actor_id: str,
        as_admin: bool = False,
        reason: str | None = None,
    ) -> Requisition:
        """Cancel a draft, pending or approved requisition.

        Pending steps are skipped and any reservation is released.
        """
        events: list[NotificationEvent] = []
        with LogContext.bind(requisition_id=str(requisition_id), actor_id=actor_id):
            with self._requisition_locks(requisition_id), self._transaction("cancel"):
                requisition = self._load_for_update(requisition_id)
                transition = resolve_transition(
                    requisition.id, requisition.status_enum, RequisitionAction.CANCEL,
                )
                self._require_requester(requisition, actor_id, as_admin, "cancel")
                self._apply_transition(
                    requisition, transition, actor_id, events,
                    reason=reason or f"cancelled by {actor_id}",
                )
                result = requisition.to_dto()

        self._dispatch(events)
        return result

    def mark_purchased(self, requisition_id: UUID, actor_id: str) -> Requisition:
        """Record the purchase of an approved requisition and commit its reservation."""
        events: list[NotificationEvent] = []
        with LogContext.bind(requisition_id=str(requisition_id), actor_id=actor_id):
            with self._requisition_locks(requisition_id), self._transaction("mark_purchased"):
                requisition = self._load_for_update(requisition_id)
                transition = resolve_transition(
                    requisition.id, requisition.status_enum, RequisitionAction.MARK_PURCHASED,
                )
                self._apply_transition(requisition, transition, actor_id, events)
                result = requisition.to_dto()

        self._dispatch(events)
        return result

    def create_revision(
        self,
        requisition_id: UUID,
        actor_id: str,
        as_admin: bool = False,
    ) -> Requisition:
        """
        Start a new draft from a rejected requisition.

        The new draft copies the header and line items and records
        ``revision_of_id``.  The rejected requisition is left untouched.
        """
        with LogContext.bind(requisition_id=str(requisition_id), actor_id=actor_id):
            with (
                self._requisition_locks(requisition_id),
                self._sequence_lock(),
                self._transaction("create_revision"),
            ):
                source = self._load_for_update(requisition_id)
                if source.status_enum is not RequisitionStatus.REJECTED:
                    raise InvalidTransitionError(str(source.id), source.status, "revise")
                self._require_requester(source, actor_id, as_admin, "revise")

                revision = self._new_requisition(
                    source.requester_id,
                    source.title,
                    source.currency,
                    source.department,
                    source.category,
                    source.budget_id,
                    [
                        LineItemSpec(i.description, i.quantity, i.unit_price, i.category)
                        for i in source.items
                    ],
                    actor_id=actor_id,
                    revision_of_id=source.id,
                )
                self._auditor.record(
                    AuditorService.REQUISITION,
                    source.id,
                    AuditAction.REQUISITION_REVISED,
                    actor_id,
                    {
                        "revision_id": revision.id,
                        "revision_number": revision.requisition_number,
                    },
                )
                logger.info(
                    "requisition_revised",
                    extra={
                        "requisition_id": str(source.id),
                        "revision_id": str(revision.id),
                        "revision_number": revision.requisition_number,
                    },
                )
                return revision.to_dto()

    # =========================================================================
    # Budgets
    # =========================================================================

    def create_budget(
        self,
        code: str,
        name: str,
        allocated: Decimal,
        actor_id: str,
        currency: str = "USD",
    ) -> BudgetBalance:
        with LogContext.bind(actor_id=actor_id), self._transaction("create_budget"):
            return self._budgets.create_budget(code, name, allocated, actor_id, currency)

    def adjust_budget_allocation(
        self,
        budget_id: UUID,
        new_allocated: Decimal,
        actor_id: str,
    ) -> BudgetBalance:
        with LogContext.bind(budget_id=str(budget_id), actor_id=actor_id):
            with self._budget_lock(budget_id), self._transaction("adjust_budget_allocation"):
                return self._budgets.adjust_allocation(budget_id, new_allocated, actor_id)

    # =========================================================================
    # Queries
    # =========================================================================

    def get_requisition(self, requisition_id: UUID) -> Requisition:
        self._session.expire_all()
        requisition = self._session.get(RequisitionModel, requisition_id)
        if requisition is None:
            raise RequisitionNotFoundError(str(requisition_id))
        return requisition.to_dto()

    def get_steps(self, requisition_id: UUID) -> tuple[ApprovalStep, ...]:
        return self._steps.get_steps(requisition_id)

    def eligible_steps(self, requisition_id: UUID) -> tuple[ApprovalStep, ...]:
        return self._steps.eligible_steps(requisition_id)

    def get_budget_balance(self, budget_id: UUID) -> BudgetBalance:
        self._session.expire_all()
        return self._budgets.get_balance(budget_id)

    def audit_trail(
        self,
        entity_id: UUID,
        entity_type: str = AuditorService.REQUISITION,
    ) -> AuditTrace:
        return self._auditor.get_trace(entity_type, entity_id)

    def validate_audit_chain(
        self,
        entity_id: UUID,
        entity_type: str = AuditorService.REQUISITION,
    ) -> bool:
        return self._auditor.validate_chain(entity_type, entity_id)
