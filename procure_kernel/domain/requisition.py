"""
Requisition domain types (``procure_kernel.domain.requisition``).

Responsibility
--------------
Pure value objects for requisitions and their line items, plus the
requisition lifecycle state machine.  ``REQUISITION_WORKFLOW`` is the single
authoritative transition table; every status change in the system is
resolved through ``resolve_transition``.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``models/``, ``services/``, or outer layers.

Invariants enforced
-------------------
* Lifecycle -- only the transitions declared in ``REQUISITION_WORKFLOW``
  are legal.  Terminal states have no outgoing edges.
* Totals -- ``line_total`` and ``requisition_total`` are the only
  sanctioned total computations (quantity x unit price, summed).
* Money scale -- amounts carry at most ``MONEY_DECIMAL_PLACES`` fractional
  digits, the scale of every stored money column.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Context, Decimal, InvalidOperation
from enum import Enum
from uuid import UUID

from procure_kernel.exceptions import InvalidLineItemError, InvalidTransitionError


# =========================================================================
# Lifecycle
# =========================================================================


class RequisitionStatus(str, Enum):
    """Requisition lifecycle states."""

    DRAFT = "draft"
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    REJECTED = "rejected"
    PURCHASED = "purchased"
    CANCELLED = "cancelled"


class RequisitionAction(str, Enum):
    """Events that drive requisition transitions.

    ``APPROVE`` and ``REJECT`` are aggregation events: they fire when the
    approval step ledger's outcome becomes approved or rejected, never
    directly from a caller.
    """

    SUBMIT = "submit"
    CANCEL = "cancel"
    APPROVE = "approve"
    REJECT = "reject"
    MARK_PURCHASED = "mark_purchased"


class BudgetEffect(str, Enum):
    """Budget ledger call bound to a transition."""

    NONE = "none"
    RESERVE = "reserve"
    RELEASE = "release"
    COMMIT = "commit"


@dataclass(frozen=True)
class RequisitionTransition:
    """A valid state transition and the side effects bound to it."""

    from_status: RequisitionStatus
    action: RequisitionAction
    to_status: RequisitionStatus
    budget_effect: BudgetEffect = BudgetEffect.NONE
    skips_pending_steps: bool = False


@dataclass(frozen=True)
class RequisitionWorkflow:
    """The requisition state machine definition."""

    name: str
    initial_status: RequisitionStatus
    transitions: tuple[RequisitionTransition, ...]

    def lookup(
        self,
        status: RequisitionStatus,
        action: RequisitionAction,
    ) -> RequisitionTransition | None:
        for transition in self.transitions:
            if transition.from_status == status and transition.action == action:
                return transition
        return None

    def actions_from(self, status: RequisitionStatus) -> frozenset[RequisitionAction]:
        return frozenset(t.action for t in self.transitions if t.from_status == status)

    @property
    def terminal_statuses(self) -> frozenset[RequisitionStatus]:
        sources = {t.from_status for t in self.transitions}
        return frozenset(s for s in RequisitionStatus if s not in sources)


_S = RequisitionStatus
_A = RequisitionAction

REQUISITION_WORKFLOW = RequisitionWorkflow(
    name="requisition",
    initial_status=_S.DRAFT,
    transitions=(
        RequisitionTransition(_S.DRAFT, _A.SUBMIT, _S.PENDING_APPROVAL, BudgetEffect.RESERVE),
        RequisitionTransition(_S.DRAFT, _A.CANCEL, _S.CANCELLED),
        RequisitionTransition(_S.PENDING_APPROVAL, _A.APPROVE, _S.APPROVED),
        RequisitionTransition(
            _S.PENDING_APPROVAL, _A.REJECT, _S.REJECTED,
            BudgetEffect.RELEASE, skips_pending_steps=True,
        ),
        RequisitionTransition(
            _S.PENDING_APPROVAL, _A.CANCEL, _S.CANCELLED,
            BudgetEffect.RELEASE, skips_pending_steps=True,
        ),
        RequisitionTransition(_S.APPROVED, _A.MARK_PURCHASED, _S.PURCHASED, BudgetEffect.COMMIT),
        RequisitionTransition(_S.APPROVED, _A.CANCEL, _S.CANCELLED, BudgetEffect.RELEASE),
    ),
)

TERMINAL_REQUISITION_STATUSES: frozenset[RequisitionStatus] = (
    REQUISITION_WORKFLOW.terminal_statuses
)

EDITABLE_REQUISITION_STATUSES: frozenset[RequisitionStatus] = frozenset({_S.DRAFT})


def resolve_transition(
    requisition_id: UUID | str,
    status: RequisitionStatus,
    action: RequisitionAction,
) -> RequisitionTransition:
    """Return the transition for ``action`` from ``status`` or raise.

    Raises:
        InvalidTransitionError: the action is not legal from ``status``
            (including every action on a terminal requisition).
    """
    transition = REQUISITION_WORKFLOW.lookup(status, action)
    if transition is None:
        raise InvalidTransitionError(str(requisition_id), status.value, action.value)
    return transition


# =========================================================================
# Totals
# =========================================================================


MONEY_DECIMAL_PLACES = 9
MONEY_QUANTUM = Decimal(1).scaleb(-MONEY_DECIMAL_PLACES)
_MONEY_CONTEXT = Context(prec=38)


def has_money_scale(amount: Decimal) -> bool:
    """True when ``amount`` fits ``MONEY_DECIMAL_PLACES`` without rounding."""
    try:
        return amount.quantize(MONEY_QUANTUM, context=_MONEY_CONTEXT) == amount
    except InvalidOperation:
        return False


def line_total(quantity: int, unit_price: Decimal) -> Decimal:
    """quantity x unit price, after validating both."""
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise InvalidLineItemError("quantity", quantity, "must be an integer")
    if quantity <= 0:
        raise InvalidLineItemError("quantity", quantity, "must be positive")
    if not isinstance(unit_price, Decimal):
        raise InvalidLineItemError("unit_price", unit_price, "must be a Decimal")
    if not unit_price.is_finite() or unit_price < 0:
        raise InvalidLineItemError("unit_price", unit_price, "must be non-negative")
    if not has_money_scale(unit_price):
        raise InvalidLineItemError(
            "unit_price", unit_price,
            f"at most {MONEY_DECIMAL_PLACES} decimal places",
        )
    return _MONEY_CONTEXT.multiply(unit_price, quantity)


def requisition_total(item_totals: tuple[Decimal, ...] | list[Decimal]) -> Decimal:
    total = Decimal("0")
    for item_total in item_totals:
        total = _MONEY_CONTEXT.add(total, item_total)
    return total


# =========================================================================
# Records
# =========================================================================


@dataclass(frozen=True)
class LineItemSpec:
    """Caller input for a new line item."""

    description: str
    quantity: int
    unit_price: Decimal
    category: str | None = None

    @property
    def total_price(self) -> Decimal:
        return line_total(self.quantity, self.unit_price)


@dataclass(frozen=True)
class RequisitionItem:
    """A line item on a requisition. Immutable snapshot."""

    id: UUID
    requisition_id: UUID
    line_number: int
    description: str
    quantity: int
    unit_price: Decimal
    total_price: Decimal
    category: str | None = None


@dataclass(frozen=True)
class Requisition:
    """Immutable snapshot of a requisition and its line items."""

    id: UUID
    requisition_number: str
    requester_id: str
    title: str
    status: RequisitionStatus
    total_amount: Decimal
    currency: str = "USD"
    department: str | None = None
    category: str | None = None
    budget_id: UUID | None = None
    revision_of_id: UUID | None = None
    rule_set_version: int | None = None
    rule_set_checksum: str | None = None
    submitted_at: datetime | None = None
    approved_at: datetime | None = None
    rejected_at: datetime | None = None
    purchased_at: datetime | None = None
    cancelled_at: datetime | None = None
    items: tuple[RequisitionItem, ...] = field(default_factory=tuple)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_REQUISITION_STATUSES
