"""
BudgetLedger -- reservation, release and commitment of budget funds.

Responsibility:
    Moves money between the allocated, reserved and spent buckets of a
    budget.  A requisition reserves its total on submit, releases it on
    rejection or cancellation, and commits it (reserved -> spent) on
    purchase.

Architecture position:
    Kernel > Services -- imperative shell.  Called by RequisitionWorkflow
    inside the transaction that drives the requisition transition.

Invariants enforced:
    - remaining = allocated - reserved - spent, and remaining >= 0 after
      every operation.  Violations are rejected, never clamped.
    - Every operation loads the budget row ``FOR UPDATE`` and recomputes
      from that fresh row.
    - Ledger amounts must be positive.

Failure modes:
    - BudgetNotFoundError: unknown budget id.
    - InvalidAmountError: amount <= 0, or more than 9 decimal places
      (guard, nothing mutated).
    - CurrencyMismatchError: reserve in a currency other than the budget's.
    - InsufficientBudgetError: reserve or allocation change exceeds what
      is available (nothing mutated).
    - ReservationUnderflowError: release/commit more than is reserved.
      This is a sequencing bug in the caller and is logged at CRITICAL.
    - NegativeRemainingError: post-operation check failed.

Audit relevance:
    Every movement writes a Budget audit event carrying the amount, the
    resulting balance and the requisition that caused it.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from procure_kernel.db.types import validate_currency
from procure_kernel.domain.budget import BudgetBalance
from procure_kernel.domain.clock import Clock, SystemClock
from procure_kernel.domain.requisition import MONEY_DECIMAL_PLACES, has_money_scale
from procure_kernel.exceptions import (
    BudgetNotFoundError,
    CurrencyMismatchError,
    InsufficientBudgetError,
    InvalidAmountError,
    NegativeRemainingError,
    ReservationUnderflowError,
)
from procure_kernel.logging_config import get_logger
from procure_kernel.models.audit_event import AuditAction
from procure_kernel.models.budget import BudgetModel
from procure_kernel.services.auditor_service import AuditorService

logger = get_logger("services.budget_ledger")


def _require_positive(operation: str, amount: Decimal) -> None:
    if not isinstance(amount, Decimal) or not amount.is_finite() or amount <= 0:
        raise InvalidAmountError(operation, amount)
    _require_money_scale(operation, amount)


def _require_money_scale(operation: str, amount: Decimal) -> None:
    if not has_money_scale(amount):
        raise InvalidAmountError(
            operation, amount, f"at most {MONEY_DECIMAL_PLACES} decimal places",
        )


class BudgetLedger:
    """
    Flush-only budget ledger.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
        - Does NOT serialize callers on its own; the row lock is held
          until the caller's transaction ends.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        auditor: AuditorService | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._auditor = auditor or AuditorService(session, self._clock)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _load_for_update(self, budget_id: UUID) -> BudgetModel:
        budget = self._session.execute(
            select(BudgetModel)
            .where(BudgetModel.id == budget_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if budget is None:
            raise BudgetNotFoundError(str(budget_id))
        return budget

    def _assert_non_negative(self, budget: BudgetModel) -> None:
        remaining = budget.remaining
        if remaining < 0:
            logger.critical(
                "budget_remaining_negative",
                extra={"budget_id": str(budget.id), "remaining": str(remaining)},
            )
            raise NegativeRemainingError(str(budget.id), remaining)

    def _audit(
        self,
        budget: BudgetModel,
        action: AuditAction,
        actor_id: str,
        amount: Decimal,
        requisition_id: UUID | None,
    ) -> None:
        self._auditor.record(
            AuditorService.BUDGET,
            budget.id,
            action,
            actor_id,
            {
                "amount": amount,
                "allocated": budget.allocated,
                "reserved": budget.reserved,
                "spent": budget.spent,
                "requisition_id": requisition_id,
            },
        )

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def create_budget(
        self,
        code: str,
        name: str,
        allocated: Decimal,
        actor_id: str,
        currency: str = "USD",
    ) -> BudgetBalance:
        if not isinstance(allocated, Decimal) or not allocated.is_finite() or allocated < 0:
            raise InvalidAmountError("create_budget", allocated, "non-negative")
        _require_money_scale("create_budget", allocated)

        budget = BudgetModel(
            code=code,
            name=name,
            currency=validate_currency(currency),
            allocated=allocated,
            reserved=Decimal("0"),
            spent=Decimal("0"),
            created_by=actor_id,
        )
        self._session.add(budget)
        self._session.flush()

        self._audit(budget, AuditAction.BUDGET_CREATED, actor_id, allocated, None)
        logger.info(
            "budget_created",
            extra={"budget_id": str(budget.id), "code": code, "allocated": str(allocated)},
        )
        return budget.to_dto()

    def reserve(
        self,
        budget_id: UUID,
        amount: Decimal,
        actor_id: str,
        requisition_id: UUID | None = None,
        currency: str | None = None,
    ) -> BudgetBalance:
        """Move ``amount`` from remaining into reserved.

        Raises:
            CurrencyMismatchError: ``currency`` is given and differs from
                the budget's.
            InsufficientBudgetError: remaining < amount.
        """
        _require_positive("reserve", amount)
        budget = self._load_for_update(budget_id)

        if currency is not None and currency != budget.currency:
            raise CurrencyMismatchError(str(budget_id), budget.currency, currency)

        remaining = budget.remaining
        if remaining < amount:
            logger.warning(
                "budget_insufficient",
                extra={
                    "budget_id": str(budget_id),
                    "requested": str(amount),
                    "remaining": str(remaining),
                },
            )
            raise InsufficientBudgetError(str(budget_id), amount, remaining)

        budget.reserved = budget.reserved + amount
        budget.updated_by = actor_id
        self._assert_non_negative(budget)
        self._session.flush()

        self._audit(budget, AuditAction.BUDGET_RESERVED, actor_id, amount, requisition_id)
        logger.info(
            "budget_reserved",
            extra={
                "budget_id": str(budget_id),
                "amount": str(amount),
                "reserved": str(budget.reserved),
                "remaining": str(budget.remaining),
            },
        )
        return budget.to_dto()

    def release(
        self,
        budget_id: UUID,
        amount: Decimal,
        actor_id: str,
        requisition_id: UUID | None = None,
    ) -> BudgetBalance:
        """Return ``amount`` from reserved to remaining.

        Raises:
            ReservationUnderflowError: amount > reserved.
        """
        _require_positive("release", amount)
        budget = self._load_for_update(budget_id)

        if budget.reserved < amount:
            logger.critical(
                "budget_reservation_underflow",
                extra={
                    "budget_id": str(budget_id),
                    "operation": "release",
                    "amount": str(amount),
                    "reserved": str(budget.reserved),
                },
            )
            raise ReservationUnderflowError(str(budget_id), "release", amount, budget.reserved)

        budget.reserved = budget.reserved - amount
        budget.updated_by = actor_id
        self._assert_non_negative(budget)
        self._session.flush()

        self._audit(budget, AuditAction.BUDGET_RELEASED, actor_id, amount, requisition_id)
        logger.info(
            "budget_released",
            extra={
                "budget_id": str(budget_id),
                "amount": str(amount),
                "reserved": str(budget.reserved),
                "remaining": str(budget.remaining),
            },
        )
        return budget.to_dto()

    def commit(
        self,
        budget_id: UUID,
        amount: Decimal,
        actor_id: str,
        requisition_id: UUID | None = None,
    ) -> BudgetBalance:
        """Move ``amount`` from reserved to spent.

        Raises:
            ReservationUnderflowError: amount > reserved.
        """
        _require_positive("commit", amount)
        budget = self._load_for_update(budget_id)

        if budget.reserved < amount:
            logger.critical(
                "budget_reservation_underflow",
                extra={
                    "budget_id": str(budget_id),
                    "operation": "commit",
                    "amount": str(amount),
                    "reserved": str(budget.reserved),
                },
            )
            raise ReservationUnderflowError(str(budget_id), "commit", amount, budget.reserved)

        budget.reserved = budget.reserved - amount
        budget.spent = budget.spent + amount
        budget.updated_by = actor_id
        self._assert_non_negative(budget)
        self._session.flush()

        self._audit(budget, AuditAction.BUDGET_COMMITTED, actor_id, amount, requisition_id)
        logger.info(
            "budget_committed",
            extra={
                "budget_id": str(budget_id),
                "amount": str(amount),
                "spent": str(budget.spent),
                "remaining": str(budget.remaining),
            },
        )
        return budget.to_dto()

    def adjust_allocation(
        self,
        budget_id: UUID,
        new_allocated: Decimal,
        actor_id: str,
    ) -> BudgetBalance:
        """Change the allocation.

        Raises:
            InsufficientBudgetError: new allocation is below reserved + spent.
        """
        if (
            not isinstance(new_allocated, Decimal)
            or not new_allocated.is_finite()
            or new_allocated < 0
        ):
            raise InvalidAmountError("adjust_allocation", new_allocated, "non-negative")
        _require_money_scale("adjust_allocation", new_allocated)
        budget = self._load_for_update(budget_id)

        committed = budget.reserved + budget.spent
        if new_allocated < committed:
            raise InsufficientBudgetError(str(budget_id), committed, new_allocated)

        previous = budget.allocated
        budget.allocated = new_allocated
        budget.updated_by = actor_id
        self._assert_non_negative(budget)
        self._session.flush()

        self._audit(
            budget, AuditAction.BUDGET_ALLOCATION_ADJUSTED, actor_id,
            new_allocated - previous, None,
        )
        logger.info(
            "budget_allocation_adjusted",
            extra={
                "budget_id": str(budget_id),
                "previous": str(previous),
                "allocated": str(new_allocated),
            },
        )
        return budget.to_dto()

    def get_balance(self, budget_id: UUID) -> BudgetBalance:
        budget = self._session.get(BudgetModel, budget_id)
        if budget is None:
            raise BudgetNotFoundError(str(budget_id))
        return budget.to_dto()
