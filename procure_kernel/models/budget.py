"""
Module: procure_kernel.models.budget
Responsibility: ORM persistence for budgets.

Architecture position: Kernel > Models.  May import from db/ and domain/.

Invariants enforced:
    - reserved >= 0 and spent >= 0 at the database level.
    - remaining = allocated - reserved - spent >= 0 is asserted by
      BudgetLedger after every operation.
    - Budgets are never deleted.
"""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import CheckConstraint, String
from sqlalchemy.orm import Mapped, mapped_column

from procure_kernel.db.base import TrackedBase
from procure_kernel.domain.budget import BudgetBalance, compute_remaining


class BudgetModel(TrackedBase):
    """Persistent budget envelope."""

    __tablename__ = "budgets"

    __table_args__ = (
        CheckConstraint("allocated >= 0", name="ck_budgets_allocated_non_negative"),
        CheckConstraint("reserved >= 0", name="ck_budgets_reserved_non_negative"),
        CheckConstraint("spent >= 0", name="ck_budgets_spent_non_negative"),
    )

    code: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    allocated: Mapped[Decimal] = mapped_column(nullable=False)
    reserved: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    spent: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    def __repr__(self) -> str:
        return f"<Budget {self.code} remaining={self.remaining}>"

    @property
    def remaining(self) -> Decimal:
        return compute_remaining(self.allocated, self.reserved, self.spent)

    def to_dto(self) -> BudgetBalance:
        return BudgetBalance(
            budget_id=self.id,
            code=self.code,
            name=self.name,
            currency=self.currency,
            allocated=self.allocated,
            reserved=self.reserved,
            spent=self.spent,
        )
