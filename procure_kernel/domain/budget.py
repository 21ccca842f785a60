"""Budget value objects."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID


def compute_remaining(allocated: Decimal, reserved: Decimal, spent: Decimal) -> Decimal:
    """remaining = allocated - reserved - spent. Never clamped."""
    return allocated - reserved - spent


@dataclass(frozen=True)
class BudgetBalance:
    """Point-in-time view of one budget."""

    budget_id: UUID
    code: str
    name: str
    currency: str
    allocated: Decimal
    reserved: Decimal
    spent: Decimal

    @property
    def remaining(self) -> Decimal:
        return compute_remaining(self.allocated, self.reserved, self.spent)
