"""
Kernel Invariants Contract.

These invariants are structural law. They are hardcoded in the ledgers,
the transition table and the ORM listeners. No rule set or settings value
may override them.

This module exists solely to declare these invariants explicitly. The
enforcement is distributed across RequisitionWorkflow, ApprovalStepLedger,
BudgetLedger and the model event listeners.
"""

from enum import Enum, unique


@unique
class KernelInvariant(str, Enum):
    """Non-configurable invariants enforced by the kernel.

    Each value names one structural guarantee that the kernel provides
    unconditionally. Rule sets influence *who* approves, never *whether*
    these rules apply.
    """

    TOTAL_CONSISTENCY = "total_consistency"
    """A requisition's total equals the sum of its item totals, and each
    item total equals quantity x unit price. Recomputed on every item
    mutation by RequisitionWorkflow."""

    BUDGET_NON_NEGATIVE = "budget_non_negative"
    """remaining = allocated - reserved - spent, and remaining >= 0 after
    every BudgetLedger operation. Violations are rejected, never clamped."""

    SINGLE_TRANSITION_TABLE = "single_transition_table"
    """Every status change is resolved through REQUISITION_WORKFLOW.
    No inline status comparisons decide transitions."""

    DECISION_IMMUTABILITY = "decision_immutability"
    """An approval step's status changes exactly once, from pending.
    Enforced by ApprovalStepLedger and a before_update listener."""

    SEQUENTIAL_GATING = "sequential_gating"
    """A step is decidable only when every step it depends on is approved.
    Dependencies are computed once, at submission."""

    ATOMIC_TRANSITION = "atomic_transition"
    """Status, steps, budget and audit trail change together or not at all.
    RequisitionWorkflow owns the transaction boundary."""

    NO_PHYSICAL_DELETE = "no_physical_delete"
    """Requisitions, approval steps, budgets and audit events are never
    deleted. Enforced by before_delete listeners."""


# All invariants as a frozenset for programmatic checks.
ALL_KERNEL_INVARIANTS: frozenset[KernelInvariant] = frozenset(KernelInvariant)

# The kernel package may not import from these packages.
# This is enforced by tests/architecture/test_kernel_boundary.py.
FORBIDDEN_KERNEL_IMPORTS: tuple[str, ...] = (
    "procure_engines",
    "procure_config",
    "procure_services",
)
