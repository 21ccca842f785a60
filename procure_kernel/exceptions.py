"""
Typed Exception Hierarchy for the Procurement Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the workflow (an API layer, a batch job, a test) must be able to
tell a bad request from a broken invariant without parsing messages:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

Example:
    try:
        workflow.submit(requisition_id, actor_id)
    except InsufficientBudgetError as e:
        api_response(code=e.code, remaining=str(e.remaining))
    except GuardViolationError as e:
        api_response(code=e.code, detail=str(e))

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from ProcurementKernelError:

    ProcurementKernelError (base)
    |
    +-- GuardViolationError             recoverable, nothing mutated
    |   +-- EmptyRequisitionError
    |   +-- NonPositiveTotalError
    |   +-- InvalidTransitionError
    |   +-- RequisitionNotEditableError
    |   +-- InvalidLineItemError
    |   +-- InvalidAmountError
    |   +-- UnauthorizedApproverError
    |   +-- UnauthorizedActorError
    |   +-- InvalidCurrencyError
    |   +-- CurrencyMismatchError
    |
    +-- OrderingViolationError          recoverable, nothing mutated
    |   +-- StepAlreadyDecidedError
    |   +-- StepNotEligibleError
    |
    +-- BudgetInvariantViolationError   whole transition rolled back
    |   +-- InsufficientBudgetError
    |
    +-- ConfigurationError              requisition stays in draft
    |   +-- NoApprovalPathError
    |   +-- InvalidRuleError
    |
    +-- ConsistencyFaultError           programmer error in caller sequencing
    |   +-- ReservationUnderflowError
    |   +-- NegativeRemainingError
    |   +-- TotalMismatchError
    |   +-- ImmutabilityViolationError
    |   +-- AuditChainBrokenError
    |
    +-- NotFoundError
    |   +-- RequisitionNotFoundError
    |   +-- LineItemNotFoundError
    |   +-- StepNotFoundError
    |   +-- BudgetNotFoundError
    |
    +-- ConcurrencyError
        +-- LockTimeoutError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Guard           | EMPTY_REQUISITION           | Submitting a requisition with no items
                | NON_POSITIVE_TOTAL          | Submitting a requisition with total <= 0
                | INVALID_TRANSITION          | Action not allowed from current status
                | REQUISITION_NOT_EDITABLE    | Editing a requisition outside draft
                | INVALID_LINE_ITEM           | Quantity <= 0, unit price < 0 or > 9 dp
                | INVALID_AMOUNT              | Ledger amount <= 0 or > 9 dp
                | UNAUTHORIZED_APPROVER       | Actor is not the step's approver
                | UNAUTHORIZED_ACTOR          | Actor may not cancel/revise
                | INVALID_CURRENCY            | Currency is not a 3-letter ISO 4217 code
                | CURRENCY_MISMATCH           | Requisition currency differs from budget
----------------|-----------------------------|-----------------------------------------
Ordering        | STEP_ALREADY_DECIDED        | Re-deciding a non-pending step
                | STEP_NOT_ELIGIBLE           | Deciding a step out of sequence
----------------|-----------------------------|-----------------------------------------
Budget          | INSUFFICIENT_BUDGET         | Reserve/allocation exceeds remaining
----------------|-----------------------------|-----------------------------------------
Configuration   | NO_APPROVAL_PATH            | No active rule matched on submit
                | INVALID_RULE                | Malformed rule (bad field/operator)
----------------|-----------------------------|-----------------------------------------
Consistency     | RESERVATION_UNDERFLOW       | Release/commit more than reserved
                | NEGATIVE_REMAINING          | Remaining balance went below zero
                | TOTAL_MISMATCH              | Requisition total != sum of items
                | IMMUTABILITY_VIOLATION      | Modifying a decided step / deleting
                | AUDIT_CHAIN_BROKEN          | Stored audit hash does not recompute
----------------|-----------------------------|-----------------------------------------
Not found       | REQUISITION_NOT_FOUND, LINE_ITEM_NOT_FOUND, STEP_NOT_FOUND,
                | BUDGET_NOT_FOUND
----------------|-----------------------------|-----------------------------------------
Concurrency     | LOCK_TIMEOUT                | Entity lock not acquired in time

===============================================================================
HANDLING PATTERNS
===============================================================================

1. Guard, ordering, budget and configuration errors are user-facing: report
   ``e.code`` and the structured attributes.

2. Consistency faults indicate a bug in the caller's sequencing (for example
   releasing a reservation that was never made).  They are logged at
   CRITICAL and must not be shown to end users as "bad input".
"""

from decimal import Decimal


class ProcurementKernelError(Exception):
    """
    Base exception for all procurement kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "PROCUREMENT_KERNEL_ERROR"


# Guard violations


class GuardViolationError(ProcurementKernelError):
    """Base exception for failed transition preconditions."""

    code: str = "GUARD_VIOLATION"


class EmptyRequisitionError(GuardViolationError):
    """Requisition has no line items."""

    code: str = "EMPTY_REQUISITION"

    def __init__(self, requisition_id: str):
        self.requisition_id = requisition_id
        super().__init__(f"Requisition {requisition_id} has no line items")


class NonPositiveTotalError(GuardViolationError):
    """Requisition total is zero or negative."""

    code: str = "NON_POSITIVE_TOTAL"

    def __init__(self, requisition_id: str, total: Decimal):
        self.requisition_id = requisition_id
        self.total = total
        super().__init__(
            f"Requisition {requisition_id} total must be positive, got {total}"
        )


class InvalidTransitionError(GuardViolationError):
    """Action is not allowed from the current status."""

    code: str = "INVALID_TRANSITION"

    def __init__(self, requisition_id: str, from_status: str, action: str):
        self.requisition_id = requisition_id
        self.from_status = from_status
        self.action = action
        super().__init__(
            f"Requisition {requisition_id}: action '{action}' "
            f"not allowed from status '{from_status}'"
        )


class RequisitionNotEditableError(GuardViolationError):
    """Header or items edited outside the draft status."""

    code: str = "REQUISITION_NOT_EDITABLE"

    def __init__(self, requisition_id: str, status: str):
        self.requisition_id = requisition_id
        self.status = status
        super().__init__(
            f"Requisition {requisition_id} is '{status}'; "
            "only draft requisitions can be edited"
        )


class InvalidLineItemError(GuardViolationError):
    """Line item quantity or unit price out of range."""

    code: str = "INVALID_LINE_ITEM"

    def __init__(self, field: str, value: object, reason: str):
        self.field = field
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid line item {field}={value!r}: {reason}")


class InvalidAmountError(GuardViolationError):
    """Ledger amount is out of range for the operation."""

    code: str = "INVALID_AMOUNT"

    def __init__(self, operation: str, amount: Decimal, requirement: str = "positive"):
        self.operation = operation
        self.amount = amount
        self.requirement = requirement
        super().__init__(f"{operation}: amount must be {requirement}, got {amount}")


class UnauthorizedApproverError(GuardViolationError):
    """Actor is not the step's assigned approver and holds no override."""

    code: str = "UNAUTHORIZED_APPROVER"

    def __init__(self, step_id: str, actor_id: str, approver_id: str):
        self.step_id = step_id
        self.actor_id = actor_id
        self.approver_id = approver_id
        super().__init__(
            f"Actor {actor_id} may not decide step {step_id} "
            f"(assigned to {approver_id})"
        )


class UnauthorizedActorError(GuardViolationError):
    """Actor may not perform the action on this requisition."""

    code: str = "UNAUTHORIZED_ACTOR"

    def __init__(self, requisition_id: str, actor_id: str, action: str):
        self.requisition_id = requisition_id
        self.actor_id = actor_id
        self.action = action
        super().__init__(
            f"Actor {actor_id} may not '{action}' requisition {requisition_id}"
        )


class InvalidCurrencyError(GuardViolationError):
    """Currency code is not a three-letter ISO 4217 code."""

    code: str = "INVALID_CURRENCY"

    def __init__(self, currency: object):
        self.currency = currency
        super().__init__(f"Invalid ISO 4217 currency code: {currency!r}")


class CurrencyMismatchError(GuardViolationError):
    """A requisition cannot draw on a budget held in another currency."""

    code: str = "CURRENCY_MISMATCH"

    def __init__(self, budget_id: str, budget_currency: str, currency: str):
        self.budget_id = budget_id
        self.budget_currency = budget_currency
        self.currency = currency
        super().__init__(
            f"Budget {budget_id} is held in {budget_currency}, not {currency}"
        )


# Ordering violations


class OrderingViolationError(ProcurementKernelError):
    """Base exception for approval ordering violations."""

    code: str = "ORDERING_VIOLATION"


class StepAlreadyDecidedError(OrderingViolationError):
    """Step has already left pending; decisions are recorded exactly once."""

    code: str = "STEP_ALREADY_DECIDED"

    def __init__(self, step_id: str, status: str):
        self.step_id = step_id
        self.status = status
        super().__init__(f"Approval step {step_id} is already '{status}'")


class StepNotEligibleError(OrderingViolationError):
    """Step's sequential predecessors are not all approved yet."""

    code: str = "STEP_NOT_ELIGIBLE"

    def __init__(self, step_id: str, order_index: int, waiting_on: tuple[int, ...]):
        self.step_id = step_id
        self.order_index = order_index
        self.waiting_on = waiting_on
        super().__init__(
            f"Approval step {step_id} (order {order_index}) is waiting on "
            f"steps {list(waiting_on)}"
        )


# Budget invariant violations


class BudgetInvariantViolationError(ProcurementKernelError):
    """Base exception for operations that would break the budget balance."""

    code: str = "BUDGET_INVARIANT_VIOLATION"


class InsufficientBudgetError(BudgetInvariantViolationError):
    """Remaining balance does not cover the requested amount."""

    code: str = "INSUFFICIENT_BUDGET"

    def __init__(self, budget_id: str, requested: Decimal, remaining: Decimal):
        self.budget_id = budget_id
        self.requested = requested
        self.remaining = remaining
        super().__init__(
            f"Budget {budget_id}: requested {requested} exceeds remaining {remaining}"
        )


# Configuration errors


class ConfigurationError(ProcurementKernelError):
    """Base exception for approval rule configuration problems."""

    code: str = "CONFIGURATION_ERROR"


class NoApprovalPathError(ConfigurationError):
    """No active approval rule matched the submitted requisition."""

    code: str = "NO_APPROVAL_PATH"

    def __init__(self, requisition_id: str, rule_set_version: int):
        self.requisition_id = requisition_id
        self.rule_set_version = rule_set_version
        super().__init__(
            f"No approval rule in rule set v{rule_set_version} matches "
            f"requisition {requisition_id}"
        )


class InvalidRuleError(ConfigurationError):
    """Approval rule is malformed."""

    code: str = "INVALID_RULE"

    def __init__(self, rule_id: str, reason: str):
        self.rule_id = rule_id
        self.reason = reason
        super().__init__(f"Invalid approval rule '{rule_id}': {reason}")


# Consistency faults


class ConsistencyFaultError(ProcurementKernelError):
    """
    Base exception for programmer errors in caller sequencing.

    Distinct from guard violations: the input was not "bad", the caller
    asked for something the ledger state makes impossible.
    """

    code: str = "CONSISTENCY_FAULT"


class ReservationUnderflowError(ConsistencyFaultError):
    """Release or commit of more than is currently reserved."""

    code: str = "RESERVATION_UNDERFLOW"

    def __init__(self, budget_id: str, operation: str, amount: Decimal, reserved: Decimal):
        self.budget_id = budget_id
        self.operation = operation
        self.amount = amount
        self.reserved = reserved
        super().__init__(
            f"Budget {budget_id}: {operation} of {amount} exceeds reserved {reserved}"
        )


class NegativeRemainingError(ConsistencyFaultError):
    """Remaining balance fell below zero after a ledger operation."""

    code: str = "NEGATIVE_REMAINING"

    def __init__(self, budget_id: str, remaining: Decimal):
        self.budget_id = budget_id
        self.remaining = remaining
        super().__init__(f"Budget {budget_id}: remaining balance is {remaining}")


class TotalMismatchError(ConsistencyFaultError):
    """Requisition total differs from the sum of its item totals."""

    code: str = "TOTAL_MISMATCH"

    def __init__(self, requisition_id: str, stored: Decimal, computed: Decimal):
        self.requisition_id = requisition_id
        self.stored = stored
        self.computed = computed
        super().__init__(
            f"Requisition {requisition_id}: total {stored} != sum of items {computed}"
        )


class ImmutabilityViolationError(ConsistencyFaultError):
    """Attempted to modify or delete an immutable record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


class AuditChainBrokenError(ConsistencyFaultError):
    """Audit hash chain validation failed."""

    code: str = "AUDIT_CHAIN_BROKEN"

    def __init__(self, audit_event_id: str, expected_hash: str, actual_hash: str):
        self.audit_event_id = audit_event_id
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash
        super().__init__(
            f"Audit chain broken at event {audit_event_id}: "
            f"expected {expected_hash}, got {actual_hash}"
        )


# Not found


class NotFoundError(ProcurementKernelError):
    """Base exception for missing entities."""

    code: str = "NOT_FOUND"


class RequisitionNotFoundError(NotFoundError):
    code: str = "REQUISITION_NOT_FOUND"

    def __init__(self, requisition_id: str):
        self.requisition_id = requisition_id
        super().__init__(f"Requisition not found: {requisition_id}")


class LineItemNotFoundError(NotFoundError):
    code: str = "LINE_ITEM_NOT_FOUND"

    def __init__(self, requisition_id: str, item_id: str):
        self.requisition_id = requisition_id
        self.item_id = item_id
        super().__init__(f"Line item {item_id} not found on requisition {requisition_id}")


class StepNotFoundError(NotFoundError):
    code: str = "STEP_NOT_FOUND"

    def __init__(self, step_id: str):
        self.step_id = step_id
        super().__init__(f"Approval step not found: {step_id}")


class BudgetNotFoundError(NotFoundError):
    code: str = "BUDGET_NOT_FOUND"

    def __init__(self, budget_id: str):
        self.budget_id = budget_id
        super().__init__(f"Budget not found: {budget_id}")


# Concurrency


class ConcurrencyError(ProcurementKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class LockTimeoutError(ConcurrencyError):
    """Entity lock could not be acquired within the configured timeout."""

    code: str = "LOCK_TIMEOUT"

    def __init__(self, lock_key: str, timeout_seconds: float):
        self.lock_key = lock_key
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Could not acquire lock on {lock_key} within {timeout_seconds}s"
        )
