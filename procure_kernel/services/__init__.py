"""
Kernel services: flush-only ledgers and the auditor.

None of these services commit.  ``procure_services.RequisitionWorkflow``
owns the transaction boundary.
"""

from procure_kernel.services.approval_ledger import ApprovalStepLedger
from procure_kernel.services.auditor_service import AuditorService, AuditTrace, AuditTraceEntry
from procure_kernel.services.budget_ledger import BudgetLedger
from procure_kernel.services.sequence_service import SequenceService

__all__ = [
    "ApprovalStepLedger",
    "AuditTrace",
    "AuditTraceEntry",
    "AuditorService",
    "BudgetLedger",
    "SequenceService",
]
