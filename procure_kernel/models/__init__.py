"""SQLAlchemy ORM models."""

from procure_kernel.models.approval import ApprovalStepModel
from procure_kernel.models.audit_event import AuditAction, AuditEvent
from procure_kernel.models.budget import BudgetModel
from procure_kernel.models.requisition import RequisitionItemModel, RequisitionModel
from procure_kernel.models.sequence import SequenceCounter

__all__ = [
    "ApprovalStepModel",
    "AuditAction",
    "AuditEvent",
    "BudgetModel",
    "RequisitionItemModel",
    "RequisitionModel",
    "SequenceCounter",
]
