"""
procure_services -- orchestration over the procurement kernel.

``RequisitionWorkflow`` is the public entry point; it owns the transaction
boundary and the entity locks.  The dispatchers deliver its notification
events.
"""

from procure_services.entity_locks import EntityLockRegistry, default_lock_registry
from procure_services.notifications import LoggingDispatcher, RecordingDispatcher
from procure_services.requisition_workflow import DecisionResult, RequisitionWorkflow

__all__ = [
    "DecisionResult",
    "EntityLockRegistry",
    "LoggingDispatcher",
    "RecordingDispatcher",
    "RequisitionWorkflow",
    "default_lock_registry",
]
