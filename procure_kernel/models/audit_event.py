"""
Module: procure_kernel.models.audit_event
Responsibility: ORM persistence for the tamper-evident audit hash chain.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Audit records are append-only; no UPDATE or DELETE.
    - Hash chain integrity per entity: hash = H(entity_type | entity_id |
      action | payload_hash | prev_hash).  Validated by AuditorService.
    - seq is monotonic and unique per (entity_type, entity_id).

Audit relevance:
    AuditEvent IS the audit trail.  Every requisition transition, item
    mutation, step decision and budget movement produces one.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import JSON, BigInteger, DateTime, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from procure_kernel.db.base import Base, UUIDString


class AuditAction(str, Enum):
    """Types of auditable actions."""

    # Requisition lifecycle
    REQUISITION_CREATED = "requisition_created"
    REQUISITION_UPDATED = "requisition_updated"
    REQUISITION_SUBMITTED = "requisition_submitted"
    REQUISITION_APPROVED = "requisition_approved"
    REQUISITION_REJECTED = "requisition_rejected"
    REQUISITION_CANCELLED = "requisition_cancelled"
    REQUISITION_PURCHASED = "requisition_purchased"
    REQUISITION_REVISED = "requisition_revised"

    # Line items
    ITEM_ADDED = "item_added"
    ITEM_UPDATED = "item_updated"
    ITEM_REMOVED = "item_removed"

    # Approval steps
    STEPS_MATERIALIZED = "steps_materialized"
    STEP_APPROVED = "step_approved"
    STEP_REJECTED = "step_rejected"
    STEPS_SKIPPED = "steps_skipped"

    # Budget
    BUDGET_CREATED = "budget_created"
    BUDGET_RESERVED = "budget_reserved"
    BUDGET_RELEASED = "budget_released"
    BUDGET_COMMITTED = "budget_committed"
    BUDGET_ALLOCATION_ADJUSTED = "budget_allocation_adjusted"


class AuditEvent(Base):
    """
    Audit event with a per-entity hash chain.

    Guarantees:
        - prev_hash is None only for the first event of an entity.
        - This model does NOT compute hashes; AuditorService does.
    """

    __tablename__ = "audit_events"

    __table_args__ = (
        UniqueConstraint(
            "entity_type", "entity_id", "seq",
            name="uq_audit_events_entity_seq",
        ),
        Index("idx_audit_entity", "entity_type", "entity_id"),
        Index("idx_audit_action", "action"),
        Index("idx_audit_occurred", "occurred_at"),
    )

    seq: Mapped[int] = mapped_column(BigInteger, nullable=False)

    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)

    entity_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    action: Mapped[str] = mapped_column(String(50), nullable=False)

    actor_id: Mapped[str] = mapped_column(String(100), nullable=False)

    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    payload: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    payload_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    prev_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # hash = H(entity_type + entity_id + action + payload_hash + prev_hash)
    hash: Mapped[str] = mapped_column(String(64), nullable=False)

    def __repr__(self) -> str:
        return f"<AuditEvent {self.action} on {self.entity_type}:{self.entity_id}>"

    @property
    def is_genesis(self) -> bool:
        return self.prev_hash is None
