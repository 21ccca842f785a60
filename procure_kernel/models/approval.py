"""
Module: procure_kernel.models.approval
Responsibility: ORM persistence for approval steps.

Architecture position: Kernel > Models.  May import from db/ and domain/.

Invariants enforced:
    - Status values limited by a check constraint.
    - order_index is unique within a requisition.
    - A step leaves ``pending`` exactly once; afterwards every column except
      audit metadata is frozen (db/immutability.py).  Steps are never deleted.

Failure modes:
    - IntegrityError on a duplicate (requisition_id, order_index).
    - ImmutabilityViolationError on a second decision or a DELETE.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from procure_kernel.db.base import TrackedBase, UUIDString
from procure_kernel.domain.approval import (
    ApprovalMode,
    ApprovalStep as ApprovalStepDTO,
    StepStatus,
)


class ApprovalStepModel(TrackedBase):
    """Persistent approval step.

    Contract:
        ``depends_on`` holds the order indices that must be approved before
        this step is decidable.  It is written once, at submission.
    """

    __tablename__ = "approval_steps"

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected', 'skipped')",
            name="ck_approval_steps_valid_status",
        ),
        CheckConstraint(
            "mode IN ('sequential', 'parallel')",
            name="ck_approval_steps_valid_mode",
        ),
        UniqueConstraint(
            "requisition_id", "order_index",
            name="uq_approval_steps_order",
        ),
        Index("ix_approval_steps_approver_status", "approver_id", "status"),
    )

    requisition_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("requisitions.id"), nullable=False, index=True,
    )
    approver_id: Mapped[str] = mapped_column(String(100), nullable=False)
    order_index: Mapped[int] = mapped_column(nullable=False)
    mode: Mapped[str] = mapped_column(String(20), nullable=False)
    depends_on: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=StepStatus.PENDING.value,
    )
    rule_id: Mapped[str] = mapped_column(String(100), nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    decided_at: Mapped[datetime | None] = mapped_column(nullable=True)
    decided_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    is_override: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    def __repr__(self) -> str:
        return (
            f"<ApprovalStep {self.requisition_id}#{self.order_index} "
            f"approver={self.approver_id} status={self.status}>"
        )

    def to_dto(self) -> ApprovalStepDTO:
        """Convert ORM model to frozen domain DTO."""
        return ApprovalStepDTO(
            id=self.id,
            requisition_id=self.requisition_id,
            approver_id=self.approver_id,
            order_index=self.order_index,
            mode=ApprovalMode(self.mode),
            depends_on=tuple(sorted(int(i) for i in self.depends_on)),
            status=StepStatus(self.status),
            rule_id=self.rule_id,
            notes=self.notes,
            decided_at=self.decided_at,
            decided_by=self.decided_by,
            is_override=self.is_override,
        )
