"""
Module: procure_kernel.models.requisition
Responsibility: ORM persistence for requisitions and their line items.

Architecture position: Kernel > Models.  May import from db/ and domain/.

Invariants enforced:
    - Status values are limited by a check constraint; transitions are
      decided only by ``resolve_transition`` in the workflow.
    - quantity > 0 and unit_price >= 0 at the database level.
    - line_number is unique within a requisition.
    - Requisitions are never deleted; items change only while the parent
      is in draft (see db/immutability.py).

Audit relevance:
    Every status change is mirrored by an AuditEvent written by the
    workflow.  rule_set_version/rule_set_checksum record the routing
    snapshot the approval steps were frozen against.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    ForeignKey,
    Index,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from procure_kernel.db.base import TrackedBase, UUIDString
from procure_kernel.domain.requisition import (
    Requisition as RequisitionDTO,
    RequisitionItem as RequisitionItemDTO,
    RequisitionStatus,
)


class RequisitionModel(TrackedBase):
    """Persistent requisition header."""

    __tablename__ = "requisitions"

    __table_args__ = (
        CheckConstraint(
            "status IN ('draft', 'pending_approval', 'approved', "
            "'rejected', 'purchased', 'cancelled')",
            name="ck_requisitions_valid_status",
        ),
        CheckConstraint("total_amount >= 0", name="ck_requisitions_total_non_negative"),
        Index("ix_requisitions_requester_status", "requester_id", "status"),
    )

    requisition_number: Mapped[str] = mapped_column(String(40), nullable=False, unique=True)
    requester_id: Mapped[str] = mapped_column(String(100), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    status: Mapped[str] = mapped_column(
        String(30), nullable=False, default=RequisitionStatus.DRAFT.value,
    )
    total_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    department: Mapped[str | None] = mapped_column(String(100), nullable=True)
    category: Mapped[str | None] = mapped_column(String(100), nullable=True)
    budget_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("budgets.id"), nullable=True,
    )
    revision_of_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("requisitions.id"), nullable=True,
    )
    rule_set_version: Mapped[int | None] = mapped_column(nullable=True)
    rule_set_checksum: Mapped[str | None] = mapped_column(String(64), nullable=True)
    submitted_at: Mapped[datetime | None] = mapped_column(nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    rejected_at: Mapped[datetime | None] = mapped_column(nullable=True)
    purchased_at: Mapped[datetime | None] = mapped_column(nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(nullable=True)

    items: Mapped[list[RequisitionItemModel]] = relationship(
        "RequisitionItemModel",
        back_populates="requisition",
        order_by="RequisitionItemModel.line_number",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<Requisition {self.requisition_number} status={self.status}>"

    @property
    def status_enum(self) -> RequisitionStatus:
        return RequisitionStatus(self.status)

    def next_line_number(self) -> int:
        return max((item.line_number for item in self.items), default=0) + 1

    def to_dto(self) -> RequisitionDTO:
        """Convert ORM model to frozen domain DTO."""
        return RequisitionDTO(
            id=self.id,
            requisition_number=self.requisition_number,
            requester_id=self.requester_id,
            title=self.title,
            status=RequisitionStatus(self.status),
            total_amount=self.total_amount,
            currency=self.currency,
            department=self.department,
            category=self.category,
            budget_id=self.budget_id,
            revision_of_id=self.revision_of_id,
            rule_set_version=self.rule_set_version,
            rule_set_checksum=self.rule_set_checksum,
            submitted_at=self.submitted_at,
            approved_at=self.approved_at,
            rejected_at=self.rejected_at,
            purchased_at=self.purchased_at,
            cancelled_at=self.cancelled_at,
            items=tuple(item.to_dto() for item in self.items),
        )


class RequisitionItemModel(TrackedBase):
    """Persistent requisition line item."""

    __tablename__ = "requisition_items"

    __table_args__ = (
        UniqueConstraint(
            "requisition_id", "line_number",
            name="uq_requisition_items_line",
        ),
        CheckConstraint("quantity > 0", name="ck_requisition_items_quantity_positive"),
        CheckConstraint("unit_price >= 0", name="ck_requisition_items_price_non_negative"),
    )

    requisition_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("requisitions.id"), nullable=False, index=True,
    )
    line_number: Mapped[int] = mapped_column(nullable=False)
    description: Mapped[str] = mapped_column(String(500), nullable=False)
    quantity: Mapped[int] = mapped_column(nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(nullable=False)
    total_price: Mapped[Decimal] = mapped_column(nullable=False)
    category: Mapped[str | None] = mapped_column(String(100), nullable=True)

    requisition: Mapped[RequisitionModel] = relationship(
        "RequisitionModel", back_populates="items",
    )

    def __repr__(self) -> str:
        return f"<RequisitionItem {self.requisition_id}#{self.line_number}>"

    def to_dto(self) -> RequisitionItemDTO:
        return RequisitionItemDTO(
            id=self.id,
            requisition_id=self.requisition_id,
            line_number=self.line_number,
            description=self.description,
            quantity=self.quantity,
            unit_price=self.unit_price,
            total_price=self.total_price,
            category=self.category,
        )
