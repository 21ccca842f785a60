"""
Tests for draft editing and revisions through RequisitionWorkflow.

Invariants tested:
- total_amount equals the sum of item totals after every edit.
- Only drafts are editable, and only by the requester or an admin.
- Requisition numbers are sequential and unique.
- A rejected requisition can be revised into a new draft; the original
  stays rejected and untouched.
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from procure_kernel.domain.requisition import LineItemSpec, RequisitionStatus
from procure_kernel.exceptions import (
    BudgetNotFoundError,
    InvalidCurrencyError,
    InvalidLineItemError,
    InvalidTransitionError,
    LineItemNotFoundError,
    RequisitionNotEditableError,
    UnauthorizedActorError,
)
from procure_kernel.models.audit_event import AuditAction
from tests.conftest import ADMIN, REQUESTER


def _item_total_sum(requisition):
    return sum((item.total_price for item in requisition.items), Decimal("0"))


class TestCreateDraft:

    def test_draft_defaults(self, make_draft):
        draft = make_draft()
        assert draft.status is RequisitionStatus.DRAFT
        assert draft.requester_id == REQUESTER
        assert draft.requisition_number == "REQ-000001"
        assert draft.total_amount == Decimal("2400.00")
        assert [item.line_number for item in draft.items] == [1]
        assert draft.rule_set_version is None

    def test_numbers_are_sequential(self, make_draft):
        numbers = [make_draft().requisition_number for _ in range(3)]
        assert numbers == ["REQ-000001", "REQ-000002", "REQ-000003"]

    def test_total_is_sum_of_items(self, make_draft):
        draft = make_draft(
            LineItemSpec("Monitor", 3, Decimal("199.99")),
            LineItemSpec("Cable", 10, Decimal("4.50")),
        )
        assert draft.total_amount == Decimal("644.97")
        assert draft.total_amount == _item_total_sum(draft)

    def test_empty_draft_allowed(self, workflow):
        draft = workflow.create_draft(REQUESTER, "To be filled in")
        assert draft.items == ()
        assert draft.total_amount == 0

    @pytest.mark.parametrize("quantity,price", [
        (0, Decimal("10")),
        (-1, Decimal("10")),
        (1, Decimal("-0.01")),
    ])
    def test_invalid_items_rejected(self, workflow, quantity, price):
        with pytest.raises(InvalidLineItemError):
            workflow.create_draft(REQUESTER, "Bad", items=[LineItemSpec("x", quantity, price)])

    def test_unknown_budget_rejected(self, workflow):
        with pytest.raises(BudgetNotFoundError):
            workflow.create_draft(REQUESTER, "Orphan", budget_id=uuid4())

    def test_invalid_currency_rejected(self, workflow):
        with pytest.raises(InvalidCurrencyError):
            workflow.create_draft(REQUESTER, "Bad currency", currency="dollars")

    def test_creation_audited(self, workflow, make_draft):
        draft = make_draft()
        trail = workflow.audit_trail(draft.id)
        assert trail.actions == (AuditAction.REQUISITION_CREATED,)
        assert trail.entries[0].actor_id == REQUESTER


class TestItemEdits:

    def test_add_item_recomputes_total(self, workflow, make_draft):
        draft = make_draft()
        updated = workflow.add_item(
            draft.id, REQUESTER, LineItemSpec("Dock", 2, Decimal("150.00"), "hardware"),
        )
        assert updated.total_amount == Decimal("2700.00")
        assert [item.line_number for item in updated.items] == [1, 2]
        assert updated.total_amount == _item_total_sum(updated)

    def test_update_item_recomputes_total(self, workflow, make_draft):
        draft = make_draft()
        item_id = draft.items[0].id
        updated = workflow.update_item(draft.id, item_id, REQUESTER, quantity=3)
        assert updated.items[0].quantity == 3
        assert updated.items[0].unit_price == Decimal("1200.00")
        assert updated.total_amount == Decimal("3600.00")

        updated = workflow.update_item(
            draft.id, item_id, REQUESTER, unit_price=Decimal("1000.00"), description="Laptop 14in",
        )
        assert updated.items[0].description == "Laptop 14in"
        assert updated.total_amount == Decimal("3000.00")

    def test_remove_item_recomputes_total(self, workflow, make_draft):
        draft = make_draft(
            LineItemSpec("Laptop", 1, Decimal("1200.00")),
            LineItemSpec("Mouse", 1, Decimal("25.00")),
        )
        updated = workflow.remove_item(draft.id, draft.items[0].id, REQUESTER)
        assert [item.description for item in updated.items] == ["Mouse"]
        assert updated.total_amount == Decimal("25.00")

    def test_new_line_follows_highest_number(self, workflow, make_draft):
        draft = make_draft(
            LineItemSpec("A", 1, Decimal("1")),
            LineItemSpec("B", 1, Decimal("1")),
        )
        workflow.remove_item(draft.id, draft.items[1].id, REQUESTER)
        workflow.add_item(draft.id, REQUESTER, LineItemSpec("C", 1, Decimal("1")))
        updated = workflow.add_item(draft.id, REQUESTER, LineItemSpec("D", 1, Decimal("1")))
        assert [(i.line_number, i.description) for i in updated.items] == [
            (1, "A"), (2, "C"), (3, "D"),
        ]

    def test_invalid_update_leaves_item_unchanged(self, workflow, make_draft):
        draft = make_draft()
        with pytest.raises(InvalidLineItemError):
            workflow.update_item(draft.id, draft.items[0].id, REQUESTER, quantity=0)
        stored = workflow.get_requisition(draft.id)
        assert stored.items[0].quantity == 2
        assert stored.total_amount == Decimal("2400.00")

    def test_unknown_item(self, workflow, make_draft):
        draft = make_draft()
        with pytest.raises(LineItemNotFoundError):
            workflow.remove_item(draft.id, uuid4(), REQUESTER)

    def test_edits_audited(self, workflow, make_draft):
        draft = make_draft()
        workflow.add_item(draft.id, REQUESTER, LineItemSpec("Dock", 1, Decimal("150")))
        workflow.update_item(draft.id, draft.items[0].id, REQUESTER, quantity=1)
        workflow.remove_item(draft.id, draft.items[0].id, REQUESTER)
        workflow.update_header(draft.id, REQUESTER, title="One dock")
        assert workflow.audit_trail(draft.id).actions == (
            AuditAction.REQUISITION_CREATED,
            AuditAction.ITEM_ADDED,
            AuditAction.ITEM_UPDATED,
            AuditAction.ITEM_REMOVED,
            AuditAction.REQUISITION_UPDATED,
        )
        assert workflow.validate_audit_chain(draft.id)


class TestEditPermissions:

    def test_other_actor_cannot_edit(self, workflow, make_draft):
        draft = make_draft()
        with pytest.raises(UnauthorizedActorError):
            workflow.add_item(draft.id, "mallory", LineItemSpec("Phone", 1, Decimal("900")))
        assert workflow.get_requisition(draft.id).total_amount == Decimal("2400.00")

    def test_admin_can_edit(self, workflow, make_draft):
        draft = make_draft()
        updated = workflow.update_item(
            draft.id, draft.items[0].id, ADMIN, quantity=1, as_admin=True,
        )
        assert updated.total_amount == Decimal("1200.00")

    @pytest.mark.parametrize("edit", ["add", "update", "remove", "header"])
    def test_submitted_requisition_not_editable(self, workflow, make_draft, edit):
        draft = make_draft()
        workflow.submit(draft.id, REQUESTER)
        item_id = draft.items[0].id

        with pytest.raises(RequisitionNotEditableError):
            if edit == "add":
                workflow.add_item(draft.id, REQUESTER, LineItemSpec("Dock", 1, Decimal("150")))
            elif edit == "update":
                workflow.update_item(draft.id, item_id, REQUESTER, quantity=5)
            elif edit == "remove":
                workflow.remove_item(draft.id, item_id, REQUESTER)
            else:
                workflow.update_header(draft.id, REQUESTER, title="Changed")

        stored = workflow.get_requisition(draft.id)
        assert stored.total_amount == Decimal("2400.00")
        assert stored.title == "Team laptops"


class TestHeaderEdits:

    def test_update_header_fields(self, workflow, make_draft):
        draft = make_draft()
        updated = workflow.update_header(
            draft.id, REQUESTER, title="Engineering laptops", department="engineering",
            category="hardware", currency="eur",
        )
        assert updated.title == "Engineering laptops"
        assert updated.department == "engineering"
        assert updated.category == "hardware"
        assert updated.currency == "EUR"

    def test_change_and_clear_budget(self, workflow, make_draft):
        draft = make_draft()
        other = workflow.create_budget("OPS-2024", "Operations", Decimal("500"), ADMIN)
        moved = workflow.update_header(draft.id, REQUESTER, budget_id=other.budget_id)
        assert moved.budget_id == other.budget_id
        assert workflow.update_header(draft.id, REQUESTER, budget_id=None).budget_id is None

    def test_unknown_budget(self, workflow, make_draft):
        draft = make_draft()
        with pytest.raises(BudgetNotFoundError):
            workflow.update_header(draft.id, REQUESTER, budget_id=uuid4())


class TestRevision:

    @pytest.fixture
    def rejected(self, workflow, make_draft):
        draft = make_draft(
            LineItemSpec("Laptop", 2, Decimal("1200.00"), "hardware"),
            LineItemSpec("Bag", 2, Decimal("60.00")),
            department="engineering",
        )
        workflow.submit(draft.id, REQUESTER)
        manager_step = workflow.get_steps(draft.id)[0]
        workflow.reject_step(manager_step.id, "manager", notes="too expensive")
        return workflow.get_requisition(draft.id)

    def test_revision_copies_header_and_items(self, workflow, rejected):
        revision = workflow.create_revision(rejected.id, REQUESTER)
        assert revision.status is RequisitionStatus.DRAFT
        assert revision.revision_of_id == rejected.id
        assert revision.id != rejected.id
        assert revision.requisition_number != rejected.requisition_number
        assert revision.department == "engineering"
        assert revision.budget_id == rejected.budget_id
        assert [(i.description, i.quantity, i.unit_price) for i in revision.items] == [
            (i.description, i.quantity, i.unit_price) for i in rejected.items
        ]
        assert revision.total_amount == rejected.total_amount

    def test_original_stays_rejected(self, workflow, rejected):
        revision = workflow.create_revision(rejected.id, REQUESTER)
        original = workflow.get_requisition(rejected.id)
        assert original.status is RequisitionStatus.REJECTED
        assert workflow.audit_trail(rejected.id).last_action is AuditAction.REQUISITION_REVISED
        assert workflow.audit_trail(revision.id).actions == (AuditAction.REQUISITION_CREATED,)

    def test_revision_can_be_edited_and_resubmitted(self, workflow, rejected):
        revision = workflow.create_revision(rejected.id, REQUESTER)
        workflow.update_item(revision.id, revision.items[0].id, REQUESTER, quantity=1)
        resubmitted = workflow.submit(revision.id, REQUESTER)
        assert resubmitted.status is RequisitionStatus.PENDING_APPROVAL
        assert resubmitted.total_amount == Decimal("1320.00")

    def test_only_rejected_can_be_revised(self, workflow, make_draft):
        draft = make_draft()
        with pytest.raises(InvalidTransitionError):
            workflow.create_revision(draft.id, REQUESTER)

    def test_other_actor_cannot_revise(self, workflow, rejected):
        with pytest.raises(UnauthorizedActorError):
            workflow.create_revision(rejected.id, "mallory")
