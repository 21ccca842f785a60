"""
ApprovalStepLedger -- persisted approval steps and their decisions.

Responsibility:
    Persists the step plan produced by the rule engine and records
    decisions on individual steps.  Answers the aggregation questions the
    requisition workflow asks after every decision: is every step decided,
    what is the outcome, and which steps are decidable now.

Architecture position:
    Kernel > Services -- imperative shell.  Receives the plan as a domain
    value; never evaluates rules itself.  Called by RequisitionWorkflow.

Invariants enforced:
    - A step's status changes exactly once, away from ``pending``.  A second
      decision fails and leaves the stored decision intact.
    - A step is decidable only when every step in its ``depends_on`` set
      is approved (``procure_kernel.domain.gating``).
    - Only the assigned approver may decide a step unless ``override`` is
      set by the caller.

Failure modes:
    - StepNotFoundError: unknown step id.
    - StepAlreadyDecidedError: the step is not pending.
    - UnauthorizedApproverError: actor is not the approver, no override.
    - StepNotEligibleError: a dependency is not approved yet.

Audit relevance:
    Every decision writes an ApprovalStep audit event with the deciding
    actor, the override flag and the notes.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from procure_kernel.domain import gating
from procure_kernel.domain.approval import (
    ApprovalOutcome,
    ApprovalPlan,
    ApprovalStep,
    StepDecision,
    StepStatus,
)
from procure_kernel.domain.clock import Clock, SystemClock
from procure_kernel.exceptions import (
    StepAlreadyDecidedError,
    StepNotEligibleError,
    StepNotFoundError,
    UnauthorizedApproverError,
)
from procure_kernel.logging_config import get_logger
from procure_kernel.models.approval import ApprovalStepModel
from procure_kernel.models.audit_event import AuditAction
from procure_kernel.services.auditor_service import AuditorService

logger = get_logger("services.approval_ledger")


class ApprovalStepLedger:
    """
    Flush-only ledger of approval steps.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
        - Does NOT change requisition status; the workflow reacts to
          ``outcome()``.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        auditor: AuditorService | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._auditor = auditor or AuditorService(session, self._clock)

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def _load_step_model(self, step_id: UUID, for_update: bool = False) -> ApprovalStepModel:
        stmt = select(ApprovalStepModel).where(ApprovalStepModel.id == step_id)
        if for_update:
            stmt = stmt.with_for_update()
        step = self._session.execute(
            stmt.execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if step is None:
            raise StepNotFoundError(str(step_id))
        return step

    def _load_models(self, requisition_id: UUID) -> list[ApprovalStepModel]:
        return list(
            self._session.execute(
                select(ApprovalStepModel)
                .where(ApprovalStepModel.requisition_id == requisition_id)
                .order_by(ApprovalStepModel.order_index)
                .execution_options(populate_existing=True)
            ).scalars().all()
        )

    def get_step(self, step_id: UUID) -> ApprovalStep:
        return self._load_step_model(step_id).to_dto()

    def get_steps(self, requisition_id: UUID) -> tuple[ApprovalStep, ...]:
        """All steps of a requisition, by order index."""
        return tuple(m.to_dto() for m in self._load_models(requisition_id))

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def materialize(
        self,
        requisition_id: UUID,
        plan: ApprovalPlan,
        actor_id: str,
    ) -> tuple[ApprovalStep, ...]:
        """Persist every assignment of ``plan`` as a pending step."""
        models = []
        for assignment in plan.assignments:
            model = ApprovalStepModel(
                requisition_id=requisition_id,
                approver_id=assignment.approver_id,
                order_index=assignment.order_index,
                mode=assignment.mode.value,
                depends_on=list(assignment.depends_on),
                status=StepStatus.PENDING.value,
                rule_id=assignment.rule_id,
                created_by=actor_id,
            )
            self._session.add(model)
            models.append(model)
        self._session.flush()

        self._auditor.record(
            AuditorService.REQUISITION,
            requisition_id,
            AuditAction.STEPS_MATERIALIZED,
            actor_id,
            {
                "rule_set_version": plan.rule_set_version,
                "matched_rules": list(plan.matched_rule_ids),
                "steps": [
                    {
                        "approver_id": a.approver_id,
                        "order_index": a.order_index,
                        "mode": a.mode.value,
                        "depends_on": list(a.depends_on),
                    }
                    for a in plan.assignments
                ],
            },
        )
        logger.info(
            "approval_steps_materialized",
            extra={
                "requisition_id": str(requisition_id),
                "step_count": len(models),
                "rule_set_version": plan.rule_set_version,
            },
        )
        return tuple(m.to_dto() for m in models)

    def record_decision(
        self,
        step_id: UUID,
        actor_id: str,
        decision: StepDecision,
        notes: str | None = None,
        override: bool = False,
    ) -> ApprovalStep:
        """
        Record ``decision`` on a pending, eligible step.

        Checks run in order: pending, authorized, eligible.  Nothing is
        written unless all three pass.
        """
        step = self._load_step_model(step_id, for_update=True)

        if step.status != StepStatus.PENDING.value:
            logger.warning(
                "step_already_decided",
                extra={"step_id": str(step_id), "status": step.status, "actor_id": actor_id},
            )
            raise StepAlreadyDecidedError(str(step_id), step.status)

        if actor_id != step.approver_id and not override:
            logger.warning(
                "step_unauthorized_approver",
                extra={
                    "step_id": str(step_id),
                    "actor_id": actor_id,
                    "approver_id": step.approver_id,
                },
            )
            raise UnauthorizedApproverError(str(step_id), actor_id, step.approver_id)

        siblings = self.get_steps(step.requisition_id)
        waiting_on = gating.unmet_dependencies(step.to_dto(), siblings)
        if waiting_on:
            logger.warning(
                "step_not_eligible",
                extra={
                    "step_id": str(step_id),
                    "order_index": step.order_index,
                    "waiting_on": list(waiting_on),
                },
            )
            raise StepNotEligibleError(str(step_id), step.order_index, waiting_on)

        step.status = decision.resulting_status.value
        step.notes = notes
        step.decided_at = self._clock.now()
        step.decided_by = actor_id
        step.is_override = override and actor_id != step.approver_id
        step.updated_by = actor_id
        self._session.flush()

        action = (
            AuditAction.STEP_APPROVED
            if decision is StepDecision.APPROVE
            else AuditAction.STEP_REJECTED
        )
        self._auditor.record(
            AuditorService.APPROVAL_STEP,
            step.id,
            action,
            actor_id,
            {
                "requisition_id": step.requisition_id,
                "order_index": step.order_index,
                "approver_id": step.approver_id,
                "override": step.is_override,
                "notes": notes,
            },
        )
        logger.info(
            "approval_step_decided",
            extra={
                "step_id": str(step.id),
                "requisition_id": str(step.requisition_id),
                "decision": decision.value,
                "actor_id": actor_id,
                "override": step.is_override,
            },
        )
        return step.to_dto()

    def skip_pending(
        self,
        requisition_id: UUID,
        actor_id: str,
        reason: str,
    ) -> tuple[ApprovalStep, ...]:
        """Move every remaining pending step to ``skipped``."""
        now = self._clock.now()
        skipped = []
        for model in self._load_models(requisition_id):
            if model.status != StepStatus.PENDING.value:
                continue
            model.status = StepStatus.SKIPPED.value
            model.decided_at = now
            model.notes = reason
            model.updated_by = actor_id
            skipped.append(model)
        if not skipped:
            return ()
        self._session.flush()

        self._auditor.record(
            AuditorService.REQUISITION,
            requisition_id,
            AuditAction.STEPS_SKIPPED,
            actor_id,
            {"order_indices": [m.order_index for m in skipped], "reason": reason},
        )
        logger.info(
            "approval_steps_skipped",
            extra={
                "requisition_id": str(requisition_id),
                "step_count": len(skipped),
                "reason": reason,
            },
        )
        return tuple(m.to_dto() for m in skipped)

    # ------------------------------------------------------------------
    # Aggregation
    # ------------------------------------------------------------------

    def is_complete(self, requisition_id: UUID) -> bool:
        return gating.is_complete(self.get_steps(requisition_id))

    def outcome(self, requisition_id: UUID) -> ApprovalOutcome:
        return gating.aggregate_outcome(self.get_steps(requisition_id))

    def next_eligible_step(self, requisition_id: UUID) -> ApprovalStep | None:
        return gating.next_eligible_step(self.get_steps(requisition_id))

    def eligible_steps(self, requisition_id: UUID) -> tuple[ApprovalStep, ...]:
        return gating.eligible_steps(self.get_steps(requisition_id))
