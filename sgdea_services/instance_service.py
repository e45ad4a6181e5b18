"""
sgdea_services.instance_service -- Workflow Instance Manager.

Responsibility:
    Start workflow instances against governed entities and move them
    through their steps (approve, reject, cancel).  State decisions come
    from the pure ``sgdea_engines.instance_state`` machine; this service
    loads and persists rows, appends history and collects effects.

Architecture position:
    Services layer.  May import from sgdea_engines (pure) and sgdea_kernel.
    Flush-only: the caller commits.

Invariants enforced:
    - Start reads the definition row with FOR UPDATE and bumps its
      ``instance_count`` under the row's revision check, so a start and a
      concurrent definition update cannot both commit.
    - At most one non-terminal instance per (definition, target).
    - Instance updates are compare-and-swap on the instance revision; the
      loser of a race gets ConcurrentModificationError and nothing of its
      attempt is persisted.
    - History is append-only.

Failure modes:
    - DefinitionNotFoundError, InstanceNotFoundError,
      InactiveDefinitionError, ValidationError,
      DuplicateActiveInstanceError, InvalidTransitionError,
      ConcurrentModificationError.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from sgdea_engines.audit import (
    DEFINITION_ENTITY,
    INSTANCE_ENTITY,
    instance_started_record,
    instance_transition_record,
)
from sgdea_engines.instance_state import (
    Transition,
    plan_advance,
    plan_cancel,
    plan_start,
)
from sgdea_kernel.domain.clock import Clock, SystemClock
from sgdea_kernel.domain.effects import (
    Effect,
    IndexOperation,
    IndexRequest,
    Notification,
    NotificationPriority,
    ServiceResult,
)
from sgdea_kernel.domain.workflow import (
    EntityRef,
    InstanceStatus,
    StepOutcome,
    WorkflowDefinition,
    WorkflowInstance,
)
from sgdea_kernel.exceptions import (
    ConcurrentModificationError,
    DefinitionNotFoundError,
    DuplicateActiveInstanceError,
    InactiveDefinitionError,
    InstanceNotFoundError,
    ValidationError,
)
from sgdea_kernel.logging_config import LogContext, get_logger
from sgdea_kernel.models.workflow import (
    StepEventModel,
    WorkflowDefinitionModel,
    WorkflowInstanceModel,
)
from sgdea_kernel.selectors.workflow_selector import WorkflowSelector
from sgdea_kernel.services.base import BaseService
from sgdea_services.targets import make_target

logger = get_logger("services.instance")

_STATUS_VERBS = {
    InstanceStatus.COMPLETED: "was completed",
    InstanceStatus.REJECTED: "was rejected",
    InstanceStatus.CANCELLED: "was cancelled",
}


class WorkflowInstanceService(BaseService[WorkflowInstanceModel]):
    """
    Instance Manager.

    Contract:
        Each public mutation flushes and returns
        ``ServiceResult[WorkflowInstance]`` whose effects hold the audit
        records, and, when the instance reached a terminal status, the
        notifications and the index refresh for the target entity.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        default_priority: str = NotificationPriority.MEDIUM.value,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._default_priority = NotificationPriority(default_priority)
        self._selector = WorkflowSelector(session)

    # -- helpers -----------------------------------------------------------

    def _load_instance(self, instance_id: UUID) -> WorkflowInstanceModel:
        model = self.session.get(WorkflowInstanceModel, instance_id)
        if model is None:
            raise InstanceNotFoundError(str(instance_id))
        return model

    def _load_definition(self, definition_id: UUID) -> WorkflowDefinitionModel:
        model = self.session.get(WorkflowDefinitionModel, definition_id)
        if model is None:
            raise DefinitionNotFoundError(str(definition_id))
        return model

    def _flush(self, entity_type: str, entity_id: UUID) -> None:
        try:
            self.session.flush()
        except StaleDataError as exc:
            logger.warning(
                "instance_concurrent_modification",
                extra={"entity_type": entity_type, "entity_id": str(entity_id)},
            )
            raise ConcurrentModificationError(entity_type, str(entity_id)) from exc

    def _append_events(self, model: WorkflowInstanceModel, transition: Transition) -> None:
        position = len(model.events)
        for offset, event in enumerate(transition.events):
            model.events.append(
                StepEventModel.from_dto(event, model.id, position + offset)
            )

    def _terminal_effects(
        self,
        definition: WorkflowDefinition,
        instance: WorkflowInstance,
    ) -> list[Effect]:
        """Notifications and index refresh for an instance that just finished."""
        verb = _STATUS_VERBS.get(instance.status)
        if verb is None:
            return []

        options = definition.configuration
        priority = NotificationPriority(options.get("priority", self._default_priority.value))
        message = f"Workflow '{definition.name}' on {instance.target} {verb}"
        target = instance.target

        effects: list[Effect] = []
        if options.get("notify_initiator", True):
            effects.append(
                Notification(
                    message=message,
                    priority=priority,
                    recipient_id=instance.initiator_id,
                    target_kind=target.kind,
                    target_id=target.entity_id,
                )
            )
        if options.get("notify_entity_owner", True):
            effects.append(
                Notification(
                    message=message,
                    priority=priority,
                    target_kind=target.kind,
                    target_id=target.entity_id,
                )
            )
        effects.append(
            IndexRequest(
                operation=IndexOperation.UPDATED,
                kind=target.kind,
                entity_id=target.entity_id,
                body={
                    "workflow_id": str(definition.definition_id),
                    "workflow_status": instance.status.value,
                },
            )
        )
        return effects

    # -- mutations ---------------------------------------------------------

    def start(
        self,
        definition_id: UUID,
        target: EntityRef,
        actor_id: UUID,
        data: dict[str, Any] | None = None,
    ) -> ServiceResult[WorkflowInstance]:
        """Start an instance on ``target``: pending on step 0, then any auto steps."""
        definition_model = self.session.execute(
            select(WorkflowDefinitionModel)
            .where(WorkflowDefinitionModel.id == definition_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if definition_model is None or definition_model.deleted_at is not None:
            raise DefinitionNotFoundError(str(definition_id))

        definition = definition_model.to_dto()
        if not definition.active:
            raise InactiveDefinitionError(str(definition_id))
        target = make_target(target.kind, target.entity_id)
        if target.kind is not definition.entity_kind:
            raise ValidationError(
                "target",
                f"workflow applies to {definition.entity_kind.value}, "
                f"not {target.kind.value}",
            )
        if data is not None and not isinstance(data, dict):
            raise ValidationError("data", "must be a mapping")

        existing = self._selector.find_active_instance(definition_id, target)
        if existing is not None:
            raise DuplicateActiveInstanceError(
                str(definition_id),
                target.kind.value,
                target.entity_id,
                str(existing.instance_id),
            )

        now = self._clock.now()
        transition = plan_start(definition, now)
        model = WorkflowInstanceModel(
            id=uuid4(),
            definition_id=definition_id,
            entity_kind=target.kind.value,
            entity_id=target.entity_id,
            initiator_id=actor_id,
            status=transition.status.value,
            current_step_index=transition.current_step_index,
            data=dict(data or {}),
            started_at=now,
            finished_at=now if transition.is_finished else None,
        )
        model.events = []
        self._append_events(model, transition)
        self.session.add(model)

        definition_model.instance_count += 1
        self._flush(DEFINITION_ENTITY, definition_id)

        instance = model.to_dto()
        with LogContext.bind(instance_id=str(instance.instance_id)):
            logger.info(
                "instance_started",
                extra={
                    "definition_id": str(definition_id),
                    "target": str(target),
                    "status": instance.status.value,
                    "auto_approved_steps": len(transition.events),
                },
            )

        effects: list[Effect] = [instance_started_record(instance, actor_id, now)]
        effects.extend(self._terminal_effects(definition, instance))
        return ServiceResult(instance, tuple(effects))

    def advance(
        self,
        instance_id: UUID,
        actor_id: UUID,
        outcome: StepOutcome | str,
        comment: str = "",
    ) -> ServiceResult[WorkflowInstance]:
        """Record an approve/reject decision on the current step."""
        try:
            outcome = StepOutcome(outcome)
        except ValueError:
            raise ValidationError("outcome", f"unknown outcome {outcome!r}") from None

        model = self._load_instance(instance_id)
        definition = self._load_definition(model.definition_id).to_dto()
        before = model.to_dto()

        now = self._clock.now()
        transition = plan_advance(definition, before, actor_id, outcome, now, comment)
        return self._apply(model, definition, before, transition, actor_id, now)

    def cancel(
        self,
        instance_id: UUID,
        actor_id: UUID,
        reason: str = "",
    ) -> ServiceResult[WorkflowInstance]:
        """pending/in_progress -> cancelled."""
        model = self._load_instance(instance_id)
        definition = self._load_definition(model.definition_id).to_dto()
        before = model.to_dto()

        now = self._clock.now()
        transition = plan_cancel(before, actor_id, now, reason)
        return self._apply(model, definition, before, transition, actor_id, now)

    def _apply(
        self,
        model: WorkflowInstanceModel,
        definition: WorkflowDefinition,
        before: WorkflowInstance,
        transition: Transition,
        actor_id: UUID,
        now: datetime,
    ) -> ServiceResult[WorkflowInstance]:
        model.status = transition.status.value
        model.current_step_index = transition.current_step_index
        if transition.is_finished:
            model.finished_at = now
        self._append_events(model, transition)
        self._flush(INSTANCE_ENTITY, model.id)

        after = model.to_dto()
        with LogContext.bind(instance_id=str(after.instance_id)):
            logger.info(
                "instance_transitioned",
                extra={
                    "from_status": before.status.value,
                    "to_status": after.status.value,
                    "from_step": before.current_step_index,
                    "to_step": after.current_step_index,
                    "version": after.version,
                },
            )

        effects: list[Effect] = [
            instance_transition_record(before, after, transition.events, actor_id, now),
        ]
        effects.extend(self._terminal_effects(definition, after))
        return ServiceResult(after, tuple(effects))
