"""
sgdea_engines.instance_state -- Pure workflow instance state machine.

Responsibility:
    Compute the next state of a workflow instance for start, advance and
    cancel, including the auto-approve cascade.  The caller persists the
    returned ``Transition``; nothing here touches a session.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import sgdea_kernel/domain/ types and kernel exceptions.

Invariants enforced:
    - Only edges present in ``INSTANCE_TRANSITIONS`` are ever produced.
    - Terminal instances never change: advance and cancel raise
      InvalidTransitionError.
    - ``current_step_index`` stays within ``[0, len(steps))``; a rejection
      or cancellation leaves it where it was.
    - Purity: ``now`` is passed in by the caller.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from sgdea_kernel.domain.workflow import (
    INSTANCE_TRANSITIONS,
    SYSTEM_ACTOR_ID,
    AutoAdvance,
    InstanceStatus,
    StepEvent,
    StepOutcome,
    WorkflowDefinition,
    WorkflowInstance,
)
from sgdea_kernel.exceptions import InvalidTransitionError, ValidationError

AUTO_APPROVE_COMMENT = "Approved automatically"


@dataclass(frozen=True)
class Transition:
    """Result of a state machine step.

    ``events`` are the new history entries, in order, to append.
    """

    status: InstanceStatus
    current_step_index: int
    events: tuple[StepEvent, ...]

    @property
    def is_finished(self) -> bool:
        return not INSTANCE_TRANSITIONS[self.status]


def can_transition(current: InstanceStatus, target: InstanceStatus) -> bool:
    return target in INSTANCE_TRANSITIONS[current]


def _move(instance_id, current: InstanceStatus, target: InstanceStatus, attempted: str) -> None:
    if not can_transition(current, target):
        raise InvalidTransitionError(str(instance_id), current.value, attempted)


def _approve_from(
    definition: WorkflowDefinition,
    index: int,
    events: list[StepEvent],
    now: datetime,
) -> tuple[InstanceStatus, int]:
    """Status and index after step ``index`` was approved, cascading auto steps."""
    while True:
        if index >= definition.last_step_index:
            return InstanceStatus.COMPLETED, index
        index += 1
        step = definition.step_at(index)
        if step.auto_advance is not AutoAdvance.AUTO_APPROVE:
            return InstanceStatus.IN_PROGRESS, index
        events.append(
            StepEvent(
                step_index=index,
                actor_id=SYSTEM_ACTOR_ID,
                occurred_at=now,
                outcome=StepOutcome.APPROVED,
                comment=AUTO_APPROVE_COMMENT,
            )
        )


def plan_start(definition: WorkflowDefinition, now: datetime) -> Transition:
    """Initial state of a new instance: pending on step 0, unless auto steps cascade."""
    first = definition.step_at(0)
    if first.auto_advance is not AutoAdvance.AUTO_APPROVE:
        return Transition(InstanceStatus.PENDING, 0, ())

    events = [
        StepEvent(
            step_index=0,
            actor_id=SYSTEM_ACTOR_ID,
            occurred_at=now,
            outcome=StepOutcome.APPROVED,
            comment=AUTO_APPROVE_COMMENT,
        )
    ]
    status, index = _approve_from(definition, 0, events, now)
    return Transition(status, index, tuple(events))


def plan_advance(
    definition: WorkflowDefinition,
    instance: WorkflowInstance,
    actor_id: UUID,
    outcome: StepOutcome,
    now: datetime,
    comment: str = "",
) -> Transition:
    """
    Record a decision on the current step.

    approved on the last step -> completed; approved otherwise -> next
    step, in_progress (then any auto steps); rejected -> rejected with
    the index unchanged.
    """
    outcome = StepOutcome(outcome)
    if instance.is_terminal:
        raise InvalidTransitionError(
            str(instance.instance_id), instance.status.value, "advance",
        )
    if outcome is StepOutcome.CANCELLED:
        raise ValidationError("outcome", "use cancel to cancel a workflow instance")

    index = instance.current_step_index
    events = [
        StepEvent(
            step_index=index,
            actor_id=actor_id,
            occurred_at=now,
            outcome=outcome,
            comment=comment or "",
        )
    ]

    if outcome is StepOutcome.REJECTED:
        status = InstanceStatus.REJECTED
    else:
        status, index = _approve_from(definition, index, events, now)

    _move(instance.instance_id, instance.status, status, "advance")
    return Transition(status, index, tuple(events))


def plan_cancel(
    instance: WorkflowInstance,
    actor_id: UUID,
    now: datetime,
    reason: str = "",
) -> Transition:
    """pending/in_progress -> cancelled; anything else is an invalid transition."""
    _move(instance.instance_id, instance.status, InstanceStatus.CANCELLED, "cancel")
    event = StepEvent(
        step_index=instance.current_step_index,
        actor_id=actor_id,
        occurred_at=now,
        outcome=StepOutcome.CANCELLED,
        comment=reason or "",
    )
    return Transition(InstanceStatus.CANCELLED, instance.current_step_index, (event,))
