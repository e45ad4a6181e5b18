"""
Tests for the pure instance state machine.

Covers:
- plan_start with and without auto-approve steps
- plan_advance: approve, reject, last step, auto-approve cascade
- plan_cancel
- terminal statuses refuse every transition
"""

from dataclasses import replace
from datetime import datetime, timezone
from uuid import uuid4

import pytest

from sgdea_engines.instance_state import (
    AUTO_APPROVE_COMMENT,
    can_transition,
    plan_advance,
    plan_cancel,
    plan_start,
)
from sgdea_kernel.domain.workflow import (
    INSTANCE_TRANSITIONS,
    SYSTEM_ACTOR_ID,
    TERMINAL_INSTANCE_STATUSES,
    AutoAdvance,
    EntityKind,
    EntityRef,
    InstanceStatus,
    Step,
    StepOutcome,
    WorkflowDefinition,
    WorkflowInstance,
)
from sgdea_kernel.exceptions import InvalidTransitionError, ValidationError

NOW = datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc)
ACTOR = uuid4()
AUTO = AutoAdvance.AUTO_APPROVE


def definition(*steps):
    return WorkflowDefinition(
        definition_id=uuid4(),
        name="Case file closure",
        description=None,
        entity_kind=EntityKind.CASE_FILE,
        steps=tuple(steps),
        active=True,
        creator_id=uuid4(),
    )


def instance_at(defn, status=InstanceStatus.PENDING, index=0):
    return WorkflowInstance(
        instance_id=uuid4(),
        definition_id=defn.definition_id,
        target=EntityRef(EntityKind.CASE_FILE, "CF-9"),
        initiator_id=ACTOR,
        status=status,
        current_step_index=index,
        started_at=NOW,
    )


class TestPlanStart:
    def test_manual_first_step_is_pending(self):
        transition = plan_start(definition(Step("A"), Step("B")), NOW)

        assert transition.status is InstanceStatus.PENDING
        assert transition.current_step_index == 0
        assert transition.events == ()

    def test_auto_first_step_moves_on(self):
        transition = plan_start(
            definition(Step("Intake", auto_advance=AUTO), Step("Review")), NOW,
        )

        assert transition.status is InstanceStatus.IN_PROGRESS
        assert transition.current_step_index == 1
        assert len(transition.events) == 1
        event = transition.events[0]
        assert event.actor_id == SYSTEM_ACTOR_ID
        assert event.outcome is StepOutcome.APPROVED
        assert event.comment == AUTO_APPROVE_COMMENT

    def test_all_auto_steps_complete_immediately(self):
        transition = plan_start(
            definition(Step("A", auto_advance=AUTO), Step("B", auto_advance=AUTO)), NOW,
        )

        assert transition.status is InstanceStatus.COMPLETED
        assert transition.current_step_index == 1
        assert [e.step_index for e in transition.events] == [0, 1]
        assert transition.is_finished


class TestPlanAdvance:
    def test_approve_moves_to_next_step(self):
        defn = definition(Step("A"), Step("B"), Step("C"))
        transition = plan_advance(defn, instance_at(defn), ACTOR, StepOutcome.APPROVED, NOW)

        assert transition.status is InstanceStatus.IN_PROGRESS
        assert transition.current_step_index == 1
        assert transition.events[0].step_index == 0
        assert transition.events[0].actor_id == ACTOR

    def test_approve_last_step_completes(self):
        defn = definition(Step("A"), Step("B"))
        current = instance_at(defn, InstanceStatus.IN_PROGRESS, 1)

        transition = plan_advance(defn, current, ACTOR, StepOutcome.APPROVED, NOW)

        assert transition.status is InstanceStatus.COMPLETED
        assert transition.current_step_index == 1

    def test_single_step_pending_to_completed(self):
        defn = definition(Step("Only"))
        transition = plan_advance(defn, instance_at(defn), ACTOR, StepOutcome.APPROVED, NOW)

        assert transition.status is InstanceStatus.COMPLETED
        assert transition.current_step_index == 0

    def test_reject_keeps_index(self):
        defn = definition(Step("A"), Step("B"), Step("C"))
        current = instance_at(defn, InstanceStatus.IN_PROGRESS, 1)

        transition = plan_advance(
            defn, current, ACTOR, StepOutcome.REJECTED, NOW, comment="missing annex",
        )

        assert transition.status is InstanceStatus.REJECTED
        assert transition.current_step_index == 1
        assert transition.events[0].comment == "missing annex"

    def test_approve_cascades_through_auto_steps(self):
        defn = definition(
            Step("A"), Step("B", auto_advance=AUTO), Step("C", auto_advance=AUTO), Step("D"),
        )
        transition = plan_advance(defn, instance_at(defn), ACTOR, StepOutcome.APPROVED, NOW)

        assert transition.current_step_index == 3
        assert [e.step_index for e in transition.events] == [0, 1, 2]
        assert [e.actor_id for e in transition.events] == [ACTOR, SYSTEM_ACTOR_ID, SYSTEM_ACTOR_ID]

    def test_cascade_into_last_auto_step_completes(self):
        defn = definition(Step("A"), Step("B", auto_advance=AUTO))
        transition = plan_advance(defn, instance_at(defn), ACTOR, StepOutcome.APPROVED, NOW)

        assert transition.status is InstanceStatus.COMPLETED

    def test_cancelled_outcome_rejected(self):
        defn = definition(Step("A"))
        with pytest.raises(ValidationError):
            plan_advance(defn, instance_at(defn), ACTOR, StepOutcome.CANCELLED, NOW)

    @pytest.mark.parametrize("status", sorted(TERMINAL_INSTANCE_STATUSES, key=lambda s: s.value))
    def test_terminal_instance_refuses_advance(self, status):
        defn = definition(Step("A"), Step("B"))
        terminal = instance_at(defn, status, 1)

        with pytest.raises(InvalidTransitionError) as exc_info:
            plan_advance(defn, terminal, ACTOR, StepOutcome.APPROVED, NOW)

        assert exc_info.value.current_status == status.value
        assert exc_info.value.attempted == "advance"

    def test_index_always_in_range(self):
        defn = definition(Step("A"), Step("B"), Step("C"))
        current = instance_at(defn)
        for _ in range(3):
            transition = plan_advance(defn, current, ACTOR, StepOutcome.APPROVED, NOW)
            assert 0 <= transition.current_step_index < len(defn.steps)
            current = replace(
                current,
                status=transition.status,
                current_step_index=transition.current_step_index,
            )
        assert current.status is InstanceStatus.COMPLETED


class TestPlanCancel:
    @pytest.mark.parametrize("status", [InstanceStatus.PENDING, InstanceStatus.IN_PROGRESS])
    def test_active_instance_cancels(self, status):
        defn = definition(Step("A"), Step("B"))
        current = instance_at(defn, status, 1 if status is InstanceStatus.IN_PROGRESS else 0)

        transition = plan_cancel(current, ACTOR, NOW, reason="withdrawn")

        assert transition.status is InstanceStatus.CANCELLED
        assert transition.current_step_index == current.current_step_index
        assert transition.events[0].outcome is StepOutcome.CANCELLED
        assert transition.events[0].comment == "withdrawn"

    def test_completed_instance_cannot_cancel(self):
        defn = definition(Step("A"))
        with pytest.raises(InvalidTransitionError):
            plan_cancel(instance_at(defn, InstanceStatus.COMPLETED), ACTOR, NOW)


class TestTransitionTable:
    @pytest.mark.parametrize("status", sorted(TERMINAL_INSTANCE_STATUSES, key=lambda s: s.value))
    def test_terminal_states_have_no_edges(self, status):
        assert INSTANCE_TRANSITIONS[status] == frozenset()
        for target in InstanceStatus:
            assert not can_transition(status, target)

    def test_nothing_returns_to_pending(self):
        for status in InstanceStatus:
            assert not can_transition(status, InstanceStatus.PENDING)
