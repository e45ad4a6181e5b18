"""
Tests for the pure step deadline rules.

Covers:
- due time counted from entering the current step
- no due time without due_days or for finished instances
- on track / due soon / overdue classification
- ordering by due time with undated tasks last
"""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from sgdea_engines.deadlines import (
    DeadlineStatus,
    PendingTask,
    deadline_status,
    order_by_due,
    step_due_at,
    step_entered_at,
)
from sgdea_kernel.domain.workflow import (
    EntityKind,
    EntityRef,
    InstanceStatus,
    Step,
    StepEvent,
    StepOutcome,
    WorkflowDefinition,
    WorkflowInstance,
)

STARTED = datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc)
WINDOW = timedelta(hours=24)


def definition(**configuration):
    return WorkflowDefinition(
        definition_id=uuid4(),
        name="Loan request",
        description=None,
        entity_kind=EntityKind.CASE_FILE,
        steps=(Step("Check"), Step("Approve")),
        active=True,
        creator_id=uuid4(),
        configuration=configuration,
    )


def instance(status=InstanceStatus.PENDING, index=0, history=()):
    return WorkflowInstance(
        instance_id=uuid4(),
        definition_id=uuid4(),
        target=EntityRef(EntityKind.CASE_FILE, "8"),
        initiator_id=uuid4(),
        status=status,
        current_step_index=index,
        history=tuple(history),
        started_at=STARTED,
    )


class TestDueTime:
    def test_counted_from_start_on_first_step(self):
        assert step_due_at(definition(due_days=3), instance()) == STARTED + timedelta(days=3)

    def test_counted_from_last_decision(self):
        approved = StepEvent(0, uuid4(), STARTED + timedelta(days=2), StepOutcome.APPROVED)
        running = instance(InstanceStatus.IN_PROGRESS, 1, [approved])

        assert step_entered_at(running) == STARTED + timedelta(days=2)
        assert step_due_at(definition(due_days=1), running) == STARTED + timedelta(days=3)

    def test_none_without_due_days(self):
        assert step_due_at(definition(), instance()) is None

    @pytest.mark.parametrize(
        "status", [InstanceStatus.COMPLETED, InstanceStatus.CANCELLED, InstanceStatus.REJECTED],
    )
    def test_none_for_finished_instances(self, status):
        assert step_due_at(definition(due_days=3), instance(status)) is None


class TestStatus:
    @pytest.mark.parametrize(
        "hours_left, expected",
        [
            (None, DeadlineStatus.NO_DEADLINE),
            (48, DeadlineStatus.ON_TRACK),
            (24, DeadlineStatus.DUE_SOON),
            (1, DeadlineStatus.DUE_SOON),
            (0, DeadlineStatus.OVERDUE),
            (-5, DeadlineStatus.OVERDUE),
        ],
    )
    def test_classification(self, hours_left, expected):
        due_at = None if hours_left is None else STARTED + timedelta(hours=hours_left)

        assert deadline_status(due_at, STARTED, WINDOW) is expected


def test_order_by_due_puts_undated_last():
    plan = definition()
    undated = PendingTask(plan, instance(), None)
    later = PendingTask(plan, instance(), STARTED + timedelta(days=4))
    sooner = PendingTask(plan, instance(), STARTED + timedelta(days=1))

    assert order_by_due([undated, later, sooner]) == [sooner, later, undated]
