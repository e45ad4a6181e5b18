"""
sgdea_engines.deadlines -- Due times of the step an instance waits on.

Responsibility:
    Work out when the current step of a running instance falls due and
    whether that is comfortably ahead, inside the reminder window, or
    already past.  Used by the deadline sweep and by the "my tasks"
    listing.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - A step falls due ``due_days`` after the instance entered it: the
      time of the last history entry, or ``started_at`` when there is
      none.
    - Terminal instances and definitions without ``due_days`` have no
      due time.
    - Purity: ``now`` is passed in by the caller.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Iterable

from sgdea_kernel.domain.workflow import WorkflowDefinition, WorkflowInstance

DUE_DAYS_OPTION = "due_days"


class DeadlineStatus(str, Enum):
    NO_DEADLINE = "no_deadline"
    ON_TRACK = "on_track"
    DUE_SOON = "due_soon"
    OVERDUE = "overdue"


@dataclass(frozen=True)
class PendingTask:
    """A running instance together with the due time of its current step."""

    definition: WorkflowDefinition
    instance: WorkflowInstance
    due_at: datetime | None

    @property
    def step_name(self) -> str:
        return self.definition.step_at(self.instance.current_step_index).name


def step_entered_at(instance: WorkflowInstance) -> datetime | None:
    if instance.history:
        return instance.history[-1].occurred_at
    return instance.started_at


def step_due_at(definition: WorkflowDefinition, instance: WorkflowInstance) -> datetime | None:
    if instance.is_terminal:
        return None
    due_days = definition.configuration.get(DUE_DAYS_OPTION)
    entered = step_entered_at(instance)
    if not due_days or entered is None:
        return None
    return entered + timedelta(days=due_days)


def deadline_status(
    due_at: datetime | None,
    now: datetime,
    reminder_window: timedelta,
) -> DeadlineStatus:
    """Classify ``due_at``: past or now is overdue, within the window is due soon."""
    if due_at is None:
        return DeadlineStatus.NO_DEADLINE
    if due_at <= now:
        return DeadlineStatus.OVERDUE
    if due_at <= now + reminder_window:
        return DeadlineStatus.DUE_SOON
    return DeadlineStatus.ON_TRACK


def order_by_due(tasks: Iterable[PendingTask]) -> list[PendingTask]:
    """Earliest due first; tasks without a due time go last."""
    return sorted(
        tasks,
        key=lambda t: (t.due_at is None, t.due_at or datetime.min, str(t.instance.instance_id)),
    )
