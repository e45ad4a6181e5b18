"""
sgdea_services.deadlines -- Reminder and escalation sweep for step deadlines.

Responsibility:
    Walk every running instance whose definition sets ``due_days``.  A
    current step falling due inside the reminder window produces a
    reminder for the definition creator; a step already past its due time
    is escalated once: the instance records the escalated step, the
    creator gets a high-priority notice and the initiator is told.

Architecture position:
    Services layer.  Due times come from ``sgdea_engines.deadlines``.
    Flush-only: the caller commits and dispatches the returned effects.

Invariants enforced:
    - A step is escalated at most once; approving it moves the instance
      to a step that can be escalated again.
    - Reminders carry no state and go out on every sweep that finds the
      step inside the window, so the sweep is meant to run on a schedule
      no shorter than the window.
    - Marking an escalation bumps the instance revision; a decision that
      races the sweep makes one of the two fail with
      ConcurrentModificationError.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from sgdea_engines.audit import INSTANCE_ENTITY, instance_escalated_record
from sgdea_engines.deadlines import (
    DeadlineStatus,
    PendingTask,
    deadline_status,
    order_by_due,
    step_due_at,
)
from sgdea_kernel.domain.clock import Clock, SystemClock
from sgdea_kernel.domain.effects import (
    Effect,
    Notification,
    NotificationPriority,
    ServiceResult,
)
from sgdea_kernel.exceptions import ConcurrentModificationError
from sgdea_kernel.logging_config import LogContext, get_logger
from sgdea_kernel.models.workflow import WorkflowInstanceModel
from sgdea_kernel.selectors.workflow_selector import WorkflowSelector
from sgdea_kernel.services.base import BaseService

logger = get_logger("services.deadlines")


@dataclass(frozen=True)
class DeadlineReport:
    checked: int
    reminded: tuple[UUID, ...] = ()
    escalated: tuple[UUID, ...] = ()


class DeadlineService(BaseService[WorkflowInstanceModel]):
    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        reminder_window_hours: int = 24,
        default_priority: str = NotificationPriority.MEDIUM.value,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._window = timedelta(hours=reminder_window_hours)
        self._default_priority = NotificationPriority(default_priority)
        self._selector = WorkflowSelector(session)

    def pending_tasks(self) -> list[PendingTask]:
        """Every running instance with its current due time, earliest first."""
        return order_by_due(
            PendingTask(definition, instance, step_due_at(definition, instance))
            for definition, instance in self._selector.open_instances()
        )

    def process(self) -> ServiceResult[DeadlineReport]:
        now = self._clock.now()
        effects: list[Effect] = []
        reminded: list[UUID] = []
        escalated: list[UUID] = []
        checked = 0

        for task in self.pending_tasks():
            status = deadline_status(task.due_at, now, self._window)
            if status is DeadlineStatus.NO_DEADLINE:
                continue
            checked += 1
            instance = task.instance
            if status is DeadlineStatus.DUE_SOON:
                effects.append(self._reminder(task))
                reminded.append(instance.instance_id)
            elif (
                status is DeadlineStatus.OVERDUE
                and instance.escalated_step_index != instance.current_step_index
            ):
                effects.extend(self._escalate(task, now))
                escalated.append(instance.instance_id)

        if escalated:
            try:
                self.session.flush()
            except StaleDataError as exc:
                logger.warning("deadline_escalation_conflict", extra={"escalated": len(escalated)})
                raise ConcurrentModificationError(INSTANCE_ENTITY, "deadline sweep") from exc

        logger.info(
            "deadlines_processed",
            extra={
                "checked": checked,
                "reminded": len(reminded),
                "escalated": len(escalated),
            },
        )
        report = DeadlineReport(checked, tuple(reminded), tuple(escalated))
        return ServiceResult(report, tuple(effects))

    def _priority(self, task: PendingTask) -> NotificationPriority:
        option = task.definition.configuration.get("priority", self._default_priority.value)
        return NotificationPriority(option)

    @staticmethod
    def _describe(task: PendingTask) -> str:
        return (
            f"Step '{task.step_name}' of workflow '{task.definition.name}' "
            f"on {task.instance.target}"
        )

    def _reminder(self, task: PendingTask) -> Notification:
        target = task.instance.target
        return Notification(
            message=f"{self._describe(task)} is due {_when(task.due_at)}",
            priority=self._priority(task),
            recipient_id=task.definition.creator_id,
            target_kind=target.kind,
            target_id=target.entity_id,
        )

    def _escalate(self, task: PendingTask, now: datetime) -> list[Effect]:
        instance = task.instance
        model = self.session.get(WorkflowInstanceModel, instance.instance_id)
        model.escalated_step_index = instance.current_step_index

        with LogContext.bind(instance_id=str(instance.instance_id)):
            logger.warning(
                "instance_step_overdue",
                extra={
                    "step_index": instance.current_step_index,
                    "due_at": task.due_at.isoformat(),
                },
            )

        target = instance.target
        message = f"{self._describe(task)} is overdue since {_when(task.due_at)}"
        effects: list[Effect] = [
            instance_escalated_record(instance, task.due_at, now),
            Notification(
                message=message,
                priority=NotificationPriority.HIGH,
                recipient_id=task.definition.creator_id,
                target_kind=target.kind,
                target_id=target.entity_id,
            ),
        ]
        if instance.initiator_id != task.definition.creator_id:
            effects.append(
                Notification(
                    message=message,
                    priority=self._priority(task),
                    recipient_id=instance.initiator_id,
                    target_kind=target.kind,
                    target_id=target.entity_id,
                )
            )
        return effects


def _when(moment: datetime) -> str:
    return f"{moment:%Y-%m-%d %H:%M} UTC"
