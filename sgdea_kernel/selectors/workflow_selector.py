"""
Module: sgdea_kernel.selectors.workflow_selector
Responsibility: Read side of workflow definitions and instances: lookups,
    filtered listings, active-instance counts and per-definition statistics.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Soft-deleted definitions are invisible unless include_deleted=True.
    - "Active" always means status in ACTIVE_INSTANCE_STATUSES; the same
      predicate backs the edit guard and the authorization context.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import func, or_, select

from sgdea_kernel.domain.workflow import (
    ACTIVE_INSTANCE_STATUSES,
    EntityKind,
    EntityRef,
    InstanceStatistics,
    InstanceStatus,
    WorkflowDefinition,
    WorkflowInstance,
)
from sgdea_kernel.models.workflow import WorkflowDefinitionModel, WorkflowInstanceModel
from sgdea_kernel.selectors.base import BaseSelector

_ACTIVE_VALUES = tuple(s.value for s in ACTIVE_INSTANCE_STATUSES)


class WorkflowSelector(BaseSelector[WorkflowDefinitionModel]):
    """Queries over definitions and instances, returning frozen DTOs."""

    # -- definitions -------------------------------------------------------

    def get_definition(
        self, definition_id: UUID, include_deleted: bool = False,
    ) -> WorkflowDefinition | None:
        model = self.session.get(WorkflowDefinitionModel, definition_id)
        if model is None or (model.deleted_at is not None and not include_deleted):
            return None
        return model.to_dto()

    def list_definitions(
        self,
        entity_kind: EntityKind | None = None,
        active: bool | None = None,
        search: str | None = None,
        include_deleted: bool = False,
        creator_id: UUID | None = None,
    ) -> list[WorkflowDefinition]:
        """Definitions ordered by name, optionally filtered."""
        stmt = select(WorkflowDefinitionModel)
        if not include_deleted:
            stmt = stmt.where(WorkflowDefinitionModel.deleted_at.is_(None))
        if entity_kind is not None:
            stmt = stmt.where(WorkflowDefinitionModel.entity_kind == entity_kind.value)
        if active is not None:
            stmt = stmt.where(WorkflowDefinitionModel.active.is_(active))
        if creator_id is not None:
            stmt = stmt.where(WorkflowDefinitionModel.created_by_id == creator_id)
        if search:
            pattern = f"%{search}%"
            stmt = stmt.where(
                or_(
                    WorkflowDefinitionModel.name.ilike(pattern),
                    WorkflowDefinitionModel.description.ilike(pattern),
                )
            )
        stmt = stmt.order_by(WorkflowDefinitionModel.name, WorkflowDefinitionModel.id)
        return [m.to_dto() for m in self.session.scalars(stmt)]

    def count_active_instances(self, definition_id: UUID) -> int:
        return self.session.scalar(
            select(func.count(WorkflowInstanceModel.id)).where(
                WorkflowInstanceModel.definition_id == definition_id,
                WorkflowInstanceModel.status.in_(_ACTIVE_VALUES),
            )
        ) or 0

    def count_instances_from_step(self, definition_id: UUID, step_index: int) -> int:
        """Instances of any status whose current step is ``step_index`` or later."""
        return self.session.scalar(
            select(func.count(WorkflowInstanceModel.id)).where(
                WorkflowInstanceModel.definition_id == definition_id,
                WorkflowInstanceModel.current_step_index >= step_index,
            )
        ) or 0

    # -- instances ---------------------------------------------------------

    def get_instance(self, instance_id: UUID) -> WorkflowInstance | None:
        model = self.session.get(WorkflowInstanceModel, instance_id)
        return model.to_dto() if model is not None else None

    def find_active_instance(
        self, definition_id: UUID, target: EntityRef,
    ) -> WorkflowInstance | None:
        """Non-terminal instance of ``definition_id`` on ``target``, if any."""
        model = self.session.scalars(
            select(WorkflowInstanceModel)
            .where(
                WorkflowInstanceModel.definition_id == definition_id,
                WorkflowInstanceModel.entity_kind == target.kind.value,
                WorkflowInstanceModel.entity_id == target.entity_id,
                WorkflowInstanceModel.status.in_(_ACTIVE_VALUES),
            )
            .limit(1)
        ).first()
        return model.to_dto() if model is not None else None

    def list_instances(
        self,
        definition_id: UUID | None = None,
        status: InstanceStatus | None = None,
        target: EntityRef | None = None,
        initiator_id: UUID | None = None,
    ) -> list[WorkflowInstance]:
        """Instances, newest first."""
        stmt = select(WorkflowInstanceModel)
        if definition_id is not None:
            stmt = stmt.where(WorkflowInstanceModel.definition_id == definition_id)
        if status is not None:
            stmt = stmt.where(WorkflowInstanceModel.status == status.value)
        if target is not None:
            stmt = stmt.where(
                WorkflowInstanceModel.entity_kind == target.kind.value,
                WorkflowInstanceModel.entity_id == target.entity_id,
            )
        if initiator_id is not None:
            stmt = stmt.where(WorkflowInstanceModel.initiator_id == initiator_id)
        stmt = stmt.order_by(
            WorkflowInstanceModel.started_at.desc(), WorkflowInstanceModel.id,
        )
        return [m.to_dto() for m in self.session.scalars(stmt)]

    def open_instances(self) -> list[tuple[WorkflowDefinition, WorkflowInstance]]:
        """Pending and in-progress instances with their definitions, oldest first."""
        rows = self.session.execute(
            select(WorkflowInstanceModel, WorkflowDefinitionModel)
            .join(
                WorkflowDefinitionModel,
                WorkflowDefinitionModel.id == WorkflowInstanceModel.definition_id,
            )
            .where(WorkflowInstanceModel.status.in_(_ACTIVE_VALUES))
            .order_by(WorkflowInstanceModel.started_at, WorkflowInstanceModel.id)
        ).all()
        definitions: dict[UUID, WorkflowDefinition] = {}
        result = []
        for instance, definition in rows:
            if definition.id not in definitions:
                definitions[definition.id] = definition.to_dto()
            result.append((definitions[definition.id], instance.to_dto()))
        return result

    def completed_instance_ids_before(self, cutoff: datetime) -> list[UUID]:
        """Ids of completed instances that finished strictly before ``cutoff``."""
        return list(
            self.session.scalars(
                select(WorkflowInstanceModel.id).where(
                    WorkflowInstanceModel.status == InstanceStatus.COMPLETED.value,
                    WorkflowInstanceModel.finished_at < cutoff,
                )
            )
        )

    # -- statistics --------------------------------------------------------

    def statistics(self, definition_id: UUID) -> InstanceStatistics:
        """
        Instance counts for one definition.

        ``average_completion_hours`` is the mean of finished_at - started_at
        over completed instances, None when there are none.
        """
        rows = self.session.execute(
            select(WorkflowInstanceModel.status, func.count(WorkflowInstanceModel.id))
            .where(WorkflowInstanceModel.definition_id == definition_id)
            .group_by(WorkflowInstanceModel.status)
        ).all()
        by_status = {status.value: 0 for status in InstanceStatus}
        for status, count in rows:
            by_status[status] = count

        durations = self.session.execute(
            select(WorkflowInstanceModel.started_at, WorkflowInstanceModel.finished_at)
            .where(
                WorkflowInstanceModel.definition_id == definition_id,
                WorkflowInstanceModel.status == InstanceStatus.COMPLETED.value,
                WorkflowInstanceModel.finished_at.is_not(None),
            )
        ).all()
        average = None
        if durations:
            total_seconds = sum(
                (finished - started).total_seconds() for started, finished in durations
            )
            average = round(total_seconds / len(durations) / 3600, 2)

        return InstanceStatistics(
            definition_id=definition_id,
            total=sum(by_status.values()),
            active=sum(by_status[v] for v in _ACTIVE_VALUES),
            completed=by_status[InstanceStatus.COMPLETED.value],
            by_status=by_status,
            average_completion_hours=average,
        )
