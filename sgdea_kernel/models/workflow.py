"""
Module: sgdea_kernel.models.workflow
Responsibility: ORM persistence for workflow definitions, workflow instances
    and the append-only step history of each instance.

Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ DTOs only.

Invariants enforced:
    - Definitions and instances carry a ``version`` column used as the
      SQLAlchemy ``version_id_col``: every UPDATE is a compare-and-swap on
      the revision the session loaded.  A lost race surfaces as
      ``StaleDataError`` at flush time.
    - Step events are append-only (ORM listeners refuse UPDATE/DELETE).
    - ``instance_count`` on a definition only ever grows.

Failure modes:
    - StaleDataError on a concurrent UPDATE/DELETE of the same row.
    - ImmutabilityViolationError on any UPDATE/DELETE of a step event.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    event,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from sgdea_kernel.db.base import Base, TrackedBase, UUIDString
from sgdea_kernel.domain.workflow import ENTITY_ID_MAX_LENGTH
from sgdea_kernel.exceptions import ImmutabilityViolationError

if TYPE_CHECKING:
    from sgdea_kernel.domain.workflow import (
        StepEvent,
        WorkflowDefinition,
        WorkflowInstance,
    )


class WorkflowDefinitionModel(TrackedBase):
    """Persistent workflow definition.

    ``created_by_id`` (from TrackedBase) is the definition creator.
    Soft-deleted rows keep their data and carry ``deleted_at``.
    """

    __tablename__ = "workflow_definitions"

    __table_args__ = (
        CheckConstraint(
            "entity_kind IN ('document', 'case_file', 'contract')",
            name="ck_workflow_definitions_entity_kind",
        ),
        CheckConstraint(
            "instance_count >= 0",
            name="ck_workflow_definitions_instance_count",
        ),
        Index("ix_workflow_definitions_active", "active", "deleted_at"),
        Index("ix_workflow_definitions_entity_kind", "entity_kind"),
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    entity_kind: Mapped[str] = mapped_column(String(30), nullable=False)
    steps: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False)
    configuration: Mapped[dict[str, Any]] = mapped_column(
        JSON, nullable=False, default=dict,
    )
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    deleted_at: Mapped[datetime | None] = mapped_column(nullable=True)
    instance_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return (
            f"<WorkflowDefinition {self.id} {self.name!r} "
            f"kind={self.entity_kind} active={self.active}>"
        )

    def to_dto(self) -> WorkflowDefinition:
        """Convert ORM model to frozen domain DTO."""
        from sgdea_kernel.domain.workflow import (
            EntityKind,
            Step,
            WorkflowDefinition as WorkflowDefinitionDTO,
        )

        return WorkflowDefinitionDTO(
            definition_id=self.id,
            name=self.name,
            description=self.description,
            entity_kind=EntityKind(self.entity_kind),
            steps=tuple(Step.from_dict(s) for s in self.steps),
            active=self.active,
            creator_id=self.created_by_id,
            configuration=dict(self.configuration or {}),
            instance_count=self.instance_count,
            version=self.version,
            created_at=self.created_at,
            updated_at=self.updated_at,
            deleted_at=self.deleted_at,
        )


class WorkflowInstanceModel(Base):
    """Persistent workflow instance.

    The target is stored as the two halves of an ``EntityRef``; the kernel
    never holds a foreign key into archive tables.
    """

    __tablename__ = "workflow_instances"

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'in_progress', 'completed', 'cancelled', 'rejected')",
            name="ck_workflow_instances_status",
        ),
        CheckConstraint(
            "current_step_index >= 0",
            name="ck_workflow_instances_step_index",
        ),
        Index("ix_workflow_instances_definition_status", "definition_id", "status"),
        Index("ix_workflow_instances_target", "entity_kind", "entity_id"),
        Index("ix_workflow_instances_finished", "status", "finished_at"),
    )

    definition_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("workflow_definitions.id"),
        nullable=False,
    )
    entity_kind: Mapped[str] = mapped_column(String(30), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(ENTITY_ID_MAX_LENGTH), nullable=False)
    initiator_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    current_step_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    data: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    started_at: Mapped[datetime] = mapped_column(nullable=False)
    finished_at: Mapped[datetime | None] = mapped_column(nullable=True)
    escalated_step_index: Mapped[int | None] = mapped_column(Integer, nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    events: Mapped[list["StepEventModel"]] = relationship(
        "StepEventModel",
        back_populates="instance",
        order_by="StepEventModel.position",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return (
            f"<WorkflowInstance {self.id} "
            f"{self.entity_kind}:{self.entity_id} status={self.status}>"
        )

    def to_dto(self) -> WorkflowInstance:
        """Convert ORM model to frozen domain DTO."""
        from sgdea_kernel.domain.workflow import (
            EntityKind,
            EntityRef,
            InstanceStatus,
            WorkflowInstance as WorkflowInstanceDTO,
        )

        return WorkflowInstanceDTO(
            instance_id=self.id,
            definition_id=self.definition_id,
            target=EntityRef(EntityKind(self.entity_kind), self.entity_id),
            initiator_id=self.initiator_id,
            status=InstanceStatus(self.status),
            current_step_index=self.current_step_index,
            history=tuple(e.to_dto() for e in self.events),
            data=dict(self.data or {}),
            version=self.version,
            started_at=self.started_at,
            finished_at=self.finished_at,
            escalated_step_index=self.escalated_step_index,
        )


class StepEventModel(Base):
    """One decision on one step of an instance. Append-only."""

    __tablename__ = "workflow_step_events"

    __table_args__ = (
        UniqueConstraint(
            "instance_id", "position",
            name="uq_workflow_step_events_position",
        ),
        CheckConstraint(
            "outcome IN ('approved', 'rejected', 'cancelled')",
            name="ck_workflow_step_events_outcome",
        ),
    )

    instance_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("workflow_instances.id"),
        nullable=False,
    )
    # Order of the event within its instance's history
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    step_index: Mapped[int] = mapped_column(Integer, nullable=False)
    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    outcome: Mapped[str] = mapped_column(String(20), nullable=False)
    comment: Mapped[str] = mapped_column(Text, nullable=False, default="")
    occurred_at: Mapped[datetime] = mapped_column(nullable=False)

    instance: Mapped["WorkflowInstanceModel"] = relationship(
        "WorkflowInstanceModel",
        back_populates="events",
    )

    def __repr__(self) -> str:
        return (
            f"<StepEvent {self.instance_id}#{self.position} "
            f"step={self.step_index} outcome={self.outcome}>"
        )

    def to_dto(self) -> StepEvent:
        """Convert ORM model to frozen domain DTO."""
        from sgdea_kernel.domain.workflow import StepEvent as StepEventDTO
        from sgdea_kernel.domain.workflow import StepOutcome

        return StepEventDTO(
            step_index=self.step_index,
            actor_id=self.actor_id,
            occurred_at=self.occurred_at,
            outcome=StepOutcome(self.outcome),
            comment=self.comment,
        )

    @classmethod
    def from_dto(cls, dto: StepEvent, instance_id: UUID, position: int) -> StepEventModel:
        """Create ORM model from domain DTO."""
        return cls(
            instance_id=instance_id,
            position=position,
            step_index=dto.step_index,
            actor_id=dto.actor_id,
            outcome=dto.outcome.value,
            comment=dto.comment,
            occurred_at=dto.occurred_at,
        )


# =============================================================================
# ORM-Level Immutability for Step History (Append-Only)
# =============================================================================


@event.listens_for(StepEventModel, "before_update")
def prevent_step_event_update(mapper, connection, target):
    """Prevent updates to step history records."""
    raise ImmutabilityViolationError(
        entity_type="StepEvent",
        entity_id=str(target.id),
        reason="Step history is append-only -- cannot modify",
    )


@event.listens_for(StepEventModel, "before_delete")
def prevent_step_event_delete(mapper, connection, target):
    """Prevent deletion of step history records."""
    raise ImmutabilityViolationError(
        entity_type="StepEvent",
        entity_id=str(target.id),
        reason="Step history is append-only -- cannot delete",
    )
