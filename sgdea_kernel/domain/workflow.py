"""
Canonical workflow types (``sgdea_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects for workflow definitions (ordered approval steps) and
their instances (one execution against a concrete document, case file or
contract), plus the instance lifecycle state machine table.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``services/``, ``selectors/``, or outer layers.

Invariants enforced
-------------------
* ``INSTANCE_TRANSITIONS`` defines the only valid status transitions.
  Terminal statuses have no outgoing edges, so status is monotonic.
* Targets are a tagged union ``EntityRef(kind, entity_id)``; the kernel
  never resolves entity classes dynamically.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

# Actor recorded on step events the engine decides by itself (auto-approve).
SYSTEM_ACTOR_ID = UUID(int=0)

# Width of the stored target id column.
ENTITY_ID_MAX_LENGTH = 64


# =========================================================================
# Targets
# =========================================================================


class EntityKind(str, Enum):
    """Entity types a workflow definition can govern."""

    DOCUMENT = "document"
    CASE_FILE = "case_file"
    CONTRACT = "contract"


@dataclass(frozen=True)
class EntityRef:
    """Weak, polymorphic reference to a governed entity.

    ``entity_id`` is opaque to the kernel (the archive uses integer keys,
    other systems may not), so it is kept as a string.
    """

    kind: EntityKind
    entity_id: str

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.entity_id}"


# =========================================================================
# Definition
# =========================================================================


class AutoAdvance(str, Enum):
    """Optional rule attached to a step."""

    # Step is approved by the system as soon as an instance lands on it.
    AUTO_APPROVE = "auto_approve"


@dataclass(frozen=True)
class Step:
    """A single stage requiring an approve/reject decision.

    ``required_role`` (optional) names the role whose holders may decide
    on this step in addition to the definition creator and admins.
    """

    name: str
    required_role: str | None = None
    auto_advance: AutoAdvance | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "required_role": self.required_role,
            "auto_advance": self.auto_advance.value if self.auto_advance else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Step:
        auto = data.get("auto_advance")
        return cls(
            name=data["name"],
            required_role=data.get("required_role"),
            auto_advance=AutoAdvance(auto) if auto else None,
        )


@dataclass(frozen=True)
class WorkflowDefinition:
    """A reusable workflow template applicable to one entity kind.

    Contract: frozen snapshot of the persisted row.  ``instance_count``
    counts every instance ever started (it never decreases, even when
    history is purged) and drives the delete guard.
    """

    definition_id: UUID
    name: str
    description: str | None
    entity_kind: EntityKind
    steps: tuple[Step, ...]
    active: bool
    creator_id: UUID
    configuration: dict[str, Any] = field(default_factory=dict)
    instance_count: int = 0
    version: int = 1
    created_at: datetime | None = None
    updated_at: datetime | None = None
    deleted_at: datetime | None = None

    @property
    def last_step_index(self) -> int:
        return len(self.steps) - 1

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def step_at(self, index: int) -> Step:
        return self.steps[index]


# =========================================================================
# Instance lifecycle
# =========================================================================


class InstanceStatus(str, Enum):
    """Workflow instance lifecycle states."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REJECTED = "rejected"


INSTANCE_TRANSITIONS: dict[InstanceStatus, frozenset[InstanceStatus]] = {
    InstanceStatus.PENDING: frozenset({
        InstanceStatus.IN_PROGRESS,
        InstanceStatus.COMPLETED,
        InstanceStatus.CANCELLED,
        InstanceStatus.REJECTED,
    }),
    InstanceStatus.IN_PROGRESS: frozenset({
        InstanceStatus.IN_PROGRESS,
        InstanceStatus.COMPLETED,
        InstanceStatus.CANCELLED,
        InstanceStatus.REJECTED,
    }),
    InstanceStatus.COMPLETED: frozenset(),
    InstanceStatus.CANCELLED: frozenset(),
    InstanceStatus.REJECTED: frozenset(),
}

TERMINAL_INSTANCE_STATUSES: frozenset[InstanceStatus] = frozenset({
    InstanceStatus.COMPLETED,
    InstanceStatus.CANCELLED,
    InstanceStatus.REJECTED,
})

ACTIVE_INSTANCE_STATUSES: frozenset[InstanceStatus] = frozenset({
    InstanceStatus.PENDING,
    InstanceStatus.IN_PROGRESS,
})


class StepOutcome(str, Enum):
    """Outcome recorded in a step event."""

    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class StepEvent:
    """One entry of an instance's append-only history."""

    step_index: int
    actor_id: UUID
    occurred_at: datetime
    outcome: StepOutcome
    comment: str = ""


@dataclass(frozen=True)
class WorkflowInstance:
    """One execution of a definition against a concrete entity."""

    instance_id: UUID
    definition_id: UUID
    target: EntityRef
    initiator_id: UUID
    status: InstanceStatus
    current_step_index: int
    history: tuple[StepEvent, ...] = ()
    data: dict[str, Any] = field(default_factory=dict)
    version: int = 1
    started_at: datetime | None = None
    finished_at: datetime | None = None
    # Step whose overdue deadline has already been escalated.
    escalated_step_index: int | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_INSTANCE_STATUSES

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_INSTANCE_STATUSES


@dataclass(frozen=True)
class InstanceStatistics:
    """Aggregated instance counts for one definition."""

    definition_id: UUID
    total: int
    active: int
    completed: int
    by_status: dict[str, int] = field(default_factory=dict)
    average_completion_hours: float | None = None
