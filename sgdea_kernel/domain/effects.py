"""
Post-commit effects (``sgdea_kernel.domain.effects``).

Responsibility
--------------
Value objects describing side effects a mutation wants performed once its
transaction has committed: audit records, user notifications and search
index updates.  Services never perform these effects themselves; they
return them inside a ``ServiceResult`` and the orchestration layer
dispatches them after commit.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects, ZERO I/O.

Invariants enforced
-------------------
* AuditRecord is write-once (frozen).
* An effect never carries ORM instances, only primitives and DTOs, so it
  stays valid after the session is closed.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Generic, TypeVar
from uuid import UUID

from sgdea_kernel.domain.workflow import EntityKind

T = TypeVar("T")


class AuditAction(str, Enum):
    """Auditable actions on workflow definitions and instances."""

    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"
    RESTORED = "restored"
    FORCE_DELETED = "force_deleted"


class Severity(str, Enum):
    """Audit severity, mapped onto log levels by the logging sink."""

    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass(frozen=True)
class AuditRecord:
    """An immutable audit trail entry."""

    entity_type: str
    entity_id: UUID
    action: AuditAction
    actor_id: UUID
    occurred_at: datetime
    changed_fields: frozenset[str] = frozenset()
    severity: Severity = Severity.INFO
    details: dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        """JSON-friendly representation, used for hashing and persistence."""
        return {
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id),
            "action": self.action.value,
            "actor_id": str(self.actor_id),
            "occurred_at": self.occurred_at.isoformat(),
            "changed_fields": sorted(self.changed_fields),
            "severity": self.severity.value,
            "details": self.details,
        }


class NotificationPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True)
class Notification:
    """Message for a single user.

    ``recipient_id`` is None when the recipient is the owner of
    ``target``; the dispatcher resolves it through the entity registry.
    """

    message: str
    priority: NotificationPriority = NotificationPriority.MEDIUM
    recipient_id: UUID | None = None
    target_kind: EntityKind | None = None
    target_id: str | None = None

    @property
    def is_owner_notification(self) -> bool:
        return self.recipient_id is None


class IndexOperation(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"


@dataclass(frozen=True)
class IndexRequest:
    """Request to (re)index or drop a governed entity."""

    operation: IndexOperation
    kind: EntityKind
    entity_id: str
    body: dict[str, Any] = field(default_factory=dict)


Effect = AuditRecord | Notification | IndexRequest


@dataclass(frozen=True)
class ServiceResult(Generic[T]):
    """Value produced by a mutation plus the effects to run after commit."""

    value: T
    effects: tuple[Effect, ...] = ()

    @property
    def audit_records(self) -> tuple[AuditRecord, ...]:
        return tuple(e for e in self.effects if isinstance(e, AuditRecord))

    @property
    def notifications(self) -> tuple[Notification, ...]:
        return tuple(e for e in self.effects if isinstance(e, Notification))
