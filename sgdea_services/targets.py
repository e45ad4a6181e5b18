"""
sgdea_services.targets -- Registry of governed entity kinds.

Responsibility:
    Map each ``EntityKind`` to the handler that knows how to reach the
    entity in the archive: fetch a searchable body and find its owner.
    Workflow targets are a closed tagged union (``EntityRef``), so the
    registry replaces any dynamic class resolution.

Architecture position:
    Services layer.  Handlers are supplied by the host application; the
    in-memory handler is the reference implementation used by the CLI
    and the tests.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable
from uuid import UUID

from sgdea_kernel.domain.workflow import ENTITY_ID_MAX_LENGTH, EntityKind, EntityRef
from sgdea_kernel.exceptions import ValidationError


@runtime_checkable
class EntityHandler(Protocol):
    """Access to one kind of governed entity."""

    def fetch(self, entity_id: str) -> dict[str, Any] | None:
        """Searchable body of the entity, or None when it does not exist."""
        ...

    def owner_of(self, entity_id: str) -> UUID | None:
        """User to notify about the entity, or None when it has no owner."""
        ...


class InMemoryEntityHandler:
    """Entities held in a dict: ``entity_id -> (owner_id, body)``."""

    def __init__(self, entities: dict[str, tuple[UUID | None, dict[str, Any]]] | None = None):
        self._entities: dict[str, tuple[UUID | None, dict[str, Any]]] = dict(entities or {})

    def put(self, entity_id: str, owner_id: UUID | None, body: dict[str, Any]) -> None:
        self._entities[entity_id] = (owner_id, dict(body))

    def remove(self, entity_id: str) -> None:
        self._entities.pop(entity_id, None)

    def fetch(self, entity_id: str) -> dict[str, Any] | None:
        entry = self._entities.get(entity_id)
        return dict(entry[1]) if entry else None

    def owner_of(self, entity_id: str) -> UUID | None:
        entry = self._entities.get(entity_id)
        return entry[0] if entry else None


class EntityTargetRegistry:
    """Handlers keyed by entity kind."""

    def __init__(self, handlers: dict[EntityKind, EntityHandler] | None = None):
        self._handlers: dict[EntityKind, EntityHandler] = dict(handlers or {})

    def register(self, kind: EntityKind, handler: EntityHandler) -> None:
        self._handlers[EntityKind(kind)] = handler

    def handler_for(self, kind: EntityKind) -> EntityHandler | None:
        return self._handlers.get(EntityKind(kind))

    def exists(self, target: EntityRef) -> bool:
        handler = self.handler_for(target.kind)
        return handler is not None and handler.fetch(target.entity_id) is not None

    def owner_of(self, target: EntityRef) -> UUID | None:
        handler = self.handler_for(target.kind)
        return handler.owner_of(target.entity_id) if handler else None

    def fetch(self, target: EntityRef) -> dict[str, Any] | None:
        handler = self.handler_for(target.kind)
        return handler.fetch(target.entity_id) if handler else None


def make_target(kind: EntityKind | str, entity_id: Any) -> EntityRef:
    """Build an ``EntityRef`` from loose input (integer ids become strings)."""
    try:
        entity_kind = EntityKind(kind)
    except ValueError:
        raise ValidationError("target.kind", f"unknown entity kind {kind!r}") from None
    if entity_id is None or isinstance(entity_id, bool) or str(entity_id).strip() == "":
        raise ValidationError("target.entity_id", "is required")
    entity_id = str(entity_id).strip()
    if len(entity_id) > ENTITY_ID_MAX_LENGTH:
        raise ValidationError(
            "target.entity_id", f"must be at most {ENTITY_ID_MAX_LENGTH} characters",
        )
    return EntityRef(entity_kind, entity_id)
