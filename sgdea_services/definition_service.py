"""
sgdea_services.definition_service -- Workflow Definition Store.

Responsibility:
    Create, update, activate/deactivate, soft/hard delete and restore
    workflow definitions.  Every mutation returns a ``ServiceResult``
    carrying the new definition snapshot and the audit effects derived by
    ``sgdea_engines.audit``; nothing is dispatched from here.

Architecture position:
    Services layer.  May import from sgdea_engines (pure) and sgdea_kernel
    (domain, models, selectors).  Flush-only: the caller commits.

Invariants enforced:
    - A definition always has at least one step.
    - ``update`` is rejected wholesale while any instance is pending or
      in progress.
    - The step list never shrinks below the current step of any existing
      instance, terminal ones included.
    - Hard or soft delete only when ``instance_count == 0``; the counter
      never decreases, so a definition that was ever used stays.
    - Concurrent writers are detected by the row's revision counter and
      surface as ConcurrentModificationError.

Failure modes:
    - ValidationError, DefinitionNotFoundError, ActiveInstancesError,
      DefinitionReferencedError, StepsInUseError,
      ConcurrentModificationError.
"""

from __future__ import annotations

from typing import Any, Iterable
from uuid import UUID, uuid4

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from sgdea_engines.audit import (
    DEFAULT_SIGNIFICANT_FIELDS,
    DEFINITION_ENTITY,
    definition_created_record,
    definition_deleted_record,
    definition_restored_record,
    definition_update_records,
)
from sgdea_kernel.domain.clock import Clock, SystemClock
from sgdea_kernel.domain.effects import ServiceResult
from sgdea_kernel.domain.validation import (
    coerce_entity_kind,
    normalize_steps,
    require_text,
    validate_configuration,
    validate_patch_keys,
)
from sgdea_kernel.domain.workflow import Step, WorkflowDefinition
from sgdea_kernel.exceptions import (
    ActiveInstancesError,
    ConcurrentModificationError,
    DefinitionNotFoundError,
    DefinitionReferencedError,
    StepsInUseError,
    ValidationError,
)
from sgdea_kernel.logging_config import get_logger
from sgdea_kernel.models.workflow import WorkflowDefinitionModel
from sgdea_kernel.selectors.workflow_selector import WorkflowSelector
from sgdea_kernel.services.base import BaseService

logger = get_logger("services.definition")


class WorkflowDefinitionService(BaseService[WorkflowDefinitionModel]):
    """
    Definition Store.

    Contract:
        Receives a Session, a Clock and the significant audit field set.
        Each public mutation flushes its changes and returns a
        ``ServiceResult[WorkflowDefinition]``.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        significant_fields: Iterable[str] = DEFAULT_SIGNIFICANT_FIELDS,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._significant_fields = frozenset(significant_fields)
        self._selector = WorkflowSelector(session)

    # -- helpers -----------------------------------------------------------

    def _load(self, definition_id: UUID, include_deleted: bool = False) -> WorkflowDefinitionModel:
        model = self.session.get(WorkflowDefinitionModel, definition_id)
        if model is None or (model.deleted_at is not None and not include_deleted):
            raise DefinitionNotFoundError(str(definition_id))
        return model

    def _flush(self, definition_id: UUID) -> None:
        try:
            self.session.flush()
        except StaleDataError as exc:
            logger.warning(
                "definition_concurrent_modification",
                extra={"definition_id": str(definition_id)},
            )
            raise ConcurrentModificationError(DEFINITION_ENTITY, str(definition_id)) from exc

    # -- queries -----------------------------------------------------------

    def get(self, definition_id: UUID, include_deleted: bool = False) -> WorkflowDefinition:
        """Definition snapshot; DefinitionNotFoundError when missing."""
        return self._load(definition_id, include_deleted).to_dto()

    # -- mutations ---------------------------------------------------------

    def create(
        self,
        name: str,
        entity_kind: Any,
        steps: Iterable[Step | dict[str, Any]],
        creator_id: UUID,
        description: str | None = None,
        configuration: dict[str, Any] | None = None,
        active: bool = True,
    ) -> ServiceResult[WorkflowDefinition]:
        """Validate and persist a new definition."""
        name = require_text(name, "name")
        kind = coerce_entity_kind(entity_kind)
        step_tuple = normalize_steps(steps)
        options = validate_configuration(configuration)
        if not isinstance(active, bool):
            raise ValidationError("active", "must be a boolean")

        now = self._clock.now()
        model = WorkflowDefinitionModel(
            id=uuid4(),
            name=name,
            description=description,
            entity_kind=kind.value,
            steps=[s.to_dict() for s in step_tuple],
            configuration=options,
            active=active,
            instance_count=0,
            created_by_id=creator_id,
            created_at=now,
            updated_at=now,
        )
        self.session.add(model)
        self.session.flush()

        definition = model.to_dto()
        logger.info(
            "definition_created",
            extra={
                "definition_id": str(definition.definition_id),
                "entity_kind": kind.value,
                "step_count": len(step_tuple),
            },
        )
        return ServiceResult(
            definition,
            (definition_created_record(definition, creator_id, now),),
        )

    def update(
        self,
        definition_id: UUID,
        patch: dict[str, Any],
        actor_id: UUID,
    ) -> ServiceResult[WorkflowDefinition]:
        """
        Replace the patched fields atomically.

        Raises ActiveInstancesError while any instance of the definition is
        pending or in progress.
        """
        if not isinstance(patch, dict):
            raise ValidationError("patch", "must be a mapping")
        validate_patch_keys(patch)

        changes: dict[str, Any] = {}
        if "name" in patch:
            changes["name"] = require_text(patch["name"], "name")
        if "description" in patch:
            description = patch["description"]
            if description is not None and not isinstance(description, str):
                raise ValidationError("description", "must be a string")
            changes["description"] = description
        if "steps" in patch:
            changes["steps"] = [s.to_dict() for s in normalize_steps(patch["steps"])]
        if "configuration" in patch:
            changes["configuration"] = validate_configuration(patch["configuration"])
        if "active" in patch:
            if not isinstance(patch["active"], bool):
                raise ValidationError("active", "must be a boolean")
            changes["active"] = patch["active"]

        model = self._load(definition_id)
        active_count = self._selector.count_active_instances(definition_id)
        if active_count > 0:
            raise ActiveInstancesError(str(definition_id), active_count)
        if "steps" in changes:
            stranded = self._selector.count_instances_from_step(
                definition_id, len(changes["steps"]),
            )
            if stranded > 0:
                raise StepsInUseError(str(definition_id), len(changes["steps"]), stranded)

        before = model.to_dto()
        for field_name, value in changes.items():
            setattr(model, field_name, value)
        return self._finish_update(model, before, actor_id)

    def activate(self, definition_id: UUID, actor_id: UUID) -> ServiceResult[WorkflowDefinition]:
        """Set active; in-flight instances are untouched."""
        return self._set_active(definition_id, actor_id, True)

    def deactivate(self, definition_id: UUID, actor_id: UUID) -> ServiceResult[WorkflowDefinition]:
        """Clear active; in-flight instances keep running."""
        return self._set_active(definition_id, actor_id, False)

    def _set_active(
        self, definition_id: UUID, actor_id: UUID, active: bool,
    ) -> ServiceResult[WorkflowDefinition]:
        model = self._load(definition_id)
        before = model.to_dto()
        if model.active is active:
            return ServiceResult(before)
        model.active = active
        return self._finish_update(model, before, actor_id)

    def _finish_update(
        self,
        model: WorkflowDefinitionModel,
        before: WorkflowDefinition,
        actor_id: UUID,
    ) -> ServiceResult[WorkflowDefinition]:
        now = self._clock.now()
        model.updated_at = now
        model.updated_by_id = actor_id
        self._flush(model.id)

        after = model.to_dto()
        records = definition_update_records(
            before, after, actor_id, now, self._significant_fields,
        )
        logger.info(
            "definition_updated",
            extra={
                "definition_id": str(after.definition_id),
                "version": after.version,
                "active": after.active,
                "audit_records": len(records),
            },
        )
        return ServiceResult(after, records)

    def delete(
        self,
        definition_id: UUID,
        actor_id: UUID,
        permanent: bool = False,
    ) -> ServiceResult[WorkflowDefinition]:
        """
        Soft delete (``deleted_at`` set) or, with ``permanent``, remove the
        row.  Refused with DefinitionReferencedError once any instance was
        ever started.  A soft-deleted definition may still be removed
        permanently.
        """
        model = self._load(definition_id, include_deleted=permanent)
        if model.instance_count > 0:
            raise DefinitionReferencedError(str(definition_id), model.instance_count)

        now = self._clock.now()
        snapshot = model.to_dto()
        if permanent:
            self.session.delete(model)
        else:
            model.deleted_at = now
            model.updated_at = now
            model.updated_by_id = actor_id
        self._flush(definition_id)

        if not permanent:
            snapshot = model.to_dto()
        logger.warning(
            "definition_force_deleted" if permanent else "definition_deleted",
            extra={"definition_id": str(definition_id), "permanent": permanent},
        )
        return ServiceResult(
            snapshot,
            (definition_deleted_record(snapshot, actor_id, now, permanent),),
        )

    def restore(self, definition_id: UUID, actor_id: UUID) -> ServiceResult[WorkflowDefinition]:
        """Clear ``deleted_at`` on a soft-deleted definition."""
        model = self._load(definition_id, include_deleted=True)
        if model.deleted_at is None:
            return ServiceResult(model.to_dto())

        now = self._clock.now()
        model.deleted_at = None
        model.updated_at = now
        model.updated_by_id = actor_id
        self._flush(definition_id)

        definition = model.to_dto()
        logger.info("definition_restored", extra={"definition_id": str(definition_id)})
        return ServiceResult(
            definition,
            (definition_restored_record(definition, actor_id, now),),
        )
