"""
sgdea_engines.audit -- Audit record derivation for workflow mutations.

Responsibility:
    Turn before/after snapshots of a definition (or an instance transition)
    into the ``AuditRecord`` effects the services return.  Which records
    exist, and with which severity, is decided here and nowhere else.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import sgdea_kernel/domain/ types.

Invariants enforced:
    - An update produces a record only when the changed fields intersect
      the significant field set.  Side-channel fields (timestamps,
      revision counters, updated_by) are stripped before comparison.
    - Deactivation (active true -> false) additionally produces a
      ``warning`` record.
    - Soft delete is ``warning``; permanent delete is ``critical``;
      create and restore are ``info``.
    - Escalation of an overdue step is ``warning`` and attributed to the
      system actor.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from sgdea_kernel.domain.effects import AuditAction, AuditRecord, Severity
from sgdea_kernel.domain.workflow import (
    SYSTEM_ACTOR_ID,
    StepEvent,
    WorkflowDefinition,
    WorkflowInstance,
)
from sgdea_kernel.utils.hashing import canonicalize_json

DEFINITION_ENTITY = "WorkflowDefinition"
INSTANCE_ENTITY = "WorkflowInstance"

DEFAULT_SIGNIFICANT_FIELDS: frozenset[str] = frozenset(
    {"name", "steps", "active", "configuration"}
)

# Never part of a change set, whatever the configuration says.
SIDE_CHANNEL_FIELDS: frozenset[str] = frozenset(
    {"created_at", "updated_at", "deleted_at", "version", "updated_by_id", "instance_count"}
)


def definition_snapshot(definition: WorkflowDefinition) -> dict[str, Any]:
    """Comparable field map of a definition."""
    return {
        "name": definition.name,
        "description": definition.description,
        "entity_kind": definition.entity_kind.value,
        "steps": [s.to_dict() for s in definition.steps],
        "configuration": dict(definition.configuration),
        "active": definition.active,
    }


def changed_fields(before: dict[str, Any], after: dict[str, Any]) -> frozenset[str]:
    """
    Names of fields whose (field, value) pair is in the symmetric
    difference of the two snapshots.  A field present on one side only
    counts as changed.
    """
    changed = set()
    for key in before.keys() | after.keys():
        if key in SIDE_CHANNEL_FIELDS:
            continue
        if key not in before or key not in after:
            changed.add(key)
        elif canonicalize_json(before[key]) != canonicalize_json(after[key]):
            changed.add(key)
    return frozenset(changed)


def definition_created_record(
    definition: WorkflowDefinition, actor_id: UUID, now: datetime,
) -> AuditRecord:
    return AuditRecord(
        entity_type=DEFINITION_ENTITY,
        entity_id=definition.definition_id,
        action=AuditAction.CREATED,
        actor_id=actor_id,
        occurred_at=now,
        severity=Severity.INFO,
        details={
            "name": definition.name,
            "entity_kind": definition.entity_kind.value,
            "step_count": len(definition.steps),
        },
    )


def definition_update_records(
    before: WorkflowDefinition,
    after: WorkflowDefinition,
    actor_id: UUID,
    now: datetime,
    significant_fields: frozenset[str] = DEFAULT_SIGNIFICANT_FIELDS,
) -> tuple[AuditRecord, ...]:
    """Records for an update; empty when nothing significant changed."""
    old, new = definition_snapshot(before), definition_snapshot(after)
    changes = changed_fields(old, new)
    records: list[AuditRecord] = []

    if changes & significant_fields:
        records.append(
            AuditRecord(
                entity_type=DEFINITION_ENTITY,
                entity_id=after.definition_id,
                action=AuditAction.UPDATED,
                actor_id=actor_id,
                occurred_at=now,
                changed_fields=changes,
                severity=Severity.INFO,
                details={
                    "before": {k: old[k] for k in sorted(changes)},
                    "after": {k: new[k] for k in sorted(changes)},
                },
            )
        )

    if before.active and not after.active:
        records.append(
            AuditRecord(
                entity_type=DEFINITION_ENTITY,
                entity_id=after.definition_id,
                action=AuditAction.UPDATED,
                actor_id=actor_id,
                occurred_at=now,
                changed_fields=frozenset({"active"}),
                severity=Severity.WARNING,
                details={"transition": "deactivated", "name": after.name},
            )
        )

    return tuple(records)


def definition_deleted_record(
    definition: WorkflowDefinition,
    actor_id: UUID,
    now: datetime,
    permanent: bool = False,
) -> AuditRecord:
    return AuditRecord(
        entity_type=DEFINITION_ENTITY,
        entity_id=definition.definition_id,
        action=AuditAction.FORCE_DELETED if permanent else AuditAction.DELETED,
        actor_id=actor_id,
        occurred_at=now,
        severity=Severity.CRITICAL if permanent else Severity.WARNING,
        details={"name": definition.name, "permanent": permanent},
    )


def definition_restored_record(
    definition: WorkflowDefinition, actor_id: UUID, now: datetime,
) -> AuditRecord:
    return AuditRecord(
        entity_type=DEFINITION_ENTITY,
        entity_id=definition.definition_id,
        action=AuditAction.RESTORED,
        actor_id=actor_id,
        occurred_at=now,
        severity=Severity.INFO,
        details={"name": definition.name},
    )


def instance_started_record(
    instance: WorkflowInstance, actor_id: UUID, now: datetime,
) -> AuditRecord:
    return AuditRecord(
        entity_type=INSTANCE_ENTITY,
        entity_id=instance.instance_id,
        action=AuditAction.CREATED,
        actor_id=actor_id,
        occurred_at=now,
        severity=Severity.INFO,
        details={
            "definition_id": str(instance.definition_id),
            "target": str(instance.target),
            "status": instance.status.value,
        },
    )


def instance_transition_record(
    before: WorkflowInstance,
    after: WorkflowInstance,
    events: tuple[StepEvent, ...],
    actor_id: UUID,
    now: datetime,
) -> AuditRecord:
    changes = set()
    if before.status is not after.status:
        changes.add("status")
    if before.current_step_index != after.current_step_index:
        changes.add("current_step_index")
    if events:
        changes.add("history")
    return AuditRecord(
        entity_type=INSTANCE_ENTITY,
        entity_id=after.instance_id,
        action=AuditAction.UPDATED,
        actor_id=actor_id,
        occurred_at=now,
        changed_fields=frozenset(changes),
        severity=Severity.INFO,
        details={
            "from_status": before.status.value,
            "to_status": after.status.value,
            "from_step": before.current_step_index,
            "to_step": after.current_step_index,
            "outcomes": [e.outcome.value for e in events],
        },
    )


def instance_escalated_record(
    instance: WorkflowInstance, due_at: datetime, now: datetime,
) -> AuditRecord:
    """Overdue step escalated by the deadline sweep."""
    return AuditRecord(
        entity_type=INSTANCE_ENTITY,
        entity_id=instance.instance_id,
        action=AuditAction.UPDATED,
        actor_id=SYSTEM_ACTOR_ID,
        occurred_at=now,
        changed_fields=frozenset({"escalated_step_index"}),
        severity=Severity.WARNING,
        details={
            "step_index": instance.current_step_index,
            "due_at": due_at.isoformat(),
        },
    )
