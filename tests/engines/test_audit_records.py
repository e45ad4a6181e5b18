"""
Tests for audit record derivation.

Covers:
- changed_fields ignores side-channel fields
- significant-field filtering on update
- deactivation warning
- severities for delete, permanent delete, create, restore
- instance transition records
"""

from dataclasses import replace
from datetime import datetime, timezone
from uuid import uuid4

from sgdea_engines.audit import (
    changed_fields,
    definition_created_record,
    definition_deleted_record,
    definition_restored_record,
    definition_update_records,
    instance_transition_record,
)
from sgdea_kernel.domain.effects import AuditAction, Severity
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

NOW = datetime(2025, 5, 2, 8, 30, tzinfo=timezone.utc)
ACTOR = uuid4()


def base_definition(**overrides):
    definition = WorkflowDefinition(
        definition_id=uuid4(),
        name="Transfer to archive",
        description="Central archive transfer",
        entity_kind=EntityKind.CASE_FILE,
        steps=(Step("Check inventory"), Step("Sign")),
        active=True,
        creator_id=ACTOR,
        configuration={"priority": "low"},
    )
    return replace(definition, **overrides)


class TestChangedFields:
    def test_symmetric_difference(self):
        changes = changed_fields({"a": 1, "b": 2}, {"a": 1, "b": 3, "c": 4})
        assert changes == frozenset({"b", "c"})

    def test_timestamps_never_count(self):
        changes = changed_fields(
            {"name": "x", "updated_at": "2025-01-01", "version": 1},
            {"name": "x", "updated_at": "2025-02-01", "version": 2},
        )
        assert changes == frozenset()


class TestDefinitionUpdateRecords:
    def test_significant_change_produces_info_record(self):
        before = base_definition()
        after = replace(before, name="Transfer to central archive")

        records = definition_update_records(before, after, ACTOR, NOW)

        assert len(records) == 1
        record = records[0]
        assert record.action is AuditAction.UPDATED
        assert record.severity is Severity.INFO
        assert record.changed_fields == frozenset({"name"})
        assert record.details["after"]["name"] == "Transfer to central archive"

    def test_insignificant_change_produces_nothing(self):
        before = base_definition()
        after = replace(before, description="Updated description", version=2)

        assert definition_update_records(before, after, ACTOR, NOW) == ()

    def test_configurable_significant_fields(self):
        before = base_definition()
        after = replace(before, description="Now significant")

        records = definition_update_records(
            before, after, ACTOR, NOW, significant_fields=frozenset({"description"}),
        )

        assert len(records) == 1

    def test_deactivation_adds_warning(self):
        before = base_definition()
        after = replace(before, active=False)

        records = definition_update_records(before, after, ACTOR, NOW)

        assert [r.severity for r in records] == [Severity.INFO, Severity.WARNING]
        assert records[1].details["transition"] == "deactivated"

    def test_activation_has_no_warning(self):
        before = base_definition(active=False)
        after = replace(before, active=True)

        records = definition_update_records(before, after, ACTOR, NOW)

        assert [r.severity for r in records] == [Severity.INFO]

    def test_step_change_detected(self):
        before = base_definition()
        after = replace(before, steps=(Step("Check inventory"),))

        records = definition_update_records(before, after, ACTOR, NOW)

        assert records[0].changed_fields == frozenset({"steps"})


class TestLifecycleRecords:
    def test_created_is_info(self):
        record = definition_created_record(base_definition(), ACTOR, NOW)
        assert record.action is AuditAction.CREATED
        assert record.severity is Severity.INFO

    def test_soft_delete_is_warning(self):
        record = definition_deleted_record(base_definition(), ACTOR, NOW)
        assert record.action is AuditAction.DELETED
        assert record.severity is Severity.WARNING

    def test_permanent_delete_is_critical(self):
        record = definition_deleted_record(base_definition(), ACTOR, NOW, permanent=True)
        assert record.action is AuditAction.FORCE_DELETED
        assert record.severity is Severity.CRITICAL

    def test_restore_is_info(self):
        record = definition_restored_record(base_definition(), ACTOR, NOW)
        assert record.action is AuditAction.RESTORED
        assert record.severity is Severity.INFO

    def test_payload_is_json_friendly(self):
        payload = definition_created_record(base_definition(), ACTOR, NOW).to_payload()
        assert payload["actor_id"] == str(ACTOR)
        assert payload["occurred_at"] == NOW.isoformat()


class TestInstanceTransitionRecord:
    def test_records_status_and_step_change(self):
        before = WorkflowInstance(
            instance_id=uuid4(),
            definition_id=uuid4(),
            target=EntityRef(EntityKind.DOCUMENT, "5"),
            initiator_id=ACTOR,
            status=InstanceStatus.PENDING,
            current_step_index=0,
        )
        after = replace(before, status=InstanceStatus.IN_PROGRESS, current_step_index=1)
        events = (StepEvent(0, ACTOR, NOW, StepOutcome.APPROVED),)

        record = instance_transition_record(before, after, events, ACTOR, NOW)

        assert record.changed_fields == frozenset({"status", "current_step_index", "history"})
        assert record.details["from_status"] == "pending"
        assert record.details["to_status"] == "in_progress"
        assert record.details["outcomes"] == ["approved"]
