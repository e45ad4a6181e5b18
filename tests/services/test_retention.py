"""
Tests for purge_completed_instances.

Covers:
- only completed instances older than the cutoff go
- step history removed with them
- dry run reports without deleting
- instance_count on the definition never decreases
"""

from datetime import timedelta

import pytest
from sqlalchemy import func, select

from sgdea_kernel.domain.workflow import EntityKind, EntityRef, Step, StepOutcome
from sgdea_kernel.models.workflow import StepEventModel, WorkflowInstanceModel
from sgdea_services.retention import purge_completed_instances


def _target(entity_id):
    return EntityRef(EntityKind.DOCUMENT, entity_id)


@pytest.fixture
def aged_instances(
    create_definition, start_instance, instance_service, creator, session, deterministic_clock,
):
    """One old completed, one old cancelled, one recent completed instance."""
    definition = create_definition(steps=[Step("Only")])
    old_done = start_instance(definition, target=_target("1"))
    old_cancelled = start_instance(definition, target=_target("2"))
    instance_service.advance(old_done.instance_id, creator.actor_id, StepOutcome.APPROVED)
    instance_service.cancel(old_cancelled.instance_id, creator.actor_id)
    session.commit()

    deterministic_clock.advance(timedelta(days=40))
    recent = start_instance(definition, target=_target("3"))
    instance_service.advance(recent.instance_id, creator.actor_id, StepOutcome.APPROVED)
    session.commit()

    deterministic_clock.advance(timedelta(days=1))
    return definition, old_done, old_cancelled, recent


def _instance_ids(session):
    return set(session.scalars(select(WorkflowInstanceModel.id)))


class TestPurge:
    def test_removes_only_old_completed(self, session, aged_instances, deterministic_clock):
        _, old_done, old_cancelled, recent = aged_instances

        result = purge_completed_instances(session, 30, clock=deterministic_clock)
        session.commit()

        assert result.instance_ids == (old_done.instance_id,)
        assert result.count == 1
        session.expunge_all()
        assert _instance_ids(session) == {old_cancelled.instance_id, recent.instance_id}

    def test_history_removed(self, session, aged_instances, deterministic_clock):
        _, old_done, _, _ = aged_instances

        purge_completed_instances(session, 30, clock=deterministic_clock)
        session.commit()

        remaining = session.scalar(
            select(func.count(StepEventModel.id)).where(
                StepEventModel.instance_id == old_done.instance_id,
            )
        )
        assert remaining == 0

    def test_dry_run_deletes_nothing(self, session, aged_instances, deterministic_clock, captured_logs):
        result = purge_completed_instances(
            session, 30, dry_run=True, clock=deterministic_clock,
        )

        assert result.count == 1
        assert len(_instance_ids(session)) == 3
        assert any(
            r["message"] == "completed_instances_purge_preview" for r in captured_logs()
        )

    def test_instance_count_unchanged(
        self, session, aged_instances, definition_service, deterministic_clock,
    ):
        definition = aged_instances[0]

        purge_completed_instances(session, 30, clock=deterministic_clock)
        session.commit()

        assert definition_service.get(definition.definition_id).instance_count == 3

    @pytest.mark.parametrize("days", [0, -5, 1.5, True])
    def test_invalid_age_rejected(self, session, days):
        with pytest.raises(ValueError):
            purge_completed_instances(session, days)
