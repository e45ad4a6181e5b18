"""
sgdea_services.retention -- Purge of old completed workflow instances.

Completed instances finished more than ``older_than_days`` ago are removed
together with their step history.  Cancelled and rejected instances are
kept.  Definitions are not touched: ``instance_count`` never goes down,
so a purge never makes a used definition deletable.

Step events are append-only at the ORM level; the purge removes them with
bulk DELETE statements, which do not pass through the per-row listeners.
Flush-only: the caller commits.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import delete
from sqlalchemy.orm import Session

from sgdea_kernel.domain.clock import Clock, SystemClock
from sgdea_kernel.logging_config import get_logger
from sgdea_kernel.models.workflow import StepEventModel, WorkflowInstanceModel
from sgdea_kernel.selectors.workflow_selector import WorkflowSelector

logger = get_logger("services.retention")

_BATCH_SIZE = 500


@dataclass(frozen=True)
class PurgeResult:
    cutoff: datetime
    instance_ids: tuple[UUID, ...]
    dry_run: bool

    @property
    def count(self) -> int:
        return len(self.instance_ids)


def purge_completed_instances(
    session: Session,
    older_than_days: int,
    dry_run: bool = False,
    clock: Clock | None = None,
) -> PurgeResult:
    """Delete completed instances finished before now - ``older_than_days``."""
    if isinstance(older_than_days, bool) or not isinstance(older_than_days, int) \
            or older_than_days < 1:
        raise ValueError("older_than_days must be a positive integer")

    cutoff = (clock or SystemClock()).now() - timedelta(days=older_than_days)
    ids = tuple(WorkflowSelector(session).completed_instance_ids_before(cutoff))

    if not dry_run:
        for start in range(0, len(ids), _BATCH_SIZE):
            batch = ids[start:start + _BATCH_SIZE]
            session.execute(
                delete(StepEventModel).where(StepEventModel.instance_id.in_(batch))
            )
            session.execute(
                delete(WorkflowInstanceModel).where(WorkflowInstanceModel.id.in_(batch))
            )

    logger.info(
        "completed_instances_purged" if not dry_run else "completed_instances_purge_preview",
        extra={
            "cutoff": cutoff.isoformat(),
            "instance_count": len(ids),
            "dry_run": dry_run,
        },
    )
    return PurgeResult(cutoff=cutoff, instance_ids=ids, dry_run=dry_run)
