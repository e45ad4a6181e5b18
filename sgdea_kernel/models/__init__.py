"""Persistence models for the workflow kernel."""

from sgdea_kernel.models.audit_event import AuditEventModel
from sgdea_kernel.models.workflow import (
    StepEventModel,
    WorkflowDefinitionModel,
    WorkflowInstanceModel,
)

__all__ = [
    "AuditEventModel",
    "StepEventModel",
    "WorkflowDefinitionModel",
    "WorkflowInstanceModel",
    "import_all_models",
]


def import_all_models() -> None:
    """Make sure every mapped table is registered on ``Base.metadata``.

    SequenceCounter lives beside SequenceService and is not reachable
    through this package's imports.
    """
    import sgdea_kernel.services.sequence_service  # noqa: F401
