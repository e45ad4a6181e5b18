"""
sgdea_services -- Package init and public API.

Responsibility:
    Stateful services of the workflow core: the Definition Store and the
    Instance Manager over kernel models and pure engines, the deadline
    sweep, the ``WorkflowOrchestrator`` unit of work, and the collaborators effects
    are dispatched to (audit sinks, notifications, entity targets,
    indexing).

Architecture position:
    Services -- stateful orchestration over engines + kernel.

    Dependency direction:
        sgdea_services -> sgdea_engines  (allowed)
        sgdea_services -> sgdea_kernel   (allowed)
        sgdea_services -> sgdea_config   (allowed)
        sgdea_engines  -> sgdea_services (FORBIDDEN)
        sgdea_kernel   -> sgdea_services (FORBIDDEN)
"""

from sgdea_services.audit_sink import AuditSink, DatabaseAuditSink, LoggingAuditSink
from sgdea_services.deadlines import DeadlineReport, DeadlineService
from sgdea_services.definition_service import WorkflowDefinitionService
from sgdea_services.effects import EffectDispatcher
from sgdea_services.indexing import (
    EntityIndexingHook,
    InMemorySearchIndex,
    InMemoryWorkQueue,
    IndexJob,
    SearchIndex,
    WorkQueue,
)
from sgdea_services.instance_service import WorkflowInstanceService
from sgdea_services.notifications import (
    LoggingNotificationSender,
    NotificationSender,
    RecordingNotificationSender,
)
from sgdea_services.retention import PurgeResult, purge_completed_instances
from sgdea_services.targets import (
    EntityHandler,
    EntityTargetRegistry,
    InMemoryEntityHandler,
    make_target,
)
from sgdea_services.workflow_orchestrator import WorkflowOrchestrator

__all__ = [
    "AuditSink",
    "DatabaseAuditSink",
    "DeadlineReport",
    "DeadlineService",
    "EffectDispatcher",
    "EntityHandler",
    "EntityIndexingHook",
    "EntityTargetRegistry",
    "InMemoryEntityHandler",
    "InMemorySearchIndex",
    "InMemoryWorkQueue",
    "IndexJob",
    "LoggingAuditSink",
    "LoggingNotificationSender",
    "NotificationSender",
    "PurgeResult",
    "RecordingNotificationSender",
    "SearchIndex",
    "WorkQueue",
    "WorkflowDefinitionService",
    "WorkflowInstanceService",
    "WorkflowOrchestrator",
    "make_target",
]
