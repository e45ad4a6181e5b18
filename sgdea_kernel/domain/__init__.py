"""Pure domain layer of the workflow kernel: value objects, no I/O."""

from sgdea_kernel.domain.actor import Actor, VerificationToken
from sgdea_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from sgdea_kernel.domain.effects import (
    AuditAction,
    AuditRecord,
    IndexOperation,
    IndexRequest,
    Notification,
    NotificationPriority,
    ServiceResult,
    Severity,
)
from sgdea_kernel.domain.workflow import (
    ACTIVE_INSTANCE_STATUSES,
    INSTANCE_TRANSITIONS,
    SYSTEM_ACTOR_ID,
    TERMINAL_INSTANCE_STATUSES,
    AutoAdvance,
    EntityKind,
    EntityRef,
    InstanceStatistics,
    InstanceStatus,
    Step,
    StepEvent,
    StepOutcome,
    WorkflowDefinition,
    WorkflowInstance,
)

__all__ = [
    "ACTIVE_INSTANCE_STATUSES",
    "INSTANCE_TRANSITIONS",
    "SYSTEM_ACTOR_ID",
    "TERMINAL_INSTANCE_STATUSES",
    "Actor",
    "AuditAction",
    "AuditRecord",
    "AutoAdvance",
    "Clock",
    "DeterministicClock",
    "EntityKind",
    "EntityRef",
    "IndexOperation",
    "IndexRequest",
    "InstanceStatistics",
    "InstanceStatus",
    "Notification",
    "NotificationPriority",
    "ServiceResult",
    "Severity",
    "Step",
    "StepEvent",
    "StepOutcome",
    "SystemClock",
    "VerificationToken",
    "WorkflowDefinition",
    "WorkflowInstance",
]
