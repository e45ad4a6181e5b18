"""
Module: sgdea_engines
Responsibility:
    Pure evaluation engines for the workflow core: the ordered-rule
    authorization gate, the instance state machine, step deadlines,
    audit record derivation and the second-factor freshness check.

Architecture position:
    Engines -- pure layer, zero I/O.
    May only import sgdea_kernel domain types, exceptions and hashing.
    MUST NOT import sgdea_services or sgdea_config.

Invariants enforced:
    - Engines NEVER read the clock; ``now`` is always a parameter.
    - Determinism: identical inputs always produce identical outputs.
"""

from sgdea_engines.audit import (
    DEFAULT_SIGNIFICANT_FIELDS,
    changed_fields,
    definition_created_record,
    definition_deleted_record,
    definition_restored_record,
    definition_snapshot,
    definition_update_records,
    instance_escalated_record,
    instance_started_record,
    instance_transition_record,
)
from sgdea_engines.authorization import (
    Action,
    AuthorizationContext,
    AuthorizationDecision,
    AuthorizationGate,
    AuthorizationPolicy,
    DenialKind,
)
from sgdea_engines.deadlines import (
    DeadlineStatus,
    PendingTask,
    deadline_status,
    order_by_due,
    step_due_at,
)
from sgdea_engines.instance_state import (
    Transition,
    can_transition,
    plan_advance,
    plan_cancel,
    plan_start,
)
from sgdea_engines.verification import check_second_factor

__all__ = [
    "Action",
    "AuthorizationContext",
    "AuthorizationDecision",
    "AuthorizationGate",
    "AuthorizationPolicy",
    "DEFAULT_SIGNIFICANT_FIELDS",
    "DeadlineStatus",
    "DenialKind",
    "PendingTask",
    "Transition",
    "can_transition",
    "changed_fields",
    "check_second_factor",
    "deadline_status",
    "definition_created_record",
    "definition_deleted_record",
    "definition_restored_record",
    "definition_snapshot",
    "definition_update_records",
    "instance_escalated_record",
    "instance_started_record",
    "instance_transition_record",
    "order_by_due",
    "plan_advance",
    "plan_cancel",
    "plan_start",
    "step_due_at",
]
