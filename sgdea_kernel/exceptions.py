"""
Typed Exception Hierarchy for the SGDEA Workflow Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

The web layer turns kernel failures into user-facing messages and HTTP
status codes.  Parsing message strings for that is fragile, so every error:
  1. Has a TYPED exception class (catch by type, not message)
  2. Has a CODE class attribute (machine-readable, API-safe)
  3. Carries structured DATA (ids, counts, reasons) as attributes

Example - WRONG way to handle errors:
    try:
        orchestrator.update_definition(actor, definition_id, patch)
    except Exception as e:
        if "active instances" in str(e):   # FRAGILE
            ...

Example - RIGHT way:
    try:
        orchestrator.update_definition(actor, definition_id, patch)
    except ActiveInstancesError as e:
        return {"error": e.code, "active": e.active_count, "message": str(e)}

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    SgdeaError (base)
    |
    +-- ValidationError
    |
    +-- NotFoundError
    |   +-- DefinitionNotFoundError
    |   +-- InstanceNotFoundError
    |
    +-- ConflictError
    |   +-- ActiveInstancesError
    |   +-- DefinitionReferencedError
    |   +-- StepsInUseError
    |   +-- DuplicateActiveInstanceError
    |   +-- ConcurrentModificationError
    |
    +-- InactiveDefinitionError
    |
    +-- InvalidTransitionError
    |
    +-- AuthorizationError
    |   +-- SecondFactorRequiredError
    |
    +-- ImmutabilityViolationError
    |
    +-- AuditChainBrokenError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                         | When Raised
----------------|------------------------------|----------------------------------------
Validation      | VALIDATION_ERROR             | Empty step list, unknown entity kind
----------------|------------------------------|----------------------------------------
Not found       | DEFINITION_NOT_FOUND         | Definition id unknown (or soft-deleted)
                | INSTANCE_NOT_FOUND           | Instance id unknown
----------------|------------------------------|----------------------------------------
Conflict        | ACTIVE_INSTANCES             | Edit blocked by pending/in_progress runs
                | DEFINITION_REFERENCED        | Delete blocked by existing instances
                | STEPS_IN_USE                 | Step removal under an existing instance
                | DUPLICATE_ACTIVE_INSTANCE    | Target already has a running instance
                | CONCURRENT_MODIFICATION      | Revision check lost (retryable)
----------------|------------------------------|----------------------------------------
Lifecycle       | INACTIVE_DEFINITION          | Start on a deactivated definition
                | INVALID_TRANSITION           | Advance/cancel on a terminal instance
----------------|------------------------------|----------------------------------------
Authorization   | AUTHORIZATION_DENIED         | Gate denial (reason attached)
                | SECOND_FACTOR_REQUIRED       | Missing or expired 2FA verification
----------------|------------------------------|----------------------------------------
Integrity       | IMMUTABILITY_VIOLATION       | UPDATE/DELETE of append-only rows
                | AUDIT_CHAIN_BROKEN           | Persisted audit hash chain mismatch

===============================================================================
HANDLING PATTERNS
===============================================================================

1. ConflictError is the retryable family.  ConcurrentModificationError in
   particular means "reload and try again"; the kernel never retries on its
   own.

2. AuthorizationError.reason is meant for the end user.  It is distinct per
   gate rule and must be shown as-is instead of a generic "forbidden".

3. Hook failures (audit, notification, indexing) are NEVER raised through
   these classes into the caller; they are logged at the dispatch boundary.
"""

from __future__ import annotations


class SgdeaError(Exception):
    """
    Base exception for all workflow kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "SGDEA_ERROR"


# Validation


class ValidationError(SgdeaError):
    """Malformed input: empty step list, unknown entity kind, bad option."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid {field}: {reason}")


# Lookup


class NotFoundError(SgdeaError):
    """Base exception for missing aggregates."""

    code: str = "NOT_FOUND"


class DefinitionNotFoundError(NotFoundError):
    """Workflow definition with given ID was not found."""

    code: str = "DEFINITION_NOT_FOUND"

    def __init__(self, definition_id: str):
        self.definition_id = definition_id
        super().__init__(f"Workflow definition not found: {definition_id}")


class InstanceNotFoundError(NotFoundError):
    """Workflow instance with given ID was not found."""

    code: str = "INSTANCE_NOT_FOUND"

    def __init__(self, instance_id: str):
        self.instance_id = instance_id
        super().__init__(f"Workflow instance not found: {instance_id}")


# Conflicts (state preconditions)


class ConflictError(SgdeaError):
    """Base exception for violated state preconditions."""

    code: str = "CONFLICT"


class ActiveInstancesError(ConflictError):
    """Definition cannot be edited while instances are pending or in progress."""

    code: str = "ACTIVE_INSTANCES"

    def __init__(self, definition_id: str, active_count: int, reason: str | None = None):
        self.definition_id = definition_id
        self.active_count = active_count
        super().__init__(
            reason
            or f"Cannot edit workflow {definition_id}: "
            f"{active_count} active instance(s) exist"
        )


class DefinitionReferencedError(ConflictError):
    """Definition cannot be deleted because instances reference it."""

    code: str = "DEFINITION_REFERENCED"

    def __init__(self, definition_id: str, instance_count: int, reason: str | None = None):
        self.definition_id = definition_id
        self.instance_count = instance_count
        super().__init__(
            reason
            or f"Cannot delete workflow {definition_id}: "
            f"{instance_count} instance(s) reference it"
        )


class StepsInUseError(ConflictError):
    """Step list cannot shrink below the step an existing instance sits on."""

    code: str = "STEPS_IN_USE"

    def __init__(self, definition_id: str, step_count: int, instance_count: int):
        self.definition_id = definition_id
        self.step_count = step_count
        self.instance_count = instance_count
        super().__init__(
            f"Cannot reduce workflow {definition_id} to {step_count} step(s): "
            f"{instance_count} instance(s) are at a later step"
        )


class DuplicateActiveInstanceError(ConflictError):
    """Target entity already has a running instance of this definition."""

    code: str = "DUPLICATE_ACTIVE_INSTANCE"

    def __init__(self, definition_id: str, entity_kind: str, entity_id: str, instance_id: str):
        self.definition_id = definition_id
        self.entity_kind = entity_kind
        self.entity_id = entity_id
        self.instance_id = instance_id
        super().__init__(
            f"{entity_kind} {entity_id} already has active instance {instance_id} "
            f"of workflow {definition_id}"
        )


class ConcurrentModificationError(ConflictError):
    """Revision check failed: another transaction modified the row first."""

    code: str = "CONCURRENT_MODIFICATION"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            f"Concurrent modification of {entity_type} {entity_id}: "
            "entity was modified by another transaction"
        )


# Lifecycle


class InactiveDefinitionError(SgdeaError):
    """Instance start attempted on an inactive definition."""

    code: str = "INACTIVE_DEFINITION"

    def __init__(self, definition_id: str, reason: str | None = None):
        self.definition_id = definition_id
        super().__init__(reason or f"Workflow {definition_id} is not active")


class InvalidTransitionError(SgdeaError):
    """Advance/cancel attempted on an instance whose status forbids it."""

    code: str = "INVALID_TRANSITION"

    def __init__(self, instance_id: str, current_status: str, attempted: str):
        self.instance_id = instance_id
        self.current_status = current_status
        self.attempted = attempted
        super().__init__(
            f"Cannot {attempted} instance {instance_id}: status is {current_status}"
        )


# Authorization


class AuthorizationError(SgdeaError):
    """Authorization gate denied the action.  ``reason`` is user-facing."""

    code: str = "AUTHORIZATION_DENIED"

    def __init__(self, action: str, reason: str, rule: str | None = None):
        self.action = action
        self.reason = reason
        self.rule = rule
        super().__init__(reason)


class SecondFactorRequiredError(AuthorizationError):
    """Two-factor verification missing or older than the allowed lifetime."""

    code: str = "SECOND_FACTOR_REQUIRED"

    def __init__(self, action: str, reason: str):
        super().__init__(action, reason, rule="second_factor")


# Integrity


class ImmutabilityViolationError(SgdeaError):
    """Attempted to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(f"Cannot modify {entity_type} {entity_id}: {reason}")


class AuditChainBrokenError(SgdeaError):
    """Persisted audit hash chain validation failed."""

    code: str = "AUDIT_CHAIN_BROKEN"

    def __init__(self, audit_seq: int, expected_hash: str, actual_hash: str):
        self.audit_seq = audit_seq
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash
        super().__init__(
            f"Audit chain broken at seq {audit_seq}: "
            f"expected {expected_hash}, got {actual_hash}"
        )
