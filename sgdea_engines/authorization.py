"""
sgdea_engines.authorization -- Ordered-rule authorization gate.

Responsibility:
    Decide whether an actor may perform an action on a workflow definition
    or instance, and say why not when the answer is no.  Every denial
    carries a human-readable reason and a ``DenialKind`` so the caller can
    raise the matching typed error without re-deriving anything.

Architecture position:
    Engines -- pure evaluation layer, zero I/O.
    May only import sgdea_kernel/domain/ types.  The caller resolves the
    actor and gathers the context (definition, instance, counts).

Invariants enforced:
    - Rules are evaluated in a fixed order; the first rule that returns a
      decision wins.  The super-admin rule always comes first.
    - Super-admin bypasses authorization only.  State preconditions
      (inactive definition, terminal instance) are still enforced by the
      services for everybody.
    - Deterministic: identical inputs always give the identical decision.

Failure modes:
    - Returns a ``missing_context`` denial instead of raising when an
      action needs a definition or instance that the caller did not pass.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Callable

from sgdea_kernel.domain.actor import Actor
from sgdea_kernel.domain.workflow import WorkflowDefinition, WorkflowInstance


class Action(str, Enum):
    """Operations the gate knows about."""

    VIEW = "view"
    VIEW_ANY = "view_any"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    FORCE_DELETE = "force_delete"
    RESTORE = "restore"
    TOGGLE_ACTIVE = "toggle_active"
    VIEW_STATISTICS = "view_statistics"
    START = "start"
    ADVANCE = "advance"
    CANCEL = "cancel"


class DenialKind(str, Enum):
    """Why a request was refused, which decides the error raised upstream."""

    FORBIDDEN = "forbidden"
    CONFLICT = "conflict"
    INACTIVE = "inactive"


@dataclass(frozen=True)
class AuthorizationPolicy:
    """Role names and capabilities the gate interprets.

    Built from ``sgdea_config`` by the orchestrator; the defaults match
    the shipped configuration.
    """

    super_admin_role: str = "super-admin"
    admin_roles: frozenset[str] = frozenset({"admin", "super-admin"})
    create_capability: str = "crear_workflows"


@dataclass(frozen=True)
class AuthorizationContext:
    """Facts about the resource, gathered by the caller."""

    definition: WorkflowDefinition | None = None
    instance: WorkflowInstance | None = None
    active_instance_count: int = 0


@dataclass(frozen=True)
class AuthorizationDecision:
    allowed: bool
    rule: str
    reason: str = ""
    kind: DenialKind | None = None

    @classmethod
    def allow(cls, rule: str) -> AuthorizationDecision:
        return cls(allowed=True, rule=rule)

    @classmethod
    def deny(
        cls, rule: str, reason: str, kind: DenialKind = DenialKind.FORBIDDEN,
    ) -> AuthorizationDecision:
        return cls(allowed=False, rule=rule, reason=reason, kind=kind)


Rule = Callable[
    ["AuthorizationGate", Actor, Action, AuthorizationContext],
    "AuthorizationDecision | None",
]

_MISSING_DEFINITION = "Workflow not specified"
_MISSING_INSTANCE = "Workflow instance not specified"


class AuthorizationGate:
    """
    Stateless, ordered-rule authorization.

    Each rule returns an ``AuthorizationDecision`` when it applies and
    None otherwise.  When no rule applies the request is denied.
    """

    def __init__(self, policy: AuthorizationPolicy | None = None):
        self.policy = policy or AuthorizationPolicy()

    # -- actor helpers -----------------------------------------------------

    def is_super_admin(self, actor: Actor) -> bool:
        return actor.has_role(self.policy.super_admin_role)

    def is_admin(self, actor: Actor) -> bool:
        return actor.has_any_role(self.policy.admin_roles)

    @staticmethod
    def is_creator(actor: Actor, definition: WorkflowDefinition | None) -> bool:
        return definition is not None and definition.creator_id == actor.actor_id

    # -- rules -------------------------------------------------------------

    def _rule_super_admin(self, actor, action, context):
        if self.is_super_admin(actor):
            return AuthorizationDecision.allow("super_admin")
        return None

    def _rule_view(self, actor, action, context):
        if action is Action.VIEW_ANY:
            return AuthorizationDecision.allow("view_any")
        if action is not Action.VIEW:
            return None
        definition = context.definition
        if definition is None:
            return AuthorizationDecision.deny("missing_context", _MISSING_DEFINITION)
        if definition.active or self.is_creator(actor, definition) or self.is_admin(actor):
            return AuthorizationDecision.allow("view")
        return AuthorizationDecision.deny(
            "view", "This workflow is inactive and you are not its creator",
        )

    def _rule_create(self, actor, action, context):
        if action is not Action.CREATE:
            return None
        if self.is_admin(actor) or actor.has_capability(self.policy.create_capability):
            return AuthorizationDecision.allow("create")
        return AuthorizationDecision.deny(
            "create", "You do not have permission to create workflows",
        )

    def _rule_update(self, actor, action, context):
        if action is not Action.UPDATE:
            return None
        definition = context.definition
        if definition is None:
            return AuthorizationDecision.deny("missing_context", _MISSING_DEFINITION)
        if not (self.is_creator(actor, definition) or self.is_admin(actor)):
            return AuthorizationDecision.deny(
                "update", "Only the creator or an administrator can edit this workflow",
            )
        if context.active_instance_count > 0:
            return AuthorizationDecision.deny(
                "update",
                f"Cannot edit this workflow: {context.active_instance_count} "
                "active instance(s) exist",
                DenialKind.CONFLICT,
            )
        return AuthorizationDecision.allow("update")

    def _rule_delete(self, actor, action, context):
        if action is Action.FORCE_DELETE:
            # Super-admins were let through by the first rule.
            return AuthorizationDecision.deny(
                "force_delete", "Only super administrators can permanently delete workflows",
            )
        if action is not Action.DELETE:
            return None
        definition = context.definition
        if definition is None:
            return AuthorizationDecision.deny("missing_context", _MISSING_DEFINITION)
        if not self.is_admin(actor):
            return AuthorizationDecision.deny(
                "delete", "Only administrators can delete workflows",
            )
        if definition.instance_count > 0:
            return AuthorizationDecision.deny(
                "delete",
                f"Cannot delete this workflow: {definition.instance_count} "
                "instance(s) reference it",
                DenialKind.CONFLICT,
            )
        return AuthorizationDecision.allow("delete")

    def _rule_restore(self, actor, action, context):
        if action is not Action.RESTORE:
            return None
        if self.is_admin(actor):
            return AuthorizationDecision.allow("restore")
        return AuthorizationDecision.deny(
            "restore", "Only administrators can restore workflows",
        )

    def _rule_owner_actions(self, actor, action, context):
        if action not in (Action.TOGGLE_ACTIVE, Action.VIEW_STATISTICS):
            return None
        definition = context.definition
        if definition is None:
            return AuthorizationDecision.deny("missing_context", _MISSING_DEFINITION)
        if self.is_creator(actor, definition) or self.is_admin(actor):
            return AuthorizationDecision.allow(action.value)
        if action is Action.TOGGLE_ACTIVE:
            reason = "Only the creator or an administrator can activate or deactivate this workflow"
        else:
            reason = "Only the creator or an administrator can view statistics for this workflow"
        return AuthorizationDecision.deny(action.value, reason)

    def _rule_start(self, actor, action, context):
        if action is not Action.START:
            return None
        definition = context.definition
        if definition is None:
            return AuthorizationDecision.deny("missing_context", _MISSING_DEFINITION)
        if not definition.active:
            return AuthorizationDecision.deny(
                "start", "This workflow is not active", DenialKind.INACTIVE,
            )
        return AuthorizationDecision.allow("start")

    def _rule_advance(self, actor, action, context):
        if action is not Action.ADVANCE:
            return None
        definition, instance = context.definition, context.instance
        if definition is None or instance is None:
            return AuthorizationDecision.deny("missing_context", _MISSING_INSTANCE)
        if self.is_creator(actor, definition) or self.is_admin(actor):
            return AuthorizationDecision.allow("advance")
        if 0 <= instance.current_step_index < len(definition.steps):
            role = definition.step_at(instance.current_step_index).required_role
            if role is not None and actor.has_role(role):
                return AuthorizationDecision.allow("advance_step_role")
        return AuthorizationDecision.deny(
            "advance", "You are not allowed to decide on the current step of this workflow",
        )

    def _rule_cancel(self, actor, action, context):
        if action is not Action.CANCEL:
            return None
        definition, instance = context.definition, context.instance
        if definition is None or instance is None:
            return AuthorizationDecision.deny("missing_context", _MISSING_INSTANCE)
        if self.is_creator(actor, definition) or self.is_admin(actor):
            return AuthorizationDecision.allow("cancel")
        if instance.initiator_id == actor.actor_id:
            return AuthorizationDecision.allow("cancel_initiator")
        return AuthorizationDecision.deny(
            "cancel", "Only the creator, the initiator or an administrator can cancel this workflow",
        )

    RULES: tuple[Rule, ...] = (
        _rule_super_admin,
        _rule_view,
        _rule_create,
        _rule_update,
        _rule_delete,
        _rule_restore,
        _rule_owner_actions,
        _rule_start,
        _rule_advance,
        _rule_cancel,
    )

    # -- evaluation --------------------------------------------------------

    def evaluate(
        self,
        actor: Actor,
        action: Action | str,
        context: AuthorizationContext | None = None,
    ) -> AuthorizationDecision:
        """Run the rules in order; the first decision wins."""
        action = Action(action)
        context = context or AuthorizationContext()
        for rule in self.RULES:
            decision = rule(self, actor, action, context)
            if decision is not None:
                return decision
        return AuthorizationDecision.deny(
            "default", f"No rule permits '{action.value}'",
        )
