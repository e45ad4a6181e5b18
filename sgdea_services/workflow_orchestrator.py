"""
sgdea_services.workflow_orchestrator -- User-facing surface of the workflow core.

Responsibility:
    One method per user operation.  Each mutating call runs as a unit of
    work: open a session, check the second factor, ask the authorization
    gate, call the service, commit, then dispatch the returned effects.
    Read calls go through the selector and the same gate.

Architecture position:
    Services -- top of the stack.  Wires kernel services, pure engines,
    configuration and external collaborators together; the host web
    layer talks only to this class.

Invariants enforced:
    - Effects are dispatched strictly after a successful commit; a failed
      mutation dispatches nothing.
    - Gate denials become typed errors: forbidden -> AuthorizationError,
      conflict -> ConflictError subclass, inactive -> InactiveDefinitionError,
      always carrying the gate's reason text.
    - Super-admins pass the gate, not the services: state preconditions
      still apply to them.

Usage:
    orchestrator = WorkflowOrchestrator(get_session_factory(), get_active_config())
    definition = orchestrator.create_definition(actor, "Approval", "document",
                                                [{"name": "Review"}])
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import timedelta
from typing import Any, Callable, Generator, Iterable, Sequence
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from sgdea_config.schema import WorkflowCoreConfig
from sgdea_engines.authorization import (
    Action,
    AuthorizationContext,
    AuthorizationDecision,
    AuthorizationGate,
    AuthorizationPolicy,
    DenialKind,
)
from sgdea_engines.deadlines import PendingTask
from sgdea_engines.verification import check_second_factor
from sgdea_kernel.domain.actor import Actor
from sgdea_kernel.domain.clock import Clock, SystemClock
from sgdea_kernel.domain.effects import ServiceResult
from sgdea_kernel.domain.workflow import (
    EntityKind,
    EntityRef,
    InstanceStatistics,
    SYSTEM_ACTOR_ID,
    InstanceStatus,
    StepOutcome,
    WorkflowDefinition,
    WorkflowInstance,
)
from sgdea_kernel.exceptions import (
    ActiveInstancesError,
    AuthorizationError,
    ConflictError,
    DefinitionNotFoundError,
    DefinitionReferencedError,
    InactiveDefinitionError,
    InstanceNotFoundError,
    SecondFactorRequiredError,
)
from sgdea_kernel.logging_config import LogContext, get_logger
from sgdea_kernel.selectors.workflow_selector import WorkflowSelector
from sgdea_services.audit_sink import AuditSink, DatabaseAuditSink, LoggingAuditSink
from sgdea_services.deadlines import DeadlineReport, DeadlineService
from sgdea_services.definition_service import WorkflowDefinitionService
from sgdea_services.effects import EffectDispatcher
from sgdea_services.indexing import EntityIndexingHook, SearchIndex, WorkQueue
from sgdea_services.instance_service import WorkflowInstanceService
from sgdea_services.notifications import LoggingNotificationSender, NotificationSender
from sgdea_services.targets import EntityTargetRegistry

logger = get_logger("services.orchestrator")

MUTATING_ACTIONS = frozenset({
    Action.CREATE,
    Action.UPDATE,
    Action.DELETE,
    Action.FORCE_DELETE,
    Action.RESTORE,
    Action.TOGGLE_ACTIVE,
    Action.START,
    Action.ADVANCE,
    Action.CANCEL,
})


def policy_from_config(config: WorkflowCoreConfig) -> AuthorizationPolicy:
    """Translate the authorization section into the gate's policy."""
    auth = config.authorization
    return AuthorizationPolicy(
        super_admin_role=auth.super_admin_role,
        admin_roles=frozenset(auth.admin_roles),
        create_capability=auth.create_capability,
    )


class WorkflowOrchestrator:
    """
    Entry point for every workflow operation.

    Contract:
        Receives a session factory and the active configuration; builds
        the gate, the dispatcher and the indexing hook once.  Collaborators
        not supplied fall back to logging implementations.

    Non-goals:
        - Does NOT resolve users; callers pass a resolved ``Actor``.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        config: WorkflowCoreConfig | None = None,
        clock: Clock | None = None,
        notifier: NotificationSender | None = None,
        targets: EntityTargetRegistry | None = None,
        search_index: SearchIndex | None = None,
        work_queue: WorkQueue | None = None,
        audit_sinks: Sequence[AuditSink] | None = None,
    ) -> None:
        self._session_factory = session_factory
        self.config = config or WorkflowCoreConfig()
        self._clock = clock or SystemClock()
        self.gate = AuthorizationGate(policy_from_config(self.config))
        self.targets = targets or EntityTargetRegistry()

        self.indexing: EntityIndexingHook | None = None
        if search_index is not None:
            indexing = self.config.indexing
            self.indexing = EntityIndexingHook(
                search_index,
                mode=indexing.mode,
                queue=work_queue,
                queue_name=indexing.queue_name,
                index_prefix=indexing.index_prefix,
                governed_kinds=indexing.governed_kinds,
                max_attempts=indexing.max_attempts,
            )

        if audit_sinks is None:
            audit_sinks = [LoggingAuditSink()]
            if self.config.audit.persist:
                audit_sinks.append(DatabaseAuditSink(session_factory))

        self.dispatcher = EffectDispatcher(
            audit_sinks=audit_sinks,
            notifier=notifier or LoggingNotificationSender(),
            targets=self.targets,
            indexing=self.indexing,
        )

    # -- plumbing ----------------------------------------------------------

    @contextmanager
    def _unit_of_work(self, actor: Actor, operation: str) -> Generator[Session, None, None]:
        session = self._session_factory()
        with LogContext.bind(correlation_id=str(uuid4()), actor_id=str(actor.actor_id)):
            try:
                yield session
                session.commit()
            except Exception:
                session.rollback()
                logger.info("operation_rolled_back", extra={"operation": operation})
                raise
            finally:
                session.close()

    def _run(self, actor: Actor, operation: str, work: Callable[[Session], ServiceResult]):
        """Run ``work`` in a unit of work, then dispatch its effects."""
        with self._unit_of_work(actor, operation) as session:
            result = work(session)
        with LogContext.bind(actor_id=str(actor.actor_id)):
            failures = self.dispatcher.dispatch(result.effects)
        if failures:
            logger.warning(
                "effects_partially_failed",
                extra={"operation": operation, "failed": failures},
            )
        return result.value

    def _definition_service(self, session: Session) -> WorkflowDefinitionService:
        return WorkflowDefinitionService(
            session, self._clock, self.config.audit.significant_fields,
        )

    def _instance_service(self, session: Session) -> WorkflowInstanceService:
        return WorkflowInstanceService(
            session, self._clock, self.config.notifications.default_priority,
        )

    def _deadline_service(self, session: Session) -> DeadlineService:
        return DeadlineService(
            session,
            self._clock,
            self.config.deadlines.reminder_window_hours,
            self.config.notifications.default_priority,
        )

    def _require_second_factor(self, actor: Actor, action: Action) -> None:
        if not self.config.two_factor.enforce or action not in MUTATING_ACTIONS:
            return
        valid, reason = check_second_factor(
            actor.second_factor,
            self._clock.now(),
            timedelta(minutes=self.config.two_factor.session_lifetime_minutes),
        )
        if not valid:
            logger.warning(
                "second_factor_rejected",
                extra={"action": action.value, "reason": reason},
            )
            raise SecondFactorRequiredError(action.value, reason)

    def _authorize(
        self,
        actor: Actor,
        action: Action,
        context: AuthorizationContext | None = None,
    ) -> AuthorizationDecision:
        self._require_second_factor(actor, action)
        context = context or AuthorizationContext()
        decision = self.gate.evaluate(actor, action, context)
        if decision.allowed:
            return decision

        logger.warning(
            "authorization_denied",
            extra={
                "action": action.value,
                "rule": decision.rule,
                "reason": decision.reason,
                "denial_kind": decision.kind.value if decision.kind else None,
            },
        )
        definition = context.definition
        if decision.kind is DenialKind.INACTIVE and definition is not None:
            raise InactiveDefinitionError(str(definition.definition_id), decision.reason)
        if decision.kind is DenialKind.CONFLICT and definition is not None:
            if action is Action.UPDATE:
                raise ActiveInstancesError(
                    str(definition.definition_id),
                    context.active_instance_count,
                    decision.reason,
                )
            if action is Action.DELETE:
                raise DefinitionReferencedError(
                    str(definition.definition_id),
                    definition.instance_count,
                    decision.reason,
                )
            raise ConflictError(decision.reason)
        raise AuthorizationError(action.value, decision.reason, decision.rule)

    @staticmethod
    def _definition(
        selector: WorkflowSelector, definition_id: UUID, include_deleted: bool = False,
    ) -> WorkflowDefinition:
        definition = selector.get_definition(definition_id, include_deleted)
        if definition is None:
            raise DefinitionNotFoundError(str(definition_id))
        return definition

    @staticmethod
    def _instance(selector: WorkflowSelector, instance_id: UUID) -> WorkflowInstance:
        instance = selector.get_instance(instance_id)
        if instance is None:
            raise InstanceNotFoundError(str(instance_id))
        return instance

    def _can_view(self, actor: Actor, definition: WorkflowDefinition) -> bool:
        return self.gate.evaluate(
            actor, Action.VIEW, AuthorizationContext(definition=definition),
        ).allowed

    # -- definitions: reads ------------------------------------------------

    def list_definitions(
        self,
        actor: Actor,
        entity_kind: EntityKind | str | None = None,
        active: bool | None = None,
        search: str | None = None,
        include_deleted: bool = False,
    ) -> list[WorkflowDefinition]:
        """Definitions the actor may see, ordered by name."""
        self._authorize(actor, Action.VIEW_ANY)
        if include_deleted:
            self._authorize(actor, Action.RESTORE)
        kind = EntityKind(entity_kind) if entity_kind is not None else None
        with self._unit_of_work(actor, "list_definitions") as session:
            definitions = WorkflowSelector(session).list_definitions(
                entity_kind=kind, active=active, search=search,
                include_deleted=include_deleted,
            )
        return [d for d in definitions if self._can_view(actor, d)]

    def show_definition(self, actor: Actor, definition_id: UUID) -> WorkflowDefinition:
        with self._unit_of_work(actor, "show_definition") as session:
            definition = self._definition(WorkflowSelector(session), definition_id)
        self._authorize(actor, Action.VIEW, AuthorizationContext(definition=definition))
        return definition

    def statistics(self, actor: Actor, definition_id: UUID) -> InstanceStatistics:
        with self._unit_of_work(actor, "statistics") as session:
            selector = WorkflowSelector(session)
            definition = self._definition(selector, definition_id)
            self._authorize(
                actor, Action.VIEW_STATISTICS, AuthorizationContext(definition=definition),
            )
            return selector.statistics(definition_id)

    # -- definitions: writes -----------------------------------------------

    def create_definition(
        self,
        actor: Actor,
        name: str,
        entity_kind: EntityKind | str,
        steps: Iterable[Any],
        description: str | None = None,
        configuration: dict[str, Any] | None = None,
        active: bool = True,
    ) -> WorkflowDefinition:
        self._authorize(actor, Action.CREATE)

        def work(session: Session) -> ServiceResult:
            return self._definition_service(session).create(
                name=name,
                entity_kind=entity_kind,
                steps=steps,
                creator_id=actor.actor_id,
                description=description,
                configuration=configuration,
                active=active,
            )

        return self._run(actor, "create_definition", work)

    def update_definition(
        self, actor: Actor, definition_id: UUID, patch: dict[str, Any],
    ) -> WorkflowDefinition:
        def work(session: Session) -> ServiceResult:
            selector = WorkflowSelector(session)
            definition = self._definition(selector, definition_id)
            self._authorize(
                actor,
                Action.UPDATE,
                AuthorizationContext(
                    definition=definition,
                    active_instance_count=selector.count_active_instances(definition_id),
                ),
            )
            return self._definition_service(session).update(
                definition_id, patch, actor.actor_id,
            )

        with LogContext.bind(definition_id=str(definition_id)):
            return self._run(actor, "update_definition", work)

    def activate_definition(self, actor: Actor, definition_id: UUID) -> WorkflowDefinition:
        return self._toggle(actor, definition_id, True)

    def deactivate_definition(self, actor: Actor, definition_id: UUID) -> WorkflowDefinition:
        return self._toggle(actor, definition_id, False)

    def _toggle(self, actor: Actor, definition_id: UUID, active: bool) -> WorkflowDefinition:
        def work(session: Session) -> ServiceResult:
            definition = self._definition(WorkflowSelector(session), definition_id)
            self._authorize(
                actor, Action.TOGGLE_ACTIVE, AuthorizationContext(definition=definition),
            )
            service = self._definition_service(session)
            if active:
                return service.activate(definition_id, actor.actor_id)
            return service.deactivate(definition_id, actor.actor_id)

        operation = "activate_definition" if active else "deactivate_definition"
        with LogContext.bind(definition_id=str(definition_id)):
            return self._run(actor, operation, work)

    def delete_definition(
        self, actor: Actor, definition_id: UUID, permanent: bool = False,
    ) -> WorkflowDefinition:
        """Soft delete, or with ``permanent`` remove the row (super-admin only)."""
        action = Action.FORCE_DELETE if permanent else Action.DELETE

        def work(session: Session) -> ServiceResult:
            definition = self._definition(
                WorkflowSelector(session), definition_id, include_deleted=permanent,
            )
            self._authorize(actor, action, AuthorizationContext(definition=definition))
            return self._definition_service(session).delete(
                definition_id, actor.actor_id, permanent=permanent,
            )

        with LogContext.bind(definition_id=str(definition_id)):
            return self._run(actor, "delete_definition", work)

    def restore_definition(self, actor: Actor, definition_id: UUID) -> WorkflowDefinition:
        def work(session: Session) -> ServiceResult:
            definition = self._definition(
                WorkflowSelector(session), definition_id, include_deleted=True,
            )
            self._authorize(actor, Action.RESTORE, AuthorizationContext(definition=definition))
            return self._definition_service(session).restore(definition_id, actor.actor_id)

        with LogContext.bind(definition_id=str(definition_id)):
            return self._run(actor, "restore_definition", work)

    # -- instances ---------------------------------------------------------

    def start_instance(
        self,
        actor: Actor,
        definition_id: UUID,
        target: EntityRef,
        data: dict[str, Any] | None = None,
    ) -> WorkflowInstance:
        def work(session: Session) -> ServiceResult:
            definition = self._definition(WorkflowSelector(session), definition_id)
            self._authorize(actor, Action.START, AuthorizationContext(definition=definition))
            return self._instance_service(session).start(
                definition_id, target, actor.actor_id, data,
            )

        with LogContext.bind(definition_id=str(definition_id)):
            return self._run(actor, "start_instance", work)

    def advance_instance(
        self,
        actor: Actor,
        instance_id: UUID,
        outcome: StepOutcome | str,
        comment: str = "",
    ) -> WorkflowInstance:
        def work(session: Session) -> ServiceResult:
            selector = WorkflowSelector(session)
            instance = self._instance(selector, instance_id)
            definition = self._definition(selector, instance.definition_id, include_deleted=True)
            self._authorize(
                actor,
                Action.ADVANCE,
                AuthorizationContext(definition=definition, instance=instance),
            )
            return self._instance_service(session).advance(
                instance_id, actor.actor_id, outcome, comment,
            )

        with LogContext.bind(instance_id=str(instance_id)):
            return self._run(actor, "advance_instance", work)

    def cancel_instance(
        self, actor: Actor, instance_id: UUID, reason: str = "",
    ) -> WorkflowInstance:
        def work(session: Session) -> ServiceResult:
            selector = WorkflowSelector(session)
            instance = self._instance(selector, instance_id)
            definition = self._definition(selector, instance.definition_id, include_deleted=True)
            self._authorize(
                actor,
                Action.CANCEL,
                AuthorizationContext(definition=definition, instance=instance),
            )
            return self._instance_service(session).cancel(
                instance_id, actor.actor_id, reason,
            )

        with LogContext.bind(instance_id=str(instance_id)):
            return self._run(actor, "cancel_instance", work)

    def show_instance(self, actor: Actor, instance_id: UUID) -> WorkflowInstance:
        with self._unit_of_work(actor, "show_instance") as session:
            selector = WorkflowSelector(session)
            instance = self._instance(selector, instance_id)
            definition = self._definition(selector, instance.definition_id, include_deleted=True)
        if instance.initiator_id != actor.actor_id:
            self._authorize(actor, Action.VIEW, AuthorizationContext(definition=definition))
        return instance

    def list_instances(
        self,
        actor: Actor,
        definition_id: UUID | None = None,
        status: InstanceStatus | str | None = None,
        target: EntityRef | None = None,
    ) -> list[WorkflowInstance]:
        """Instances of definitions the actor may see, newest first."""
        self._authorize(actor, Action.VIEW_ANY)
        status = InstanceStatus(status) if status is not None else None
        with self._unit_of_work(actor, "list_instances") as session:
            selector = WorkflowSelector(session)
            if definition_id is not None:
                definition = self._definition(selector, definition_id, include_deleted=True)
                self._authorize(actor, Action.VIEW, AuthorizationContext(definition=definition))
            instances = selector.list_instances(
                definition_id=definition_id, status=status, target=target,
            )
            visible: dict[UUID, bool] = {}
            result = []
            for instance in instances:
                if instance.definition_id not in visible:
                    definition = selector.get_definition(
                        instance.definition_id, include_deleted=True,
                    )
                    visible[instance.definition_id] = (
                        definition is not None and self._can_view(actor, definition)
                    )
                if visible[instance.definition_id] or instance.initiator_id == actor.actor_id:
                    result.append(instance)
        return result

    # -- deadlines ---------------------------------------------------------

    def my_tasks(self, actor: Actor) -> list[PendingTask]:
        """Running instances whose current step ``actor`` may decide, earliest due first."""
        with self._unit_of_work(actor, "my_tasks") as session:
            tasks = self._deadline_service(session).pending_tasks()
        return [
            task for task in tasks
            if self.gate.evaluate(
                actor,
                Action.ADVANCE,
                AuthorizationContext(definition=task.definition, instance=task.instance),
            ).allowed
        ]

    def process_deadlines(self) -> DeadlineReport:
        """Send step reminders and escalate overdue steps; run by the scheduler."""
        system = Actor(actor_id=SYSTEM_ACTOR_ID)
        return self._run(
            system, "process_deadlines",
            lambda session: self._deadline_service(session).process(),
        )
