"""
sgdea_services.effects -- Post-commit effect dispatch.

Responsibility:
    Run the effects a committed mutation returned: audit records to every
    audit sink, notifications to the sender (owner notifications are
    resolved through the entity registry), and index refreshes to the
    indexing hook.

Invariants enforced:
    - Called only after commit; nothing here can roll a mutation back.
    - Each effect runs in isolation: a failure is logged with its
      traceback and the remaining effects still run.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Iterable, Sequence

from sgdea_kernel.domain.effects import (
    AuditRecord,
    Effect,
    IndexOperation,
    IndexRequest,
    Notification,
)
from sgdea_kernel.domain.workflow import EntityRef
from sgdea_kernel.logging_config import get_logger
from sgdea_services.audit_sink import AuditSink
from sgdea_services.indexing import EntityIndexingHook
from sgdea_services.notifications import NotificationSender
from sgdea_services.targets import EntityTargetRegistry

logger = get_logger("services.effects")


class EffectDispatcher:
    """Delivers effects to their collaborators, one at a time."""

    def __init__(
        self,
        audit_sinks: Sequence[AuditSink] = (),
        notifier: NotificationSender | None = None,
        targets: EntityTargetRegistry | None = None,
        indexing: EntityIndexingHook | None = None,
    ):
        self._audit_sinks = tuple(audit_sinks)
        self._notifier = notifier
        self._targets = targets or EntityTargetRegistry()
        self._indexing = indexing

    def dispatch(self, effects: Iterable[Effect]) -> int:
        """Run every effect; return the number that failed."""
        failures = 0
        for effect in effects:
            try:
                self._dispatch_one(effect)
            except Exception:
                failures += 1
                logger.error(
                    "effect_dispatch_failed",
                    extra={"effect_type": type(effect).__name__},
                    exc_info=True,
                )
        return failures

    def _dispatch_one(self, effect: Effect) -> None:
        if isinstance(effect, AuditRecord):
            self._record_audit(effect)
        elif isinstance(effect, Notification):
            self._notify(effect)
        elif isinstance(effect, IndexRequest):
            self._index(effect)
        else:
            raise TypeError(f"unknown effect {type(effect).__name__}")

    def _record_audit(self, record: AuditRecord) -> None:
        for sink in self._audit_sinks:
            try:
                sink.record(record)
            except Exception:
                logger.error(
                    "audit_sink_failed",
                    extra={
                        "sink": type(sink).__name__,
                        "entity_type": record.entity_type,
                        "entity_id": str(record.entity_id),
                        "action": record.action.value,
                    },
                    exc_info=True,
                )

    def _notify(self, notification: Notification) -> None:
        if self._notifier is None:
            return
        recipient = notification.recipient_id
        if recipient is None:
            if notification.target_kind is None or notification.target_id is None:
                return
            recipient = self._targets.owner_of(
                EntityRef(notification.target_kind, notification.target_id)
            )
            if recipient is None:
                logger.debug(
                    "notification_owner_unknown",
                    extra={"target_kind": notification.target_kind.value,
                           "target_id": notification.target_id},
                )
                return
        self._notifier.notify(recipient, notification.message, notification.priority)

    def _index(self, request: IndexRequest) -> None:
        if self._indexing is None or not self._indexing.governs(request.kind):
            return
        if request.operation is not IndexOperation.DELETED:
            ref = EntityRef(request.kind, request.entity_id)
            if not self._targets.exists(ref):
                logger.debug(
                    "index_target_missing",
                    extra={"target_kind": request.kind.value, "target_id": request.entity_id},
                )
                return
            entity = self._targets.fetch(ref) or {}
            request = replace(request, body={**entity, **request.body})
        self._indexing.handle(request)
