"""
sgdea_services.indexing -- Entity Indexing Hook.

Responsibility:
    Keep the search index in step with governed archive entities.  On
    create/update the entity body is (re)indexed; on delete only the
    identifier is sent.  Indexing runs inline (``sync``) or is handed to a
    named work queue (``deferred``) that retries failed jobs.

Architecture position:
    Services layer.  Called by the host application's entity lifecycle
    and by ``EffectDispatcher`` for index refreshes produced by workflow
    transitions.  ``SearchIndex`` and ``WorkQueue`` are narrow interfaces
    to external systems.

Invariants enforced:
    - Only kinds listed in ``governed_kinds`` are ever indexed.
    - Index failures are logged and never raised to the caller.
    - Deferred jobs are delivered at least once: a failing job is put
      back on the queue until it has been tried ``max_attempts`` times.
    - Both index operations are idempotent, so redelivery is harmless.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field, replace
from typing import Any, Iterable, Protocol, runtime_checkable

from sgdea_kernel.domain.effects import IndexOperation, IndexRequest
from sgdea_kernel.domain.workflow import EntityKind
from sgdea_kernel.logging_config import get_logger

logger = get_logger("services.indexing")

MODE_SYNC = "sync"
MODE_DEFERRED = "deferred"


@runtime_checkable
class SearchIndex(Protocol):
    """External full-text index."""

    def index_entity(self, index_name: str, entity_id: str, body: dict[str, Any]) -> None:
        ...

    def delete_from_index(self, index_name: str, entity_id: str) -> None:
        ...


class InMemorySearchIndex:
    """Dict-backed index: ``documents[index_name][entity_id] = body``."""

    def __init__(self) -> None:
        self.documents: dict[str, dict[str, dict[str, Any]]] = {}

    def index_entity(self, index_name: str, entity_id: str, body: dict[str, Any]) -> None:
        self.documents.setdefault(index_name, {})[entity_id] = dict(body)

    def delete_from_index(self, index_name: str, entity_id: str) -> None:
        self.documents.get(index_name, {}).pop(entity_id, None)

    def get(self, index_name: str, entity_id: str) -> dict[str, Any] | None:
        return self.documents.get(index_name, {}).get(entity_id)


@dataclass(frozen=True)
class IndexJob:
    """One queued index operation."""

    index_name: str
    operation: IndexOperation
    entity_id: str
    body: dict[str, Any] = field(default_factory=dict)
    attempts: int = 0


@runtime_checkable
class WorkQueue(Protocol):
    def enqueue(self, queue_name: str, job: IndexJob) -> None:
        ...

    def drain(self, queue_name: str, index: SearchIndex, max_attempts: int = 3) -> int:
        ...


class InMemoryWorkQueue:
    """Named FIFO queues held in process, drained explicitly."""

    def __init__(self) -> None:
        self._queues: dict[str, deque[IndexJob]] = {}
        self.dead_letters: list[IndexJob] = []

    def enqueue(self, queue_name: str, job: IndexJob) -> None:
        self._queues.setdefault(queue_name, deque()).append(job)

    def pending(self, queue_name: str) -> int:
        return len(self._queues.get(queue_name, ()))

    def drain(self, queue_name: str, index: SearchIndex, max_attempts: int = 3) -> int:
        """
        Run queued jobs until the queue is empty; return how many succeeded.

        A failed job goes back to the end of the queue with its attempt
        count raised.  After ``max_attempts`` failures it moves to
        ``dead_letters``.
        """
        queue = self._queues.get(queue_name)
        done = 0
        while queue:
            job = queue.popleft()
            try:
                _apply(index, job)
            except Exception:
                job = replace(job, attempts=job.attempts + 1)
                if job.attempts >= max_attempts:
                    self.dead_letters.append(job)
                    logger.error(
                        "index_job_dead_lettered",
                        extra={
                            "index_name": job.index_name,
                            "entity_id": job.entity_id,
                            "attempts": job.attempts,
                        },
                        exc_info=True,
                    )
                else:
                    queue.append(job)
                    logger.warning(
                        "index_job_retry",
                        extra={
                            "index_name": job.index_name,
                            "entity_id": job.entity_id,
                            "attempts": job.attempts,
                        },
                        exc_info=True,
                    )
                continue
            done += 1
        return done


def _apply(index: SearchIndex, job: IndexJob) -> None:
    if job.operation is IndexOperation.DELETED:
        index.delete_from_index(job.index_name, job.entity_id)
    else:
        index.index_entity(job.index_name, job.entity_id, job.body)


class EntityIndexingHook:
    """
    Lifecycle hook for governed entities.

    Contract:
        ``on_created``/``on_updated`` index the given body,
        ``on_deleted`` removes the identifier.  Calls for kinds outside
        ``governed_kinds`` are ignored.  Never raises.
        In deferred mode ``drain`` runs the queued jobs, giving each up
        after ``max_attempts`` failures.
    """

    def __init__(
        self,
        index: SearchIndex,
        mode: str = MODE_SYNC,
        queue: WorkQueue | None = None,
        queue_name: str = "indexing",
        index_prefix: str = "sgdea",
        governed_kinds: Iterable[EntityKind | str] = (EntityKind.DOCUMENT, EntityKind.CASE_FILE),
        max_attempts: int = 3,
    ):
        if mode not in (MODE_SYNC, MODE_DEFERRED):
            raise ValueError(f"unknown indexing mode {mode!r}")
        if mode == MODE_DEFERRED and queue is None:
            raise ValueError("deferred indexing needs a work queue")
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._index = index
        self._mode = mode
        self._queue = queue
        self._queue_name = queue_name
        self._index_prefix = index_prefix
        self._governed = frozenset(EntityKind(k) for k in governed_kinds)
        self._max_attempts = max_attempts

    @property
    def mode(self) -> str:
        return self._mode

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    def index_name(self, kind: EntityKind) -> str:
        return f"{self._index_prefix}_{EntityKind(kind).value}"

    def governs(self, kind: EntityKind | str) -> bool:
        return EntityKind(kind) in self._governed

    def on_created(self, kind: EntityKind, entity_id: str, body: dict[str, Any]) -> None:
        self._submit(IndexOperation.CREATED, kind, entity_id, body)

    def on_updated(self, kind: EntityKind, entity_id: str, body: dict[str, Any]) -> None:
        self._submit(IndexOperation.UPDATED, kind, entity_id, body)

    def on_deleted(self, kind: EntityKind, entity_id: str) -> None:
        self._submit(IndexOperation.DELETED, kind, entity_id, {})

    def handle(self, request: IndexRequest) -> None:
        """Entry point for index effects produced by workflow services."""
        self._submit(request.operation, request.kind, request.entity_id, request.body)

    def drain(self) -> int:
        """Run the queued jobs of this hook; deferred mode only."""
        if self._mode != MODE_DEFERRED:
            return 0
        return self._queue.drain(self._queue_name, self._index, self._max_attempts)

    def _submit(
        self,
        operation: IndexOperation,
        kind: EntityKind,
        entity_id: str,
        body: dict[str, Any],
    ) -> None:
        kind = EntityKind(kind)
        if kind not in self._governed:
            return

        job = IndexJob(
            index_name=self.index_name(kind),
            operation=operation,
            entity_id=str(entity_id),
            body={} if operation is IndexOperation.DELETED else dict(body),
        )
        try:
            if self._mode == MODE_DEFERRED:
                self._queue.enqueue(self._queue_name, job)
                logger.debug(
                    "index_job_enqueued",
                    extra={"index_name": job.index_name, "entity_id": job.entity_id},
                )
            else:
                _apply(self._index, job)
        except Exception:
            logger.error(
                "index_operation_failed",
                extra={
                    "index_name": job.index_name,
                    "entity_id": job.entity_id,
                    "operation": operation.value,
                    "mode": self._mode,
                },
                exc_info=True,
            )
