"""
sgdea_services.audit_sink -- Where audit records go after commit.

Responsibility:
    ``AuditSink`` receives write-once ``AuditRecord`` effects.  The logging
    sink emits them on the ``sgdea.audit`` logger at the level matching
    their severity.  The database sink appends them to the
    ``audit_events`` hash chain in its own short transaction and can
    validate the chain afterwards.

Architecture position:
    Services layer.  Called only by ``EffectDispatcher``, after the
    mutation that produced the record has committed.

Invariants enforced:
    - seq is allocated from the locked counter row before the previous
      hash is read, so concurrent writers serialize on the counter.
    - hash = H(entity_type | entity_id | action | payload_hash | prev_hash).

Failure modes:
    - AuditChainBrokenError from ``validate_chain`` on any mismatch.
    - Database errors from ``record`` propagate to the dispatcher, which
      logs them; the originating mutation is already durable.
"""

from __future__ import annotations

import logging
from typing import Callable, Protocol, runtime_checkable

from sqlalchemy import select
from sqlalchemy.orm import Session

from sgdea_kernel.domain.effects import AuditRecord, Severity
from sgdea_kernel.exceptions import AuditChainBrokenError
from sgdea_kernel.logging_config import get_logger
from sgdea_kernel.models.audit_event import AuditEventModel
from sgdea_kernel.services.sequence_service import SequenceService
from sgdea_kernel.utils.hashing import hash_audit_event, hash_payload

audit_logger = get_logger("audit")
logger = get_logger("services.audit_sink")

_SEVERITY_LEVELS = {
    Severity.INFO: logging.INFO,
    Severity.WARNING: logging.WARNING,
    Severity.CRITICAL: logging.CRITICAL,
}


@runtime_checkable
class AuditSink(Protocol):
    def record(self, record: AuditRecord) -> None:
        ...


class LoggingAuditSink:
    """Writes each record as a structured log line on ``sgdea.audit``."""

    def record(self, record: AuditRecord) -> None:
        audit_logger.log(
            _SEVERITY_LEVELS[record.severity],
            "audit_record",
            extra={
                "entity_type": record.entity_type,
                "entity_id": str(record.entity_id),
                "action": record.action.value,
                "audit_actor_id": str(record.actor_id),
                "occurred_at": record.occurred_at.isoformat(),
                "changed_fields": sorted(record.changed_fields),
                "severity": record.severity.value,
                "details": record.details,
            },
        )


class DatabaseAuditSink:
    """
    Appends records to the persisted audit hash chain.

    Each ``record`` call opens a session from ``session_factory``, writes
    one row and commits.
    """

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    @staticmethod
    def _last_hash(session: Session) -> str | None:
        last = session.execute(
            select(AuditEventModel).order_by(AuditEventModel.seq.desc()).limit(1)
        ).scalar_one_or_none()
        return last.hash if last else None

    def record(self, record: AuditRecord) -> None:
        session = self._session_factory()
        try:
            seq = SequenceService(session).next_value(SequenceService.AUDIT_EVENT)
            prev_hash = self._last_hash(session)

            payload = record.to_payload()
            payload_hash = hash_payload(payload)
            event_hash = hash_audit_event(
                entity_type=record.entity_type,
                entity_id=str(record.entity_id),
                action=record.action.value,
                payload_hash=payload_hash,
                prev_hash=prev_hash,
            )
            session.add(
                AuditEventModel(
                    seq=seq,
                    entity_type=record.entity_type,
                    entity_id=record.entity_id,
                    action=record.action.value,
                    severity=record.severity.value,
                    actor_id=record.actor_id,
                    occurred_at=record.occurred_at,
                    payload=payload,
                    payload_hash=payload_hash,
                    prev_hash=prev_hash,
                    hash=event_hash,
                )
            )
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

        logger.debug(
            "audit_event_persisted",
            extra={"seq": seq, "entity_type": record.entity_type, "action": record.action.value},
        )

    def validate_chain(self) -> bool:
        """
        Recompute every hash and check every link.

        Raises:
            AuditChainBrokenError: at the first row that does not verify.
        """
        session = self._session_factory()
        try:
            events = session.execute(
                select(AuditEventModel).order_by(AuditEventModel.seq)
            ).scalars().all()

            expected_prev: str | None = None
            for event in events:
                if event.prev_hash != expected_prev:
                    logger.critical("audit_chain_broken", extra={"seq": event.seq})
                    raise AuditChainBrokenError(
                        event.seq, expected_prev or "None", event.prev_hash or "None",
                    )
                payload_hash = hash_payload(event.payload or {})
                if payload_hash != event.payload_hash:
                    logger.critical("audit_chain_broken", extra={"seq": event.seq})
                    raise AuditChainBrokenError(event.seq, payload_hash, event.payload_hash)
                expected_hash = hash_audit_event(
                    entity_type=event.entity_type,
                    entity_id=str(event.entity_id),
                    action=event.action,
                    payload_hash=event.payload_hash,
                    prev_hash=event.prev_hash,
                )
                if event.hash != expected_hash:
                    logger.critical("audit_chain_broken", extra={"seq": event.seq})
                    raise AuditChainBrokenError(event.seq, expected_hash, event.hash)
                expected_prev = event.hash

            last_seq = events[-1].seq if events else 0
            allocated = SequenceService(session).current_value(SequenceService.AUDIT_EVENT)
            if last_seq != allocated:
                logger.critical("audit_chain_truncated", extra={"seq": last_seq, "allocated": allocated})
                raise AuditChainBrokenError(allocated, f"seq {allocated}", f"seq {last_seq}")
        finally:
            session.close()

        logger.info("audit_chain_valid", extra={"event_count": len(events)})
        return True
