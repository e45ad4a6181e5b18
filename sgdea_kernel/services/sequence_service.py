"""
SequenceService -- gap-free counters for the persisted audit chain.

Each named counter is one row in ``sequence_counters``.  Allocation locks
that row (``SELECT ... FOR UPDATE`` on PostgreSQL), bumps it and flushes,
so two writers can never obtain the same ``seq``.  The new value only
becomes visible when the caller commits; a rollback gives it back.

The first allocation of a name inserts the row inside a savepoint.  If a
concurrent writer inserted it first, the unique constraint fires, the
savepoint is discarded and the now-existing row is locked instead.
"""

from sqlalchemy import BigInteger, String, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Mapped, Session, mapped_column

from sgdea_kernel.db.base import Base
from sgdea_kernel.logging_config import get_logger

logger = get_logger("services.sequence")


class SequenceCounter(Base):
    __tablename__ = "sequence_counters"

    name: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    current_value: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)


class SequenceService:
    AUDIT_EVENT = "audit_event"

    def __init__(self, session: Session):
        self._session = session

    def _lock(self, name: str) -> SequenceCounter | None:
        stmt = (
            select(SequenceCounter)
            .where(SequenceCounter.name == name)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return self._session.scalars(stmt).one_or_none()

    def _create(self, name: str) -> SequenceCounter:
        try:
            with self._session.begin_nested():
                counter = SequenceCounter(name=name, current_value=0)
                self._session.add(counter)
            return counter
        except IntegrityError:
            logger.debug("sequence_counter_created_concurrently", extra={"sequence_name": name})
            counter = self._lock(name)
            if counter is None:
                raise
            return counter

    def next_value(self, name: str) -> int:
        """Allocate and return the next value of ``name``; the first is 1."""
        counter = self._lock(name) or self._create(name)
        counter.current_value += 1
        self._session.flush()
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": name, "value": counter.current_value},
        )
        return counter.current_value

    def current_value(self, name: str) -> int:
        """Last allocated value of ``name``, 0 if nothing was allocated yet."""
        value = self._session.scalar(
            select(SequenceCounter.current_value).where(SequenceCounter.name == name)
        )
        return value or 0
