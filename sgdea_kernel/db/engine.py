"""
Module: sgdea_kernel.db.engine
Responsibility: one process-wide engine and session factory for the
    workflow core, plus the ``session_scope`` unit of work used by
    command-line tooling.
Architecture position: Kernel > DB.  Imports models only inside
    create_tables() so the metadata is complete.

Invariants enforced:
    - PostgreSQL runs at READ COMMITTED; definition rows are additionally
      locked with SELECT ... FOR UPDATE when an instance starts.  SQLite
      (tests, local tooling) ignores FOR UPDATE, so the revision columns
      are what refuse lost updates there.
    - SQLite connections enforce foreign keys.
    - Sessions keep attribute state after commit so records can be
      converted to DTOs without another round trip.

Failure modes:
    - RuntimeError from any accessor called before init_engine_from_url().
"""

from contextlib import contextmanager
from typing import Any, Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker

from sgdea_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

_engine: Engine | None = None
_SessionFactory: sessionmaker[Session] | None = None

# Pool settings for server backends; SQLite uses SQLAlchemy's defaults.
SERVER_POOL_OPTIONS: dict[str, Any] = {
    "pool_size": 10,
    "max_overflow": 10,
    "pool_pre_ping": True,
    "pool_timeout": 30,
    "pool_recycle": 1800,
}


def _sqlite_pragmas(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def init_engine_from_url(database_url: str, echo: bool = False, **pool_options: Any) -> Engine:
    """
    Build the engine and session factory for ``database_url``.

    ``pool_options`` override SERVER_POOL_OPTIONS and are ignored for
    SQLite.  Calling again replaces the previous engine without disposing
    it; use reset_engine() for that.
    """
    global _engine, _SessionFactory

    url = make_url(database_url)
    backend = url.get_backend_name()

    if backend == "sqlite":
        engine = create_engine(url, echo=echo, connect_args={"check_same_thread": False})
        event.listen(engine, "connect", _sqlite_pragmas)
    else:
        engine = create_engine(
            url,
            echo=echo,
            isolation_level="READ COMMITTED",
            **{**SERVER_POOL_OPTIONS, **pool_options},
        )

    _engine = engine
    _SessionFactory = sessionmaker(bind=engine, expire_on_commit=False)

    configure_logging()
    logger.info(
        "engine_initialized",
        extra={"backend": backend, "database": url.database, "echo": echo},
    )
    return engine


def _require_factory() -> sessionmaker[Session]:
    if _SessionFactory is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _SessionFactory


def get_engine() -> Engine:
    if _engine is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    """Factory handed to the orchestrator and the audit sink."""
    return _require_factory()


def get_session() -> Session:
    return _require_factory()()


@contextmanager
def session_scope() -> Iterator[Session]:
    """
    Commit on normal exit, roll back and re-raise on error, always close.

        with session_scope() as session:
            purge_completed_instances(session, days)
    """
    session = get_session()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        logger.warning("transaction_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def create_tables() -> None:
    """Create every table registered on Base.metadata."""
    from sgdea_kernel.db.base import Base
    from sgdea_kernel.models import import_all_models

    import_all_models()
    Base.metadata.create_all(get_engine())


def reset_engine() -> None:
    """Dispose the engine and forget the session factory."""
    global _engine, _SessionFactory

    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionFactory = None
