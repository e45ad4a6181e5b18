"""
Pytest fixtures for the workflow core test suite.

Provides:
- A file-backed SQLite database per test (real commits, so several
  sessions can race on the same rows)
- Deterministic clock, actors and definition/instance factories
- Structured log capture

Environment Variables:
- none; every test builds its own database under tmp_path.
"""

import json
import logging
from io import StringIO
from typing import Generator
from uuid import UUID, uuid4

import pytest
from sqlalchemy.orm import Session

from sgdea_config.schema import WorkflowCoreConfig
from sgdea_kernel.db.engine import (
    create_tables,
    get_session,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from sgdea_kernel.domain.actor import Actor, VerificationToken
from sgdea_kernel.domain.clock import DeterministicClock
from sgdea_kernel.domain.workflow import EntityKind, EntityRef, Step
from sgdea_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from sgdea_services.definition_service import WorkflowDefinitionService
from sgdea_services.instance_service import WorkflowInstanceService


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture sgdea logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, definition_service):
            definition_service.create(...)
            logs = captured_logs()
            assert any(r["message"] == "definition_created" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("sgdea")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Database
# =============================================================================


@pytest.fixture
def db_engine(tmp_path):
    """Fresh SQLite database file with all tables, disposed after the test."""
    engine = init_engine_from_url(f"sqlite:///{tmp_path / 'sgdea_test.db'}")
    create_tables()
    yield engine
    reset_engine()


@pytest.fixture
def session_factory(db_engine):
    return get_session_factory()


@pytest.fixture
def session(db_engine) -> Generator[Session, None, None]:
    """Session performing real commits; the database file is discarded afterwards."""
    sess = get_session()
    try:
        yield sess
    finally:
        sess.rollback()
        sess.close()


# =============================================================================
# Time, actors, configuration
# =============================================================================


@pytest.fixture
def deterministic_clock() -> DeterministicClock:
    return DeterministicClock()


@pytest.fixture
def config() -> WorkflowCoreConfig:
    return WorkflowCoreConfig()


def make_actor(*roles: str, capabilities=(), actor_id: UUID | None = None,
               second_factor: VerificationToken | None = None) -> Actor:
    return Actor(
        actor_id=actor_id or uuid4(),
        roles=frozenset(roles),
        capabilities=frozenset(capabilities),
        second_factor=second_factor,
    )


@pytest.fixture
def actor_factory():
    """Factory: ``actor_factory("admin", capabilities=(...))``."""
    return make_actor


@pytest.fixture
def creator() -> Actor:
    """Non-admin user allowed to create workflows."""
    return make_actor("archivist", capabilities=("crear_workflows",))


@pytest.fixture
def admin() -> Actor:
    return make_actor("admin")


@pytest.fixture
def super_admin() -> Actor:
    return make_actor("super-admin")


@pytest.fixture
def outsider() -> Actor:
    """Authenticated user with no workflow permissions."""
    return make_actor("clerk")


# =============================================================================
# Services and factories
# =============================================================================


@pytest.fixture
def definition_service(session, deterministic_clock) -> WorkflowDefinitionService:
    return WorkflowDefinitionService(session, deterministic_clock)


@pytest.fixture
def instance_service(session, deterministic_clock) -> WorkflowInstanceService:
    return WorkflowInstanceService(session, deterministic_clock)


TWO_STEPS = (Step("Review"), Step("Approve"))


@pytest.fixture
def create_definition(definition_service, creator, session):
    """Factory: persist and commit a definition, return its snapshot."""

    def _create(
        steps=TWO_STEPS,
        entity_kind=EntityKind.DOCUMENT,
        name="Document approval",
        creator_id=None,
        configuration=None,
        active=True,
    ):
        result = definition_service.create(
            name=name,
            entity_kind=entity_kind,
            steps=steps,
            creator_id=creator_id or creator.actor_id,
            configuration=configuration,
            active=active,
        )
        session.commit()
        return result.value

    return _create


@pytest.fixture
def document() -> EntityRef:
    return EntityRef(EntityKind.DOCUMENT, "1001")


@pytest.fixture
def start_instance(instance_service, creator, session, document):
    """Factory: start and commit an instance, return its snapshot."""

    def _start(definition, target=None, actor_id=None, data=None):
        result = instance_service.start(
            definition.definition_id,
            target or document,
            actor_id or creator.actor_id,
            data,
        )
        session.commit()
        return result.value

    return _start
