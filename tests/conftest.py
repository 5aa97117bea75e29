"""
Pytest fixtures for the tracking kernel test suite.

Provides:
- A file-backed SQLite database per test (real commits, real concurrency)
- Session factory, transition engine and deterministic clock fixtures
- Actor and item factories
- Structured log capture

Environment Variables:
- TRACKING_TEST_DATABASE_URL: run against another database (e.g. PostgreSQL)
  instead of a temporary SQLite file.  Tables are dropped at teardown.
"""

import json
import logging
import os
from contextlib import contextmanager
from io import StringIO
from uuid import UUID, uuid4

import pytest

from tracking_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_engine,
    get_session_factory,
    init_engine_from_url,
    is_sqlite,
    reset_engine,
    session_scope,
)
from tracking_kernel.db.immutability import (
    register_immutability_listeners,
    unregister_immutability_listeners,
)
from tracking_kernel.db.triggers import (
    install_immutability_triggers,
    uninstall_immutability_triggers,
)
from tracking_kernel.domain.actor import ActorContext
from tracking_kernel.domain.clock import DeterministicClock
from tracking_kernel.domain.dtos import ItemRecord
from tracking_kernel.domain.lifecycle import ItemStatus, Role
from tracking_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from tracking_kernel.selectors.history_selector import HistorySelector
from tracking_kernel.services.item_store import ItemStore
from tracking_kernel.services.transition_engine import TransitionEngine


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
    Capture tracking_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, transition_engine, ...):
            transition_engine.scan(...)
            logs = captured_logs()
            assert any(r["message"] == "transition_committed" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("tracking_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow_locks: mark test as potentially waiting for DB locks"
    )
    config.addinivalue_line(
        "markers", "postgres: mark test as requiring PostgreSQL"
    )


# =============================================================================
# Database fixtures
# =============================================================================


def get_database_url(tmp_path) -> str:
    """Database URL from the environment, or a fresh SQLite file under tmp_path."""
    url = os.environ.get("TRACKING_TEST_DATABASE_URL")
    if url:
        return url
    return f"sqlite:///{tmp_path / 'tracking_test.db'}"


@pytest.fixture
def db_engine(tmp_path):
    """Initialize the engine, create tables and triggers, register listeners."""
    url = get_database_url(tmp_path)
    engine = init_engine_from_url(url, sqlite_busy_timeout=30.0)
    if not is_sqlite():
        drop_tables()
    create_tables(install_triggers=True)
    register_immutability_listeners()
    yield engine
    if not is_sqlite():
        drop_tables()
    reset_engine()


@pytest.fixture
def session_factory(db_engine):
    """Session factory bound to the test database (each call is a new session)."""
    return get_session_factory()


@pytest.fixture
def session(session_factory):
    """A plain session for direct reads in assertions."""
    sess = session_factory()
    try:
        yield sess
    finally:
        sess.rollback()
        sess.close()


@contextmanager
def _disabled_immutability():
    engine = get_engine()
    unregister_immutability_listeners()
    uninstall_immutability_triggers(engine)
    try:
        yield
    finally:
        register_immutability_listeners()
        install_immutability_triggers(engine)


@pytest.fixture
def disabled_immutability(db_engine):
    """
    Context manager factory that disables both ORM and database-level
    immutability enforcement.

    Use this for tests that need to simulate tampering with history::

        with disabled_immutability():
            sess.execute(text("UPDATE transition_events ..."))
    """
    return _disabled_immutability


# =============================================================================
# Clock, actor and engine fixtures
# =============================================================================


@pytest.fixture
def deterministic_clock():
    """Provide a deterministic clock for testing."""
    return DeterministicClock()


@pytest.fixture
def make_actor():
    """Factory fixture for ActorContext values."""

    def _make(role: Role | str, is_active: bool = True, actor_id: UUID | None = None) -> ActorContext:
        return ActorContext(id=actor_id or uuid4(), role=role, is_active=is_active)

    return _make


@pytest.fixture
def admin(make_actor) -> ActorContext:
    return make_actor(Role.ADMIN)


@pytest.fixture
def operator(make_actor) -> ActorContext:
    return make_actor(Role.OPERATOR)


@pytest.fixture
def qc(make_actor) -> ActorContext:
    return make_actor(Role.QC)


@pytest.fixture
def viewer(make_actor) -> ActorContext:
    return make_actor(Role.VIEWER)


@pytest.fixture
def transition_engine(session_factory, deterministic_clock) -> TransitionEngine:
    return TransitionEngine(session_factory, clock=deterministic_clock)


@pytest.fixture
def create_item(session_factory, deterministic_clock):
    """
    Factory fixture: commit a new item, optionally walked to ``status``.

    Walking uses an admin actor through the engine, so the history is a
    valid chain.
    """
    walk_actor = ActorContext(id=uuid4(), role=Role.ADMIN)
    engine = TransitionEngine(session_factory, clock=deterministic_clock)
    paths = {
        ItemStatus.CREATED: (),
        ItemStatus.STORED: (ItemStatus.STORED,),
        ItemStatus.VERIFIED: (ItemStatus.STORED, ItemStatus.VERIFIED),
        ItemStatus.DISPATCHED: (ItemStatus.STORED, ItemStatus.VERIFIED, ItemStatus.DISPATCHED),
        ItemStatus.CLOSED: (ItemStatus.STORED, ItemStatus.CLOSED),
    }

    def _create(label: str = "Test pallet", status: ItemStatus = ItemStatus.CREATED) -> ItemRecord:
        with session_scope(session_factory) as sess:
            item = ItemStore(sess, deterministic_clock).create(label)
            record = ItemRecord.from_model(item)
        for step in paths[status]:
            record = engine.update_status(record.id, step, walk_actor).item
        return record

    return _create


@pytest.fixture
def load_item(session_factory):
    """Read the committed state of an item and its events in a fresh session."""

    def _load(item_id: UUID):
        with session_scope(session_factory, read_only=True) as sess:
            selector = HistorySelector(sess)
            return selector.get_item(item_id), selector.events_for_item(item_id)

    return _load
