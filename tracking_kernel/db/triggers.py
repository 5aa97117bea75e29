"""
Module: tracking_kernel.db.triggers
Responsibility: Installing, removing and verifying database-level
    immutability triggers (Layer 2 of 2).  This is the database-level
    complement to the ORM listeners in db/immutability.py.
Architecture position: Kernel > DB.  MUST NOT import from models/,
    services/, selectors/, or domain/.

Invariants enforced:
    - transition_events rows: no UPDATE, no DELETE, ever.
    - items.code: never changes once generated.

Failure modes:
    - The backend raises (IntegrityError / OperationalError / InternalError
      depending on driver) when a trigger fires.
    - ValueError for a backend with no trigger definitions.

Even if the ORM layer is bypassed (raw SQL, bulk operations, direct
database access), these triggers keep the event log append-only.
"""

from sqlalchemy import text
from sqlalchemy.engine import Connection, Engine

ALL_TRIGGER_NAMES = (
    "trg_transition_event_immutability_update",
    "trg_transition_event_immutability_delete",
    "trg_item_code_immutability_update",
)

_SQLITE_INSTALL = (
    """
    CREATE TRIGGER IF NOT EXISTS trg_transition_event_immutability_update
    BEFORE UPDATE ON transition_events
    BEGIN
        SELECT RAISE(ABORT, 'IMMUTABILITY_VIOLATION: transition events cannot be modified');
    END
    """,
    """
    CREATE TRIGGER IF NOT EXISTS trg_transition_event_immutability_delete
    BEFORE DELETE ON transition_events
    BEGIN
        SELECT RAISE(ABORT, 'IMMUTABILITY_VIOLATION: transition events cannot be deleted');
    END
    """,
    """
    CREATE TRIGGER IF NOT EXISTS trg_item_code_immutability_update
    BEFORE UPDATE OF code ON items
    WHEN NEW.code IS NOT OLD.code
    BEGIN
        SELECT RAISE(ABORT, 'IMMUTABILITY_VIOLATION: item code cannot be changed');
    END
    """,
)

_SQLITE_DROP = tuple(
    f"DROP TRIGGER IF EXISTS {name}" for name in ALL_TRIGGER_NAMES
)

_POSTGRES_INSTALL = (
    """
    CREATE OR REPLACE FUNCTION prevent_transition_event_mutation()
    RETURNS TRIGGER AS $$
    BEGIN
        RAISE EXCEPTION 'IMMUTABILITY_VIOLATION: transition events cannot be %', lower(TG_OP);
    END;
    $$ LANGUAGE plpgsql
    """,
    "DROP TRIGGER IF EXISTS trg_transition_event_immutability_update ON transition_events",
    """
    CREATE TRIGGER trg_transition_event_immutability_update
    BEFORE UPDATE ON transition_events
    FOR EACH ROW EXECUTE FUNCTION prevent_transition_event_mutation()
    """,
    "DROP TRIGGER IF EXISTS trg_transition_event_immutability_delete ON transition_events",
    """
    CREATE TRIGGER trg_transition_event_immutability_delete
    BEFORE DELETE ON transition_events
    FOR EACH ROW EXECUTE FUNCTION prevent_transition_event_mutation()
    """,
    """
    CREATE OR REPLACE FUNCTION prevent_item_code_change()
    RETURNS TRIGGER AS $$
    BEGIN
        IF NEW.code IS DISTINCT FROM OLD.code THEN
            RAISE EXCEPTION 'IMMUTABILITY_VIOLATION: item code cannot be changed';
        END IF;
        RETURN NEW;
    END;
    $$ LANGUAGE plpgsql
    """,
    "DROP TRIGGER IF EXISTS trg_item_code_immutability_update ON items",
    """
    CREATE TRIGGER trg_item_code_immutability_update
    BEFORE UPDATE ON items
    FOR EACH ROW EXECUTE FUNCTION prevent_item_code_change()
    """,
)

_POSTGRES_DROP = (
    "DROP TRIGGER IF EXISTS trg_transition_event_immutability_update ON transition_events",
    "DROP TRIGGER IF EXISTS trg_transition_event_immutability_delete ON transition_events",
    "DROP TRIGGER IF EXISTS trg_item_code_immutability_update ON items",
    "DROP FUNCTION IF EXISTS prevent_transition_event_mutation()",
    "DROP FUNCTION IF EXISTS prevent_item_code_change()",
)

_STATEMENTS = {
    "sqlite": (_SQLITE_INSTALL, _SQLITE_DROP),
    "postgresql": (_POSTGRES_INSTALL, _POSTGRES_DROP),
}


def _statements_for(dialect_name: str) -> tuple[tuple[str, ...], tuple[str, ...]]:
    try:
        return _STATEMENTS[dialect_name]
    except KeyError:
        raise ValueError(f"No immutability triggers defined for backend '{dialect_name}'")


def install_triggers_on(connection: Connection) -> None:
    """Install all triggers using an existing connection (caller's transaction)."""
    install, _ = _statements_for(connection.dialect.name)
    for statement in install:
        connection.execute(text(statement))


def uninstall_triggers_on(connection: Connection) -> None:
    """Drop all triggers using an existing connection (caller's transaction)."""
    _, drop = _statements_for(connection.dialect.name)
    for statement in drop:
        connection.execute(text(statement))


def install_immutability_triggers(engine: Engine) -> None:
    """Install all immutability triggers in their own transaction."""
    with engine.begin() as conn:
        install_triggers_on(conn)


def uninstall_immutability_triggers(engine: Engine) -> None:
    """Remove all immutability triggers. FOR TESTS AND TEARDOWN ONLY."""
    with engine.begin() as conn:
        uninstall_triggers_on(conn)


def installed_trigger_names(engine: Engine) -> set[str]:
    """Return the names of kernel triggers currently installed."""
    with engine.connect() as conn:
        if conn.dialect.name == "sqlite":
            rows = conn.execute(
                text("SELECT name FROM sqlite_master WHERE type = 'trigger'")
            )
        else:
            rows = conn.execute(
                text("SELECT tgname FROM pg_trigger WHERE NOT tgisinternal")
            )
        return {row[0] for row in rows} & set(ALL_TRIGGER_NAMES)


def verify_triggers_installed(engine: Engine) -> bool:
    """True iff every kernel trigger is installed."""
    return installed_trigger_names(engine) == set(ALL_TRIGGER_NAMES)
