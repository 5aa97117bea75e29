"""Database layer - engine, base classes, types, and immutability enforcement."""

from tracking_kernel.db.base import UUID, Base, UTCDateTime, UUIDString
from tracking_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_engine,
    get_session,
    get_session_factory,
    init_engine_from_settings,
    init_engine_from_url,
    is_sqlite,
    mark_read_only,
    reset_engine,
    session_scope,
)

__all__ = [
    "init_engine_from_url",
    "init_engine_from_settings",
    "get_engine",
    "get_session",
    "get_session_factory",
    "session_scope",
    "mark_read_only",
    "is_sqlite",
    "create_tables",
    "drop_tables",
    "reset_engine",
    "Base",
    "UUIDString",
    "UTCDateTime",
    "UUID",
]
