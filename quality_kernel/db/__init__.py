"""Database layer: declarative base, engine setup and the record store gateway."""

from quality_kernel.db.base import Base, TrackedBase, UTCDateTime
from quality_kernel.db.engine import (
    create_session_factory,
    create_tables,
    drop_tables,
    make_engine,
    session_scope,
)
from quality_kernel.db.repository import RecordStore

__all__ = [
    "Base",
    "TrackedBase",
    "UTCDateTime",
    "RecordStore",
    "create_session_factory",
    "create_tables",
    "drop_tables",
    "make_engine",
    "session_scope",
]
