"""
Module: quality_kernel.db.base
Responsibility: Declarative base classes for all SQLAlchemy ORM models.  Provides
    the opaque string primary key convention, timezone-safe timestamps and the
    TrackedBase mixin for audit columns.
Architecture position: Kernel > DB.  This is the lowest-level import target
    within the kernel.  ALL model files import from here.  This module MUST NOT
    import from models/, services/, domain/, or outer layers.

Invariants enforced:
    - Opaque ids: every model gets a uuid4 text primary key.
    - Timestamps round-trip as timezone-aware UTC datetimes on every backend
      (SQLite drops tzinfo, UTCDateTime restores it).

Concurrency:
    Versioned models declare their own integer ``version`` column and pass it
    as ``version_id_col`` in ``__mapper_args__``.  SQLAlchemy then issues
    ``UPDATE ... WHERE id = :id AND version = :expected`` and raises
    StaleDataError when no row matched.
"""

from datetime import UTC, datetime
from typing import ClassVar
from uuid import uuid4

from sqlalchemy import DateTime, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


def new_id() -> str:
    return str(uuid4())


class UTCDateTime(TypeDecorator):
    """
    Timestamp stored as UTC and always loaded timezone-aware.

    Guarantees:
        - process_bind_param: aware datetimes are converted to UTC; naive
          datetimes are assumed to already be UTC.
        - process_result_value: naive values read back (SQLite) get UTC tzinfo.
        - cache_ok=True enables SQLAlchemy statement caching.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


class Base(DeclarativeBase):
    """
    Declarative base for all SQLAlchemy models.

    Guarantees:
        - id is always a uuid4-generated string.
        - datetime maps to UTCDateTime -- always timezone-aware.
    """

    type_annotation_map: ClassVar[dict] = {
        datetime: UTCDateTime(),
    }

    id: Mapped[str] = mapped_column(
        String(64),
        primary_key=True,
        default=new_id,
    )


class TrackedBase(Base):
    """
    Abstract base with audit timestamp and actor tracking.

    Timestamps are written by the services from the injected clock so that
    tests stay deterministic; they are never left to the database server.
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(nullable=False)
    updated_at: Mapped[datetime] = mapped_column(nullable=False)
    created_by: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    updated_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
