"""
Module: quality_kernel.db.engine
Responsibility: SQLAlchemy engine creation, session factory construction, and
    transactional scope utilities.
Architecture position: Kernel > DB.  May import from db/base.py.  MUST NOT
    import from services/ or outer layers (create_tables imports models/ so
    that Base.metadata sees every table).

Invariants enforced:
    - No module-level engine or session factory.  The application factory
      (or a test fixture) builds them once and injects them.
    - SQLite connections may be shared across threads
      (``check_same_thread=False``); in-memory SQLite uses a StaticPool so
      every session sees the same database.

Failure modes:
    - sqlalchemy.exc.ArgumentError on a malformed database URL.
"""

from collections.abc import Generator
from contextlib import contextmanager
from typing import Any

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from quality_kernel.logging_config import get_logger

logger = get_logger("db.engine")


def make_engine(
    database_url: str,
    echo: bool = False,
    pool_pre_ping: bool = True,
    **engine_kwargs: Any,
) -> Engine:
    """
    Create a SQLAlchemy engine for ``database_url``.

    Args:
        database_url: Any SQLAlchemy URL (``sqlite:///quality.db``,
            ``sqlite://`` for in-memory, ``postgresql://...``).
        echo: If True, log all SQL statements.
        pool_pre_ping: If True, test connections before use.
        **engine_kwargs: Passed through to ``create_engine``.

    Returns:
        SQLAlchemy Engine instance.
    """
    url = make_url(database_url)
    kwargs: dict[str, Any] = {"echo": echo, "pool_pre_ping": pool_pre_ping}

    if url.get_backend_name() == "sqlite":
        connect_args = dict(engine_kwargs.pop("connect_args", {}))
        connect_args.setdefault("check_same_thread", False)
        kwargs["connect_args"] = connect_args
        if url.database in (None, "", ":memory:"):
            kwargs["poolclass"] = StaticPool

    kwargs.update(engine_kwargs)
    engine = create_engine(url, **kwargs)

    logger.info(
        "engine_initialized",
        extra={"dialect": engine.dialect.name, "echo": echo},
    )
    return engine


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    """Session factory used by services.  Objects are not expired on commit."""
    return sessionmaker(bind=engine, expire_on_commit=False)


@contextmanager
def session_scope(
    session_factory: sessionmaker[Session],
) -> Generator[Session, None, None]:
    """
    Provide a session for one unit of work.

    Services own their commits; this scope rolls back anything left
    uncommitted when the block raises and always closes the session.

    Usage:
        with session_scope(factory) as session:
            NCRService(session, clock, config).create(draft, actor="j.doe")
    """
    session = session_factory()
    try:
        yield session
    except Exception:
        session.rollback()
        logger.warning("transaction_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def create_tables(engine: Engine) -> None:
    """Create every table known to the ORM models."""
    from quality_kernel.db.base import Base
    import quality_kernel.models  # noqa: F401

    Base.metadata.create_all(engine)


def drop_tables(engine: Engine) -> None:
    """Drop all tables. Use with caution - primarily for testing."""
    from quality_kernel.db.base import Base
    import quality_kernel.models  # noqa: F401

    Base.metadata.drop_all(engine)
