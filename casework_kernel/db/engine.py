"""
Module: casework_kernel.db.engine
Responsibility: Owns the process-wide engine and session factory, and the
    ``session_scope`` unit of work used by callers that do not manage their
    own transactions.
Architecture position: Kernel > DB.  Imports db/base.py; create_tables()
    also imports the models package so every table is registered.

Backends:
    - PostgreSQL: QueuePool, READ COMMITTED.  Services take row locks
      (SELECT ... FOR UPDATE) and rely on unique constraints where they need
      more than that.
    - SQLite (tests, local runs): pysqlite's own transaction handling is
      switched off and BEGIN is emitted on the ORM's ``begin`` event, so
      SAVEPOINTs nest correctly.  Foreign keys are switched on per
      connection.

Failure modes:
    - RuntimeError from any accessor before init_engine_from_url().
"""

import atexit
from contextlib import contextmanager
from typing import Any, Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool

from casework_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

_engine: Engine | None = None
_SessionFactory: sessionmaker[Session] | None = None


def _sqlite_engine(url: str, echo: bool, timeout: int) -> Engine:
    engine = create_engine(
        url,
        echo=echo,
        connect_args={"check_same_thread": False, "timeout": timeout},
    )

    @event.listens_for(engine, "connect")
    def _autocommit_driver(dbapi_connection, _record):
        dbapi_connection.isolation_level = None
        dbapi_connection.execute("PRAGMA foreign_keys=ON")

    @event.listens_for(engine, "begin")
    def _explicit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return engine


def _pooled_engine(url: str, echo: bool, **pool: Any) -> Engine:
    return create_engine(
        url,
        echo=echo,
        poolclass=QueuePool,
        isolation_level="READ COMMITTED",
        **pool,
    )


def init_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 20,
    max_overflow: int = 10,
    pool_pre_ping: bool = True,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
) -> Engine:
    """
    Create the engine and session factory for ``database_url``.

    Calling it again replaces both; call reset_engine() first to release
    the previous pool.  Pool arguments apply to PostgreSQL only, except
    ``pool_timeout``, which doubles as SQLite's busy timeout.
    """
    global _engine, _SessionFactory

    backend = make_url(database_url).get_backend_name()
    if backend == "sqlite":
        _engine = _sqlite_engine(database_url, echo, pool_timeout)
    else:
        _engine = _pooled_engine(
            database_url,
            echo,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_pre_ping=pool_pre_ping,
            pool_timeout=pool_timeout,
            pool_recycle=pool_recycle,
        )
    # Snapshots built from ORM rows stay readable after commit.
    _SessionFactory = sessionmaker(bind=_engine, expire_on_commit=False)

    configure_logging()
    logger.info("engine_initialized", extra={"dialect": backend, "echo": echo})
    return _engine


def _factory() -> sessionmaker[Session]:
    if _SessionFactory is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _SessionFactory


def get_engine() -> Engine:
    if _engine is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _engine


def get_session() -> Session:
    """A new session from the shared factory."""
    return _factory()()


def get_session_factory() -> sessionmaker[Session]:
    """The shared factory.  Threads each open their own session from it."""
    return _factory()


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """
    One unit of work: commit on success, roll back and re-raise on error.

        with session_scope() as session:
            CostCenterLedger(session).allocate(project_id, "Civil", Decimal("60000"))
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


def _metadata():
    from casework_kernel.db.base import Base
    import casework_kernel.models  # noqa: F401  registers all tables

    return Base.metadata


def create_tables() -> None:
    _metadata().create_all(get_engine())


def drop_tables() -> None:
    """Drop every casework table.  Tests and local resets only."""
    _metadata().drop_all(get_engine())


def reset_engine() -> None:
    """Dispose the pool and forget the engine and factory."""
    global _engine, _SessionFactory
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionFactory = None


atexit.register(reset_engine)


def is_postgres() -> bool:
    return _engine is not None and _engine.dialect.name == "postgresql"
