"""
Module: backoffice_kernel.db.engine
Responsibility: builds the one process-wide SQLAlchemy engine, hands out
    sessions bound to it, and wraps units of work in commit-or-rollback
    scopes.
Architecture position: Kernel > DB.  May import from db/base.py.
    MUST NOT import from models/, services/, domain/, or outer layers.

Invariants enforced:
    - PostgreSQL sessions run at READ COMMITTED with explicit row locks
      (SELECT ... FOR UPDATE) wherever a document is read-then-written.
      lock_timeout and statement_timeout are set per connection so a stuck
      lock surfaces as a timeout rather than a hang.
    - SQLite (development and tests) opens every transaction with
      BEGIN IMMEDIATE, so writers serialize on the database lock and the
      pysqlite driver never defers BEGIN.  The connect timeout bounds the
      wait for that lock.

Failure modes:
    - RuntimeError from the accessors until init_engine_from_url() has run.
    - OperationalError when the store is unreachable or a lock wait times out
      (translated by the workflow engine, see db/errors.py).
"""

import atexit
from contextlib import contextmanager
from typing import Any, Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import URL, Engine, make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool

from backoffice_kernel.logging_config import get_logger

logger = get_logger("db.engine")

# Pool settings for server databases; SQLite ignores them.
POOL_DEFAULTS: dict[str, Any] = {
    "pool_size": 20,
    "max_overflow": 10,
    "pool_pre_ping": True,
    "pool_timeout": 30,
    "pool_recycle": 1800,
}

_engine: Engine | None = None
_SessionFactory: sessionmaker[Session] | None = None


def _sqlite_engine(url: URL, echo: bool, lock_timeout_ms: int) -> Engine:
    engine = create_engine(
        url,
        echo=echo,
        connect_args={"check_same_thread": False, "timeout": lock_timeout_ms / 1000},
    )

    @event.listens_for(engine, "connect")
    def _take_over_transactions(dbapi_connection, _record):
        # pysqlite would otherwise issue its own deferred BEGIN
        dbapi_connection.isolation_level = None
        dbapi_connection.execute("PRAGMA foreign_keys=ON")

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


def _server_engine(
    url: URL, echo: bool, lock_timeout_ms: int, statement_timeout_ms: int, pool: dict[str, Any]
) -> Engine:
    timeouts = f"-c lock_timeout={lock_timeout_ms} -c statement_timeout={statement_timeout_ms}"
    return create_engine(
        url,
        echo=echo,
        poolclass=QueuePool,
        isolation_level="READ COMMITTED",
        connect_args={"options": timeouts},
        **pool,
    )


def build_engine(
    database_url: str,
    echo: bool = False,
    lock_timeout_ms: int = 5000,
    statement_timeout_ms: int = 30000,
    **pool_options: Any,
) -> Engine:
    """
    Create (but do not register) an engine for the given URL.

    ``pool_options`` override POOL_DEFAULTS (pool_size, max_overflow,
    pool_pre_ping, pool_timeout, pool_recycle) and only apply to
    PostgreSQL.
    """
    unknown = set(pool_options) - set(POOL_DEFAULTS)
    if unknown:
        raise TypeError(f"Unknown pool options: {sorted(unknown)}")

    url = make_url(database_url)
    if url.get_backend_name() == "sqlite":
        return _sqlite_engine(url, echo, lock_timeout_ms)
    return _server_engine(
        url, echo, lock_timeout_ms, statement_timeout_ms, {**POOL_DEFAULTS, **pool_options}
    )


def init_engine_from_url(database_url: str, **kwargs: Any) -> Engine:
    """
    Build the engine, register it with a session factory and return it.

    Calling again replaces the previous engine without disposing it.
    Keyword arguments go to build_engine().
    """
    global _engine, _SessionFactory

    engine = build_engine(database_url, **kwargs)
    _engine = engine
    _SessionFactory = sessionmaker(bind=engine, expire_on_commit=False)

    logger.info(
        "engine_initialized",
        extra={
            "dialect": engine.dialect.name,
            "database": engine.url.database,
            "lock_timeout_ms": kwargs.get("lock_timeout_ms", 5000),
        },
    )
    return engine


def _require_initialized() -> None:
    if _engine is None or _SessionFactory is None:
        raise RuntimeError("No database engine; call init_engine_from_url() at start-up")


def get_engine() -> Engine:
    _require_initialized()
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    """The shared sessionmaker; every thread or unit of work opens its own session."""
    _require_initialized()
    return _SessionFactory


@contextmanager
def session_scope(factory: sessionmaker[Session] | None = None) -> Iterator[Session]:
    """
    One unit of work: commit when the block finishes, roll back and re-raise
    when it raises.  The session is closed either way.

        with session_scope() as session:
            session.add(document)
    """
    session = (factory or get_session_factory())()
    try:
        yield session
        session.commit()
    except Exception as exc:
        session.rollback()
        logger.debug("transaction_rolled_back", extra={"exc_type": type(exc).__name__})
        raise
    finally:
        session.close()


def create_tables(engine: Engine | None = None) -> None:
    """
    Create every table registered on ``Base.metadata``.

    Only tables whose models have been imported exist in the metadata;
    ``backoffice_modules._orm_registry.create_all_tables()`` imports them all.
    """
    from backoffice_kernel.db.base import Base

    Base.metadata.create_all(engine or get_engine())


def drop_tables(engine: Engine | None = None) -> None:
    """Drop every registered table.  Test and development use only."""
    from backoffice_kernel.db.base import Base

    Base.metadata.drop_all(engine or get_engine())


def reset_engine() -> None:
    """Dispose the registered engine and forget it."""
    global _engine, _SessionFactory

    engine, _engine, _SessionFactory = _engine, None, None
    if engine is not None:
        engine.dispose()


@atexit.register
def _dispose_on_exit() -> None:
    if _engine is not None:
        _engine.dispose()
