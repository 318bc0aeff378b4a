"""
Engine and session construction.

``build_engine`` chooses pool and isolation settings from the URL:

* ``postgresql://`` (production, psycopg2): QueuePool with pre-ping and
  recycle, READ COMMITTED.  Unit linking, release and settlement are
  conditional UPDATEs, so they need the row locks of that level and never
  serializable reads.
* ``sqlite://`` in memory: a single StaticPool connection shared by every
  session, otherwise each session would see an empty database.
* ``sqlite:///path``: the default file pool, with a busy timeout so a second
  writer waits for the lock instead of failing at once.

Sessions never expire objects on commit; services convert models to DTOs
after committing.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from billing_kernel.db.base import Base
from billing_kernel.logging_config import get_logger

logger = get_logger("db.engine")


@dataclass(frozen=True)
class PoolSettings:
    """Connection pool sizing for server databases; SQLite uses only ``timeout``."""

    size: int = 20
    max_overflow: int = 10
    timeout: int = 30
    recycle: int = 1800


def _is_sqlite(database_url: str) -> bool:
    return database_url.startswith("sqlite")


def _is_sqlite_memory(database_url: str) -> bool:
    return ":memory:" in database_url or database_url.rstrip("/") == "sqlite:"


def build_engine(
    database_url: str,
    *,
    echo: bool = False,
    pool: PoolSettings = PoolSettings(),
) -> Engine:
    """Create an engine for ``database_url``; e.g. ``postgresql://user@host/billing``."""
    if _is_sqlite(database_url):
        engine = create_engine(
            database_url,
            echo=echo,
            connect_args={"check_same_thread": False, "timeout": pool.timeout},
            poolclass=StaticPool if _is_sqlite_memory(database_url) else None,
        )
    else:
        engine = create_engine(
            database_url,
            echo=echo,
            poolclass=QueuePool,
            pool_size=pool.size,
            max_overflow=pool.max_overflow,
            pool_pre_ping=True,
            pool_timeout=pool.timeout,
            pool_recycle=pool.recycle,
            isolation_level="READ COMMITTED",
        )

    logger.info(
        "engine_built",
        extra={"dialect": engine.dialect.name, "pool": type(engine.pool).__name__},
    )
    return engine


def session_factory(engine: Engine) -> sessionmaker[Session]:
    """Sessions bound to ``engine`` that keep loaded state across commits."""
    return sessionmaker(bind=engine, expire_on_commit=False)


@contextmanager
def session_scope(factory: sessionmaker[Session]) -> Iterator[Session]:
    """
    One session around several service calls.

    Commits whatever the calls left pending on a clean exit; on an exception
    rolls back, logs ``session_rolled_back`` and re-raises.  The session is
    always closed.
    """
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        logger.warning("session_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def create_tables(engine: Engine) -> None:
    """Create the catalog, unit and claim tables."""
    import billing_kernel.models  # noqa: F401  (registers the tables on Base.metadata)

    Base.metadata.create_all(engine)


def drop_tables(engine: Engine) -> None:
    import billing_kernel.models  # noqa: F401

    Base.metadata.drop_all(engine)
