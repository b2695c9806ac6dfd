# backend/database/base.py
"""
SQLAlchemy Base and Engine Configuration

Provides the declarative base for all models and engine/session factories.
Engines are built explicitly and session factories are passed into the
pipeline components; nothing connects at import time.

SAFETY: When TESTING=true, the default URL ONLY points at the test
database (trade_ingest_test).
"""

import logging
import os
from contextlib import contextmanager

from dotenv import load_dotenv
from sqlalchemy import URL, create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError, TimeoutError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import QueuePool

load_dotenv(override=False)

logger = logging.getLogger(__name__)

PRODUCTION_DB_NAME = "trade_ingest"
TEST_DB_NAME = os.getenv("POSTGRES_TEST_DB", "trade_ingest_test")

# Declarative base for all models
Base = declarative_base()

_default_session_factory = None


def get_database_url() -> URL | str:
    """Build the database URL from DATABASE_URL or the POSTGRES_* variables."""
    explicit = os.getenv("DATABASE_URL")
    if explicit:
        return explicit

    is_testing = os.getenv("TESTING", "").lower() in ("true", "1", "yes")
    db_name = os.getenv("POSTGRES_DB", PRODUCTION_DB_NAME)

    if is_testing and db_name == PRODUCTION_DB_NAME:
        db_name = TEST_DB_NAME
        logger.warning(
            f"TESTING=true but POSTGRES_DB was production. Forcing test database: {db_name}"
        )

    # URL.create keeps the password out of logs
    return URL.create(
        "postgresql",
        username=os.getenv("POSTGRES_USER", "ingest_user"),
        password=os.getenv("POSTGRES_PASSWORD", "ingest_password"),
        host=os.getenv("POSTGRES_HOST", "localhost"),
        port=int(os.getenv("POSTGRES_PORT", "5432")),
        database=db_name,
    )


def create_db_engine(url: URL | str | None = None, **kwargs) -> Engine:
    """Create an engine. PostgreSQL URLs get a pre-pinged connection pool."""
    url = url or get_database_url()
    backend = url.get_backend_name() if isinstance(url, URL) else str(url).split(":", 1)[0]

    if backend.startswith("postgresql"):
        options = {
            "poolclass": QueuePool,
            "pool_size": 10,
            "max_overflow": 0,
            "pool_pre_ping": True,
            "hide_parameters": True,
        }
        options.update(kwargs)
        return create_engine(url, **options)

    return create_engine(url, **kwargs)


def create_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)


def get_session_factory() -> sessionmaker:
    """Lazily build the process-wide session factory from the environment."""
    global _default_session_factory

    if _default_session_factory is None:
        _default_session_factory = create_session_factory(create_db_engine())
    return _default_session_factory


def init_db(engine: Engine) -> None:
    """Create all tables that do not exist yet."""
    from database import models  # noqa: F401  (registers tables on Base)

    Base.metadata.create_all(engine)


@contextmanager
def session_scope(session_factory: sessionmaker):
    """Open a session, roll back on any error, always close.

    The caller commits explicitly.
    """
    try:
        db: Session = session_factory()
    except TimeoutError:
        logger.error("Connection pool exhausted (all connections in use)")
        raise
    except OperationalError as e:
        logger.error(f"Database connection failed: {e}")
        raise

    try:
        yield db
    except Exception as e:
        logger.error(f"Session error: {e}")
        db.rollback()
        raise
    finally:
        db.close()
