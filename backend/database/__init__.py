"""
Database Layer - Public API

Organization:
    - base.py: Declarative base, engine and session factories
    - models/: SQLAlchemy table definitions
    - portfolios.py: Portfolio, asset and transaction operations
    - emails.py: Incoming email and processed-email archive operations
    - review.py: Review queue operations
"""

from .base import (
    Base,
    create_db_engine,
    create_session_factory,
    get_session_factory,
    init_db,
    session_scope,
)

__all__ = [
    "Base",
    "create_db_engine",
    "create_session_factory",
    "get_session_factory",
    "init_db",
    "session_scope",
]
