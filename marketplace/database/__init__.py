"""Database session management."""

from marketplace.database.session import (
    build_engine,
    build_session_factory,
    get_db_session,
    init_db,
)

__all__ = [
    "build_engine",
    "build_session_factory",
    "get_db_session",
    "init_db",
]
