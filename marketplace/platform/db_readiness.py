"""Database schema readiness checks for the connection flow tables."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable

from sqlalchemy import inspect
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

# Tables the connect, checkout and review routes cannot work without.
REQUIRED_CONNECTION_TABLES = (
    "users",
    "providers",
    "user_provider_connections",
    "payment_orders",
    "review_requests",
)


@dataclass(frozen=True)
class DBReadinessResult:
    """Result payload for DB schema readiness checks."""

    ready: bool
    missing_tables: list[str]
    checked_tables: list[str]


def check_required_tables(session: Session, required_tables: Iterable[str]) -> DBReadinessResult:
    """Check whether required tables exist (works on any dialect)."""
    checked = list(required_tables)
    try:
        existing = set(inspect(session.get_bind()).get_table_names())
    except SQLAlchemyError:
        logger.exception("Failed listing tables", extra={"tables": checked})
        raise

    missing = [name for name in checked if name not in existing]
    return DBReadinessResult(
        ready=len(missing) == 0,
        missing_tables=missing,
        checked_tables=checked,
    )
