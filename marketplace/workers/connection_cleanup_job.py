"""
Connection cleanup job: cron job for hard-deleting lapsed connection records.

Runs daily to remove entitlement records whose access ended long ago.
A record is only eligible once:
- it has an expiry (lifetime grants are never purged)
- it expired at least CONNECTION_RETENTION_DAYS ago
- its review prompt was already created (review_requested is set)

Records that never had their review prompt created are kept, so a user
returning months later still gets asked for a review on first view.

CONSTRAINTS:
- Respects CONNECTION_CLEANUP_DRY_RUN for safe rollout (default: true)
- Review placeholders and submitted reviews are never touched
- Purged rows publish no `deleted` connection events: the job runs outside
  the app process, and every purged record is long expired and already
  flagged, so no open page is showing it as active

Run as a daily cron job:
    python -m marketplace.workers.connection_cleanup_job
"""

import logging
import sys
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from marketplace.config.settings import Settings
from marketplace.database.session import build_engine, build_session_factory
from marketplace.models.connection import UserProviderConnection

logger = logging.getLogger(__name__)


@dataclass
class CleanupStats:
    """Statistics from a connection cleanup run."""

    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    retention_days: int = 0
    records_eligible: int = 0
    records_purged: int = 0
    dry_run: bool = True
    errors: list = field(default_factory=list)
    completed_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        duration = None
        if self.completed_at:
            duration = (self.completed_at - self.started_at).total_seconds()

        return {
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "retention_days": self.retention_days,
            "records_eligible": self.records_eligible,
            "records_purged": self.records_purged,
            "dry_run": self.dry_run,
            "error_count": len(self.errors),
            "duration_seconds": duration,
        }


def _eligible_filter(stmt, cutoff: datetime):
    return (
        stmt.where(UserProviderConnection.expires_at.isnot(None))
        .where(UserProviderConnection.expires_at <= cutoff)
        .where(UserProviderConnection.review_requested.is_(True))
    )


def retention_cutoff(retention_days: int, now: Optional[datetime] = None) -> datetime:
    if retention_days < 1:
        raise ValueError("retention_days must be at least 1")
    now = now or datetime.now(timezone.utc)
    return now - timedelta(days=retention_days)


def count_eligible_connections(
    db_session: Session,
    retention_days: int,
    now: Optional[datetime] = None,
) -> int:
    """Count expired, already-reviewed records past the retention window."""
    cutoff = retention_cutoff(retention_days, now)
    stmt = _eligible_filter(select(func.count()).select_from(UserProviderConnection), cutoff)
    return db_session.execute(stmt).scalar() or 0


def run_cleanup(
    db_session: Session,
    retention_days: int,
    dry_run: bool = True,
    now: Optional[datetime] = None,
) -> CleanupStats:
    """
    Execute connection cleanup.

    Args:
        db_session: Database session
        retention_days: Days after expiry a record is kept
        dry_run: If True, only count without deleting
        now: Reference time (defaults to the current UTC time)

    Returns:
        CleanupStats with results
    """
    now = now or datetime.now(timezone.utc)
    stats = CleanupStats(retention_days=retention_days, dry_run=dry_run)

    try:
        stats.records_eligible = count_eligible_connections(db_session, retention_days, now)

        if stats.records_eligible == 0:
            logger.info("No connection records eligible for cleanup")
            stats.completed_at = datetime.now(timezone.utc)
            return stats

        logger.info(
            "Connection records eligible for cleanup",
            extra={"count": stats.records_eligible, "dry_run": dry_run},
        )

        if dry_run:
            logger.info("[DRY RUN] Would purge %d connection records", stats.records_eligible)
            stats.completed_at = datetime.now(timezone.utc)
            return stats

        cutoff = retention_cutoff(retention_days, now)
        result = db_session.execute(
            _eligible_filter(delete(UserProviderConnection), cutoff)
            .execution_options(synchronize_session=False)
        )
        db_session.commit()
        stats.records_purged = result.rowcount or 0

        logger.info(
            "Connection cleanup completed",
            extra={"eligible": stats.records_eligible, "purged": stats.records_purged},
        )
        stats.completed_at = datetime.now(timezone.utc)
        return stats

    except Exception as exc:
        db_session.rollback()
        error_msg = f"Connection cleanup failed: {exc}"
        stats.errors.append(error_msg)
        stats.completed_at = datetime.now(timezone.utc)
        logger.error(error_msg, exc_info=True)
        raise


def main():
    """Entry point for connection cleanup job."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    settings = Settings.from_env()
    logger.info(
        "Connection Cleanup Job starting",
        extra={
            "dry_run": settings.connection_cleanup_dry_run,
            "retention_days": settings.connection_retention_days,
        },
    )

    session = build_session_factory(build_engine(settings.database_url))()
    try:
        stats = run_cleanup(
            session,
            retention_days=settings.connection_retention_days,
            dry_run=settings.connection_cleanup_dry_run,
        )
        logger.info("Connection Cleanup Job stats", extra=stats.to_dict())
    except Exception as exc:
        logger.error(
            "Connection Cleanup Job failed",
            extra={"error": str(exc)},
            exc_info=True,
        )
        sys.exit(1)
    finally:
        session.close()

    logger.info("Connection Cleanup Job finished")


if __name__ == "__main__":
    main()
