"""Periodic cleanup of expired soft-deleted documents."""

import logging

from apscheduler.schedulers.background import BackgroundScheduler

from rag_engine.sync.documents import SYNC_ERRORS, DocumentSyncAPI

logger = logging.getLogger(__name__)


def run_cleanup_job(api: DocumentSyncAPI) -> int:
    """Scheduler job: hard-delete expired records. Errors are logged, not raised."""
    try:
        removed = api.cleanup_expired()
    except SYNC_ERRORS as e:
        logger.error("sync.cleanup: registry cleanup failed: %s", e)
        return 0
    logger.info("sync.cleanup: removed %d expired documents", removed)
    return removed


def schedule_cleanup(
    api: DocumentSyncAPI, hours: float = 24.0, scheduler: BackgroundScheduler | None = None
) -> BackgroundScheduler:
    """Add an interval cleanup job and start the scheduler if it is not running."""
    scheduler = scheduler or BackgroundScheduler()
    scheduler.add_job(
        run_cleanup_job,
        trigger="interval",
        hours=hours,
        args=[api],
        id="sync_cleanup",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    if not scheduler.running:
        scheduler.start()
    logger.info("sync.cleanup: scheduled every %.1fh", hours)
    return scheduler
