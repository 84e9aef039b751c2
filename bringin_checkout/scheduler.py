from typing import Optional

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from bringin_checkout.config import CLEANUP_INTERVAL_MINUTES
from bringin_checkout.sessions import SessionStore, session_store

logger = structlog.get_logger(__name__)


async def run_session_cleanup(store: SessionStore = session_store, handler=None) -> int:
    """Drop sessions that expired more than the retention period ago. Runs on the event loop."""
    try:
        cleaned = store.cleanup_expired_sessions()
        if handler is not None:
            handler.prune_locks()
        logger.info("session_cleanup_completed", cleaned=cleaned)
        return cleaned
    except Exception as e:
        logger.error("session_cleanup_crashed", error=str(e), exc_info=True)
        return 0


def start_scheduler(
    environment: str = "production",
    store: SessionStore = session_store,
    handler=None,
) -> AsyncIOScheduler:
    """
    Start the cleanup job on the running event loop.

    Must be called from inside the loop (FastAPI startup). In the testing
    environment the scheduler is returned without being started.
    """
    scheduler = AsyncIOScheduler(timezone="UTC")

    if environment == "testing":
        logger.info("scheduler_skipped", reason="testing_environment")
        return scheduler

    scheduler.add_job(
        run_session_cleanup,
        trigger=IntervalTrigger(minutes=CLEANUP_INTERVAL_MINUTES),
        kwargs={"store": store, "handler": handler},
        id="session_cleanup",
        name="Expired Checkout Session Cleanup",
        replace_existing=True,
    )
    scheduler.start()
    logger.info("scheduler_started", job="session_cleanup", interval_minutes=CLEANUP_INTERVAL_MINUTES)

    return scheduler


def stop_scheduler(scheduler: Optional[AsyncIOScheduler]):
    if scheduler and scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("scheduler_stopped")
