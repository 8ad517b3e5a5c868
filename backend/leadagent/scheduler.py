"""APScheduler configuration for the periodic agent run."""

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
import logging

from leadagent.config import settings
from leadagent.exceptions import TaskFetchError

logger = logging.getLogger(__name__)

# Create scheduler instance
scheduler = AsyncIOScheduler()


async def run_agent_tick():
    """
    Process one batch of pending tasks.
    Called by APScheduler.
    """
    from leadagent.database import AsyncSessionLocal
    from leadagent.services.task_engine import run_agent_batch

    try:
        async with AsyncSessionLocal() as db:
            summary = await run_agent_batch(db)

        if summary["processed"]:
            logger.info(f"Agent tick processed {summary['processed']} tasks")
    except TaskFetchError as e:
        logger.error(f"❌ Agent tick aborted: {e}")


def start_scheduler():
    """
    Initialize and start the APScheduler.

    Jobs:
    - Agent run: every AGENT_SCHEDULE_MINUTES minutes, never overlapping
    """
    if scheduler.running:
        logger.info("Scheduler already running")
        return

    scheduler.add_job(
        run_agent_tick,
        trigger=IntervalTrigger(minutes=settings.AGENT_SCHEDULE_MINUTES),
        id='agent_run',
        name='Agent Task Batch',
        replace_existing=True,
        max_instances=1,
        coalesce=True
    )
    logger.info(f"✅ Scheduled: Agent Task Batch (every {settings.AGENT_SCHEDULE_MINUTES} min)")

    scheduler.start()
    logger.info("✅ APScheduler started successfully!")

    for job in scheduler.get_jobs():
        logger.info(f"   • {job.name}: Next run at {job.next_run_time}")


def stop_scheduler():
    """Stop the scheduler gracefully."""
    if scheduler.running:
        scheduler.shutdown()
        logger.info("Scheduler stopped")
