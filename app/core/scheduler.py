"""APScheduler configuration for background refresh jobs."""

import logging

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from app.core.config import settings
from app.services.maintenance import maintenance_gate

logger = logging.getLogger(__name__)

# Global scheduler instance
scheduler: BackgroundScheduler | None = None


def refresh_maintenance_gate_job():
    """
    Job to re-read the maintenance flag.
    Keeps every worker process within one poll interval of the stored value.
    """
    try:
        current = maintenance_gate.refresh()
        if current is not None and current.enabled:
            logger.debug("Maintenance mode is enabled")
    except Exception as e:
        logger.exception(f"Error refreshing maintenance gate: {e}")


def init_scheduler() -> BackgroundScheduler:
    """Initialize and configure the scheduler."""
    global scheduler

    scheduler = BackgroundScheduler(
        timezone=settings.SCHEDULER_TIMEZONE,
        job_defaults={
            "coalesce": True,  # Combine missed runs
            "max_instances": 1,  # Only one instance of each job at a time
            "misfire_grace_time": settings.MAINTENANCE_POLL_SECONDS,
        }
    )

    scheduler.add_job(
        refresh_maintenance_gate_job,
        trigger=IntervalTrigger(seconds=settings.MAINTENANCE_POLL_SECONDS),
        id="refresh_maintenance_gate",
        name="Refresh maintenance gate",
        replace_existing=True,
    )

    logger.info(
        f"Scheduler initialized with maintenance refresh every {settings.MAINTENANCE_POLL_SECONDS}s"
    )
    return scheduler


def start_scheduler():
    """Start the scheduler."""
    global scheduler
    if scheduler is None:
        scheduler = init_scheduler()

    if not scheduler.running:
        scheduler.start()
        logger.info("Scheduler started")


def stop_scheduler():
    """Stop the scheduler gracefully."""
    global scheduler
    if scheduler and scheduler.running:
        scheduler.shutdown(wait=True)
        logger.info("Scheduler stopped")
