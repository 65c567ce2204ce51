"""
APScheduler job runner for periodic finance email ingestion.
"""

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from finance_ingest.config import settings
from finance_ingest.core.logging import get_logger

log = get_logger(__name__)

# Global scheduler instance
_scheduler: BackgroundScheduler | None = None


def ingest_emails_job():
    """Scheduled job: one ingestion pass over the default folder."""
    from finance_ingest.processors.ingest import FinanceIngestProcessor

    log.info("scheduled_job_starting", job="finance_email_ingest")
    try:
        result = FinanceIngestProcessor().process(
            max_messages=settings.ingest_default_max_messages,
            folder=settings.ingest_default_folder,
        )
        log.info(
            "scheduled_job_complete",
            job="finance_email_ingest",
            failed=len(result.failures),
            **result.counters(),
        )
    except Exception as e:
        log.error("scheduled_job_error", job="finance_email_ingest", error=str(e))


def start_scheduler(interval_minutes: int | None = None) -> BackgroundScheduler:
    """
    Start the background ingestion scheduler.

    Args:
        interval_minutes: Minutes between runs (default: settings.scheduler_interval_minutes)

    Returns:
        The scheduler instance
    """
    global _scheduler

    if _scheduler is not None:
        log.warning("scheduler_already_running")
        return _scheduler

    interval_minutes = interval_minutes or settings.scheduler_interval_minutes
    _scheduler = BackgroundScheduler()
    _scheduler.add_job(
        ingest_emails_job,
        trigger=IntervalTrigger(minutes=interval_minutes),
        id="finance_email_ingest",
        name="Ingest finance emails from Microsoft 365",
        replace_existing=True,
        max_instances=1,
    )

    _scheduler.start()
    log.info("scheduler_started", interval_minutes=interval_minutes)

    return _scheduler


def stop_scheduler():
    """Stop the background scheduler."""
    global _scheduler

    if _scheduler is not None:
        _scheduler.shutdown(wait=False)
        _scheduler = None
        log.info("scheduler_stopped")


def get_scheduler() -> BackgroundScheduler | None:
    """Get the current scheduler instance."""
    return _scheduler


def run_now():
    """Manually trigger the ingestion job."""
    ingest_emails_job()
