"""
APScheduler configuration for dumpvault.

Runs the backup batch on the settings' cron expression, in the foreground.
"""

import logging

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.cron import CronTrigger

from dumpvault.models import ConfigurationError, Settings
from dumpvault.backup.executor import BackupExecutor
from dumpvault.backup.storage import S3Storage

logger = logging.getLogger(__name__)

# Global scheduler instance
scheduler = None

BACKUP_JOB_ID = 'backup_batch'


def run_scheduled_backup(settings: Settings, storage: S3Storage):
    """Job body: one full backup batch."""
    BackupExecutor(settings, storage).run_backup()


def init_scheduler(settings: Settings, storage: S3Storage):
    """
    Initialize APScheduler with the backup batch job.

    Args:
        settings: Loaded settings (schedule_cron, timezone)
        storage: Gateway to the object store

    Raises:
        ConfigurationError: If the cron expression or timezone is invalid
    """
    global scheduler

    if scheduler is not None:
        return scheduler

    try:
        trigger = CronTrigger.from_crontab(settings.schedule_cron, timezone=settings.timezone)
    except (ValueError, LookupError) as e:
        raise ConfigurationError(f"Invalid schedule_cron {settings.schedule_cron!r}: {e}")

    job_defaults = {
        'coalesce': True,  # Combine multiple pending instances into one
        'max_instances': 1,  # Only one batch at a time
        'misfire_grace_time': 300  # 5 minutes grace period for misfires
    }

    scheduler = BlockingScheduler(
        job_defaults=job_defaults,
        timezone=settings.timezone
    )

    scheduler.add_job(
        func=run_scheduled_backup,
        args=[settings, storage],
        trigger=trigger,
        id=BACKUP_JOB_ID,
        name='Backup batch',
        replace_existing=True
    )

    logger.info(f"Scheduled backup batch ({settings.schedule_cron}, {settings.timezone})")
    return scheduler


def start_scheduler():
    """
    Start the scheduler; blocks until it is shut down.
    """
    if scheduler is None:
        raise RuntimeError("Scheduler not initialized. Call init_scheduler() first.")

    logger.info("Scheduler starting, press Ctrl+C to exit")
    try:
        scheduler.start()
    except (KeyboardInterrupt, SystemExit):
        logger.info("Scheduler interrupted")
        stop_scheduler()


def stop_scheduler():
    """Stop the scheduler."""
    global scheduler

    if scheduler and scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
    scheduler = None
