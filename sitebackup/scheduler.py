"""
APScheduler configuration for running backups without an external cron.

Manages:
- Scheduled backup runs of every class (SCHEDULE_BACKUP_CRON)
- Scheduled retention cleanup of every class (SCHEDULE_CLEANUP_CRON)
"""

import logging

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.executors.pool import ThreadPoolExecutor

from sitebackup.models import BackupClass
from sitebackup.backup.executor import run_backup
from sitebackup.backup.retention import enforce_retention_policies


logger = logging.getLogger(__name__)


def init_scheduler(config) -> BlockingScheduler:
    """
    Create a scheduler with the backup and cleanup jobs.

    A single worker thread plus max_instances=1 keeps runs serialized.

    Args:
        config: Config instance

    Returns:
        Configured (not yet started) BlockingScheduler

    Raises:
        ValueError: If a cron expression is invalid
    """
    executors = {
        'default': ThreadPoolExecutor(max_workers=1)
    }

    job_defaults = {
        'coalesce': True,  # Combine multiple pending instances into one
        'max_instances': 1,  # Only one instance of a job at a time
        'misfire_grace_time': 300  # 5 minutes grace period for misfires
    }

    scheduler = BlockingScheduler(
        executors=executors,
        job_defaults=job_defaults,
        timezone=config.SCHEDULER_TIMEZONE
    )

    scheduler.add_job(
        func=_execute_backup_wrapper,
        args=[config],
        trigger=CronTrigger.from_crontab(config.SCHEDULE_BACKUP_CRON, timezone=config.SCHEDULER_TIMEZONE),
        id='backup_all',
        name='Backup: all classes',
        replace_existing=True
    )

    scheduler.add_job(
        func=_execute_cleanup_wrapper,
        args=[config],
        trigger=CronTrigger.from_crontab(config.SCHEDULE_CLEANUP_CRON, timezone=config.SCHEDULER_TIMEZONE),
        id='retention_cleanup',
        name='Retention Cleanup',
        replace_existing=True
    )

    return scheduler


def start_scheduler(scheduler: BlockingScheduler):
    """Start the scheduler in the foreground until interrupted."""
    for job in scheduler.get_jobs():
        logger.info(f"Scheduled {job.id}: {job.name} ({job.trigger})")

    try:
        scheduler.start()
    except (KeyboardInterrupt, SystemExit):
        logger.info("Scheduler stopped")


def _execute_backup_wrapper(config):
    """Run a scheduled backup; failures are logged, never raised into APScheduler."""
    try:
        artifacts = run_backup(config, list(BackupClass))
        logger.info(f"Scheduled backup stored: {', '.join(a.storage_path for a in artifacts)}")
    except Exception as e:
        logger.error(f"Scheduled backup failed: {e}")


def _execute_cleanup_wrapper(config):
    """Run scheduled retention; failures are logged, never raised into APScheduler."""
    try:
        reports = enforce_retention_policies(config, list(BackupClass))
        for report in reports:
            if report.error:
                logger.error(f"[{report.backup_class.value}] Retention failed: {report.error}")
            elif not report.ok:
                logger.error(
                    f"[{report.backup_class.value}] Retention left {len(report.failed)} "
                    f"failed deletion(s): {', '.join(sorted(report.failed))}"
                )
    except Exception as e:
        logger.error(f"Scheduled retention cleanup failed: {e}")
