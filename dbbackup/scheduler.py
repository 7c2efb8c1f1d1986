"""
APScheduler configuration for periodic backup runs.

Each scheduled run builds a fresh orchestrator, so no state is shared
between runs. Only one run may be active at a time.
"""

import logging

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.cron import CronTrigger

from dbbackup.backup.executor import execute_backup_run
from dbbackup.errors import BackupError


logger = logging.getLogger(__name__)

JOB_ID = 'database_backup'


def create_scheduler(config, cron: str, reporter=None) -> BlockingScheduler:
    """
    Create a blocking scheduler running one backup per cron tick.

    Args:
        config: Config instance
        cron: Five-field crontab expression (UTC)
        reporter: Receives (message, level) status lines

    Raises:
        ValueError: If the cron expression is invalid
    """
    job_defaults = {
        'coalesce': True,  # Combine multiple pending instances into one
        'max_instances': 1,  # Only one backup run at a time
        'misfire_grace_time': 300  # 5 minutes grace period for misfires
    }

    scheduler = BlockingScheduler(job_defaults=job_defaults, timezone='UTC')

    scheduler.add_job(
        func=_execute_backup_wrapper,
        args=[config, reporter],
        trigger=CronTrigger.from_crontab(cron, timezone='UTC'),
        id=JOB_ID,
        name=f"Database backup ({cron})",
        replace_existing=True
    )

    return scheduler


def run_scheduler(config, cron: str, reporter=None):
    """Run backups on a cron schedule until interrupted."""
    scheduler = create_scheduler(config, cron, reporter)

    job = scheduler.get_job(JOB_ID)
    logger.info(f"Scheduler starting: {job.name}")

    try:
        scheduler.start()
    except (KeyboardInterrupt, SystemExit):
        logger.info("Scheduler stopped")


def _execute_backup_wrapper(config, reporter=None):
    """
    Run one backup inside the scheduler.

    Errors are logged so that a failed run does not stop later ones.
    """
    try:
        logger.info("Scheduler executing backup run")
        summary = execute_backup_run(config, reporter=reporter)
        logger.info(
            f"Scheduled backup finished: {len(summary.successes)} succeeded, "
            f"{len(summary.failures)} failed"
        )
        return summary
    except BackupError as e:
        logger.error(f"Scheduled backup aborted: {e}")
    except Exception:
        logger.exception("Scheduled backup crashed")
    return None
