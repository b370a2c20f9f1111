import logging
from datetime import date

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from ovm.services.archive_service import ArchiveManager
from ovm.services.errors import ArchiveError
from ovm.services.media_store import MONTH_NAMES

logger = logging.getLogger(__name__)


def month_label(today: date, months_back: int) -> str:
    """'Month YYYY' for the month ``months_back`` before ``today``."""
    index = today.year * 12 + (today.month - 1) - months_back
    year, month = divmod(index, 12)
    return f"{MONTH_NAMES[month]} {year}"


class SchedulerService:
    """Service for scheduled background tasks"""

    def __init__(self):
        self.scheduler = BackgroundScheduler()
        self.app = None

    def init_app(self, app):
        self.app = app
        self.setup_jobs()

    def setup_jobs(self):
        """Configure all scheduled jobs"""
        # Archive an old month on the 1st of each month at 3:00 AM
        self.scheduler.add_job(
            func=self.archive_old_month,
            trigger=CronTrigger(day=1, hour=3, minute=0),
            id='monthly_archive',
            name='Archive job media for an old month',
            replace_existing=True
        )
        logger.info("Scheduled job: Monthly archive at 3:00 AM on the 1st")

    def archive_old_month(self, today=None):
        """Archive the month ARCHIVE_AFTER_MONTHS back. Never deletes; cleanup stays manual."""
        if self.app is None:
            logger.error("Monthly archive skipped: scheduler not bound to an app")
            return None
        with self.app.app_context():
            months_back = self.app.config.get('ARCHIVE_AFTER_MONTHS', 3)
            month = month_label(today or date.today(), months_back)
            manager = ArchiveManager.from_config()
            if not (manager.jobs_root / month).is_dir():
                logger.info(f"Monthly archive: nothing to archive for {month}")
                return None
            try:
                result = manager.archive_month(month)
                logger.info(f"Monthly archive created for {month}: {result['archive_name']}")
                return result
            except ArchiveError as e:
                logger.error(f"Monthly archive of {month} failed: {e.message}")
                return None

    def start(self):
        """Start the scheduler"""
        if not self.scheduler.running:
            self.scheduler.start()
            logger.info("Scheduler service started")

    def shutdown(self):
        """Shutdown the scheduler gracefully"""
        if self.scheduler.running:
            self.scheduler.shutdown()
            logger.info("Scheduler service stopped")


scheduler_service = SchedulerService()
