"""
Background jobs: daily performance snapshots and periodic currency refreshes.
"""

import logging
from datetime import date, datetime

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from last_update import CURRENCY
from models import db, User, CurrencyPair, PerformanceHistory

logger = logging.getLogger(__name__)

DAILY_JOB_ID = 'daily_performance_snapshots'
MARKET_JOB_ID = 'currency_rate_refresh'
STARTUP_JOB_ID = 'calculate_today_if_missing'


class SchedulerService:
    """Owns the APScheduler instance for one Flask app."""

    def __init__(self, app, performance_history, exchange_rates, last_updates):
        self.app = app
        self.performance_history = performance_history
        self.exchange_rates = exchange_rates
        self.last_updates = last_updates
        self.timezone = app.config.get('SCHEDULER_TIMEZONE', 'Europe/Dublin')
        self.refresh_minutes = app.config.get('MARKET_REFRESH_MINUTES', 30)
        self.scheduler = None

    @property
    def is_running(self):
        return self.scheduler is not None and self.scheduler.running

    def initialize(self):
        if self.is_running:
            logger.info('Scheduler service is already running')
            return

        logger.info('Initializing scheduler service...')
        self.scheduler = BackgroundScheduler(timezone=self.timezone)
        self.scheduler.add_job(
            self.calculate_daily_snapshots,
            CronTrigger(hour=23, minute=59, timezone=self.timezone),
            id=DAILY_JOB_ID, replace_existing=True, max_instances=1, misfire_grace_time=3600,
        )
        self.scheduler.add_job(
            self.refresh_currency_rates,
            IntervalTrigger(minutes=self.refresh_minutes),
            id=MARKET_JOB_ID, replace_existing=True, max_instances=1, coalesce=True,
        )
        # Runs once, as soon as the scheduler starts
        self.scheduler.add_job(
            self.calculate_today_if_missing,
            id=STARTUP_JOB_ID, replace_existing=True, max_instances=1,
        )
        self.scheduler.start()
        logger.info('Scheduler started (snapshots daily at 23:59 %s, currency refresh every %s min)',
                    self.timezone, self.refresh_minutes)

    def stop(self):
        if not self.is_running:
            logger.info('Scheduler service is not running')
            return
        self.scheduler.shutdown(wait=False)
        self.scheduler = None
        logger.info('Scheduler service stopped')

    def _run_for_users(self, user_ids, job):
        succeeded = failed = 0
        for user_id in user_ids:
            try:
                job(user_id)
                succeeded += 1
            except Exception:
                db.session.rollback()
                logger.exception('Scheduled job failed for user %s', user_id)
                failed += 1
        return succeeded, failed

    def calculate_daily_snapshots(self):
        """Store today's snapshot for every user."""
        with self.app.app_context():
            user_ids = [user_id for (user_id,) in db.session.query(User.id).all()]
            if not user_ids:
                logger.info('No users found for daily snapshot calculation')
                return {'successful': 0, 'failed': 0}

            logger.info('Starting daily performance snapshot calculation for %d users...', len(user_ids))
            succeeded, failed = self._run_for_users(user_ids, self.performance_history.calculate_today_snapshot)
            logger.info('Daily snapshot calculation completed: %d successful, %d failed', succeeded, failed)
            return {'successful': succeeded, 'failed': failed}

    def calculate_today_if_missing(self):
        with self.app.app_context():
            today = date.today()
            existing = {
                user_id for (user_id,) in
                db.session.query(PerformanceHistory.user_id).filter(PerformanceHistory.date == today).all()
            }
            missing = [user_id for (user_id,) in db.session.query(User.id).all() if user_id not in existing]
            if missing:
                logger.info('Calculating missing snapshots for %d users', len(missing))
                self._run_for_users(missing, self.performance_history.calculate_today_snapshot)

    def refresh_currency_rates(self):
        """Refresh every user's currency pairs once the cached rates are stale."""
        if not self.last_updates.needs_refresh(CURRENCY):
            logger.debug('Currency rates are fresh, skipping refresh')
            return

        with self.app.app_context():
            user_ids = [user_id for (user_id,) in db.session.query(CurrencyPair.user_id).distinct().all()]
            self._run_for_users(
                user_ids,
                lambda user_id: self.exchange_rates.update_all_currency_pairs(user_id, force_refresh=True)
            )

    def trigger_daily_calculation(self):
        logger.info('Manually triggering daily snapshot calculation...')
        return self.calculate_daily_snapshots()

    def get_status(self):
        next_run = None
        if self.is_running:
            job = self.scheduler.get_job(DAILY_JOB_ID)
            if job is not None and job.next_run_time is not None:
                next_run = job.next_run_time.isoformat()

        return {
            'isRunning': self.is_running,
            'tasks': len(self.scheduler.get_jobs()) if self.is_running else 0,
            'nextRun': next_run or f'11:59 PM {self.timezone} daily',
            'checkedAt': datetime.utcnow().isoformat()
        }
