"""
Background scheduler for automated rewards tasks.

Handles:
- Points expiry sweep (daily at 00:15 UTC)
- Voucher expiry sweep (daily at 00:30 UTC)
- Rolling spend / tier refresh (daily at 01:00 UTC)

The same work is available as ``flask rewards ...`` commands for cron.
"""
import os
import atexit
import logging

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

logger = logging.getLogger(__name__)

# Global scheduler instance
_scheduler = None
_flask_app = None  # Flask app reference for job context


def init_scheduler(app):
    """
    Initialize the background scheduler.

    Only runs in production or when ENABLE_SCHEDULER=true, and never in
    testing. Only one process per host starts it.
    """
    global _scheduler, _flask_app

    _flask_app = app

    if app.config.get('TESTING'):
        logger.debug('[Scheduler] Disabled in testing mode')
        return

    if not (os.getenv('FLASK_ENV') == 'production' or os.getenv('ENABLE_SCHEDULER') == 'true'):
        logger.info('[Scheduler] Disabled (set FLASK_ENV=production or ENABLE_SCHEDULER=true)')
        return

    # Gunicorn workers share the environment of the first process
    if os.getenv('SCHEDULER_RUNNING') == 'true':
        logger.info('[Scheduler] Already running in another process')
        return

    _scheduler = BackgroundScheduler(
        timezone='UTC',
        job_defaults={
            'coalesce': True,  # Combine missed runs
            'max_instances': 1,  # Prevent concurrent runs
            'misfire_grace_time': 3600  # 1 hour grace period
        }
    )

    _scheduler.add_job(
        run_points_expiry,
        trigger=CronTrigger(hour=0, minute=15),
        id='points_expiry',
        name='Expire due points batches',
        replace_existing=True
    )

    _scheduler.add_job(
        run_voucher_expiry,
        trigger=CronTrigger(hour=0, minute=30),
        id='voucher_expiry',
        name='Expire overdue vouchers',
        replace_existing=True
    )

    _scheduler.add_job(
        run_spend_refresh,
        trigger=CronTrigger(hour=1, minute=0),
        id='spend_refresh',
        name='Refresh rolling spend and tiers',
        replace_existing=True
    )

    _scheduler.start()
    os.environ['SCHEDULER_RUNNING'] = 'true'
    logger.info('[Scheduler] Started with 3 jobs: points expiry 0:15, voucher expiry 0:30, spend refresh 1:00 UTC')

    atexit.register(shutdown_scheduler)


def shutdown_scheduler():
    """Gracefully shutdown the scheduler."""
    global _scheduler
    if _scheduler and _scheduler.running:
        _scheduler.shutdown(wait=False)
        logger.info('[Scheduler] Shutdown complete')


def _run_in_app_context(name, func):
    if not _flask_app:
        logger.error('[Scheduler] Flask app not initialized')
        return None

    logger.info(f'[Scheduler] Starting {name}...')
    with _flask_app.app_context():
        try:
            return func()
        except Exception as e:
            from ..extensions import db
            db.session.rollback()
            logger.error(f'[Scheduler] {name} failed: {e}')
            return None


def run_points_expiry():
    """Expire every batch past its expiry date. Daily."""
    from ..services.expiry_scheduler import expire_due_points
    return _run_in_app_context('points expiry', expire_due_points)


def run_voucher_expiry():
    """Move overdue pending/confirmed vouchers to expired. Daily."""
    from ..services.expiry_scheduler import expire_overdue_vouchers
    return _run_in_app_context('voucher expiry', expire_overdue_vouchers)


def run_spend_refresh():
    """Drop spend that aged out of the rolling window and re-tier. Daily."""
    from ..services.expiry_scheduler import refresh_rolling_spend
    return _run_in_app_context('rolling spend refresh', refresh_rolling_spend)

