import logging
import threading
import traceback
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from cronops.errors import ConflictError
from cronops.models import db
from cronops.models.enums import JobStatus, Trigger
from cronops.models.jobs import CronJob
from cronops.services.execution_service import ExecutionService
from cronops.services.plans import policy_for
from cronops.services.retention_service import RetentionService
from cronops.services.retry_service import RetryService
from cronops.services.schedule import floor_to_resolution, next_run_after
from cronops.utils.database import app_scope
from cronops.utils.dates import isoformat_z, utc_now
from cronops.utils.locks import job_locks

logger = logging.getLogger(__name__)

TICK_JOB_ID = 'scheduler_tick'
RETENTION_JOB_ID = 'log_retention'

# Tick and retention run here, apart from dispatched runs
SCHEDULER_EXECUTOR = 'scheduler'


@dataclass
class ScheduledJob:
    """What the tick loop needs to know about an ACTIVE job"""
    job_id: str
    user_id: str
    cron_expression: str
    timezone: str
    next_run_at: Optional[datetime]
    resolution_seconds: int

    def is_due(self, now):
        if self.next_run_at is None:
            return False
        return self.next_run_at <= floor_to_resolution(now, self.resolution_seconds)

    def to_dict(self):
        return {
            'jobId': self.job_id,
            'userId': self.user_id,
            'cronExpression': self.cron_expression,
            'timezone': self.timezone,
            'nextRunAt': isoformat_z(self.next_run_at),
            'resolutionSeconds': self.resolution_seconds,
        }


class SchedulerService:
    """
    Always-on tick loop over ACTIVE jobs.

    Keeps a read cache of ACTIVE jobs that job mutations refresh through
    invalidate(). Each tick fires the jobs whose nextRunAt has passed, as
    seen at their owner's plan resolution. Runs go to a thread pool; a job
    never has more than one run in flight, and a fire that arrives while
    one is in flight is skipped. Retry attempts are scheduled as one-off
    jobs after their delay, so a pending retry holds no worker.
    """

    def __init__(self, app, retry_service=None, scheduler=None):
        self.app = app
        self.execution_service = ExecutionService(app)
        self.retry_service = retry_service or RetryService(app, self.execution_service)
        self.scheduler = scheduler or BackgroundScheduler(
            executors={
                'default': ThreadPoolExecutor(app.config['DISPATCH_WORKERS']),
                SCHEDULER_EXECUTOR: ThreadPoolExecutor(2),
            },
            job_defaults={'coalesce': True, 'misfire_grace_time': 30},
            timezone='UTC',
        )
        self._cache = {}
        self._cache_lock = threading.Lock()
        self._in_flight = set()
        self._in_flight_lock = threading.Lock()
        logger.info("Scheduler service initialized")

    # -- lifecycle --------------------------------------------------------

    def start(self):
        """Recover state from the database and start ticking"""
        with app_scope(self.app):
            self.execution_service.close_interrupted_logs()
            self.load_existing_jobs()

        self.scheduler.add_job(
            func=self.tick,
            trigger=IntervalTrigger(seconds=self.app.config['SCHEDULER_TICK_SECONDS']),
            id=TICK_JOB_ID,
            name='Scheduler tick',
            executor=SCHEDULER_EXECUTOR,
            max_instances=1,
            replace_existing=True,
        )
        if self.app.config['LOG_RETENTION_ENABLED']:
            self.scheduler.add_job(
                func=self.purge_logs,
                trigger=CronTrigger(hour=3, minute=0, timezone='UTC'),
                id=RETENTION_JOB_ID,
                name='Execution log retention',
                executor=SCHEDULER_EXECUTOR,
                replace_existing=True,
            )
        self.scheduler.start()
        logger.info("Scheduler started")

    @property
    def is_running(self):
        """Check if scheduler is running"""
        return self.scheduler.running

    def shutdown(self, wait=False):
        """Shutdown the scheduler"""
        if self.scheduler.running:
            self.scheduler.shutdown(wait=wait)
            logger.info("Scheduler shutdown completed")

    # -- cache ------------------------------------------------------------

    @staticmethod
    def _snapshot(job):
        return ScheduledJob(
            job_id=job.id,
            user_id=job.user_id,
            cron_expression=job.cron_expression,
            timezone=job.timezone,
            next_run_at=job.next_run_at,
            resolution_seconds=policy_for(job.user).resolution_seconds,
        )

    def _store(self, job):
        with self._cache_lock:
            if job is not None and job.is_active:
                self._cache[job.id] = self._snapshot(job)
            elif job is not None:
                self._cache.pop(job.id, None)

    def _drop(self, job_id):
        with self._cache_lock:
            self._cache.pop(job_id, None)

    def load_existing_jobs(self, now=None):
        """Rebuild the cache, repairing nextRunAt where it is missing or stale"""
        now = now or utc_now()
        with app_scope(self.app):
            logger.info("Loading existing jobs...")

            paused = CronJob.query.filter(
                CronJob.status == JobStatus.PAUSED.value, CronJob.next_run_at.isnot(None)
            ).all()
            for job in paused:
                logger.info(f"Clearing next_run_at for paused job {job.id}: {job.name}")
                job.next_run_at = None

            jobs = CronJob.query.filter_by(status=JobStatus.ACTIVE.value).all()
            for job in jobs:
                if job.next_run_at is None or job.next_run_at < now:
                    job.next_run_at = next_run_after(job.cron_expression, job.timezone, now)
                    logger.info(f"Recomputed next run for job {job.id}: {job.next_run_at}")
            db.session.commit()

            cache = {job.id: self._snapshot(job) for job in jobs}
            with self._cache_lock:
                self._cache = cache

            logger.info(f"Loaded {len(jobs)} active jobs")
        return len(jobs)

    def reload(self):
        return self.load_existing_jobs()

    def invalidate(self, job_id):
        """Re-read one job after it was created, edited, paused, resumed or deleted"""
        with app_scope(self.app):
            job = db.session.get(CronJob, job_id)
            if job is None:
                self._drop(job_id)
                logger.info(f"Removed job {job_id} from scheduler cache")
            else:
                self._store(job)
                logger.info(f"Refreshed job {job_id} in scheduler cache (status: {job.status})")

    def invalidate_user(self, user_id):
        """Re-read every job of a user, after a plan change or account removal"""
        with self._cache_lock:
            cached = [entry.job_id for entry in self._cache.values() if entry.user_id == user_id]
        with app_scope(self.app):
            job_ids = {job_id for (job_id,) in db.session.query(CronJob.id).filter_by(user_id=user_id)}
        for job_id in job_ids.union(cached):
            self.invalidate(job_id)

    def cached_jobs(self):
        with self._cache_lock:
            return list(self._cache.values())

    # -- in-flight tracking -----------------------------------------------

    def _claim(self, job_id):
        with self._in_flight_lock:
            if job_id in self._in_flight:
                return False
            self._in_flight.add(job_id)
            return True

    def _release(self, job_id):
        with self._in_flight_lock:
            self._in_flight.discard(job_id)

    def in_flight(self):
        with self._in_flight_lock:
            return set(self._in_flight)

    # -- firing -----------------------------------------------------------

    def tick(self, now=None):
        """Fire every due job; returns the ids that were handed to the dispatcher"""
        now = now or utc_now()
        fired = []
        for entry in self.cached_jobs():
            if not entry.is_due(now):
                continue
            try:
                if self._fire(entry.job_id, now):
                    fired.append(entry.job_id)
            except Exception as e:
                logger.error(f"Failed to fire job {entry.job_id}: {str(e)}")
                logger.error(traceback.format_exc())
        return fired

    def _fire(self, job_id, now):
        with app_scope(self.app):
            with job_locks.hold(job_id):
                job = (
                    db.session.query(CronJob)
                    .filter_by(id=job_id)
                    .populate_existing()
                    .with_for_update()
                    .one_or_none()
                )
                if job is None or not job.is_active:
                    db.session.rollback()
                    self._drop(job_id)
                    return False

                entry = self._snapshot(job)
                if not entry.is_due(now):
                    db.session.rollback()
                    self._store(job)
                    return False

                scheduled_for = job.next_run_at
                job.next_run_at = next_run_after(job.cron_expression, job.timezone, now)
                db.session.commit()
                self._store(job)

                if not self._claim(job_id):
                    logger.warning(
                        f"Skipped job {job_id} scheduled for {scheduled_for}: previous run still in flight"
                    )
                    return False

                logger.info(f"Firing job {job_id} scheduled for {scheduled_for}, next run {job.next_run_at}")

        try:
            self._submit(job_id, Trigger.SCHEDULE)
        except Exception:
            self._release(job_id)
            raise
        return True

    def _submit(self, job_id, trigger, attempt=1, delay=0):
        """Queue an attempt on the dispatch pool, immediately or after ``delay`` seconds"""
        options = {}
        if delay:
            options = {'trigger': 'date', 'run_date': datetime.now(timezone.utc) + timedelta(seconds=delay)}
        self.scheduler.add_job(
            func=self._run_job,
            args=[job_id, trigger, attempt],
            id=f"run_{job_id}_{uuid.uuid4().hex[:8]}",
            name=f"{trigger.value.lower()} run: {job_id} (attempt {attempt})",
            misfire_grace_time=None,
            **options,
        )

    def _run_job(self, job_id, trigger, attempt=1):
        """
        One attempt of a run. The in-flight mark stays set while a retry
        is pending and is cleared once the run is over, however it ended.
        """
        retry_pending = False
        try:
            outcome = self.retry_service.attempt(job_id, attempt, trigger)
            if not outcome.finished:
                self._submit(job_id, trigger, attempt + 1, delay=outcome.retry_in)
                retry_pending = True
            return outcome.status
        except Exception as e:
            logger.error(f"Run of job {job_id} crashed on attempt {attempt}: {str(e)}")
            logger.error(traceback.format_exc())
        finally:
            if not retry_pending:
                self._release(job_id)

    def run_now(self, job_id):
        """Enqueue a manual run outside the schedule"""
        if not self._claim(job_id):
            raise ConflictError(f"Job {job_id} already has an execution in progress")
        try:
            self._submit(job_id, Trigger.MANUAL)
        except Exception:
            self._release(job_id)
            raise
        logger.info(f"Manually queued job {job_id}")

    # -- maintenance ------------------------------------------------------

    def purge_logs(self):
        with app_scope(self.app):
            return RetentionService.purge_expired_logs()

    def status(self):
        return {
            'running': self.is_running,
            'cachedJobs': len(self.cached_jobs()),
            'inFlight': sorted(self.in_flight()),
            'jobs': [entry.to_dict() for entry in sorted(self.cached_jobs(), key=lambda e: e.job_id)],
        }
