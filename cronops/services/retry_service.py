import logging
from dataclasses import dataclass
from typing import Optional

from cronops.models import db
from cronops.models.enums import ExecutionStatus, Trigger
from cronops.models.jobs import CronJob
from cronops.utils.database import app_scope

logger = logging.getLogger(__name__)


@dataclass
class AttemptOutcome:
    """Result of one attempt and whether another one should follow"""
    status: Optional[ExecutionStatus]
    retry_in: Optional[int] = None

    @property
    def finished(self):
        return self.retry_in is None


class RetryService:
    """
    Bounded retry around single attempts.

    A run makes at most maxRetries + 1 attempts and stops at the first
    SUCCESS. FAILED and TIMEOUT are both retried. Every attempt gets its
    own execution log, so the job's lastStatus ends up mirroring the last
    attempt. The job itself is left ACTIVE whatever the outcome.

    Attempts never wait for the retry delay themselves: an unfinished
    outcome carries the delay and the caller schedules the next attempt.
    """

    def __init__(self, app, execution_service):
        self.app = app
        self.execution_service = execution_service

    def _retry_policy(self, job_id):
        with app_scope(self.app):
            job = db.session.get(CronJob, job_id)
            if job is None:
                return None
            delay = job.retry_delay
            if delay is None:
                delay = self.app.config['DEFAULT_RETRY_DELAY_SECONDS']
            return job.max_retries, delay

    def _may_continue(self, job_id, trigger):
        with app_scope(self.app):
            db.session.expire_all()
            job = db.session.get(CronJob, job_id)
            if job is None:
                logger.info(f"Job {job_id} was deleted, abandoning retries")
                return False
            # Pausing stops scheduled runs; a manual run carries on
            if trigger == Trigger.SCHEDULE and not job.is_active:
                logger.info(f"Job {job_id} was paused, abandoning retries")
                return False
            return True

    def attempt(self, job_id, attempt=1, trigger=Trigger.SCHEDULE):
        """Run one attempt of a job and decide whether to retry"""
        if attempt > 1 and not self._may_continue(job_id, trigger):
            return AttemptOutcome(None)

        status = self.execution_service.execute_attempt(job_id, attempt, trigger)
        if status is None or status is ExecutionStatus.SUCCESS:
            return AttemptOutcome(status)

        policy = self._retry_policy(job_id)
        if policy is None:
            return AttemptOutcome(status)
        max_retries, delay = policy
        if attempt > max_retries:
            logger.warning(f"Job {job_id} gave up after {attempt} attempts, last status {status.value}")
            return AttemptOutcome(status)

        logger.info(f"Retrying job {job_id} in {delay}s (attempt {attempt + 1}/{max_retries + 1})")
        return AttemptOutcome(status, retry_in=delay)
