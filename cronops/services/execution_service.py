import logging
import traceback

from cronops.models import db
from cronops.models.enums import ExecutionStatus, Trigger
from cronops.models.execution_log import ExecutionLog
from cronops.models.jobs import CronJob
from cronops.services.dispatcher import DispatchResult, Dispatcher, build_target
from cronops.utils.database import app_scope
from cronops.utils.dates import utc_now
from cronops.utils.locks import job_locks

logger = logging.getLogger(__name__)


class ExecutionService:
    """Runs single attempts and writes their execution logs"""

    def __init__(self, app, dispatcher=None):
        self.app = app
        self.dispatcher = dispatcher or Dispatcher(max_chars=app.config['RESPONSE_MAX_CHARS'])

    def start_log(self, job, attempt=1, trigger=Trigger.SCHEDULE, now=None):
        """Create the RUNNING log row for an attempt"""
        log = ExecutionLog(
            cron_job_id=job.id,
            status=ExecutionStatus.RUNNING.value,
            attempt=attempt,
            trigger=Trigger(trigger).value,
            started_at=now or utc_now(),
        )
        db.session.add(log)
        db.session.commit()
        logger.info(f"Created execution log {log.id} for job {job.id} (attempt {attempt})")
        return log

    def finish_log(self, log, result, now=None):
        """
        Close a RUNNING log with the dispatch result and mirror it onto the job.

        Returns None when the job was deleted while the attempt ran.
        """
        job_id = log.cron_job_id
        with job_locks.hold(job_id):
            try:
                job = db.session.query(CronJob).filter_by(id=job_id).with_for_update().one_or_none()
                if job is None:
                    logger.warning(f"Job {job_id} was deleted during execution, dropping result")
                    db.session.rollback()
                    return None

                log.finish(
                    result.status,
                    now or utc_now(),
                    status_code=result.status_code,
                    response=result.response,
                    error=result.error,
                )
                job.last_run_at = log.started_at
                job.last_status = log.status
                db.session.commit()
            except Exception:
                db.session.rollback()
                raise

        if result.succeeded:
            logger.info(f"Job {job_id} attempt {log.attempt} succeeded in {log.duration} ms")
        else:
            logger.warning(f"Job {job_id} attempt {log.attempt} ended {log.status}: {log.error}")
        return log

    def execute_attempt(self, job_id, attempt=1, trigger=Trigger.SCHEDULE):
        """Dispatch one attempt of a job; returns its terminal status, or None if the job is gone"""
        with app_scope(self.app):
            job = db.session.get(CronJob, job_id)
            if not job:
                logger.error(f"Job {job_id} not found")
                return None

            target = build_target(job)
            timeout = job.timeout
            log = self.start_log(job, attempt, trigger)

            try:
                result = self.dispatcher.dispatch(target, timeout)
            except Exception as e:
                logger.error(f"Dispatcher crashed for job {job_id}: {str(e)}")
                logger.error(traceback.format_exc())
                result = DispatchResult(ExecutionStatus.FAILED, error=f"Internal dispatcher error: {e}")

            finished = self.finish_log(log, result)
            return result.status if finished is not None else None

    def close_interrupted_logs(self, now=None):
        """Fail logs left RUNNING by a previous process"""
        now = now or utc_now()
        stale = ExecutionLog.query.filter_by(status=ExecutionStatus.RUNNING.value).all()
        for log in stale:
            log.finish(ExecutionStatus.FAILED, now, error='Execution interrupted by scheduler restart')
            if log.job and log.job.last_status in (None, ExecutionStatus.RUNNING.value):
                log.job.last_status = log.status
        if stale:
            db.session.commit()
            logger.warning(f"Marked {len(stale)} interrupted executions as FAILED")
        return len(stale)
