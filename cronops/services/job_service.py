import logging

from cronops.errors import AuthorizationError, CronOpsError, NotFoundError, ValidationError
from cronops.models import db
from cronops.models.enums import JobStatus, values
from cronops.models.execution_log import ExecutionLog
from cronops.models.jobs import CronJob
from cronops.services.quota_service import QuotaService
from cronops.services.schedule import next_run_after
from cronops.services.validation import job_fields, validate_job_data
from cronops.utils.dates import utc_now
from cronops.utils.locks import job_locks
from cronops.utils.pagination import paginate

logger = logging.getLogger(__name__)


class JobService:
    """Service layer for job management"""

    def __init__(self, scheduler_service=None):
        self.scheduler_service = scheduler_service

    def _invalidate(self, job_id):
        if self.scheduler_service:
            self.scheduler_service.invalidate(job_id)

    @staticmethod
    def _schedule(job, now):
        job.next_run_at = next_run_after(job.cron_expression, job.timezone, now) if job.is_active else None

    @staticmethod
    def get_job(user, job_id):
        """Get a job the user may see; admins see every job"""
        job = db.session.get(CronJob, job_id)
        if not job:
            raise NotFoundError(f"Job {job_id} not found")
        if job.user_id != user.id and not user.is_admin:
            raise AuthorizationError("You do not have access to this job")
        return job

    @staticmethod
    def list_jobs(user, page, limit, status=None, search=None):
        """Get a page of the user's jobs"""
        query = CronJob.query.filter_by(user_id=user.id)
        return JobService._filtered(query, page, limit, status, search)

    @staticmethod
    def list_all_jobs(page, limit, status=None, search=None):
        """Get a page of every user's jobs"""
        return JobService._filtered(CronJob.query, page, limit, status, search)

    @staticmethod
    def _filtered(query, page, limit, status, search):
        if status:
            if status.upper() not in values(JobStatus):
                raise ValidationError(f"status must be one of: {', '.join(values(JobStatus))}")
            query = query.filter(CronJob.status == status.upper())
        if search:
            query = query.filter(CronJob.name.ilike(f"%{search}%"))
        return paginate(query.order_by(CronJob.created_at.desc()), page, limit)

    @staticmethod
    def execution_counts(job_ids):
        if not job_ids:
            return {}
        rows = (
            db.session.query(ExecutionLog.cron_job_id, db.func.count(ExecutionLog.id))
            .filter(ExecutionLog.cron_job_id.in_(job_ids))
            .group_by(ExecutionLog.cron_job_id)
            .all()
        )
        return dict(rows)

    def create_job(self, user, job_data, now=None):
        """Create a new job"""
        now = now or utc_now()
        fields = validate_job_data(job_data)
        try:
            job = CronJob(user_id=user.id, created_at=now, updated_at=now, **fields)
            self._schedule(job, now)

            if job.is_active:
                with QuotaService.activation_slot(user):
                    db.session.add(job)
                    db.session.commit()
            else:
                db.session.add(job)
                db.session.commit()

        except CronOpsError:
            db.session.rollback()
            raise
        except Exception as e:
            db.session.rollback()
            logger.error(f"Failed to create job: {str(e)}")
            raise e

        logger.info(f"Created job {job.id}: {job.name} (status: {job.status}, next run: {job.next_run_at})")
        self._invalidate(job.id)
        return job

    def update_job(self, user, job_id, job_data, now=None):
        """Update an existing job"""
        now = now or utc_now()
        job = self.get_job(user, job_id)

        with job_locks.hold(job.id):
            fields = validate_job_data(job_data, current=job_fields(job))
            activating = fields['status'] == JobStatus.ACTIVE.value and not job.is_active
            try:
                if activating:
                    with QuotaService.activation_slot(job.user):
                        self._apply(job, fields, now)
                        db.session.commit()
                else:
                    self._apply(job, fields, now)
                    db.session.commit()

            except CronOpsError:
                db.session.rollback()
                raise
            except Exception as e:
                db.session.rollback()
                logger.error(f"Failed to update job {job_id}: {str(e)}")
                raise e

        logger.info(f"Updated job {job.id}: {job.name}")
        self._invalidate(job.id)
        return job

    def _apply(self, job, fields, now):
        schedule_changed = (
            fields['cron_expression'] != job.cron_expression
            or fields['timezone'] != job.timezone
            or fields['status'] != job.status
        )
        for attr, value in fields.items():
            setattr(job, attr, value)
        job.updated_at = now
        if schedule_changed or (job.is_active and job.next_run_at is None):
            self._schedule(job, now)

    def delete_job(self, user, job_id):
        """Delete a job together with its execution logs"""
        job = self.get_job(user, job_id)
        with job_locks.hold(job.id):
            try:
                job_name = job.name
                db.session.delete(job)
                db.session.commit()
            except Exception as e:
                db.session.rollback()
                logger.error(f"Failed to delete job {job_id}: {str(e)}")
                raise e

        logger.info(f"Deleted job {job_id}: {job_name}")
        self._invalidate(job_id)
        return True

    def pause_job(self, user, job_id, now=None):
        """Stop scheduling a job"""
        job = self.get_job(user, job_id)
        with job_locks.hold(job.id):
            try:
                job.status = JobStatus.PAUSED.value
                job.next_run_at = None
                job.updated_at = now or utc_now()
                db.session.commit()
            except Exception as e:
                db.session.rollback()
                logger.error(f"Failed to pause job {job_id}: {str(e)}")
                raise e

        logger.info(f"Paused job {job.id}: {job.name}")
        self._invalidate(job.id)
        return job

    def resume_job(self, user, job_id, now=None):
        """Reactivate a paused job, subject to the owner's plan ceiling"""
        now = now or utc_now()
        job = self.get_job(user, job_id)
        if job.is_active:
            return job

        with job_locks.hold(job.id):
            try:
                with QuotaService.activation_slot(job.user):
                    job.status = JobStatus.ACTIVE.value
                    job.updated_at = now
                    self._schedule(job, now)
                    db.session.commit()
            except CronOpsError:
                db.session.rollback()
                raise
            except Exception as e:
                db.session.rollback()
                logger.error(f"Failed to resume job {job_id}: {str(e)}")
                raise e

        logger.info(f"Resumed job {job.id}: {job.name}, next run: {job.next_run_at}")
        self._invalidate(job.id)
        return job

    def run_job(self, user, job_id):
        """Queue an immediate run; does not wait for it"""
        job = self.get_job(user, job_id)
        if not self.scheduler_service:
            raise CronOpsError('Scheduler service not available', 503)
        self.scheduler_service.run_now(job.id)
        return job
