import logging

from cronops.errors import AuthorizationError, NotFoundError, ValidationError
from cronops.models import db
from cronops.models.enums import ExecutionStatus, values
from cronops.models.execution_log import ExecutionLog
from cronops.models.jobs import CronJob
from cronops.utils.pagination import paginate

logger = logging.getLogger(__name__)


class LogService:
    """Read access to execution logs"""

    @staticmethod
    def list_logs(page, limit, user=None, status=None, job_id=None):
        """Get a page of logs, newest first; user=None means every user's logs"""
        query = ExecutionLog.query
        if user is not None:
            query = query.join(CronJob).filter(CronJob.user_id == user.id)
        if status:
            if status.upper() not in values(ExecutionStatus):
                raise ValidationError(f"status must be one of: {', '.join(values(ExecutionStatus))}")
            query = query.filter(ExecutionLog.status == status.upper())
        if job_id:
            query = query.filter(ExecutionLog.cron_job_id == job_id)
        return paginate(query.order_by(ExecutionLog.started_at.desc()), page, limit)

    @staticmethod
    def get_log(user, log_id):
        log = db.session.get(ExecutionLog, log_id)
        if not log:
            raise NotFoundError(f"Log {log_id} not found")
        if log.job.user_id != user.id and not user.is_admin:
            raise AuthorizationError("You do not have access to this log")
        return log
