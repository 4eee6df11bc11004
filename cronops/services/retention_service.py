import logging
from datetime import timedelta

from cronops.models import db
from cronops.models.enums import ExecutionStatus
from cronops.models.execution_log import ExecutionLog
from cronops.models.jobs import CronJob
from cronops.models.user import User
from cronops.services.plans import policy_for
from cronops.utils.dates import utc_now

logger = logging.getLogger(__name__)


class RetentionService:
    """Plan-dependent purge of old execution logs"""

    @staticmethod
    def purge_expired_logs(now=None):
        """Delete finished logs older than each owner's retention window"""
        now = now or utc_now()
        purged = 0
        try:
            for user in User.query.all():
                cutoff = now - timedelta(days=policy_for(user).log_retention_days)
                job_ids = db.select(CronJob.id).where(CronJob.user_id == user.id)
                purged += ExecutionLog.query.filter(
                    ExecutionLog.cron_job_id.in_(job_ids),
                    ExecutionLog.status != ExecutionStatus.RUNNING.value,
                    ExecutionLog.started_at < cutoff,
                ).delete(synchronize_session=False)
            db.session.commit()
        except Exception as e:
            db.session.rollback()
            logger.error(f"Failed to purge execution logs: {str(e)}")
            raise e

        logger.info(f"Purged {purged} expired execution logs")
        return purged
