import logging
from contextlib import contextmanager

from cronops.errors import QuotaExceededError
from cronops.models import db
from cronops.models.enums import JobStatus
from cronops.models.jobs import CronJob
from cronops.models.user import User
from cronops.services.plans import policy_for
from cronops.utils.locks import user_locks

logger = logging.getLogger(__name__)


class QuotaService:
    """Single choke point for plan ceilings on active jobs"""

    @staticmethod
    def active_job_count(user_id):
        return CronJob.query.filter_by(user_id=user_id, status=JobStatus.ACTIVE.value).count()

    @staticmethod
    def usage(user):
        policy = policy_for(user)
        return {
            'plan': user.plan,
            'activeJobs': QuotaService.active_job_count(user.id),
            'maxActiveJobs': policy.max_active_jobs,
            'resolutionSeconds': policy.resolution_seconds,
            'logRetentionDays': policy.log_retention_days,
        }

    @staticmethod
    @contextmanager
    def activation_slot(user):
        """
        Hold the user's quota lock while one more job becomes ACTIVE.

        The count and the write made inside the block are serialised per
        user, in process by a lock and across processes by locking the
        user row until the caller commits.
        """
        with user_locks.hold(user.id):
            db.session.query(User).filter_by(id=user.id).with_for_update().one()
            policy = policy_for(user)
            if not policy.unlimited:
                active = QuotaService.active_job_count(user.id)
                if active + 1 > policy.max_active_jobs:
                    logger.info(f"Quota rejected activation for user {user.id}: {active}/{policy.max_active_jobs} active")
                    raise QuotaExceededError(
                        f"Your {user.plan} plan allows {policy.max_active_jobs} active jobs. "
                        f"Upgrade your plan or pause another job."
                    )
            yield
