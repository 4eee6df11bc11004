"""
Dashboard rollups computed straight from jobs and execution logs.

Bucketed views are zero-filled so chart axes stay stable: every calendar
day of the window and every hour of the day appears even without logs.
"""

import logging
from datetime import datetime, time, timedelta, timezone

from cronops.errors import ValidationError
from cronops.models import db
from cronops.models.enums import ExecutionStatus, JobStatus, Plan, Role
from cronops.models.execution_log import ExecutionLog
from cronops.models.jobs import CronJob
from cronops.models.user import User
from cronops.services.schedule import get_zone, resolve_local_time
from cronops.utils.dates import utc_now

logger = logging.getLogger(__name__)

ANALYTICS_WINDOWS = (7, 14, 30)
RECENT_EXECUTIONS = 8
RECENT_USERS = 5


def success_rate(successful, total):
    """Percentage with one decimal; 0 when nothing ran"""
    if not total:
        return 0.0
    return round(successful / total * 100, 1)


def _execution_summary(query):
    counts = dict(
        query.with_entities(ExecutionLog.status, db.func.count(ExecutionLog.id))
        .group_by(ExecutionLog.status)
        .all()
    )
    total = sum(counts.values())
    successful = counts.get(ExecutionStatus.SUCCESS.value, 0)
    return {
        'total': total,
        'successful': successful,
        'failed': counts.get(ExecutionStatus.FAILED.value, 0),
        'timeout': counts.get(ExecutionStatus.TIMEOUT.value, 0),
        'running': counts.get(ExecutionStatus.RUNNING.value, 0),
        'successRate': success_rate(successful, total),
    }


def _job_summary(query):
    counts = dict(
        query.with_entities(CronJob.status, db.func.count(CronJob.id)).group_by(CronJob.status).all()
    )
    return {
        'total': sum(counts.values()),
        'active': counts.get(JobStatus.ACTIVE.value, 0),
        'paused': counts.get(JobStatus.PAUSED.value, 0),
    }


def _user_logs(user):
    query = ExecutionLog.query
    if user is not None:
        query = query.join(CronJob).filter(CronJob.user_id == user.id)
    return query


class StatsService:
    """Service layer for statistics"""

    @staticmethod
    def dashboard_stats(user):
        """Job and execution totals for one user"""
        recent = _user_logs(user).order_by(ExecutionLog.started_at.desc()).limit(RECENT_EXECUTIONS).all()
        return {
            'jobs': _job_summary(CronJob.query.filter_by(user_id=user.id)),
            'executions': _execution_summary(_user_logs(user)),
            'recentExecutions': [log.to_dict() for log in recent],
        }

    @staticmethod
    def job_stats(job):
        query = ExecutionLog.query.filter_by(cron_job_id=job.id)
        summary = _execution_summary(query)
        average = (
            query.filter(ExecutionLog.duration.isnot(None))
            .with_entities(db.func.avg(ExecutionLog.duration))
            .scalar()
        )
        summary['averageDuration'] = round(float(average), 1) if average is not None else None
        return {'jobId': job.id, 'executions': summary}

    @staticmethod
    def analytics(days, tz_name='UTC', now=None, user=None):
        """
        Daily and hour-of-day execution counts over the last ``days``
        calendar days in the viewer's timezone, today included.
        """
        if days not in ANALYTICS_WINDOWS:
            raise ValidationError(f"days must be one of: {', '.join(str(d) for d in ANALYTICS_WINDOWS)}")
        zone = get_zone(tz_name)
        now = now or utc_now()

        today = now.replace(tzinfo=timezone.utc).astimezone(zone).date()
        dates = [today - timedelta(days=offset) for offset in range(days - 1, -1, -1)]
        window_start = resolve_local_time(datetime.combine(dates[0], time()), zone)
        window_start = window_start.replace(tzinfo=None)

        daily = {
            d.isoformat(): {'date': d.isoformat(), 'success': 0, 'failed': 0, 'timeout': 0, 'running': 0, 'total': 0}
            for d in dates
        }
        hourly = [0] * 24
        status_counts = {status.value: 0 for status in ExecutionStatus}

        rows = (
            _user_logs(user)
            .filter(ExecutionLog.started_at >= window_start)
            .with_entities(ExecutionLog.status, ExecutionLog.started_at)
            .all()
        )
        for status, started_at in rows:
            local = started_at.replace(tzinfo=timezone.utc).astimezone(zone)
            bucket = daily.get(local.date().isoformat())
            if bucket is None:
                continue
            bucket['total'] += 1
            bucket[status.lower()] += 1
            hourly[local.hour] += 1
            status_counts[status] += 1

        total = sum(status_counts.values())
        return {
            'days': days,
            'timezone': tz_name,
            'daily': list(daily.values()),
            'hourly': [{'hour': hour, 'label': f"{hour}:00", 'executions': count} for hour, count in enumerate(hourly)],
            'statusBreakdown': [
                {'status': status, 'count': count} for status, count in status_counts.items() if count > 0
            ],
            'total': total,
            'successRate': success_rate(status_counts[ExecutionStatus.SUCCESS.value], total),
        }

    @staticmethod
    def plan_distribution():
        """Users per plan, leaving out plans nobody is on"""
        counts = dict(db.session.query(User.plan, db.func.count(User.id)).group_by(User.plan).all())
        return [
            {'plan': plan.value, 'count': counts[plan.value]}
            for plan in Plan
            if counts.get(plan.value, 0) > 0
        ]

    @staticmethod
    def admin_stats():
        """System-wide totals for the admin dashboard"""
        recent_users = User.query.order_by(User.created_at.desc()).limit(RECENT_USERS).all()
        recent_logs = ExecutionLog.query.order_by(ExecutionLog.started_at.desc()).limit(RECENT_EXECUTIONS).all()
        return {
            'users': {
                'total': User.query.count(),
                'admins': User.query.filter_by(role=Role.ADMIN.value).count(),
                'byPlan': StatsService.plan_distribution(),
            },
            'jobs': _job_summary(CronJob.query),
            'executions': _execution_summary(ExecutionLog.query),
            'recentUsers': [user.to_dict() for user in recent_users],
            'recentExecutions': [log.to_dict(include_owner=True) for log in recent_logs],
        }
