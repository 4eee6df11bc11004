from flask import Blueprint, g, request
import logging

from cronops.api import envelope
from cronops.api.stats import analytics_args
from cronops.errors import CronOpsError
from cronops.services.job_service import JobService
from cronops.services.log_service import LogService
from cronops.services.stats_service import StatsService
from cronops.services.user_service import UserService
from cronops.utils.auth import admin_required
from cronops.utils.pagination import parse_pagination

logger = logging.getLogger(__name__)
admin_bp = Blueprint('admin', __name__)

# This will be injected by the main app
scheduler_service = None


def set_scheduler_service(scheduler):
    """Set the scheduler service instance"""
    global scheduler_service
    scheduler_service = scheduler


@admin_bp.route('/stats', methods=['GET'])
@admin_required
def get_admin_stats():
    return envelope(StatsService.admin_stats())


@admin_bp.route('/analytics', methods=['GET'])
@admin_required
def get_admin_analytics():
    """System-wide analytics plus plan distribution"""
    days, tz_name = analytics_args(request.args)
    data = StatsService.analytics(days, tz_name)
    data['planDistribution'] = StatsService.plan_distribution()
    return envelope(data)


@admin_bp.route('/users', methods=['GET'])
@admin_required
def get_users():
    page, limit = parse_pagination(request.args)
    users, pagination = UserService.list_users(
        page, limit,
        search=request.args.get('search'),
        plan=request.args.get('plan'),
        role=request.args.get('role'),
    )
    return envelope({'users': users, 'pagination': pagination})


@admin_bp.route('/users/<user_id>/role', methods=['PUT'])
@admin_required
def update_user_role(user_id):
    body = request.get_json(silent=True) or {}
    user = UserService(scheduler_service).change_role(g.current_user, user_id, body.get('role'))
    return envelope(user.to_dict())


@admin_bp.route('/users/<user_id>', methods=['DELETE'])
@admin_required
def delete_user(user_id):
    UserService(scheduler_service).delete_user(g.current_user, user_id)
    return envelope({'id': user_id, 'deleted': True})


@admin_bp.route('/jobs', methods=['GET'])
@admin_required
def get_all_jobs():
    """Every user's jobs with owner and execution count"""
    page, limit = parse_pagination(request.args)
    jobs, pagination = JobService.list_all_jobs(
        page, limit,
        status=request.args.get('status'),
        search=request.args.get('search'),
    )
    counts = JobService.execution_counts([job.id for job in jobs])
    items = []
    for job in jobs:
        data = job.to_dict()
        data['user'] = {'id': job.user.id, 'email': job.user.email, 'name': job.user.name}
        data['executionCount'] = counts.get(job.id, 0)
        items.append(data)
    return envelope({'jobs': items, 'pagination': pagination})


@admin_bp.route('/logs', methods=['GET'])
@admin_required
def get_all_logs():
    page, limit = parse_pagination(request.args)
    logs, pagination = LogService.list_logs(
        page, limit,
        status=request.args.get('status'),
        job_id=request.args.get('jobId'),
    )
    return envelope({'logs': [log.to_dict(include_owner=True) for log in logs], 'pagination': pagination})


@admin_bp.route('/scheduler', methods=['GET'])
@admin_required
def get_scheduler_status():
    """Jobs the scheduler currently tracks and runs in flight"""
    if not scheduler_service:
        raise CronOpsError('Scheduler service not available', 503)
    return envelope(scheduler_service.status())


@admin_bp.route('/scheduler/reload', methods=['POST'])
@admin_required
def reload_scheduler():
    """Rebuild the scheduler's job cache from the database"""
    if not scheduler_service:
        raise CronOpsError('Scheduler service not available', 503)
    logger.info(f"Scheduler reload requested by admin {g.current_user.id}")
    loaded = scheduler_service.reload()
    return envelope({'jobsLoaded': loaded})
