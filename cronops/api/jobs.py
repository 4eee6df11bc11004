from flask import Blueprint, g, request
import logging

from cronops.api import envelope
from cronops.services.job_service import JobService
from cronops.services.log_service import LogService
from cronops.services.stats_service import StatsService
from cronops.utils.auth import login_required
from cronops.utils.pagination import parse_pagination

logger = logging.getLogger(__name__)
jobs_bp = Blueprint('jobs', __name__)

# This will be injected by the main app
scheduler_service = None


def set_scheduler_service(scheduler):
    """Set the scheduler service instance"""
    global scheduler_service
    scheduler_service = scheduler


def _service():
    return JobService(scheduler_service)


@jobs_bp.route('/jobs', methods=['GET'])
@login_required
def get_jobs():
    """Get the current user's jobs"""
    page, limit = parse_pagination(request.args)
    jobs, pagination = JobService.list_jobs(
        g.current_user, page, limit,
        status=request.args.get('status'),
        search=request.args.get('search'),
    )
    return envelope({'jobs': [job.to_dict() for job in jobs], 'pagination': pagination})


@jobs_bp.route('/jobs', methods=['POST'])
@login_required
def create_job():
    """Create a new job"""
    job = _service().create_job(g.current_user, request.get_json(silent=True))
    return envelope(job.to_dict(), 201)


@jobs_bp.route('/jobs/<job_id>', methods=['GET'])
@login_required
def get_job(job_id):
    return envelope(JobService.get_job(g.current_user, job_id).to_dict())


@jobs_bp.route('/jobs/<job_id>', methods=['PUT'])
@login_required
def update_job(job_id):
    """Update a job"""
    job = _service().update_job(g.current_user, job_id, request.get_json(silent=True))
    return envelope(job.to_dict())


@jobs_bp.route('/jobs/<job_id>', methods=['DELETE'])
@login_required
def delete_job(job_id):
    """Delete a job"""
    _service().delete_job(g.current_user, job_id)
    return envelope({'id': job_id, 'deleted': True})


@jobs_bp.route('/jobs/<job_id>/pause', methods=['POST'])
@login_required
def pause_job(job_id):
    return envelope(_service().pause_job(g.current_user, job_id).to_dict())


@jobs_bp.route('/jobs/<job_id>/resume', methods=['POST'])
@login_required
def resume_job(job_id):
    return envelope(_service().resume_job(g.current_user, job_id).to_dict())


@jobs_bp.route('/jobs/<job_id>/run', methods=['POST'])
@login_required
def run_job_now(job_id):
    """Queue a job to run immediately"""
    job = _service().run_job(g.current_user, job_id)
    return envelope({'id': job.id, 'queued': True}, 202)


@jobs_bp.route('/jobs/<job_id>/logs', methods=['GET'])
@login_required
def get_job_logs(job_id):
    job = JobService.get_job(g.current_user, job_id)
    page, limit = parse_pagination(request.args)
    logs, pagination = LogService.list_logs(page, limit, job_id=job.id, status=request.args.get('status'))
    return envelope({'logs': [log.to_dict() for log in logs], 'pagination': pagination})


@jobs_bp.route('/jobs/<job_id>/stats', methods=['GET'])
@login_required
def get_job_stats(job_id):
    job = JobService.get_job(g.current_user, job_id)
    return envelope(StatsService.job_stats(job))
