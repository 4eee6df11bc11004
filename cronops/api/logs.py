from flask import Blueprint, g, request

from cronops.api import envelope
from cronops.services.log_service import LogService
from cronops.utils.auth import login_required
from cronops.utils.pagination import parse_pagination

logs_bp = Blueprint('logs', __name__)


@logs_bp.route('/logs', methods=['GET'])
@login_required
def get_logs():
    """Execution logs across the current user's jobs"""
    page, limit = parse_pagination(request.args)
    logs, pagination = LogService.list_logs(
        page, limit,
        user=g.current_user,
        status=request.args.get('status'),
        job_id=request.args.get('jobId'),
    )
    return envelope({'logs': [log.to_dict() for log in logs], 'pagination': pagination})


@logs_bp.route('/logs/<log_id>', methods=['GET'])
@login_required
def get_log(log_id):
    return envelope(LogService.get_log(g.current_user, log_id).to_dict())
