from flask import Blueprint, g, request

from cronops.api import envelope
from cronops.services.quota_service import QuotaService
from cronops.services.user_service import UserService
from cronops.utils.auth import login_required

users_bp = Blueprint('users', __name__)

# This will be injected by the main app
scheduler_service = None


def set_scheduler_service(scheduler):
    """Set the scheduler service instance"""
    global scheduler_service
    scheduler_service = scheduler


@users_bp.route('/users/me', methods=['GET'])
@login_required
def get_me():
    data = g.current_user.to_dict()
    data['usage'] = QuotaService.usage(g.current_user)
    return envelope(data)


@users_bp.route('/users/plan', methods=['PUT'])
@login_required
def update_plan():
    """Change the current user's subscription plan"""
    body = request.get_json(silent=True) or {}
    user = UserService(scheduler_service).change_plan(g.current_user, body.get('plan'))
    data = user.to_dict()
    data['usage'] = QuotaService.usage(user)
    return envelope(data)
