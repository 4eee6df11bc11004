from flask import Blueprint, g, request

from cronops.api import envelope
from cronops.errors import ValidationError
from cronops.services.stats_service import StatsService
from cronops.utils.auth import login_required

stats_bp = Blueprint('stats', __name__)


def analytics_args(args):
    try:
        days = int(args.get('days', 7))
    except (TypeError, ValueError):
        raise ValidationError('days must be an integer')
    return days, args.get('tz') or 'UTC'


@stats_bp.route('/stats', methods=['GET'])
@login_required
def get_stats():
    """Dashboard totals for the current user"""
    return envelope(StatsService.dashboard_stats(g.current_user))


@stats_bp.route('/stats/analytics', methods=['GET'])
@login_required
def get_analytics():
    days, tz_name = analytics_args(request.args)
    return envelope(StatsService.analytics(days, tz_name, user=g.current_user))
