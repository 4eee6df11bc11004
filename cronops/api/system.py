from flask import Blueprint, jsonify

from cronops import __version__

system_bp = Blueprint('system', __name__)

# This will be injected by the main app
scheduler_service = None


def set_scheduler_service(scheduler):
    """Set the scheduler service instance"""
    global scheduler_service
    scheduler_service = scheduler


@system_bp.route('/health', methods=['GET'])
def health():
    """Liveness probe; no authentication"""
    return jsonify({
        'data': {
            'status': 'ok',
            'version': __version__,
            'schedulerRunning': scheduler_service.is_running if scheduler_service else False,
        }
    })
