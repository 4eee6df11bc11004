#!/usr/bin/env python3
"""
CronOps scheduler backend.
This module is small and just wires models, services and blueprints together.
"""

import logging

from flask import Flask, jsonify, request
from werkzeug.exceptions import HTTPException
from flask_cors import CORS

from cronops.config import Config
from cronops.errors import CronOpsError
from cronops.utils.logging_config import setup_logging

logger = logging.getLogger(__name__)


# =============================================================================
# APPLICATION FACTORY
# =============================================================================
def create_app(test_config=None):
    """Application factory that wires everything together"""

    # Create Flask app
    app = Flask(__name__)
    app.config.from_object(Config)
    app.config['SQLALCHEMY_DATABASE_URI'] = Config.DATABASE_URL
    if test_config:
        app.config.update(test_config)

    setup_logging(app.config['LOG_LEVEL'], app.config['LOG_DIR'])

    CORS(app, origins=app.config['CORS_ORIGINS'])

    # Initialize database
    from cronops.utils.database import init_database

    # Import models to ensure they're registered
    from cronops.models.user import User
    from cronops.models.jobs import CronJob
    from cronops.models.execution_log import ExecutionLog

    init_database(app)

    # Initialize scheduler service
    from cronops.services.scheduler_service import SchedulerService
    scheduler_service = SchedulerService(app)

    # Import API blueprints
    from cronops.api.admin import admin_bp, set_scheduler_service as set_admin_scheduler
    from cronops.api.jobs import jobs_bp, set_scheduler_service as set_jobs_scheduler
    from cronops.api.logs import logs_bp
    from cronops.api.stats import stats_bp
    from cronops.api.system import system_bp, set_scheduler_service as set_system_scheduler
    from cronops.api.users import users_bp, set_scheduler_service as set_users_scheduler

    # Inject scheduler service into blueprints that need it
    set_jobs_scheduler(scheduler_service)
    set_users_scheduler(scheduler_service)
    set_admin_scheduler(scheduler_service)
    set_system_scheduler(scheduler_service)

    # Register blueprints
    app.register_blueprint(jobs_bp, url_prefix='/api')
    app.register_blueprint(logs_bp, url_prefix='/api')
    app.register_blueprint(stats_bp, url_prefix='/api')
    app.register_blueprint(users_bp, url_prefix='/api')
    app.register_blueprint(admin_bp, url_prefix='/api/admin')
    app.register_blueprint(system_bp, url_prefix='/api')

    register_error_handlers(app)

    from cronops.cli import register_commands
    register_commands(app)

    # Store scheduler service reference for shutdown
    app.scheduler_service = scheduler_service

    if app.config['SCHEDULER_AUTOSTART']:
        scheduler_service.start()

    return app


def register_error_handlers(app):
    from cronops.models import db

    @app.errorhandler(CronOpsError)
    def handle_cronops_error(error):
        if error.status_code >= 500:
            logger.error(f"{request.method} {request.path} failed: {error.message}")
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(error):
        return jsonify({'error': error.description}), error.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(error):
        db.session.rollback()
        logger.exception(f"{request.method} {request.path} failed: {str(error)}")
        return jsonify({'error': 'Internal server error'}), 500


# =============================================================================
# MAIN APPLICATION
# =============================================================================
if __name__ == '__main__':
    app = create_app()

    try:
        app.run(host='0.0.0.0', port=5000, debug=app.config['DEBUG'], use_reloader=False)
    except KeyboardInterrupt:
        print("\nShutting down gracefully...")
    finally:
        if hasattr(app, 'scheduler_service'):
            app.scheduler_service.shutdown()
