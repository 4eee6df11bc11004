import time
import logging
from contextlib import nullcontext

from flask import current_app, has_app_context

from cronops.models import db

logger = logging.getLogger(__name__)


def wait_for_database(app):
    """Block until the configured database accepts connections"""
    attempts = app.config['DB_RETRY_MAX']
    with app.app_context():
        target = db.engine.url.render_as_string(hide_password=True)
        for attempt in range(1, attempts + 1):
            try:
                with db.engine.connect() as conn:
                    conn.execute(db.text('SELECT 1'))
                logger.info(f"Connected to database {target}")
                return True
            except Exception as e:
                if attempt == attempts:
                    logger.error(f"Database {target} unreachable after {attempts} attempts: {str(e)}")
                    raise e
                logger.info(f"Waiting for database {target} ({attempt}/{attempts})")
                time.sleep(app.config['DB_RETRY_INTERVAL'])
    return False


def init_database(app):
    """Initialize database connection and create missing tables"""
    db.init_app(app)
    wait_for_database(app)
    with app.app_context():
        db.create_all()
    return True


def app_scope(app):
    """App context for work running outside a request, reusing the current one if it is ours"""
    if has_app_context() and current_app._get_current_object() is app:
        return nullcontext()
    return app.app_context()
