import logging
import sys

from cronops.config import Config


def setup_logging(level=None, log_dir=None):
    """Configure application logging"""
    log_dir = log_dir or Config.LOG_DIR
    log_dir.mkdir(parents=True, exist_ok=True)

    logging.basicConfig(
        level=getattr(logging, level or Config.LOG_LEVEL),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(log_dir / 'app.log'),
            logging.StreamHandler(sys.stdout)
        ]
    )
    # Suppress development server and per-tick scheduler chatter
    logging.getLogger('werkzeug').setLevel(logging.ERROR)
    logging.getLogger('apscheduler').setLevel(logging.WARNING)

    return logging.getLogger(__name__)
