from datetime import datetime, timedelta
from unittest.mock import MagicMock

import pytest

from cronops.app import create_app
from cronops.models import db
from cronops.models.enums import ExecutionStatus, Plan, Role, Trigger
from cronops.models.execution_log import ExecutionLog
from cronops.models.jobs import CronJob
from cronops.models.user import User
from cronops.utils.auth import issue_access_token


@pytest.fixture
def app(tmp_path):
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite://',
        'SCHEDULER_AUTOSTART': False,
        'LOG_DIR': tmp_path / 'logs',
        'DB_RETRY_MAX': 1,
        'DEFAULT_RETRY_DELAY_SECONDS': 0,
        'SECRET_KEY': 'test-secret',
    })
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def scheduler_service(app):
    """The app's scheduler with APScheduler replaced by a mock"""
    service = app.scheduler_service
    service.scheduler = MagicMock()
    service.scheduler.running = False
    return service


@pytest.fixture
def make_user(app):
    counter = {'n': 0}

    def _make_user(plan=Plan.FREE.value, role=Role.USER.value, email=None):
        counter['n'] += 1
        user = User(
            email=email or f"user{counter['n']}@example.com",
            name=f"User {counter['n']}",
            plan=plan,
            role=role,
        )
        db.session.add(user)
        db.session.commit()
        return user

    return _make_user


@pytest.fixture
def user(make_user):
    return make_user()


@pytest.fixture
def admin(make_user):
    return make_user(plan=Plan.FREE.value, role=Role.ADMIN.value, email='admin@example.com')


@pytest.fixture
def auth_headers():
    def _headers(user):
        return {'Authorization': f"Bearer {issue_access_token(user)}"}
    return _headers


@pytest.fixture
def make_job(app):
    def _make_job(user, **overrides):
        fields = {
            'name': 'Ping',
            'cron_expression': '*/5 * * * *',
            'timezone': 'UTC',
            'target_type': 'HTTP',
            'target_url': 'https://example.com/hook',
            'http_method': 'GET',
            'max_retries': 0,
            'timeout': 30000,
            'status': 'ACTIVE',
        }
        fields.update(overrides)
        job = CronJob(user_id=user.id, **fields)
        db.session.add(job)
        db.session.commit()
        return job

    return _make_job


@pytest.fixture
def make_log(app):
    def _make_log(job, status=ExecutionStatus.SUCCESS.value, started_at=None, duration_ms=100):
        started_at = started_at or datetime(2024, 6, 1, 12, 0, 0)
        log = ExecutionLog(
            cron_job_id=job.id,
            status=ExecutionStatus.RUNNING.value,
            trigger=Trigger.SCHEDULE.value,
            started_at=started_at,
        )
        if status != ExecutionStatus.RUNNING.value:
            log.finish(status, started_at + timedelta(milliseconds=duration_ms),
                       error=None if status == ExecutionStatus.SUCCESS.value else 'boom')
        db.session.add(log)
        db.session.commit()
        return log

    return _make_log
