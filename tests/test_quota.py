import threading

import pytest

from cronops.app import create_app
from cronops.errors import QuotaExceededError
from cronops.models import db
from cronops.models.enums import Plan
from cronops.models.user import User
from cronops.services.job_service import JobService
from cronops.services.plans import PLAN_POLICIES, policy_for
from cronops.services.quota_service import QuotaService


def job_data(name='job', **overrides):
    data = {
        'name': name,
        'cronExpression': '0 * * * *',
        'targetType': 'HTTP',
        'targetUrl': 'https://example.com',
    }
    data.update(overrides)
    return data


@pytest.fixture
def service():
    return JobService()


def test_policy_table():
    assert PLAN_POLICIES[Plan.FREE].max_active_jobs == 3
    assert PLAN_POLICIES[Plan.PREMIUM].max_active_jobs == 100
    assert PLAN_POLICIES[Plan.PRO].unlimited


def test_free_user_cannot_create_fourth_active_job(service, user):
    for i in range(3):
        service.create_job(user, job_data(f"job {i}"))

    with pytest.raises(QuotaExceededError) as exc:
        service.create_job(user, job_data('one too many'))

    assert 'FREE plan allows 3 active jobs' in exc.value.message
    assert QuotaService.active_job_count(user.id) == 3


def test_free_user_may_create_paused_jobs_beyond_ceiling(service, user):
    for i in range(3):
        service.create_job(user, job_data(f"job {i}"))

    job = service.create_job(user, job_data('parked', status='PAUSED'))
    assert job.status == 'PAUSED'
    assert job.next_run_at is None


def test_free_user_cannot_resume_fourth_job(service, user):
    parked = service.create_job(user, job_data('parked', status='PAUSED'))
    for i in range(3):
        service.create_job(user, job_data(f"job {i}"))

    with pytest.raises(QuotaExceededError):
        service.resume_job(user, parked.id)
    assert parked.status == 'PAUSED'
    assert QuotaService.active_job_count(user.id) == 3


def test_activating_through_update_is_quota_checked(service, user):
    parked = service.create_job(user, job_data('parked', status='PAUSED'))
    for i in range(3):
        service.create_job(user, job_data(f"job {i}"))

    with pytest.raises(QuotaExceededError):
        service.update_job(user, parked.id, {'status': 'ACTIVE'})
    assert QuotaService.active_job_count(user.id) == 3


def test_pausing_frees_a_slot(service, user):
    jobs = [service.create_job(user, job_data(f"job {i}")) for i in range(3)]
    service.pause_job(user, jobs[0].id)

    service.create_job(user, job_data('replacement'))
    assert QuotaService.active_job_count(user.id) == 3


def test_admin_bypasses_ceiling(service, admin):
    for i in range(5):
        service.create_job(admin, job_data(f"job {i}"))
    assert QuotaService.active_job_count(admin.id) == 5
    assert policy_for(admin).unlimited


def test_pro_is_unbounded(service, make_user):
    pro = make_user(plan=Plan.PRO.value)
    for i in range(5):
        service.create_job(pro, job_data(f"job {i}"))
    assert QuotaService.active_job_count(pro.id) == 5


def test_usage_report(service, user):
    service.create_job(user, job_data())
    assert QuotaService.usage(user) == {
        'plan': 'FREE',
        'activeJobs': 1,
        'maxActiveJobs': 3,
        'resolutionSeconds': 60,
        'logRetentionDays': 7,
    }


@pytest.fixture
def file_app(tmp_path):
    """An app on a file database, so several threads can share it"""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'cronops.db'}",
        'SCHEDULER_AUTOSTART': False,
        'LOG_DIR': tmp_path / 'logs',
        'DB_RETRY_MAX': 1,
        'SECRET_KEY': 'test-secret',
    })
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


def test_simultaneous_creates_cannot_overshoot_ceiling(file_app):
    user = User(email='racer@example.com', name='Racer', plan=Plan.FREE.value)
    db.session.add(user)
    db.session.commit()
    for name in ('first', 'second'):
        JobService().create_job(user, job_data(name))
    user_id = user.id

    barrier = threading.Barrier(2)
    outcomes = []

    def create(name):
        with file_app.app_context():
            owner = db.session.get(User, user_id)
            barrier.wait(timeout=5)
            try:
                JobService().create_job(owner, job_data(name))
                outcomes.append('created')
            except QuotaExceededError:
                outcomes.append('rejected')
            finally:
                db.session.remove()

    threads = [threading.Thread(target=create, args=(f"racer {i}",)) for i in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)

    assert sorted(outcomes) == ['created', 'rejected']
    db.session.expire_all()
    assert QuotaService.active_job_count(user_id) == 3
