from datetime import datetime

import pytest

from cronops.errors import ValidationError
from cronops.models.enums import Plan
from cronops.services.stats_service import StatsService, success_rate

NOW = datetime(2024, 6, 10, 12, 0, 0)


@pytest.mark.parametrize('successful, total, expected', [
    (0, 0, 0.0),
    (0, 5, 0.0),
    (5, 5, 100.0),
    (2, 3, 66.7),
    (1, 8, 12.5),
])
def test_success_rate(successful, total, expected):
    assert success_rate(successful, total) == expected


def test_dashboard_stats(user, make_user, make_job, make_log):
    job = make_job(user)
    make_job(user, name='Parked', status='PAUSED')
    make_log(job, 'SUCCESS')
    make_log(job, 'SUCCESS')
    make_log(job, 'FAILED')
    make_log(job, 'TIMEOUT')
    other = make_job(make_user(), name='Not mine')
    make_log(other, 'FAILED')

    stats = StatsService.dashboard_stats(user)

    assert stats['jobs'] == {'total': 2, 'active': 1, 'paused': 1}
    assert stats['executions'] == {
        'total': 4, 'successful': 2, 'failed': 1, 'timeout': 1, 'running': 0, 'successRate': 50.0,
    }
    assert len(stats['recentExecutions']) == 4


def test_dashboard_stats_empty(user):
    stats = StatsService.dashboard_stats(user)
    assert stats['executions']['successRate'] == 0.0
    assert stats['jobs'] == {'total': 0, 'active': 0, 'paused': 0}


def test_job_stats_average_duration(user, make_job, make_log):
    job = make_job(user)
    make_log(job, 'SUCCESS', duration_ms=100)
    make_log(job, 'FAILED', duration_ms=300)
    make_log(job, 'RUNNING')

    stats = StatsService.job_stats(job)
    assert stats['executions']['total'] == 3
    assert stats['executions']['running'] == 1
    assert stats['executions']['averageDuration'] == 200.0


def test_analytics_daily_buckets_are_zero_filled(user, make_job, make_log):
    job = make_job(user)
    make_log(job, 'SUCCESS', started_at=datetime(2024, 6, 10, 8, 0))
    make_log(job, 'FAILED', started_at=datetime(2024, 6, 10, 9, 30))
    make_log(job, 'SUCCESS', started_at=datetime(2024, 6, 5, 23, 59))
    # Outside a 7 day window ending 2024-06-10
    make_log(job, 'SUCCESS', started_at=datetime(2024, 6, 3, 23, 59))

    data = StatsService.analytics(7, now=NOW, user=user)

    assert [bucket['date'] for bucket in data['daily']] == [
        '2024-06-04', '2024-06-05', '2024-06-06', '2024-06-07', '2024-06-08', '2024-06-09', '2024-06-10',
    ]
    by_date = {bucket['date']: bucket for bucket in data['daily']}
    assert by_date['2024-06-10']['total'] == 2
    assert by_date['2024-06-10']['success'] == 1
    assert by_date['2024-06-10']['failed'] == 1
    assert by_date['2024-06-05']['total'] == 1
    assert by_date['2024-06-07']['total'] == 0
    assert data['total'] == 3
    assert data['successRate'] == 66.7


def test_analytics_hourly_histogram(user, make_job, make_log):
    job = make_job(user)
    make_log(job, 'SUCCESS', started_at=datetime(2024, 6, 10, 8, 0))
    make_log(job, 'SUCCESS', started_at=datetime(2024, 6, 9, 8, 45))

    data = StatsService.analytics(7, now=NOW, user=user)

    assert len(data['hourly']) == 24
    assert data['hourly'][8] == {'hour': 8, 'label': '8:00', 'executions': 2}
    assert data['hourly'][0]['executions'] == 0


def test_analytics_status_breakdown_omits_zero(user, make_job, make_log):
    job = make_job(user)
    make_log(job, 'SUCCESS', started_at=datetime(2024, 6, 10, 8, 0))
    make_log(job, 'TIMEOUT', started_at=datetime(2024, 6, 10, 9, 0))

    data = StatsService.analytics(14, now=NOW, user=user)
    assert data['statusBreakdown'] == [{'status': 'SUCCESS', 'count': 1}, {'status': 'TIMEOUT', 'count': 1}]
    assert len(data['daily']) == 14


def test_analytics_buckets_in_viewer_timezone(user, make_job, make_log):
    job = make_job(user)
    # 02:00 UTC on June 10 is 22:00 on June 9 in New York
    make_log(job, 'SUCCESS', started_at=datetime(2024, 6, 10, 2, 0))

    data = StatsService.analytics(7, tz_name='America/New_York', now=NOW, user=user)
    by_date = {bucket['date']: bucket for bucket in data['daily']}
    assert by_date['2024-06-09']['total'] == 1
    assert by_date['2024-06-10']['total'] == 0
    assert data['hourly'][22]['executions'] == 1


def test_analytics_rejects_unknown_window(user):
    with pytest.raises(ValidationError):
        StatsService.analytics(10, now=NOW, user=user)
    with pytest.raises(ValidationError):
        StatsService.analytics(7, tz_name='Nowhere/Land', now=NOW, user=user)


def test_system_wide_analytics(user, make_user, make_job, make_log):
    make_log(make_job(user), 'SUCCESS', started_at=datetime(2024, 6, 10, 8, 0))
    make_log(make_job(make_user()), 'SUCCESS', started_at=datetime(2024, 6, 10, 8, 0))

    assert StatsService.analytics(7, now=NOW)['total'] == 2


def test_plan_distribution_omits_empty_plans(make_user):
    make_user(plan=Plan.FREE.value)
    make_user(plan=Plan.FREE.value)
    make_user(plan=Plan.PRO.value)

    assert StatsService.plan_distribution() == [
        {'plan': 'FREE', 'count': 2},
        {'plan': 'PRO', 'count': 1},
    ]


def test_admin_stats(admin, user, make_job, make_log):
    job = make_job(user)
    make_log(job, 'SUCCESS')

    stats = StatsService.admin_stats()
    assert stats['users']['total'] == 2
    assert stats['users']['admins'] == 1
    assert stats['jobs']['active'] == 1
    assert stats['executions']['successRate'] == 100.0
    assert stats['recentExecutions'][0]['cronJob']['user']['email'] == user.email
