"""
Cron expression arithmetic.

Expressions are evaluated against the wall clock of the job's timezone and
the resulting instants are returned as naive UTC datetimes.

Daylight-saving policy:
- a local time that does not exist (spring-forward gap) fires at the first
  valid instant after the gap;
- a local time that occurs twice (fall-back) fires on its first occurrence
  only.
Several local matches that resolve to the same instant fire once, because
callers always ask for the first instant strictly after the previous one.
"""

import logging
from datetime import datetime, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from croniter import croniter

from cronops.errors import ValidationError

logger = logging.getLogger(__name__)

CRON_ALIASES = ('@yearly', '@annually', '@monthly', '@weekly', '@daily', '@midnight', '@hourly')

# Enough to walk through a repeated hour of a per-second expression
MAX_ITERATIONS = 100000


def _croniter_kwargs(expression):
    # Six-field expressions carry seconds as the first field
    return {'second_at_beginning': True} if len(expression.split()) == 6 else {}


def validate_cron_expression(expression):
    """Reject anything the scheduler could not evaluate later"""
    if not isinstance(expression, str) or not expression.strip():
        raise ValidationError('cronExpression is required')

    expression = ' '.join(expression.split())
    if expression.lower() in CRON_ALIASES:
        return expression.lower()

    if len(expression.split()) not in (5, 6):
        raise ValidationError(
            f"Invalid cron expression '{expression}': expected 5 fields, or 6 with a leading seconds field"
        )

    try:
        itr = croniter(expression, datetime(2000, 1, 1), **_croniter_kwargs(expression))
        itr.get_next(datetime)
    except (ValueError, KeyError) as e:
        raise ValidationError(f"Invalid cron expression '{expression}': {e}")
    return expression


def get_zone(name):
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValidationError(f"Unknown timezone '{name}'")


def validate_timezone(name):
    if not isinstance(name, str) or not name.strip():
        raise ValidationError('timezone must be an IANA zone name')
    get_zone(name.strip())
    return name.strip()


def _local_wall(instant, zone):
    return instant.astimezone(zone).replace(tzinfo=None)


def resolve_local_time(wall, zone):
    """Map a naive local wall time onto an aware UTC instant"""
    first = wall.replace(tzinfo=zone, fold=0).astimezone(timezone.utc)
    if _local_wall(first, zone) == wall:
        # Exists; fold=0 is the first occurrence of an ambiguous time
        return first

    # Inside a gap. The transition lies between the two fold readings; find
    # the earliest instant whose wall time is not before the requested one.
    second = wall.replace(tzinfo=zone, fold=1).astimezone(timezone.utc)
    lo, hi = sorted((int(first.timestamp()), int(second.timestamp())))
    while hi - lo > 1:
        mid = (lo + hi) // 2
        if _local_wall(datetime.fromtimestamp(mid, timezone.utc), zone) >= wall:
            hi = mid
        else:
            lo = mid
    return datetime.fromtimestamp(hi, timezone.utc)


def next_run_after(expression, tz_name, after):
    """First instant strictly after ``after`` (naive UTC) matching the expression"""
    zone = get_zone(tz_name)
    after_aware = after.replace(tzinfo=timezone.utc)
    itr = croniter(expression, _local_wall(after_aware, zone), **_croniter_kwargs(expression))

    for _ in range(MAX_ITERATIONS):
        candidate = itr.get_next(datetime)
        instant = resolve_local_time(candidate, zone)
        if instant > after_aware:
            return instant.replace(tzinfo=None)

    raise ValueError(f"No run time found for '{expression}' after {after}")


def floor_to_resolution(instant, resolution_seconds):
    """Truncate a naive UTC instant to a multiple of the resolution"""
    instant = instant.replace(microsecond=0)
    if resolution_seconds <= 1:
        return instant
    epoch = int(instant.replace(tzinfo=timezone.utc).timestamp())
    floored = epoch - (epoch % resolution_seconds)
    return datetime.fromtimestamp(floored, timezone.utc).replace(tzinfo=None)
