# taskweave/core/triggers/calculator.py
from __future__ import annotations
import calendar
from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError
from typing import Optional
from taskweave.core.models.schedule import (
    DailySchedule,
    HourlySchedule,
    IntervalSchedule,
    MonthlySchedule,
    SchedulePattern,
    ScheduledPolicy,
    Weekday,
    WeeklySchedule,
)

WEEKDAY_MAP = {
    Weekday.MONDAY: 0,
    Weekday.TUESDAY: 1,
    Weekday.WEDNESDAY: 2,
    Weekday.THURSDAY: 3,
    Weekday.FRIDAY: 4,
    Weekday.SATURDAY: 5,
    Weekday.SUNDAY: 6,
}


def calculate_next_run(
    pattern: SchedulePattern, from_time: datetime, tz_str: str = 'UTC'
) -> datetime:
    """
    Next fire time of a recurrence pattern strictly after ``from_time``.

    Args:
        pattern: interval, hourly, daily, weekly or monthly pattern
        from_time: timezone-aware reference time
        tz_str: IANA zone the wall-clock fields are read in

    Returns:
        UTC-aware datetime

    Raises:
        ValueError: naive ``from_time`` or unknown timezone
    """
    if from_time.tzinfo is None:
        raise ValueError('from_time must be timezone-aware')
    try:
        tz = ZoneInfo(tz_str)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValueError(f"Invalid timezone '{tz_str}': {e}") from e

    local_time = from_time.astimezone(tz)

    match pattern:
        case IntervalSchedule():
            next_run = from_time + timedelta(seconds=pattern.total_seconds())
        case HourlySchedule():
            next_run = _next_hourly(pattern, local_time, tz)
        case DailySchedule():
            next_run = _next_matching_day(
                local_time, tz, pattern.time.hour, pattern.time.minute, pattern.time.second,
                horizon_days=8,
            )
        case WeeklySchedule():
            weekdays = {WEEKDAY_MAP[d] for d in pattern.days}
            next_run = _next_matching_day(
                local_time, tz, pattern.time.hour, pattern.time.minute, pattern.time.second,
                horizon_days=15, weekdays=weekdays,
            )
        case MonthlySchedule():
            next_run = _next_monthly(pattern, local_time, tz)

    return next_run.astimezone(timezone.utc)


def next_fire_time(
    policy: ScheduledPolicy, now: datetime, last_fired: Optional[datetime] = None,
) -> Optional[datetime]:
    """
    When a scheduled policy fires next, or None when it never fires again.

    A one-shot ``at`` fires once; if it already lies in the past when
    armed it fires right away.
    """
    if policy.at is not None:
        if last_fired is not None:
            return None
        return policy.at.astimezone(timezone.utc)
    assert policy.pattern is not None
    return calculate_next_run(policy.pattern, now, policy.timezone)


def _next_hourly(pattern: HourlySchedule, local_time: datetime, tz: ZoneInfo) -> datetime:
    for hour_offset in range(0, 6):
        hour_base = local_time + timedelta(hours=hour_offset)
        candidate = _resolve_local_datetime(
            hour_base.date(), hour_base.hour, pattern.minute, pattern.second, tz,
        )
        if candidate is not None and candidate > local_time:
            return candidate
    raise RuntimeError('Could not calculate next hourly run within 6 hours')


def _next_matching_day(
    local_time: datetime,
    tz: ZoneInfo,
    hour: int,
    minute: int,
    second: int,
    *,
    horizon_days: int,
    weekdays: set[int] | None = None,
) -> datetime:
    """First day within the horizon (optionally restricted to weekdays) whose wall time exists and is ahead."""
    for day_offset in range(0, horizon_days):
        candidate_date = (local_time + timedelta(days=day_offset)).date()
        if weekdays is not None and candidate_date.weekday() not in weekdays:
            continue
        candidate = _resolve_local_datetime(candidate_date, hour, minute, second, tz)
        if candidate is not None and candidate > local_time:
            return candidate
    raise RuntimeError(f'Could not calculate next run within {horizon_days - 1} days')


def _next_monthly(pattern: MonthlySchedule, local_time: datetime, tz: ZoneInfo) -> datetime:
    for month_offset in range(0, 25):
        year, month = _add_months(local_time.year, local_time.month, month_offset)
        if pattern.day > calendar.monthrange(year, month)[1]:
            continue
        candidate = _resolve_local_datetime(
            date(year, month, pattern.day),
            pattern.time.hour,
            pattern.time.minute,
            pattern.time.second,
            tz,
        )
        if candidate is not None and candidate > local_time:
            return candidate
    raise RuntimeError('Could not calculate next monthly run within 24 months')


def _add_months(year: int, month: int, month_offset: int) -> tuple[int, int]:
    base = (year * 12) + (month - 1) + month_offset
    return (base // 12, (base % 12) + 1)


def _resolve_local_datetime(
    date_value: date,
    hour: int,
    minute: int,
    second: int,
    tz: ZoneInfo,
) -> Optional[datetime]:
    """
    Wall-clock date/time in ``tz`` as a real instant.

    None for nonexistent local times (spring-forward gaps); the earlier
    instant for ambiguous ones (fall-back).
    """
    naive = datetime(date_value.year, date_value.month, date_value.day, hour, minute, second)
    valid: list[datetime] = []
    for fold in (0, 1):
        candidate = naive.replace(tzinfo=tz, fold=fold)
        roundtrip = candidate.astimezone(timezone.utc).astimezone(tz)
        if roundtrip.replace(tzinfo=None) == naive:
            valid.append(candidate)
    if not valid:
        return None
    valid.sort(key=lambda dt: dt.astimezone(timezone.utc))
    return valid[0]
