# taskweave/core/models/schedule.py
from __future__ import annotations
from datetime import datetime, time as datetime_time
from enum import Enum
from typing import Annotated, Literal, Optional, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError
from pydantic import BaseModel, ConfigDict, Field, model_validator
from typing_extensions import Self
from taskweave.core.errors import (
    ErrorCode,
    InvalidParamError,
    ValidationReport,
    raise_collected,
)


class Weekday(str, Enum):
    """Enum for days of the week."""

    MONDAY = 'monday'
    TUESDAY = 'tuesday'
    WEDNESDAY = 'wednesday'
    THURSDAY = 'thursday'
    FRIDAY = 'friday'
    SATURDAY = 'saturday'
    SUNDAY = 'sunday'


class IntervalSchedule(BaseModel):
    """
    Start the workflow every N seconds/minutes/hours/days.

    Total interval is the sum of all specified units.

    Examples:
        - Every 30 seconds: IntervalSchedule(seconds=30)
        - Every 1.5 hours: IntervalSchedule(hours=1, minutes=30)
    """

    model_config = ConfigDict(frozen=True)

    type: Literal['interval'] = 'interval'
    seconds: Optional[int] = Field(default=None, ge=1, le=86400)
    minutes: Optional[int] = Field(default=None, ge=1, le=1440)
    hours: Optional[int] = Field(default=None, ge=1, le=168)
    days: Optional[int] = Field(default=None, ge=1, le=365)

    @model_validator(mode='after')
    def validate_at_least_one_unit(self) -> Self:
        report = ValidationReport('schedule')
        if not any([self.seconds, self.minutes, self.hours, self.days]):
            report.add(
                InvalidParamError(
                    message='IntervalSchedule requires at least one time unit',
                    code=ErrorCode.CONFIG_INVALID_SCHEDULE,
                    notes=['all time units (seconds, minutes, hours, days) are None'],
                    help_text='specify at least one: seconds, minutes, hours, or days',
                )
            )
        raise_collected(report)
        return self

    def total_seconds(self) -> int:
        total = 0
        if self.seconds:
            total += self.seconds
        if self.minutes:
            total += self.minutes * 60
        if self.hours:
            total += self.hours * 3600
        if self.days:
            total += self.days * 86400
        return total


class HourlySchedule(BaseModel):
    """Every hour at XX:minute:second."""

    model_config = ConfigDict(frozen=True)

    type: Literal['hourly'] = 'hourly'
    minute: int = Field(ge=0, le=59)
    second: int = Field(default=0, ge=0, le=59)


class DailySchedule(BaseModel):
    """Every day at a wall-clock time."""

    model_config = ConfigDict(frozen=True)

    type: Literal['daily'] = 'daily'
    time: datetime_time


class WeeklySchedule(BaseModel):
    """
    On specific days of the week at a wall-clock time.

    Example:
        WeeklySchedule(days=[Weekday.MONDAY, Weekday.FRIDAY], time=time(9, 0, 0))
    """

    model_config = ConfigDict(frozen=True)

    type: Literal['weekly'] = 'weekly'
    days: list[Weekday] = Field(min_length=1)
    time: datetime_time

    @model_validator(mode='after')
    def validate_unique_days(self) -> Self:
        report = ValidationReport('schedule')
        if len(self.days) != len(set(self.days)):
            report.add(
                InvalidParamError(
                    message='WeeklySchedule has duplicate days',
                    code=ErrorCode.CONFIG_INVALID_SCHEDULE,
                    notes=[f'days: {[d.value for d in self.days]}'],
                    help_text='each day should appear only once in the list',
                )
            )
        raise_collected(report)
        return self


class MonthlySchedule(BaseModel):
    """
    On a day of the month at a wall-clock time.

    Months shorter than ``day`` are skipped.
    """

    model_config = ConfigDict(frozen=True)

    type: Literal['monthly'] = 'monthly'
    day: int = Field(ge=1, le=31)
    time: datetime_time


SchedulePattern = Annotated[
    Union[
        IntervalSchedule,
        HourlySchedule,
        DailySchedule,
        WeeklySchedule,
        MonthlySchedule,
    ],
    Field(discriminator='type'),
]


# =============================================================================
# Trigger policies
# =============================================================================


class ImmediatePolicy(BaseModel):
    """No automatic triggering: executions start only through ``start``."""

    model_config = ConfigDict(frozen=True)

    type: Literal['immediate'] = 'immediate'


class ScheduledPolicy(BaseModel):
    """
    Timer-driven policy.

    Fields:
        - at: one-shot start time (timezone-aware)
        - pattern: recurrence rule; exactly one of ``at``/``pattern`` is set
        - timezone: IANA zone used to evaluate ``pattern``
        - allow_overlap: fire even while an earlier execution is still live
    """

    model_config = ConfigDict(frozen=True)

    type: Literal['scheduled'] = 'scheduled'
    at: Optional[datetime] = None
    pattern: Optional[SchedulePattern] = None
    timezone: str = 'UTC'
    allow_overlap: bool = False

    @model_validator(mode='after')
    def validate_policy(self) -> Self:
        report = ValidationReport('schedule')
        if (self.at is None) == (self.pattern is None):
            report.add(
                InvalidParamError(
                    message='scheduled policy needs exactly one of `at` or `pattern`',
                    code=ErrorCode.CONFIG_INVALID_SCHEDULE,
                    notes=[f'at={self.at!r}, pattern={self.pattern!r}'],
                    help_text='use `at` for a one-shot start, `pattern` for a recurring one',
                )
            )
        if self.at is not None and self.at.tzinfo is None:
            report.add(
                InvalidParamError(
                    message='`at` must be timezone-aware',
                    code=ErrorCode.CONFIG_INVALID_SCHEDULE,
                    notes=[f'at={self.at.isoformat()}'],
                    help_text='attach a tzinfo, e.g. datetime(..., tzinfo=timezone.utc)',
                )
            )
        try:
            ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError):
            report.add(
                InvalidParamError(
                    message=f"unknown timezone '{self.timezone}'",
                    code=ErrorCode.CONFIG_INVALID_SCHEDULE,
                    help_text='use an IANA zone name such as "UTC" or "Europe/Istanbul"',
                )
            )
        raise_collected(report)
        return self


class ConditionalPolicy(BaseModel):
    """
    Predicate-driven policy.

    ``condition`` is opaque to the engine; the rule evaluator decides it.
    With ``edge_triggered`` the workflow starts only on a False -> True
    transition, otherwise on every positive evaluation.
    """

    model_config = ConfigDict(frozen=True)

    type: Literal['conditional'] = 'conditional'
    condition: str
    check_interval_seconds: Optional[float] = Field(default=None, gt=0)
    edge_triggered: bool = True
    allow_overlap: bool = False

    @model_validator(mode='after')
    def validate_condition(self) -> Self:
        report = ValidationReport('schedule')
        if not self.condition.strip():
            report.add(
                InvalidParamError(
                    message='conditional policy needs a non-empty condition',
                    code=ErrorCode.CONFIG_INVALID_SCHEDULE,
                )
            )
        raise_collected(report)
        return self


TriggerPolicy = Annotated[
    Union[ImmediatePolicy, ScheduledPolicy, ConditionalPolicy],
    Field(discriminator='type'),
]

POLICY_NAMES: frozenset[str] = frozenset({'immediate', 'scheduled', 'conditional'})
