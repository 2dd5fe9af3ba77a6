"""
Validation and de-duplication rules for ring periods.

Periods are identified by ``(day, startTime)`` when they carry a day and by
``(startTime, duration)`` otherwise. Start and end times are fixed-width 24h
strings, so plain string comparison orders them correctly.
"""
import datetime
import re
from typing import Any, Dict, Iterable, List, Sequence, Tuple

from bell_scheduler.constants import (
    EXAM_DAY,
    MAX_RING_DURATION,
    MIN_RING_DURATION,
    VALID_DAYS,
)
from bell_scheduler.exceptions import (
    InvalidDay,
    InvalidDuration,
    InvalidSchedule,
    InvalidTimeFormat,
    InvalidTimeRange,
    MissingDay,
    ValidationError,
)
from bell_scheduler.models.model import MergedSchedule, Period, Schedule

TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")

_EPOCH = datetime.datetime.min.replace(tzinfo=datetime.timezone.utc)


def validate_duration(duration: Any) -> int:
    # bool is an int subclass, reject it explicitly
    if isinstance(duration, bool) or not isinstance(duration, int):
        raise InvalidDuration(
            f"Duration must be a whole number of seconds, got {duration!r}"
        )
    if not MIN_RING_DURATION <= duration <= MAX_RING_DURATION:
        raise InvalidDuration(
            f"Duration must be between {MIN_RING_DURATION} and {MAX_RING_DURATION} seconds"
        )
    return duration


def validate_day(day: str) -> str:
    if day not in VALID_DAYS:
        raise InvalidDay(f"Unknown day '{day}'")
    return day


def validate(period: Period, day_scoped: bool = True) -> None:
    """
    Check a single period.

    Raises:
        InvalidTimeFormat: start or end time is not HH:MM
        InvalidTimeRange: start time is not before end time
        InvalidDuration: duration outside [1, 30] seconds
        MissingDay: no day while day-scoped semantics are in effect
        InvalidDay: day is neither a weekday name nor ExamDay
    """
    for label, value in (("startTime", period.start_time), ("endTime", period.end_time)):
        if not isinstance(value, str) or not TIME_PATTERN.match(value):
            raise InvalidTimeFormat(f"{label} must be HH:MM in 24h format, got {value!r}")

    if period.start_time >= period.end_time:
        raise InvalidTimeRange(
            f"startTime {period.start_time} must be before endTime {period.end_time}"
        )

    validate_duration(period.duration)

    if period.day is None or period.day == "":
        if day_scoped:
            raise MissingDay(f"Period '{period.name}' has no day")
    else:
        validate_day(period.day)


def validate_all(periods: Sequence[Period], day_scoped: bool = True) -> None:
    """Validate every period and reject the whole batch if any one fails."""
    errors: List[Dict[str, Any]] = []
    for index, period in enumerate(periods):
        try:
            validate(period, day_scoped=day_scoped)
        except ValidationError as e:
            errors.append({"index": index, "name": period.name, "error": e.error, "message": e.message})
    if errors:
        raise InvalidSchedule(errors)


def dedupe_key(period: Period) -> Tuple[str, ...]:
    if period.day:
        return ("day", period.day, period.start_time)
    return ("slot", period.start_time, str(period.duration))


def dedupe_periods(periods: Iterable[Period]) -> List[Period]:
    """Collapse periods sharing a key; the last one written wins."""
    unique: Dict[Tuple[str, ...], Period] = {}
    for period in periods:
        unique[dedupe_key(period)] = period
    return list(unique.values())


def merge_all(schedules: Sequence[Schedule]) -> List[Period]:
    """
    Flatten several stored schedules into one period list.

    Rows are visited most recent ``updated_at`` first; the first period seen for
    a key wins, so the newest row takes precedence. Ties keep input order.
    """
    ordered = sorted(
        schedules,
        key=lambda s: s.updated_at or _EPOCH,
        reverse=True,
    )
    seen = set()
    merged: List[Period] = []
    for schedule in ordered:
        for period in schedule.periods:
            key = dedupe_key(period)
            if key in seen:
                continue
            seen.add(key)
            merged.append(period)
    return merged


def periods_for_delivery(periods: Sequence[Period]) -> Tuple[List[Period], bool]:
    """
    Apply exam mode: when any ExamDay period exists only ExamDay periods
    are delivered. Regular-day periods stay stored.

    Returns:
        (periods to deliver, whether exam mode is active)
    """
    exam_periods = [p for p in periods if p.day == EXAM_DAY]
    if exam_periods:
        return exam_periods, True
    return list(periods), False


def build_merged_schedule(schedules: Sequence[Schedule]) -> MergedSchedule:
    periods, exam_mode = periods_for_delivery(merge_all(schedules))
    return MergedSchedule(
        periods=periods,
        total_schedules=len(schedules),
        exam_mode=exam_mode,
    )
