"""Pure calendar helpers for report schedules: next-run computation and date-range keywords."""

from __future__ import annotations

import calendar
import logging
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Iterator, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from report_engine.schemas.reporting import ScheduleFrequency
from report_engine.services.report_errors import DefinitionError
from report_engine.services.report_query_planner import ResolvedDateRange

logger = logging.getLogger(__name__)

DEFAULT_TIME_OF_DAY = "08:00"
DEFAULT_DAY_OF_WEEK = 1
DEFAULT_DAY_OF_MONTH = 1
QUARTER_START_MONTHS = (1, 4, 7, 10)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive values (as read back from sqlite) as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def resolve_timezone(name: Optional[str]) -> tzinfo:
    if not name:
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone '%s'; falling back to UTC", name)
        return timezone.utc


def parse_time_of_day(value: Optional[str]) -> Tuple[int, int]:
    raw = (value or DEFAULT_TIME_OF_DAY).strip()
    try:
        hours_text, minutes_text = raw.split(":", 1)
        hours, minutes = int(hours_text), int(minutes_text)
    except ValueError as exc:
        raise ValueError(f"Invalid time of day '{raw}'; expected HH:MM.") from exc
    if not (0 <= hours <= 23 and 0 <= minutes <= 59):
        raise ValueError(f"Invalid time of day '{raw}'; expected HH:MM.")
    return hours, minutes


def _clamped_day(year: int, month: int, day: int) -> date:
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day, last_day))


def _add_months(year: int, month: int, offset: int) -> Tuple[int, int]:
    index = year * 12 + (month - 1) + offset
    return index // 12, index % 12 + 1


def _candidate_days(
    frequency: ScheduleFrequency,
    today: date,
    day_of_week: int,
    day_of_month: int,
) -> Iterator[date]:
    """Yield candidate run days in ascending order, starting no later than today."""
    if frequency == ScheduleFrequency.DAILY:
        for offset in range(3):
            yield today + timedelta(days=offset)
        return

    if frequency == ScheduleFrequency.WEEKLY:
        # Schedules count weekdays from Sunday=0; Python counts from Monday=0.
        target = (day_of_week - 1) % 7
        first = today + timedelta(days=(target - today.weekday()) % 7)
        for offset in range(3):
            yield first + timedelta(weeks=offset)
        return

    if frequency == ScheduleFrequency.MONTHLY:
        for offset in range(3):
            year, month = _add_months(today.year, today.month, offset)
            yield _clamped_day(year, month, day_of_month)
        return

    if frequency == ScheduleFrequency.QUARTERLY:
        emitted = 0
        offset = 0
        while emitted < 3:
            year, month = _add_months(today.year, today.month, offset)
            offset += 1
            if month in QUARTER_START_MONTHS:
                emitted += 1
                yield _clamped_day(year, month, day_of_month)
        return

    raise ValueError(f"Unsupported schedule frequency: {frequency}")


def compute_next_run(
    frequency: ScheduleFrequency | str,
    *,
    time_of_day: Optional[str] = None,
    day_of_week: Optional[int] = None,
    day_of_month: Optional[int] = None,
    timezone_name: Optional[str] = None,
    now: Optional[datetime] = None,
) -> datetime:
    """Return the next firing instant as aware UTC, always strictly after ``now``.

    A ``day_of_month`` past the end of a short month fires on that month's last day.
    """
    cadence = ScheduleFrequency(frequency)
    hours, minutes = parse_time_of_day(time_of_day)
    tz = resolve_timezone(timezone_name)
    reference = ensure_utc(now) or utcnow()
    local_today = reference.astimezone(tz).date()

    weekday = DEFAULT_DAY_OF_WEEK if day_of_week is None else day_of_week
    month_day = DEFAULT_DAY_OF_MONTH if day_of_month is None else day_of_month
    if not 0 <= weekday <= 6:
        raise ValueError("Day of week must be between 0 (Sunday) and 6 (Saturday).")
    if not 1 <= month_day <= 31:
        raise ValueError("Day of month must be between 1 and 31.")

    for day in _candidate_days(cadence, local_today, weekday, month_day):
        candidate = datetime.combine(day, time(hours, minutes), tzinfo=tz).astimezone(timezone.utc)
        if candidate > reference:
            return candidate

    raise RuntimeError(f"Unable to compute the next {cadence.value} run after {reference.isoformat()}")


def next_run_for_schedule(schedule, *, now: Optional[datetime] = None) -> datetime:
    return compute_next_run(
        schedule.frequency,
        time_of_day=schedule.time,
        day_of_week=schedule.day_of_week,
        day_of_month=schedule.day_of_month,
        timezone_name=schedule.timezone,
        now=now,
    )


def _quarter_start(value: date) -> date:
    return date(value.year, ((value.month - 1) // 3) * 3 + 1, 1)


def _week_start(value: date) -> date:
    # Weeks run Sunday through Saturday.
    return value - timedelta(days=(value.weekday() + 1) % 7)


def _local_days(keyword: str, today: date) -> Tuple[date, date]:
    if keyword == "today":
        return today, today
    if keyword in {"yesterday", "previous_day", "daily"}:
        yesterday = today - timedelta(days=1)
        return yesterday, yesterday
    if keyword == "last_7_days":
        return today - timedelta(days=6), today
    if keyword == "last_30_days":
        return today - timedelta(days=29), today
    if keyword == "this_week":
        return _week_start(today), today
    if keyword in {"previous_week", "last_week", "weekly"}:
        start = _week_start(today) - timedelta(weeks=1)
        return start, start + timedelta(days=6)
    if keyword == "this_month":
        return today.replace(day=1), today
    if keyword in {"previous_month", "last_month", "monthly"}:
        end = today.replace(day=1) - timedelta(days=1)
        return end.replace(day=1), end
    if keyword == "this_quarter":
        return _quarter_start(today), today
    if keyword in {"previous_quarter", "last_quarter", "quarterly"}:
        end = _quarter_start(today) - timedelta(days=1)
        return _quarter_start(end), end
    raise DefinitionError(f"Unknown date range '{keyword}'.")


def resolve_date_range(
    keyword: str,
    *,
    now: Optional[datetime] = None,
    timezone_name: Optional[str] = None,
) -> ResolvedDateRange:
    """Resolve a keyword such as ``previous_week`` into inclusive UTC bounds for a local calendar."""
    tz = resolve_timezone(timezone_name)
    reference = ensure_utc(now) or utcnow()
    start_day, end_day = _local_days(keyword.strip().lower(), reference.astimezone(tz).date())
    return ResolvedDateRange(
        start=datetime.combine(start_day, time.min, tzinfo=tz).astimezone(timezone.utc),
        end=datetime.combine(end_day, time.max, tzinfo=tz).astimezone(timezone.utc),
    )


def schedule_date_range(schedule, *, now: Optional[datetime] = None) -> ResolvedDateRange:
    """The override keyword wins; otherwise the period just closed by the cadence."""
    keyword = schedule.date_range_override or schedule.frequency
    return resolve_date_range(keyword, now=now, timezone_name=schedule.timezone)


__all__ = [
    "DEFAULT_TIME_OF_DAY",
    "compute_next_run",
    "ensure_utc",
    "next_run_for_schedule",
    "parse_time_of_day",
    "resolve_date_range",
    "resolve_timezone",
    "schedule_date_range",
    "utcnow",
]
