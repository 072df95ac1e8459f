"""Week view aggregation - day buckets of time entries in a viewer timezone."""
import calendar
from datetime import date, datetime, time, timedelta, timezone
from typing import Iterable, Optional, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from app.exceptions import ValidationError
from app.models.time_entry import TimeEntry
from app.models.user import WeekDay
from app.models.week import (
    CalendarDay,
    DayBucket,
    EntryOccurrence,
    MonthCalendar,
    OccurrenceGroup,
    WeekView,
)
from app.utils.clock import ensure_utc

DAYS_IN_WEEK = 7

# Overlaps up to this long are treated as touching boundaries.
OVERLAP_TOLERANCE = timedelta(seconds=1)


def resolve_timezone(tz: Union[str, ZoneInfo]) -> ZoneInfo:
    """
    Resolve an IANA timezone name.

    Raises:
        ValidationError: If the name is unknown
    """
    if isinstance(tz, ZoneInfo):
        return tz
    try:
        return ZoneInfo(tz)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValidationError(f"Unknown timezone: {tz}", "INVALID_TIMEZONE")


def local_midnight(day: date, tz: ZoneInfo) -> datetime:
    """Start of ``day`` in ``tz`` as an aware UTC instant."""
    return datetime.combine(day, time.min, tzinfo=tz).astimezone(timezone.utc)


def week_start_for(day: date, start_of_week: WeekDay = WeekDay.MONDAY) -> date:
    """
    First day of the week containing ``day``.

    Examples:
        >>> week_start_for(date(2024, 3, 15), WeekDay.MONDAY)
        datetime.date(2024, 3, 11)
        >>> week_start_for(date(2024, 3, 15), WeekDay.SUNDAY)
        datetime.date(2024, 3, 10)
    """
    diff = (day.weekday() - start_of_week.weekday) % DAYS_IN_WEEK
    return day - timedelta(days=diff)


def week_bounds(week_start: date, tz: Union[str, ZoneInfo]) -> tuple[datetime, datetime]:
    """UTC instants delimiting the 7-day window starting at ``week_start``."""
    zone = resolve_timezone(tz)
    return (
        local_midnight(week_start, zone),
        local_midnight(week_start + timedelta(days=DAYS_IN_WEEK), zone),
    )


def _entry_span(entry: TimeEntry, now: datetime) -> tuple[datetime, datetime]:
    # Whole seconds, so per-day durations add up to the entry duration.
    start = ensure_utc(entry.start_time).replace(microsecond=0)
    if entry.end_time is None:
        end = max(now.replace(microsecond=0), start)
    else:
        end = ensure_utc(entry.end_time).replace(microsecond=0)
    return start, end


def _occurrence(
    entry: TimeEntry,
    day_start: datetime,
    day_end: datetime,
    tz: ZoneInfo,
    now: datetime,
) -> Optional[EntryOccurrence]:
    start, end = _entry_span(entry, now)
    overlap_start = max(start, day_start)
    overlap_end = min(end, day_end)
    if overlap_end <= overlap_start:
        return None

    is_start_day = day_start <= start < day_end
    running = entry.end_time is None
    return EntryOccurrence(
        entry_id=entry.id,
        title=entry.title,
        tags=list(entry.tags),
        start_time=overlap_start.astimezone(tz),
        end_time=None if running and overlap_end == end else overlap_end.astimezone(tz),
        duration_seconds=int((overlap_end - overlap_start).total_seconds()),
        is_start_day=is_start_day,
        entry_duration_seconds=int((end - start).total_seconds()) if is_start_day else None,
        is_running=running,
    )


def _mark_overlaps(occurrences: list[EntryOccurrence]) -> None:
    # Running entries are never flagged, not even on the earlier days they span
    stopped = [o for o in occurrences if not o.is_running]
    for i, first in enumerate(stopped):
        for second in stopped[i + 1:]:
            overlap = min(first.end_time, second.end_time) - max(
                first.start_time, second.start_time
            )
            if overlap > OVERLAP_TOLERANCE:
                if first.overlapping_entry_title is None:
                    first.overlapping_entry_title = second.title
                if second.overlapping_entry_title is None:
                    second.overlapping_entry_title = first.title


def group_key(title: str, tags: Iterable[str]) -> str:
    """Key shared by occurrences with the same title and tag set."""
    return f"{title}|||{','.join(sorted(tags))}"


def group_occurrences(occurrences: Iterable[EntryOccurrence]) -> list[OccurrenceGroup]:
    """
    Group a day's occurrences by title and tag set.

    Every occurrence lands in exactly one group; a group of one is a plain
    entry. Groups are ordered by their latest start, most recent first.
    """
    grouped: dict[str, list[EntryOccurrence]] = {}
    for occurrence in occurrences:
        grouped.setdefault(group_key(occurrence.title, occurrence.tags), []).append(occurrence)

    groups = []
    for key, members in grouped.items():
        members = sorted(members, key=lambda o: o.start_time, reverse=True)
        running = any(o.is_running for o in members)
        groups.append(
            OccurrenceGroup(
                group_id=key,
                title=members[0].title,
                tags=sorted(members[0].tags),
                occurrences=members,
                start_time=members[0].start_time,
                earliest_start_time=members[-1].start_time,
                end_time=None if running else max(o.end_time for o in members),
                total_duration_seconds=sum(
                    o.duration_seconds for o in members if not o.is_running
                ),
            )
        )
    groups.sort(key=lambda g: g.start_time, reverse=True)
    return groups


def aggregate(
    entries: Iterable[TimeEntry],
    tz: Union[str, ZoneInfo],
    week_start: date,
    now: datetime,
) -> list[DayBucket]:
    """
    Split entries into local calendar days of a 7-day window.

    Each entry contributes one occurrence per day it overlaps, with the
    overlap length as duration. Running entries are measured up to ``now``.
    Empty days are omitted. Days are returned most recent first and the
    occurrences inside a day by start time, most recent first. Each day
    also carries its occurrences grouped by title and tag set.

    Args:
        entries: Entries of a single owner
        tz: Viewer timezone (IANA name or ZoneInfo)
        week_start: First local date of the window
        now: Current instant

    Returns:
        Non-empty day buckets
    """
    zone = resolve_timezone(tz)
    now = ensure_utc(now)
    entries = list(entries)

    buckets = []
    for offset in range(DAYS_IN_WEEK):
        day = week_start + timedelta(days=offset)
        day_start = local_midnight(day, zone)
        day_end = local_midnight(day + timedelta(days=1), zone)

        occurrences = []
        for entry in entries:
            occurrence = _occurrence(entry, day_start, day_end, zone, now)
            if occurrence is not None:
                occurrences.append(occurrence)
        if not occurrences:
            continue

        occurrences.sort(key=lambda o: o.start_time, reverse=True)
        _mark_overlaps(occurrences)
        buckets.append(
            DayBucket(
                date=day,
                occurrences=occurrences,
                groups=group_occurrences(occurrences),
                total_duration_seconds=sum(o.duration_seconds for o in occurrences),
            )
        )

    buckets.reverse()
    return buckets


def build_week_view(
    entries: Iterable[TimeEntry],
    tz: Union[str, ZoneInfo],
    week_start: date,
    now: datetime,
) -> WeekView:
    """Aggregate entries and wrap the buckets with week totals."""
    zone = resolve_timezone(tz)
    days = aggregate(entries, zone, week_start, now)
    return WeekView(
        week_start=week_start,
        week_end=week_start + timedelta(days=DAYS_IN_WEEK - 1),
        timezone=zone.key,
        days=days,
        total_duration_seconds=sum(day.total_duration_seconds for day in days),
    )


def is_selected_date(candidate: date, selected: Optional[date]) -> bool:
    """
    Whether a calendar cell shows the stored date.

    Full date equality; the same day-of-month in another month is not a match.
    """
    return selected is not None and candidate == selected


def month_calendar(
    year: int,
    month: int,
    selected: Optional[date] = None,
    start_of_week: WeekDay = WeekDay.MONDAY,
    today: Optional[date] = None,
) -> MonthCalendar:
    """
    Lay out a month as week rows, padded with days of adjacent months.

    Raises:
        ValidationError: If month is out of range
    """
    if not 1 <= month <= 12:
        raise ValidationError("Month must be between 1 and 12", "INVALID_MONTH")
    if not date.min.year < year < date.max.year:
        raise ValidationError("Year is out of range", "INVALID_YEAR")

    cal = calendar.Calendar(firstweekday=start_of_week.weekday)
    weeks = [
        [
            CalendarDay(
                date=day,
                in_month=day.month == month,
                is_selected=is_selected_date(day, selected),
                is_today=today is not None and day == today,
            )
            for day in week
        ]
        for week in cal.monthdatescalendar(year, month)
    ]
    return MonthCalendar(year=year, month=month, weeks=weeks)
