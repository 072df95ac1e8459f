"""Week view model definitions."""
from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel


class EntryOccurrence(BaseModel):
    """
    The part of one time entry that falls inside one calendar day.

    ``entry_duration_seconds`` is the length of the whole entry and is only
    set on the occurrence of the day the entry started. An entry that started
    before the viewed week therefore shows per-day durations only.
    """

    entry_id: str
    title: str
    tags: list[str] = []
    start_time: datetime
    end_time: Optional[datetime] = None
    duration_seconds: int
    is_start_day: bool
    entry_duration_seconds: Optional[int] = None
    is_running: bool = False
    overlapping_entry_title: Optional[str] = None


class OccurrenceGroup(BaseModel):
    """
    Occurrences of one day sharing the same title and tag set.

    ``start_time`` is the latest start and ``earliest_start_time`` the first.
    ``end_time`` is None while any member is running. The total only counts
    stopped members.
    """

    group_id: str
    title: str
    tags: list[str] = []
    occurrences: list[EntryOccurrence]
    start_time: datetime
    earliest_start_time: datetime
    end_time: Optional[datetime] = None
    total_duration_seconds: int

    @property
    def is_grouped(self) -> bool:
        return len(self.occurrences) > 1


class DayBucket(BaseModel):
    """Occurrences of a single local calendar day."""

    date: date
    occurrences: list[EntryOccurrence]
    groups: list[OccurrenceGroup] = []
    total_duration_seconds: int


class WeekView(BaseModel):
    """Seven-day window rendered in the viewer's timezone."""

    week_start: date
    week_end: date
    timezone: str
    days: list[DayBucket]
    total_duration_seconds: int


class CalendarDay(BaseModel):
    """One cell of a month calendar."""

    date: date
    in_month: bool
    is_selected: bool
    is_today: bool = False


class MonthCalendar(BaseModel):
    """Month calendar laid out in week rows."""

    year: int
    month: int
    weeks: list[list[CalendarDay]]
