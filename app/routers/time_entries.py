"""Time log entry endpoints - time tracking operations."""
from datetime import date, datetime
from typing import Optional, Union

from fastapi import APIRouter, Depends, Query, status

from app.config import settings
from app.database import get_database
from app.models.time_entry import (
    CurrentEntryState,
    IdleState,
    RunningState,
    TimeEntry,
    TimeEntryCreate,
    TimeEntryStop,
    TimeEntryUpdate,
    TitleSuggestion,
)
from app.models.week import MonthCalendar, WeekView
from app.routers.auth import get_current_user_id
from app.services.auth_service import AuthService
from app.services.timer_service import TimerService
from app.services.week_aggregator import month_calendar, resolve_timezone, week_start_for
from app.utils.clock import Clock, get_clock


router = APIRouter(prefix="/time-log-entries", tags=["time-log-entries"])


def _local_today(clock: Clock, tz: str) -> date:
    return clock.now().astimezone(resolve_timezone(tz)).date()


@router.get("", response_model=WeekView)
async def get_week(
    week_start: Optional[date] = Query(None),
    timezone: str = Query(settings.default_timezone),
    user_id: str = Depends(get_current_user_id),
    db=Depends(get_database),
    clock: Clock = Depends(get_clock),
):
    """
    Week view of the authenticated user's entries.

    - Defaults to the current week, per the user's start-of-week setting
    - Days are in the given IANA timezone, most recent first
    - Entries spanning midnight are split across days
    """
    if week_start is None:
        user_settings = await AuthService(db).get_settings(user_id)
        week_start = week_start_for(_local_today(clock, timezone), user_settings.start_of_week)

    service = TimerService(db, clock)
    return await service.get_week_view(user_id=user_id, tz=timezone, week_start=week_start)


@router.get("/active", response_model=CurrentEntryState)
async def get_active_entry(
    user_id: str = Depends(get_current_user_id),
    db=Depends(get_database),
    clock: Clock = Depends(get_clock),
) -> Union[IdleState, RunningState]:
    """
    Current entry state: idle, or running with elapsed duration.
    """
    service = TimerService(db, clock)
    return await service.get_current_state(user_id=user_id)


@router.get("/autocomplete", response_model=list[TitleSuggestion])
async def autocomplete(
    query: str = Query(""),
    limit: int = Query(10, ge=1, le=50),
    user_id: str = Depends(get_current_user_id),
    db=Depends(get_database),
):
    """
    Suggest titles of earlier entries.

    - Every word of the query must occur in the title (case-insensitive)
    - One suggestion per title, most recently used first
    """
    service = TimerService(db)
    return await service.search_titles(user_id=user_id, query=query, limit=limit)


@router.get("/calendar", response_model=MonthCalendar)
async def get_calendar(
    year: int = Query(...),
    month: int = Query(...),
    selected: Optional[date] = Query(None),
    timezone: str = Query(settings.default_timezone),
    user_id: str = Depends(get_current_user_id),
    db=Depends(get_database),
    clock: Clock = Depends(get_clock),
):
    """
    Month calendar for the date picker.

    - Only the exact selected date is flagged, in whichever month is shown
    """
    user_settings = await AuthService(db).get_settings(user_id)
    return month_calendar(
        year=year,
        month=month,
        selected=selected,
        start_of_week=user_settings.start_of_week,
        today=_local_today(clock, timezone),
    )


@router.post("", response_model=TimeEntry, status_code=status.HTTP_201_CREATED)
async def create_entry(
    entry_create: TimeEntryCreate,
    user_id: str = Depends(get_current_user_id),
    db=Depends(get_database),
    clock: Clock = Depends(get_clock),
):
    """
    Start a new entry.

    - Only one entry can run at a time
    - With stop_active_entry, the running entry is stopped first
    """
    service = TimerService(db, clock)
    return await service.create_entry(
        user_id=user_id,
        title=entry_create.title,
        start_time=entry_create.start_time,
        tags=entry_create.tags,
        stop_active_entry=entry_create.stop_active_entry,
    )


@router.get("/{entry_id}", response_model=TimeEntry)
async def get_entry(
    entry_id: str,
    user_id: str = Depends(get_current_user_id),
    db=Depends(get_database),
):
    """
    Get a specific time entry by ID.

    - User must own the entry
    """
    service = TimerService(db)
    return await service.get_entry(user_id=user_id, entry_id=entry_id)


@router.put("/{entry_id}", response_model=TimeEntry)
async def update_entry(
    entry_id: str,
    entry_update: TimeEntryUpdate,
    user_id: str = Depends(get_current_user_id),
    db=Depends(get_database),
    clock: Clock = Depends(get_clock),
):
    """
    Update a time entry.

    - Only supplied fields change
    - End time must stay after start time; neither may be in the future
    - Setting an end time on the running entry stops it
    """
    service = TimerService(db, clock)
    return await service.edit_entry(
        user_id=user_id,
        entry_id=entry_id,
        title=entry_update.title,
        start_time=entry_update.start_time,
        end_time=entry_update.end_time,
        tags=entry_update.tags,
    )


@router.put("/{entry_id}/stop", response_model=TimeEntry)
async def stop_entry(
    entry_id: str,
    entry_stop: Optional[TimeEntryStop] = None,
    user_id: str = Depends(get_current_user_id),
    db=Depends(get_database),
    clock: Clock = Depends(get_clock),
):
    """
    Stop a running entry.

    - Stopping an already stopped entry is a conflict
    """
    end_time: Optional[datetime] = entry_stop.end_time if entry_stop else None
    service = TimerService(db, clock)
    return await service.stop_entry(user_id=user_id, entry_id=entry_id, end_time=end_time)


@router.delete("/{entry_id}")
async def delete_entry(
    entry_id: str,
    user_id: str = Depends(get_current_user_id),
    db=Depends(get_database),
):
    """
    Delete a time entry.

    - User must own the entry
    - Hard delete (permanent)
    """
    service = TimerService(db)
    return await service.delete_entry(user_id=user_id, entry_id=entry_id)
