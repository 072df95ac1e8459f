"""Timer service - business logic for time tracking."""
import logging
import re
from datetime import date, datetime, timedelta
from typing import Iterable, Optional, Union

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError
from zoneinfo import ZoneInfo

from app.exceptions import ConflictError, NotFoundError, ValidationError
from app.models.time_entry import (
    TITLE_MAX_LENGTH,
    IdleState,
    RunningState,
    TimeEntry,
    TitleSuggestion,
    normalize_tags,
)
from app.models.week import WeekView
from app.services.active_entry_tracker import ActiveEntryTracker
from app.services.week_aggregator import build_week_view, week_bounds
from app.utils.clock import Clock, ensure_utc

logger = logging.getLogger(__name__)

# Automatic stops never produce an entry shorter than this.
MIN_ENTRY_DURATION = timedelta(seconds=1)


class TimerService:
    """Service for handling time tracking operations."""

    def __init__(self, db, clock: Optional[Clock] = None):
        """Initialize service with database connection and clock."""
        self.db = db
        self.time_entries = db["time_entries"]
        self.clock = clock or Clock()
        self.tracker = ActiveEntryTracker(db)

    def _doc_to_entry(self, doc: dict) -> TimeEntry:
        """
        Convert database document to TimeEntry model.
        """
        end_time = doc.get("end_time")
        return TimeEntry(
            _id=str(doc["_id"]),
            user_id=doc["user_id"],
            title=doc["title"],
            start_time=ensure_utc(doc["start_time"]),
            end_time=ensure_utc(end_time) if end_time else None,
            tags=doc.get("tags", []),
            created_at=ensure_utc(doc["created_at"]),
            updated_at=ensure_utc(doc["updated_at"]),
        )

    def _validate_title(self, title: str) -> str:
        title = (title or "").strip()
        if not title:
            raise ValidationError("Title cannot be blank", "TITLE_REQUIRED")
        if len(title) > TITLE_MAX_LENGTH:
            raise ValidationError(
                f"Title cannot exceed {TITLE_MAX_LENGTH} characters", "TITLE_TOO_LONG"
            )
        return title

    def _validate_span(self, start_time: datetime, end_time: datetime) -> None:
        if end_time <= start_time:
            raise ValidationError(
                "End time must be after start time", "END_TIME_BEFORE_START_TIME"
            )

    def _reject_future(self, value: datetime, now: datetime, what: str) -> None:
        if value > now:
            raise ValidationError(
                f"{what.capitalize()} time cannot be in the future",
                f"{what.upper()}_TIME_IN_FUTURE",
            )

    def _parse_id(self, entry_id: str) -> ObjectId:
        try:
            return ObjectId(entry_id)
        except (InvalidId, TypeError):
            raise ValidationError("Invalid entry ID format", "INVALID_ENTRY_ID")

    async def _find_owned(self, user_id: str, entry_id: str) -> dict:
        doc = await self.time_entries.find_one({
            "_id": self._parse_id(entry_id),
            "user_id": user_id,
        })
        if not doc:
            raise NotFoundError("Time entry not found", "ENTRY_NOT_FOUND")
        return doc

    async def create_entry(
        self,
        user_id: str,
        title: str,
        start_time: Optional[datetime] = None,
        tags: Iterable[str] = (),
        stop_active_entry: bool = False,
    ) -> TimeEntry:
        """
        Start a new running entry.

        Args:
            user_id: User ID
            title: Entry title
            start_time: Optional start time (defaults to now)
            tags: Optional tags
            stop_active_entry: Stop the running entry first instead of failing

        Returns:
            Created time entry

        Raises:
            ValidationError: If title is blank or start time is in the future
            ConflictError: If another entry is running
        """
        title = self._validate_title(title)
        now = self.clock.now()
        start_time = now if start_time is None else ensure_utc(start_time)
        self._reject_future(start_time, now, "start")

        stopped = await self.stop_active_entry(user_id) if stop_active_entry else None

        entry_doc = {
            "user_id": user_id,
            "title": title,
            "start_time": start_time,
            "end_time": None,
            "tags": normalize_tags(list(tags)),
            "created_at": now,
            "updated_at": now,
        }
        try:
            entry_doc["_id"] = await self.tracker.start(entry_doc)
        except ConflictError:
            if stopped is not None:
                await self._resume(user_id, stopped)
            raise

        logger.info("Time entry started for user %s: %s", user_id, entry_doc["_id"])
        return self._doc_to_entry(entry_doc)

    async def stop_entry(
        self,
        user_id: str,
        entry_id: str,
        end_time: Optional[datetime] = None,
    ) -> TimeEntry:
        """
        Stop a running entry.

        Args:
            user_id: User ID
            entry_id: Time entry ID
            end_time: Optional end time (defaults to now)

        Returns:
            Stopped time entry

        Raises:
            NotFoundError: If entry does not exist
            ConflictError: If entry is already stopped
            ValidationError: If end time is not after start time
        """
        existing = await self._find_owned(user_id, entry_id)
        if existing.get("end_time") is not None:
            logger.debug("Entry %s already stopped", entry_id)
            raise ConflictError("Time entry is already stopped", "ENTRY_ALREADY_STOPPED")

        now = self.clock.now()
        end_time = now if end_time is None else ensure_utc(end_time)
        self._reject_future(end_time, now, "end")
        self._validate_span(ensure_utc(existing["start_time"]), end_time)
        return await self._write_stop(user_id, existing, end_time, now)

    async def _write_stop(
        self, user_id: str, existing: dict, end_time: datetime, now: datetime
    ) -> TimeEntry:
        updated_doc = await self.time_entries.find_one_and_update(
            {"_id": existing["_id"], "user_id": user_id, "end_time": None},
            {"$set": {"end_time": end_time, "updated_at": now}},
            return_document=ReturnDocument.AFTER,
        )
        if not updated_doc:
            raise ConflictError("Time entry is already stopped", "ENTRY_ALREADY_STOPPED")

        logger.info("Time entry stopped for user %s: %s", user_id, existing["_id"])
        return self._doc_to_entry(updated_doc)

    async def stop_active_entry(self, user_id: str) -> Optional[TimeEntry]:
        """
        Stop the running entry, if any.

        The end time is now, but at least one second after the start, so an
        entry started in the same second still ends after it began.

        Returns:
            Stopped entry, or None when nothing was running
        """
        running = await self.tracker.find_running(user_id)
        if not running:
            logger.debug("No active entry to stop for user %s", user_id)
            return None

        now = self.clock.now()
        end_time = max(now, ensure_utc(running["start_time"]) + MIN_ENTRY_DURATION)
        return await self._write_stop(user_id, running, end_time, now)

    async def _resume(self, user_id: str, stopped: TimeEntry) -> None:
        # Undo an automatic stop whose replacement entry could not be started.
        # Another running entry may already hold the slot; it then stays stopped.
        try:
            await self.time_entries.update_one(
                {
                    "_id": ObjectId(stopped.id),
                    "user_id": user_id,
                    "end_time": stopped.end_time,
                },
                {"$set": {"end_time": None}},
            )
        except DuplicateKeyError:
            logger.warning(
                "Could not resume entry %s for user %s: another entry is running",
                stopped.id,
                user_id,
            )
            return
        logger.info("Time entry resumed for user %s: %s", user_id, stopped.id)

    async def get_current_state(self, user_id: str) -> Union[IdleState, RunningState]:
        """Idle or Running state of the user, measured at now."""
        return await self.tracker.current_state(user_id, self.clock.now())

    async def get_entry(self, user_id: str, entry_id: str) -> TimeEntry:
        """
        Get a time entry owned by the user.

        Raises:
            NotFoundError: If entry does not exist
        """
        return self._doc_to_entry(await self._find_owned(user_id, entry_id))

    async def edit_entry(
        self,
        user_id: str,
        entry_id: str,
        title: Optional[str] = None,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
        tags: Optional[list[str]] = None,
    ) -> TimeEntry:
        """
        Update the supplied fields of a time entry.

        Setting an end time on the running entry stops it.

        Args:
            user_id: User ID
            entry_id: Time entry ID
            title: New title
            start_time: New start time
            end_time: New end time
            tags: New tags (replace existing)

        Returns:
            Updated time entry

        Raises:
            NotFoundError: If entry does not exist
            ValidationError: If resulting entry is invalid
        """
        existing = await self._find_owned(user_id, entry_id)
        now = self.clock.now()
        update_doc = {"updated_at": now}

        if title is not None:
            update_doc["title"] = self._validate_title(title)

        new_start = ensure_utc(existing["start_time"])
        if start_time is not None:
            new_start = ensure_utc(start_time)
            self._reject_future(new_start, now, "start")
            update_doc["start_time"] = new_start

        new_end = existing.get("end_time")
        if new_end is not None:
            new_end = ensure_utc(new_end)
        if end_time is not None:
            new_end = ensure_utc(end_time)
            self._reject_future(new_end, now, "end")
            update_doc["end_time"] = new_end

        if new_end is not None:
            self._validate_span(new_start, new_end)

        if tags is not None:
            update_doc["tags"] = normalize_tags(tags)

        updated_doc = await self.time_entries.find_one_and_update(
            {"_id": existing["_id"], "user_id": user_id},
            {"$set": update_doc},
            return_document=ReturnDocument.AFTER,
        )
        if not updated_doc:
            raise NotFoundError("Time entry not found", "ENTRY_NOT_FOUND")

        if existing.get("end_time") is None and end_time is not None:
            logger.info("Time entry stopped by edit for user %s: %s", user_id, entry_id)
        else:
            logger.info("Time entry updated for user %s: %s", user_id, entry_id)
        return self._doc_to_entry(updated_doc)

    async def delete_entry(
        self,
        user_id: str,
        entry_id: str,
    ) -> dict:
        """
        Delete a time entry.

        Args:
            user_id: User ID
            entry_id: Time entry ID

        Returns:
            Dictionary with deleted_count

        Raises:
            NotFoundError: If entry not found
        """
        existing = await self._find_owned(user_id, entry_id)

        # Hard delete for time entries
        result = await self.time_entries.delete_one({
            "_id": existing["_id"],
            "user_id": user_id,
        })

        logger.info("Time entry deleted for user %s: %s", user_id, entry_id)
        return {"deleted_count": result.deleted_count}

    async def list_entries(self, user_id: str) -> list[TimeEntry]:
        """
        List all time entries of a user, most recent first.

        Args:
            user_id: User ID

        Returns:
            List of time entries
        """
        cursor = self.time_entries.find({"user_id": user_id}).sort("start_time", -1)
        entry_docs = await cursor.to_list(length=None)
        return [self._doc_to_entry(doc) for doc in entry_docs]

    async def list_entries_in_range(
        self,
        user_id: str,
        range_start: datetime,
        range_end: datetime,
    ) -> list[TimeEntry]:
        """
        List entries overlapping ``[range_start, range_end)``.

        Running entries overlap the range if they started before its end.
        """
        query = {
            "user_id": user_id,
            "start_time": {"$lt": range_end},
            "$or": [
                {"end_time": None},
                {"end_time": {"$gt": range_start}},
            ],
        }
        cursor = self.time_entries.find(query).sort("start_time", -1)
        entry_docs = await cursor.to_list(length=None)
        return [self._doc_to_entry(doc) for doc in entry_docs]

    async def get_week_view(
        self,
        user_id: str,
        tz: Union[str, ZoneInfo],
        week_start: date,
    ) -> WeekView:
        """
        Build the week view starting at ``week_start`` in timezone ``tz``.

        Raises:
            ValidationError: If timezone is unknown
        """
        range_start, range_end = week_bounds(week_start, tz)
        entries = await self.list_entries_in_range(user_id, range_start, range_end)
        return build_week_view(entries, tz, week_start, self.clock.now())

    async def search_titles(
        self,
        user_id: str,
        query: str,
        limit: int = 10,
    ) -> list[TitleSuggestion]:
        """
        Suggest titles of earlier entries for autocomplete.

        Every whitespace-separated token must occur in the title, ignoring
        case. Each title is suggested once, from its most recent entry.

        Args:
            user_id: User ID
            query: Search text; empty matches everything
            limit: Maximum number of suggestions

        Returns:
            Suggestions, most recently used first
        """
        conditions = [
            {"title": {"$regex": re.escape(token), "$options": "i"}}
            for token in query.split()
        ]
        mongo_query = {"user_id": user_id}
        if conditions:
            mongo_query["$and"] = conditions

        cursor = self.time_entries.find(mongo_query).sort("start_time", -1)
        suggestions: list[TitleSuggestion] = []
        seen: set[str] = set()
        async for doc in cursor:
            if doc["title"] in seen:
                continue
            seen.add(doc["title"])
            suggestions.append(
                TitleSuggestion(
                    title=doc["title"],
                    tags=doc.get("tags", []),
                    last_used=ensure_utc(doc["start_time"]),
                )
            )
            if len(suggestions) >= limit:
                break
        return suggestions
