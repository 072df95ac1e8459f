"""Tests for TimerService."""
import pytest
from datetime import date, datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock
from bson import ObjectId
from pymongo.errors import DuplicateKeyError

from app.exceptions import ConflictError, NotFoundError, ValidationError
from app.utils.clock import FixedClock

NOW = datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc)


def entry_doc(**overrides):
    """Database document of a stopped entry."""
    doc = {
        "_id": ObjectId(),
        "user_id": "user123",
        "title": "Reading chapter 3",
        "start_time": NOW - timedelta(hours=2),
        "end_time": NOW - timedelta(hours=1),
        "tags": ["learning"],
        "created_at": NOW - timedelta(hours=2),
        "updated_at": NOW - timedelta(hours=1),
    }
    doc.update(overrides)
    return doc


def make_service(mock_entries):
    from app.services.timer_service import TimerService

    mock_db = MagicMock()
    mock_db.__getitem__.return_value = mock_entries
    return TimerService(mock_db, FixedClock(NOW))


def cursor_of(docs):
    """Mock Motor cursor supporting sort, to_list and async iteration."""
    mock_cursor = MagicMock()
    mock_cursor.sort.return_value = mock_cursor
    mock_cursor.to_list = AsyncMock(return_value=docs)
    mock_cursor.__aiter__.return_value = docs
    return mock_cursor


@pytest.mark.asyncio
class TestTimerServiceCreate:
    """Tests for starting entries."""

    async def test_create_entry_success(self):
        """Test starting an entry when idle."""
        mock_entries = AsyncMock()
        mock_entries.find_one.return_value = None
        mock_entries.insert_one.return_value = MagicMock(inserted_id=ObjectId())
        service = make_service(mock_entries)

        entry = await service.create_entry(
            user_id="user123",
            title="  Reading chapter 3  ",
            tags=["learning", "books", "learning"],
        )

        assert entry.title == "Reading chapter 3"
        assert entry.start_time == NOW
        assert entry.end_time is None
        assert entry.is_running
        assert entry.tags == ["learning", "books"]

        inserted = mock_entries.insert_one.call_args[0][0]
        assert inserted["end_time"] is None
        assert inserted["user_id"] == "user123"

    async def test_create_entry_with_start_time(self):
        """Test starting an entry in the past."""
        mock_entries = AsyncMock()
        mock_entries.find_one.return_value = None
        mock_entries.insert_one.return_value = MagicMock(inserted_id=ObjectId())
        service = make_service(mock_entries)

        start = NOW - timedelta(minutes=15)
        entry = await service.create_entry(user_id="user123", title="Standup", start_time=start)

        assert entry.start_time == start

    async def test_create_entry_blank_title(self):
        """Test a blank title is rejected before touching the database."""
        mock_entries = AsyncMock()
        service = make_service(mock_entries)

        with pytest.raises(ValidationError, match="Title cannot be blank"):
            await service.create_entry(user_id="user123", title="   ")

        mock_entries.insert_one.assert_not_called()

    async def test_create_entry_start_in_future(self):
        """Test a start time after now is rejected."""
        service = make_service(AsyncMock())

        with pytest.raises(ValidationError) as exc_info:
            await service.create_entry(
                user_id="user123", title="Later", start_time=NOW + timedelta(minutes=1)
            )

        assert exc_info.value.error_code == "START_TIME_IN_FUTURE"

    async def test_create_entry_while_running(self):
        """Test starting a second running entry is a conflict."""
        mock_entries = AsyncMock()
        mock_entries.find_one.return_value = entry_doc(end_time=None)
        service = make_service(mock_entries)

        with pytest.raises(ConflictError, match="another is active"):
            await service.create_entry(user_id="user123", title="Second")

        mock_entries.insert_one.assert_not_called()

    async def test_create_entry_stopping_active(self):
        """Test stop_active_entry stops the running entry first."""
        running = entry_doc(end_time=None, start_time=NOW - timedelta(hours=1))
        stopped = dict(running, end_time=NOW)

        mock_entries = AsyncMock()
        # Tracker lookup, then idle check before insert
        mock_entries.find_one.side_effect = [running, None]
        mock_entries.find_one_and_update.return_value = stopped
        mock_entries.insert_one.return_value = MagicMock(inserted_id=ObjectId())
        service = make_service(mock_entries)

        entry = await service.create_entry(
            user_id="user123", title="Continue", stop_active_entry=True
        )

        assert entry.title == "Continue"
        update = mock_entries.find_one_and_update.call_args[0][1]
        assert update["$set"]["end_time"] == NOW
        mock_entries.insert_one.assert_called_once()

    async def test_create_entry_stopping_entry_started_this_second(self):
        """Test the replaced entry ends one second after its start, not at it."""
        running = entry_doc(end_time=None, start_time=NOW)
        stopped = dict(running, end_time=NOW + timedelta(seconds=1))

        mock_entries = AsyncMock()
        mock_entries.find_one.side_effect = [running, None]
        mock_entries.find_one_and_update.return_value = stopped
        mock_entries.insert_one.return_value = MagicMock(inserted_id=ObjectId())
        service = make_service(mock_entries)

        entry = await service.create_entry(
            user_id="user123", title="Next", stop_active_entry=True
        )

        assert entry.start_time == NOW
        update = mock_entries.find_one_and_update.call_args[0][1]
        assert update["$set"]["end_time"] == NOW + timedelta(seconds=1)

    async def test_create_entry_resumes_stopped_entry_on_conflict(self):
        """Test the automatically stopped entry runs again when the start fails."""
        running = entry_doc(end_time=None, start_time=NOW - timedelta(hours=1))
        stopped = dict(running, end_time=NOW)

        mock_entries = AsyncMock()
        mock_entries.find_one.side_effect = [running, None]
        mock_entries.find_one_and_update.return_value = stopped
        mock_entries.insert_one.side_effect = DuplicateKeyError("duplicate key")
        service = make_service(mock_entries)

        with pytest.raises(ConflictError):
            await service.create_entry(
                user_id="user123", title="Continue", stop_active_entry=True
            )

        mock_entries.update_one.assert_called_once_with(
            {"_id": running["_id"], "user_id": "user123", "end_time": NOW},
            {"$set": {"end_time": None}},
        )

    async def test_create_entry_resume_blocked_by_other_running_entry(self):
        """Test the conflict is still reported when the old entry cannot resume."""
        running = entry_doc(end_time=None, start_time=NOW - timedelta(hours=1))

        mock_entries = AsyncMock()
        mock_entries.find_one.side_effect = [running, entry_doc(end_time=None)]
        mock_entries.find_one_and_update.return_value = dict(running, end_time=NOW)
        mock_entries.update_one.side_effect = DuplicateKeyError("duplicate key")
        service = make_service(mock_entries)

        with pytest.raises(ConflictError, match="another is active"):
            await service.create_entry(
                user_id="user123", title="Continue", stop_active_entry=True
            )

        mock_entries.insert_one.assert_not_called()
        mock_entries.update_one.assert_called_once()

    async def test_create_entry_conflict_without_auto_stop(self):
        """Test nothing is resumed when no entry was stopped."""
        mock_entries = AsyncMock()
        mock_entries.find_one.return_value = None
        mock_entries.insert_one.side_effect = DuplicateKeyError("duplicate key")
        service = make_service(mock_entries)

        with pytest.raises(ConflictError):
            await service.create_entry(user_id="user123", title="Parallel")

        mock_entries.update_one.assert_not_called()


@pytest.mark.asyncio
class TestTimerServiceStop:
    """Tests for stopping entries."""

    async def test_stop_entry_success(self):
        """Test stopping a running entry at now."""
        running = entry_doc(end_time=None)
        mock_entries = AsyncMock()
        mock_entries.find_one.return_value = running
        mock_entries.find_one_and_update.return_value = dict(running, end_time=NOW)
        service = make_service(mock_entries)

        entry = await service.stop_entry("user123", str(running["_id"]))

        assert entry.end_time == NOW
        query = mock_entries.find_one_and_update.call_args[0][0]
        assert query["end_time"] is None

    async def test_stop_entry_twice(self):
        """Test stopping an already stopped entry is a conflict."""
        stopped = entry_doc()
        mock_entries = AsyncMock()
        mock_entries.find_one.return_value = stopped
        service = make_service(mock_entries)

        with pytest.raises(ConflictError) as exc_info:
            await service.stop_entry("user123", str(stopped["_id"]))

        assert exc_info.value.error_code == "ENTRY_ALREADY_STOPPED"
        mock_entries.find_one_and_update.assert_not_called()

    async def test_stop_entry_not_found(self):
        """Test stopping an unknown entry."""
        mock_entries = AsyncMock()
        mock_entries.find_one.return_value = None
        service = make_service(mock_entries)

        with pytest.raises(NotFoundError, match="Time entry not found"):
            await service.stop_entry("user123", str(ObjectId()))

    async def test_stop_entry_invalid_id(self):
        """Test a malformed id is a validation error."""
        service = make_service(AsyncMock())

        with pytest.raises(ValidationError, match="Invalid entry ID format"):
            await service.stop_entry("user123", "not-an-id")

    async def test_stop_entry_end_before_start(self):
        """Test an end time not after the start is rejected."""
        running = entry_doc(end_time=None, start_time=NOW - timedelta(hours=1))
        mock_entries = AsyncMock()
        mock_entries.find_one.return_value = running
        service = make_service(mock_entries)

        with pytest.raises(ValidationError, match="End time must be after start time"):
            await service.stop_entry(
                "user123", str(running["_id"]), end_time=running["start_time"]
            )

    async def test_stop_entry_lost_race(self):
        """Test a concurrent stop between lookup and update is a conflict."""
        running = entry_doc(end_time=None)
        mock_entries = AsyncMock()
        mock_entries.find_one.return_value = running
        mock_entries.find_one_and_update.return_value = None
        service = make_service(mock_entries)

        with pytest.raises(ConflictError):
            await service.stop_entry("user123", str(running["_id"]))

    async def test_stop_active_entry_when_idle(self):
        """Test stopping the active entry when nothing runs."""
        mock_entries = AsyncMock()
        mock_entries.find_one.return_value = None
        service = make_service(mock_entries)

        assert await service.stop_active_entry("user123") is None


@pytest.mark.asyncio
class TestTimerServiceEdit:
    """Tests for editing entries."""

    async def test_edit_title_and_tags(self):
        """Test only supplied fields are updated."""
        existing = entry_doc()
        mock_entries = AsyncMock()
        mock_entries.find_one.return_value = existing
        mock_entries.find_one_and_update.return_value = dict(
            existing, title="Chapter 4", tags=["books"]
        )
        service = make_service(mock_entries)

        entry = await service.edit_entry(
            "user123", str(existing["_id"]), title="Chapter 4", tags=["books", "books"]
        )

        assert entry.title == "Chapter 4"
        update = mock_entries.find_one_and_update.call_args[0][1]["$set"]
        assert update["title"] == "Chapter 4"
        assert update["tags"] == ["books"]
        assert "start_time" not in update
        assert "end_time" not in update

    async def test_edit_start_after_end(self):
        """Test moving the start past the end is rejected."""
        existing = entry_doc()
        mock_entries = AsyncMock()
        mock_entries.find_one.return_value = existing
        service = make_service(mock_entries)

        with pytest.raises(ValidationError) as exc_info:
            await service.edit_entry(
                "user123",
                str(existing["_id"]),
                start_time=existing["end_time"] + timedelta(minutes=5),
            )

        assert exc_info.value.error_code == "END_TIME_BEFORE_START_TIME"
        mock_entries.find_one_and_update.assert_not_called()

    async def test_edit_end_in_future(self):
        """Test an end time in the future is rejected."""
        existing = entry_doc()
        mock_entries = AsyncMock()
        mock_entries.find_one.return_value = existing
        service = make_service(mock_entries)

        with pytest.raises(ValidationError) as exc_info:
            await service.edit_entry(
                "user123", str(existing["_id"]), end_time=NOW + timedelta(hours=1)
            )

        assert exc_info.value.error_code == "END_TIME_IN_FUTURE"

    async def test_edit_running_start_keeps_running(self):
        """Test changing the start of a running entry leaves it running."""
        running = entry_doc(end_time=None)
        new_start = NOW - timedelta(hours=3)
        mock_entries = AsyncMock()
        mock_entries.find_one.return_value = running
        mock_entries.find_one_and_update.return_value = dict(running, start_time=new_start)
        service = make_service(mock_entries)

        entry = await service.edit_entry("user123", str(running["_id"]), start_time=new_start)

        assert entry.start_time == new_start
        assert entry.end_time is None
        update = mock_entries.find_one_and_update.call_args[0][1]["$set"]
        assert "end_time" not in update

    async def test_edit_running_end_stops(self):
        """Test setting an end time on the running entry stops it."""
        running = entry_doc(end_time=None)
        end = NOW - timedelta(minutes=10)
        mock_entries = AsyncMock()
        mock_entries.find_one.return_value = running
        mock_entries.find_one_and_update.return_value = dict(running, end_time=end)
        service = make_service(mock_entries)

        entry = await service.edit_entry("user123", str(running["_id"]), end_time=end)

        assert entry.end_time == end
        assert not entry.is_running

    async def test_edit_not_found(self):
        """Test editing an entry of another user."""
        mock_entries = AsyncMock()
        mock_entries.find_one.return_value = None
        service = make_service(mock_entries)

        with pytest.raises(NotFoundError):
            await service.edit_entry("user123", str(ObjectId()), title="x")


@pytest.mark.asyncio
class TestTimerServiceDelete:
    """Tests for deleting entries."""

    async def test_delete_entry_success(self):
        """Test deleting an owned entry."""
        existing = entry_doc()
        mock_entries = AsyncMock()
        mock_entries.find_one.return_value = existing
        mock_entries.delete_one.return_value = MagicMock(deleted_count=1)
        service = make_service(mock_entries)

        result = await service.delete_entry("user123", str(existing["_id"]))

        assert result == {"deleted_count": 1}
        mock_entries.delete_one.assert_called_once_with(
            {"_id": existing["_id"], "user_id": "user123"}
        )

    async def test_delete_entry_not_found(self):
        """Test deleting an unknown entry."""
        mock_entries = AsyncMock()
        mock_entries.find_one.return_value = None
        service = make_service(mock_entries)

        with pytest.raises(NotFoundError):
            await service.delete_entry("user123", str(ObjectId()))

        mock_entries.delete_one.assert_not_called()


@pytest.mark.asyncio
class TestTimerServiceQueries:
    """Tests for listing, week view and autocomplete."""

    async def test_list_entries(self):
        """Test listing all entries of a user."""
        mock_entries = MagicMock()
        mock_entries.find.return_value = cursor_of([entry_doc(), entry_doc(title="Other")])
        service = make_service(mock_entries)

        entries = await service.list_entries("user123")

        assert [e.title for e in entries] == ["Reading chapter 3", "Other"]
        assert mock_entries.find.call_args[0][0] == {"user_id": "user123"}

    async def test_list_entries_in_range_query(self):
        """Test the range query includes running and overlapping entries."""
        mock_entries = MagicMock()
        mock_entries.find.return_value = cursor_of([])
        service = make_service(mock_entries)
        range_start = datetime(2024, 3, 11, tzinfo=timezone.utc)
        range_end = datetime(2024, 3, 18, tzinfo=timezone.utc)

        await service.list_entries_in_range("user123", range_start, range_end)

        query = mock_entries.find.call_args[0][0]
        assert query["start_time"] == {"$lt": range_end}
        assert {"end_time": None} in query["$or"]
        assert {"end_time": {"$gt": range_start}} in query["$or"]

    async def test_get_week_view(self):
        """Test the week view aggregates entries in the given timezone."""
        doc = entry_doc(
            start_time=datetime(2024, 3, 15, 0, 0, tzinfo=timezone.utc),
            end_time=datetime(2024, 3, 15, 1, 0, tzinfo=timezone.utc),
        )
        mock_entries = MagicMock()
        mock_entries.find.return_value = cursor_of([doc])
        service = make_service(mock_entries)

        view = await service.get_week_view("user123", "Pacific/Auckland", date(2024, 3, 11))

        assert [d.date for d in view.days] == [date(2024, 3, 15)]
        assert view.total_duration_seconds == 3600
        query = mock_entries.find.call_args[0][0]
        assert query["start_time"]["$lt"] == datetime(2024, 3, 17, 11, 0, tzinfo=timezone.utc)

    async def test_search_titles_distinct(self):
        """Test autocomplete returns each title once, latest first."""
        docs = [
            entry_doc(title="Code review", start_time=NOW - timedelta(hours=1)),
            entry_doc(title="Code review", start_time=NOW - timedelta(days=1)),
            entry_doc(title="Code cleanup", start_time=NOW - timedelta(days=2)),
        ]
        mock_entries = MagicMock()
        mock_entries.find.return_value = cursor_of(docs)
        service = make_service(mock_entries)

        suggestions = await service.search_titles("user123", "code")

        assert [s.title for s in suggestions] == ["Code review", "Code cleanup"]
        assert suggestions[0].last_used == NOW - timedelta(hours=1)

    async def test_search_titles_tokens(self):
        """Test every token becomes an escaped case-insensitive condition."""
        mock_entries = MagicMock()
        mock_entries.find.return_value = cursor_of([])
        service = make_service(mock_entries)

        await service.search_titles("user123", "fix c++")

        query = mock_entries.find.call_args[0][0]
        assert query["$and"] == [
            {"title": {"$regex": "fix", "$options": "i"}},
            {"title": {"$regex": r"c\+\+", "$options": "i"}},
        ]

    async def test_search_titles_limit(self):
        """Test the number of suggestions is capped."""
        docs = [entry_doc(title=f"Task {i}") for i in range(5)]
        mock_entries = MagicMock()
        mock_entries.find.return_value = cursor_of(docs)
        service = make_service(mock_entries)

        suggestions = await service.search_titles("user123", "", limit=2)

        assert len(suggestions) == 2
        assert "$and" not in mock_entries.find.call_args[0][0]
