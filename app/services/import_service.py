"""Import service - time entries from Toggl CSV exports."""
import csv
import io
import logging
from datetime import datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from app.exceptions import ValidationError
from app.models.time_entry import TITLE_MAX_LENGTH, normalize_tags
from app.models.toggl_import import ImportResult
from app.services.week_aggregator import resolve_timezone
from app.utils.clock import Clock

logger = logging.getLogger(__name__)

TOGGL_HEADER = ["Description", "Tags", "Start date", "Start time", "Stop date", "Stop time"]
TOGGL_DATETIME_FORMAT = "%Y-%m-%d %H:%M:%S"


class InvalidRowError(ValueError):
    """A CSV row that cannot be turned into a time entry."""


def import_timezone(name: Optional[str]) -> ZoneInfo:
    """Zone the CSV local times are read in; unknown or missing names mean UTC."""
    if not name:
        return ZoneInfo("UTC")
    try:
        return resolve_timezone(name)
    except ValidationError:
        logger.warning("Unknown import timezone %r, using UTC", name)
        return ZoneInfo("UTC")


def _local_datetime(day: str, clock_time: str, tz: ZoneInfo) -> datetime:
    try:
        local = datetime.strptime(f"{day.strip()} {clock_time.strip()}", TOGGL_DATETIME_FORMAT)
    except ValueError as e:
        raise InvalidRowError(str(e))
    return local.replace(tzinfo=tz).astimezone(timezone.utc)


def parse_toggl_csv(content: str, tz: ZoneInfo) -> list[dict]:
    """
    Parse a Toggl detailed export into entry fields.

    The first line must be exactly the Toggl header. Blank lines are skipped.
    Tags are comma separated inside their column.

    Returns:
        One dict per row with title, tags, start_time and end_time (UTC)

    Raises:
        ValidationError: If the header or any row is malformed
    """
    reader = csv.reader(io.StringIO(content.lstrip("\ufeff")))
    rows = [row for row in reader if any(cell.strip() for cell in row)]
    if not rows or [cell.strip() for cell in rows[0]] != TOGGL_HEADER:
        logger.debug("Toggl import rejected: unexpected header")
        raise ValidationError("Invalid CSV format", "INVALID_CSV_FORMAT")

    parsed = []
    for line_number, row in enumerate(rows[1:], start=2):
        try:
            parsed.append(_parse_row(row, tz))
        except InvalidRowError as e:
            logger.debug("Toggl import rejected at row %d: %s", line_number, e)
            raise ValidationError("Invalid CSV format", "INVALID_CSV_FORMAT")
    return parsed


def _parse_row(row: list[str], tz: ZoneInfo) -> dict:
    if len(row) < len(TOGGL_HEADER):
        raise InvalidRowError(f"expected {len(TOGGL_HEADER)} columns, got {len(row)}")

    description, tags, start_day, start_clock, stop_day, stop_clock = row[:len(TOGGL_HEADER)]
    title = description.strip()
    if not title or len(title) > TITLE_MAX_LENGTH:
        raise InvalidRowError("title is blank or too long")

    start_time = _local_datetime(start_day, start_clock, tz)
    end_time = _local_datetime(stop_day, stop_clock, tz)
    if end_time <= start_time:
        raise InvalidRowError("stop is not after start")

    return {
        "title": title,
        "tags": normalize_tags(tags.split(",")),
        "start_time": start_time,
        "end_time": end_time,
    }


class ImportService:
    """Service importing time entries from other trackers."""

    def __init__(self, db, clock: Optional[Clock] = None):
        """Initialize service with database connection and clock."""
        self.db = db
        self.time_entries = db["time_entries"]
        self.clock = clock or Clock()

    async def import_toggl(
        self, user_id: str, content: str, timezone_name: Optional[str] = None
    ) -> ImportResult:
        """
        Import stopped entries from a Toggl CSV export.

        The whole file is parsed before anything is stored, so a malformed
        row imports nothing. Rows matching an existing entry of the user by
        title and start time are counted as duplicates and skipped.

        Args:
            user_id: Owner of the imported entries
            content: CSV text
            timezone_name: IANA zone the CSV times are local to

        Raises:
            ValidationError: If the CSV is malformed
        """
        rows = parse_toggl_csv(content, import_timezone(timezone_name))

        imported = duplicates = 0
        now = self.clock.now()
        for row in rows:
            existing = await self.time_entries.find_one({
                "user_id": user_id,
                "title": row["title"],
                "start_time": row["start_time"],
            })
            if existing:
                duplicates += 1
                continue
            await self.time_entries.insert_one({
                "user_id": user_id,
                **row,
                "created_at": now,
                "updated_at": now,
            })
            imported += 1

        logger.info(
            "Toggl import for user %s: %d imported, %d duplicates",
            user_id, imported, duplicates,
        )
        return ImportResult(imported=imported, duplicates=duplicates)
