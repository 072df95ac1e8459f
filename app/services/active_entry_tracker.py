"""Running-entry bookkeeping: at most one entry without an end time per user."""
import logging
from datetime import datetime
from typing import Optional, Union

from pymongo.errors import DuplicateKeyError

from app.exceptions import ConflictError
from app.models.time_entry import IdleState, RunningState
from app.utils.clock import ensure_utc

logger = logging.getLogger(__name__)

ACTIVE_ENTRY_EXISTS = "ACTIVE_ENTRY_EXISTS"


class ActiveEntryTracker:
    """
    Tracks whether a user is Idle or Running an entry.

    The check before insert gives a friendly error; the partial unique
    index on ``time_entries.user_id`` (see ``app.database``) is what
    serializes concurrent starts.
    """

    def __init__(self, db):
        """Initialize tracker with database connection."""
        self.time_entries = db["time_entries"]

    async def find_running(self, user_id: str) -> Optional[dict]:
        """Return the running entry document, if any."""
        return await self.time_entries.find_one({
            "user_id": user_id,
            "end_time": None,
        })

    async def get_running_entry_id(self, user_id: str) -> Optional[str]:
        """Return the id of the running entry, or None when idle."""
        running = await self.find_running(user_id)
        if not running:
            return None
        return str(running["_id"])

    async def ensure_idle(self, user_id: str) -> None:
        """
        Reject starting an entry while another one runs.

        Raises:
            ConflictError: If the user has a running entry
        """
        if await self.find_running(user_id):
            logger.debug("Active entry exists for user %s", user_id)
            raise ConflictError(
                "Cannot start a new entry while another is active",
                ACTIVE_ENTRY_EXISTS,
            )

    async def start(self, entry_doc: dict):
        """
        Insert a running entry document (Idle -> Running).

        Args:
            entry_doc: Entry document with ``end_time`` set to None

        Returns:
            Inserted document id

        Raises:
            ConflictError: If the user already has a running entry
        """
        await self.ensure_idle(entry_doc["user_id"])
        try:
            result = await self.time_entries.insert_one(entry_doc)
        except DuplicateKeyError:
            logger.debug(
                "Concurrent start rejected for user %s", entry_doc["user_id"]
            )
            raise ConflictError(
                "Cannot start a new entry while another is active",
                ACTIVE_ENTRY_EXISTS,
            )
        return result.inserted_id

    async def current_state(
        self, user_id: str, now: datetime
    ) -> Union[IdleState, RunningState]:
        """
        Describe the user's current entry state.

        Args:
            user_id: User ID
            now: Instant the running duration is measured to

        Returns:
            IdleState, or RunningState with the elapsed whole seconds
        """
        running = await self.find_running(user_id)
        if not running:
            return IdleState()

        started_at = ensure_utc(running["start_time"])
        elapsed = int((ensure_utc(now) - started_at).total_seconds())
        return RunningState(
            entry_id=str(running["_id"]),
            title=running["title"],
            tags=running.get("tags", []),
            started_at=started_at,
            duration_seconds=max(elapsed, 0),
        )
