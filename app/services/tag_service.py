"""Tag service - tag statistics and legacy tag marks."""
import logging

from pymongo.errors import DuplicateKeyError

from app.exceptions import NotFoundError, ValidationError
from app.models.tag import TagStat
from app.services.tag_index import count_tags

logger = logging.getLogger(__name__)


class TagService:
    """Service for tag statistics of a user's time entries."""

    def __init__(self, db):
        """Initialize service with database connection."""
        self.db = db
        self.time_entries = db["time_entries"]
        self.legacy_tags = db["legacy_tags"]

    async def _legacy_names(self, user_id: str) -> set[str]:
        cursor = self.legacy_tags.find({"user_id": user_id})
        docs = await cursor.to_list(length=None)
        return {doc["name"] for doc in docs}

    async def get_tag_stats(self, user_id: str) -> list[TagStat]:
        """
        Get tag usage counts for a user, sorted by tag name.

        Args:
            user_id: User ID

        Returns:
            One TagStat per distinct tag
        """
        cursor = self.time_entries.find(
            {"user_id": user_id, "tags.0": {"$exists": True}},
            {"tags": 1},
        )
        docs = await cursor.to_list(length=None)

        legacy = await self._legacy_names(user_id)
        stats = [
            TagStat(tag=tag, count=count, is_legacy=tag in legacy)
            for tag, count in count_tags(doc.get("tags", []) for doc in docs)
        ]
        logger.debug("Found %d unique tags for user %s", len(stats), user_id)
        return stats

    async def mark_legacy(self, user_id: str, tag: str) -> None:
        """
        Mark a tag as legacy so clients can hide it from suggestions.

        Raises:
            ValidationError: If tag is blank
        """
        tag = tag.strip()
        if not tag:
            raise ValidationError("Tag cannot be blank", "TAG_REQUIRED")
        try:
            await self.legacy_tags.insert_one({"user_id": user_id, "name": tag})
        except DuplicateKeyError:
            # Already legacy
            return
        logger.info("Tag marked as legacy for user %s: %s", user_id, tag)

    async def unmark_legacy(self, user_id: str, tag: str) -> None:
        """
        Remove the legacy mark from a tag.

        Raises:
            NotFoundError: If tag is not marked as legacy
        """
        result = await self.legacy_tags.delete_one({"user_id": user_id, "name": tag})
        if result.deleted_count == 0:
            raise NotFoundError("Legacy tag not found", "TAG_NOT_FOUND")
        logger.info("Tag unmarked as legacy for user %s: %s", user_id, tag)
