"""MongoDB database connection using Motor (async driver)."""
import logging

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING

from app.config import settings

logger = logging.getLogger(__name__)


async def ensure_indexes(db: AsyncIOMotorDatabase) -> None:
    """Create the indexes the services rely on for uniqueness."""
    await db["users"].create_index("username", unique=True)
    # At most one running entry per user; inserts of a second one fail here.
    await db["time_entries"].create_index(
        "user_id",
        name="one_running_entry_per_user",
        unique=True,
        partialFilterExpression={"end_time": {"$type": "null"}},
    )
    await db["time_entries"].create_index(
        [("user_id", ASCENDING), ("start_time", DESCENDING)]
    )
    await db["legacy_tags"].create_index(
        [("user_id", ASCENDING), ("name", ASCENDING)], unique=True
    )
    await db["activation_tokens"].create_index("token", unique=True)
    await db["api_tokens"].create_index("user_id", unique=True)
    await db["api_tokens"].create_index("token", unique=True)


class Database:
    """MongoDB database connection manager."""

    client: AsyncIOMotorClient | None = None
    db: AsyncIOMotorDatabase | None = None

    async def connect(self) -> None:
        """Connect to MongoDB and make sure indexes exist."""
        self.client = AsyncIOMotorClient(settings.mongodb_url, tz_aware=True)
        self.db = self.client[settings.mongodb_db_name]
        await ensure_indexes(self.db)
        logger.info("Connected to MongoDB: %s", settings.mongodb_db_name)

    async def disconnect(self) -> None:
        """Disconnect from MongoDB."""
        if self.client:
            self.client.close()
            logger.info("Disconnected from MongoDB")

    def get_collection(self, name: str):
        """Get a MongoDB collection."""
        if self.db is None:
            raise RuntimeError("Database not connected")
        return self.db[name]


# Global database instance
database = Database()


async def get_database() -> AsyncIOMotorDatabase:
    """Dependency to get database instance."""
    if database.db is None:
        raise RuntimeError("Database not connected")
    return database.db
