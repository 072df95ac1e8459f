"""API token service - per-user tokens for the token-authenticated entry API."""
import logging
from typing import Optional

from pymongo.errors import DuplicateKeyError

from app.exceptions import AuthenticationError, ConflictError, NotFoundError
from app.utils.auth import generate_api_token
from app.utils.clock import Clock

logger = logging.getLogger(__name__)


class ApiTokenService:
    """Service managing the single API token of each user."""

    def __init__(self, db, clock: Optional[Clock] = None):
        """Initialize service with database connection."""
        self.db = db
        self.api_tokens = db["api_tokens"]
        self.clock = clock or Clock()

    async def has_token(self, user_id: str) -> bool:
        return await self.api_tokens.find_one({"user_id": user_id}) is not None

    async def get_token(self, user_id: str) -> str:
        """
        Get the stored API token of a user.

        Raises:
            NotFoundError: If no token was generated yet
        """
        doc = await self.api_tokens.find_one({"user_id": user_id})
        if not doc:
            raise NotFoundError("API token not found", "API_TOKEN_NOT_FOUND")
        return doc["token"]

    async def generate(self, user_id: str) -> str:
        """
        Generate the first API token of a user.

        Raises:
            ConflictError: If the user already has a token
        """
        token = generate_api_token()
        try:
            await self.api_tokens.insert_one({
                "user_id": user_id,
                "token": token,
                "created_at": self.clock.now(),
            })
        except DuplicateKeyError:
            raise ConflictError("API token already exists", "API_TOKEN_EXISTS")

        logger.info("API token generated for user %s", user_id)
        return token

    async def regenerate(self, user_id: str) -> str:
        """Replace the API token of a user; the old token stops working."""
        token = generate_api_token()
        await self.api_tokens.update_one(
            {"user_id": user_id},
            {"$set": {"token": token, "created_at": self.clock.now()}},
            upsert=True,
        )
        logger.info("API token regenerated for user %s", user_id)
        return token

    async def authenticate(self, token: str) -> str:
        """
        Resolve an API token to its owner.

        Raises:
            AuthenticationError: If the token is unknown
        """
        doc = await self.api_tokens.find_one({"token": token}) if token else None
        if not doc:
            raise AuthenticationError("Invalid API token", "INVALID_API_TOKEN")
        return doc["user_id"]
