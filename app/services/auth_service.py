"""Authentication service - login, profile and personal settings."""
import logging
from typing import Optional

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ReturnDocument

from app.exceptions import AuthenticationError, NotFoundError, ValidationError
from app.models.user import User, UserSettings
from app.utils.auth import create_access_token, hash_password, verify_password
from app.utils.clock import Clock, ensure_utc

logger = logging.getLogger(__name__)


def doc_to_user(doc: dict) -> User:
    """Convert a users collection document to a User model."""
    return User(
        _id=str(doc["_id"]),
        username=doc["username"],
        greeting=doc["greeting"],
        is_admin=doc.get("is_admin", False),
        locale=doc.get("locale", "en-US"),
        language_code=doc.get("language_code", "en"),
        is_activated=bool(doc.get("hashed_password")),
        settings=UserSettings(**doc.get("settings", {})),
        created_at=ensure_utc(doc["created_at"]),
        updated_at=ensure_utc(doc["updated_at"]),
    )


def parse_user_id(user_id: str) -> ObjectId:
    """
    Parse a user id.

    Raises:
        ValidationError: If the id is malformed
    """
    try:
        return ObjectId(user_id)
    except (InvalidId, TypeError):
        raise ValidationError("Invalid user ID format", "INVALID_USER_ID")


class AuthService:
    """Service for handling user authentication and self-service."""

    def __init__(self, db, clock: Optional[Clock] = None):
        """Initialize service with database connection."""
        self.db = db
        self.users = db["users"]
        self.clock = clock or Clock()

    async def _find_user(self, user_id: str) -> dict:
        user_doc = await self.users.find_one({"_id": parse_user_id(user_id)})
        if not user_doc:
            raise NotFoundError("User not found", "USER_NOT_FOUND")
        return user_doc

    async def _update_user(self, user_id: str, fields: dict) -> dict:
        fields["updated_at"] = self.clock.now()
        updated = await self.users.find_one_and_update(
            {"_id": parse_user_id(user_id)},
            {"$set": fields},
            return_document=ReturnDocument.AFTER,
        )
        if not updated:
            raise NotFoundError("User not found", "USER_NOT_FOUND")
        return updated

    async def login(self, username: str, password: str) -> str:
        """
        Login user and return JWT token.

        Args:
            username: Username
            password: Plain text password

        Returns:
            JWT access token

        Raises:
            AuthenticationError: If credentials are invalid
        """
        user_doc = await self.users.find_one({"username": username})
        if not user_doc or not verify_password(password, user_doc.get("hashed_password")):
            logger.debug("Login failed for user %s", username)
            raise AuthenticationError("Invalid username or password")

        logger.info("User logged in: %s", username)
        return create_access_token(
            user_id=str(user_doc["_id"]),
            is_admin=user_doc.get("is_admin", False),
        )

    async def get_user_by_id(self, user_id: str) -> User:
        """
        Get user by ID.

        Raises:
            ValidationError: If the id is malformed
            NotFoundError: If user not found
        """
        return doc_to_user(await self._find_user(user_id))

    async def update_profile(
        self,
        user_id: str,
        greeting: str,
        locale: str,
        language_code: str,
    ) -> User:
        """Update greeting and locale preferences of the current user."""
        greeting = greeting.strip()
        if not greeting:
            raise ValidationError("Greeting cannot be blank", "GREETING_REQUIRED")
        updated = await self._update_user(user_id, {
            "greeting": greeting,
            "locale": locale,
            "language_code": language_code,
        })
        logger.info("Profile updated for user %s", user_id)
        return doc_to_user(updated)

    async def change_password(
        self,
        user_id: str,
        current_password: str,
        new_password: str,
    ) -> None:
        """
        Change the current user's password.

        Raises:
            ValidationError: If the current password does not match
        """
        user_doc = await self._find_user(user_id)
        if not verify_password(current_password, user_doc.get("hashed_password")):
            raise ValidationError(
                "Current password is incorrect", "INVALID_CURRENT_PASSWORD"
            )
        await self._update_user(user_id, {"hashed_password": hash_password(new_password)})
        logger.info("Password changed for user %s", user_id)

    async def get_settings(self, user_id: str) -> UserSettings:
        """Get per-user settings."""
        return doc_to_user(await self._find_user(user_id)).settings

    async def update_settings(self, user_id: str, user_settings: UserSettings) -> UserSettings:
        """Replace per-user settings."""
        updated = await self._update_user(
            user_id, {"settings": user_settings.model_dump(mode="json")}
        )
        logger.info("Settings updated for user %s", user_id)
        return doc_to_user(updated).settings
