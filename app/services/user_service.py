"""User administration service - accounts, activation and cleanup."""
import logging
from datetime import timedelta
from typing import Optional

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from app.config import settings
from app.exceptions import ConflictError, NotFoundError, ValidationError
from app.models.user import (
    ActivationToken,
    CreatedUser,
    User,
    UserSettings,
    UsersPage,
)
from app.services.auth_service import doc_to_user, parse_user_id
from app.utils.auth import generate_activation_token, generate_password, hash_password
from app.utils.clock import Clock, ensure_utc

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100


def _username_taken() -> ConflictError:
    return ConflictError("Username already exists", "USERNAME_TAKEN")


class UserService:
    """Service for administrator user management."""

    def __init__(self, db, clock: Optional[Clock] = None):
        """Initialize service with database connection."""
        self.db = db
        self.users = db["users"]
        self.time_entries = db["time_entries"]
        self.legacy_tags = db["legacy_tags"]
        self.activation_tokens = db["activation_tokens"]
        self.api_tokens = db["api_tokens"]
        self.clock = clock or Clock()

    async def list_users(self, page: int = 0, size: int = 20) -> UsersPage:
        """
        List users ordered by username.

        Raises:
            ValidationError: If page or size is out of range
        """
        if page < 0:
            raise ValidationError("Page must be non-negative", "INVALID_PAGE")
        if size <= 0 or size > MAX_PAGE_SIZE:
            raise ValidationError(
                f"Size must be between 1 and {MAX_PAGE_SIZE}", "INVALID_PAGE_SIZE"
            )

        total = await self.users.count_documents({})
        cursor = self.users.find({}).sort("username", 1).skip(page * size).limit(size)
        user_docs = await cursor.to_list(length=size)
        return UsersPage(
            users=[doc_to_user(doc) for doc in user_docs],
            total=total,
            page=page,
            size=size,
        )

    async def get_user(self, user_id: str) -> User:
        """
        Get a user by ID.

        Raises:
            NotFoundError: If user not found
        """
        user_doc = await self.users.find_one({"_id": parse_user_id(user_id)})
        if not user_doc:
            raise NotFoundError("User not found", "USER_NOT_FOUND")
        return doc_to_user(user_doc)

    async def _insert_user(
        self,
        username: str,
        greeting: str,
        is_admin: bool,
        hashed_password: Optional[str] = None,
    ) -> dict:
        username = username.strip()
        if not username:
            raise ValidationError("Username cannot be blank", "USERNAME_REQUIRED")
        if await self.users.find_one({"username": username}):
            raise _username_taken()

        now = self.clock.now()
        user_doc = {
            "username": username,
            "hashed_password": hashed_password,
            "greeting": greeting,
            "is_admin": is_admin,
            "locale": "en-US",
            "language_code": "en",
            "settings": UserSettings().model_dump(mode="json"),
            "created_at": now,
            "updated_at": now,
        }
        try:
            result = await self.users.insert_one(user_doc)
        except DuplicateKeyError:
            raise _username_taken()
        user_doc["_id"] = result.inserted_id
        return user_doc

    async def create_user(
        self,
        username: str,
        greeting: str,
        is_admin: bool = False,
    ) -> CreatedUser:
        """
        Create a user that activates their account with a one-time token.

        Raises:
            ConflictError: If username is taken
        """
        user_doc = await self._insert_user(username, greeting, is_admin)
        activation = await self.issue_activation_token(str(user_doc["_id"]))
        logger.info("User created: %s (admin=%s)", user_doc["username"], is_admin)
        return CreatedUser(user=doc_to_user(user_doc), activation=activation)

    async def update_user(
        self,
        user_id: str,
        username: Optional[str] = None,
        greeting: Optional[str] = None,
    ) -> User:
        """
        Update username and/or greeting of a user.

        Raises:
            NotFoundError: If user not found
            ConflictError: If the new username belongs to another user
        """
        object_id = parse_user_id(user_id)
        update_doc = {"updated_at": self.clock.now()}

        if username is not None:
            username = username.strip()
            if not username:
                raise ValidationError("Username cannot be blank", "USERNAME_REQUIRED")
            clash = await self.users.find_one({"username": username, "_id": {"$ne": object_id}})
            if clash:
                raise _username_taken()
            update_doc["username"] = username
        if greeting is not None:
            update_doc["greeting"] = greeting

        try:
            updated = await self.users.find_one_and_update(
                {"_id": object_id},
                {"$set": update_doc},
                return_document=ReturnDocument.AFTER,
            )
        except DuplicateKeyError:
            raise _username_taken()
        if not updated:
            raise NotFoundError("User not found", "USER_NOT_FOUND")

        logger.info("User updated: %s", user_id)
        return doc_to_user(updated)

    async def delete_user(self, current_user_id: str, user_id: str) -> dict:
        """
        Delete a user together with everything they own.

        Raises:
            ConflictError: If an admin tries to delete their own account
            NotFoundError: If user not found
        """
        if current_user_id == user_id:
            raise ConflictError("Cannot delete your own user account", "SELF_DELETION")

        result = await self.users.delete_one({"_id": parse_user_id(user_id)})
        if result.deleted_count == 0:
            raise NotFoundError("User not found", "USER_NOT_FOUND")

        entries = await self.time_entries.delete_many({"user_id": user_id})
        await self.legacy_tags.delete_many({"user_id": user_id})
        await self.activation_tokens.delete_many({"user_id": user_id})
        await self.api_tokens.delete_many({"user_id": user_id})

        logger.info(
            "User deleted: %s (%d time entries removed)", user_id, entries.deleted_count
        )
        return {"deleted_count": result.deleted_count}

    async def issue_activation_token(self, user_id: str) -> ActivationToken:
        """
        Issue a fresh activation token, invalidating earlier ones.

        Raises:
            NotFoundError: If user not found
        """
        if not await self.users.find_one({"_id": parse_user_id(user_id)}):
            raise NotFoundError("User not found", "USER_NOT_FOUND")

        await self.activation_tokens.delete_many({"user_id": user_id})
        token = ActivationToken(
            token=generate_activation_token(),
            expires_at=self.clock.now()
            + timedelta(hours=settings.activation_token_expiration_hours),
        )
        await self.activation_tokens.insert_one({
            "user_id": user_id,
            "token": token.token,
            "expires_at": token.expires_at,
        })
        return token

    async def activate(self, token: str, password: str) -> User:
        """
        Set the password of the account the token was issued for.

        Raises:
            ValidationError: If token is unknown or expired
        """
        token_doc = await self.activation_tokens.find_one({"token": token})
        if not token_doc or ensure_utc(token_doc["expires_at"]) <= self.clock.now():
            raise ValidationError(
                "Activation token is invalid or expired", "INVALID_ACTIVATION_TOKEN"
            )

        updated = await self.users.find_one_and_update(
            {"_id": parse_user_id(token_doc["user_id"])},
            {"$set": {
                "hashed_password": hash_password(password),
                "updated_at": self.clock.now(),
            }},
            return_document=ReturnDocument.AFTER,
        )
        await self.activation_tokens.delete_one({"_id": token_doc["_id"]})
        if not updated:
            raise NotFoundError("User not found", "USER_NOT_FOUND")

        logger.info("User activated: %s", updated["username"])
        return doc_to_user(updated)

    async def ensure_default_admin(self, username: str) -> Optional[str]:
        """
        Create an administrator when none exists.

        Returns:
            Generated password, or None if an admin already existed
        """
        if await self.users.find_one({"is_admin": True}):
            return None

        password = generate_password()
        await self._insert_user(
            username, "Administrator", True, hashed_password=hash_password(password)
        )
        logger.warning(
            "Created default admin '%s' with password: %s. Change it after first login.",
            username,
            password,
        )
        return password
