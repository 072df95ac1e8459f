"""Tests for UserService."""
import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock
from bson import ObjectId
from pymongo.errors import DuplicateKeyError

from app.exceptions import ConflictError, NotFoundError, ValidationError
from app.utils.clock import FixedClock

NOW = datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc)


def user_doc(**overrides):
    doc = {
        "_id": ObjectId(),
        "username": "alice",
        "hashed_password": None,
        "greeting": "Hi Alice",
        "is_admin": False,
        "settings": {"start_of_week": "MONDAY"},
        "created_at": NOW,
        "updated_at": NOW,
    }
    doc.update(overrides)
    return doc


def make_service():
    """UserService over mocked collections."""
    from app.services.user_service import UserService

    collections = {
        "users": AsyncMock(),
        "time_entries": AsyncMock(),
        "legacy_tags": AsyncMock(),
        "activation_tokens": AsyncMock(),
        "api_tokens": AsyncMock(),
    }
    collections["users"].find = MagicMock()
    mock_db = MagicMock()
    mock_db.__getitem__.side_effect = lambda key: collections[key]
    return UserService(mock_db, FixedClock(NOW)), collections


@pytest.mark.asyncio
class TestUserServiceList:
    """Tests for paginated listing."""

    async def test_list_users(self):
        """Test a page of users with the total count."""
        service, collections = make_service()
        users = collections["users"]
        users.count_documents.return_value = 3
        cursor = MagicMock()
        cursor.sort.return_value = cursor
        cursor.skip.return_value = cursor
        cursor.limit.return_value = cursor
        cursor.to_list = AsyncMock(return_value=[user_doc(), user_doc(username="bob")])
        users.find.return_value = cursor

        page = await service.list_users(page=1, size=2)

        assert page.total == 3
        assert page.page == 1
        assert [u.username for u in page.users] == ["alice", "bob"]
        cursor.sort.assert_called_once_with("username", 1)
        cursor.skip.assert_called_once_with(2)
        cursor.limit.assert_called_once_with(2)

    @pytest.mark.parametrize("page,size", [(-1, 20), (0, 0), (0, 101)])
    async def test_list_users_invalid_paging(self, page, size):
        """Test out-of-range paging is rejected."""
        service, _ = make_service()

        with pytest.raises(ValidationError):
            await service.list_users(page=page, size=size)


@pytest.mark.asyncio
class TestUserServiceCreate:
    """Tests for user creation and activation."""

    async def test_create_user(self):
        """Test a new user gets an activation token."""
        service, collections = make_service()
        users = collections["users"]
        inserted_id = ObjectId()
        # Username free, then the user exists when the token is issued
        users.find_one.side_effect = [None, {"_id": inserted_id}]
        users.insert_one.return_value = MagicMock(inserted_id=inserted_id)

        created = await service.create_user(username=" alice ", greeting="Hi Alice")

        assert created.user.username == "alice"
        assert created.user.is_activated is False
        assert created.activation.expires_at == NOW + timedelta(hours=72)
        stored = collections["activation_tokens"].insert_one.call_args[0][0]
        assert stored["user_id"] == str(inserted_id)
        assert stored["token"] == created.activation.token

    async def test_create_user_duplicate_username(self):
        """Test a taken username is a conflict."""
        service, collections = make_service()
        collections["users"].find_one.return_value = user_doc()

        with pytest.raises(ConflictError) as exc_info:
            await service.create_user(username="alice", greeting="Hi")

        assert exc_info.value.error_code == "USERNAME_TAKEN"

    async def test_create_user_race_on_unique_index(self):
        """Test a unique index violation is reported as a conflict."""
        service, collections = make_service()
        collections["users"].find_one.return_value = None
        collections["users"].insert_one.side_effect = DuplicateKeyError("dup")

        with pytest.raises(ConflictError, match="Username already exists"):
            await service.create_user(username="alice", greeting="Hi")

    async def test_activate(self):
        """Test activation sets a password and consumes the token."""
        service, collections = make_service()
        user_id = ObjectId()
        token_doc = {
            "_id": ObjectId(),
            "user_id": str(user_id),
            "token": "tok",
            "expires_at": NOW + timedelta(hours=1),
        }
        collections["activation_tokens"].find_one.return_value = token_doc
        collections["users"].find_one_and_update.return_value = user_doc(
            _id=user_id, hashed_password="$2b$hash"
        )

        user = await service.activate("tok", "password123")

        assert user.is_activated is True
        update = collections["users"].find_one_and_update.call_args[0][1]["$set"]
        assert update["hashed_password"].startswith("$2b$")
        collections["activation_tokens"].delete_one.assert_called_once_with(
            {"_id": token_doc["_id"]}
        )

    async def test_activate_expired_token(self):
        """Test an expired token is rejected."""
        service, collections = make_service()
        collections["activation_tokens"].find_one.return_value = {
            "_id": ObjectId(),
            "user_id": str(ObjectId()),
            "token": "tok",
            "expires_at": NOW - timedelta(seconds=1),
        }

        with pytest.raises(ValidationError, match="invalid or expired"):
            await service.activate("tok", "password123")

    async def test_activate_unknown_token(self):
        """Test an unknown token is rejected."""
        service, collections = make_service()
        collections["activation_tokens"].find_one.return_value = None

        with pytest.raises(ValidationError):
            await service.activate("nope", "password123")


@pytest.mark.asyncio
class TestUserServiceUpdateDelete:
    """Tests for updating and deleting users."""

    async def test_update_username(self):
        """Test renaming a user."""
        service, collections = make_service()
        doc = user_doc()
        collections["users"].find_one.return_value = None
        collections["users"].find_one_and_update.return_value = dict(doc, username="alicia")

        user = await service.update_user(str(doc["_id"]), username="alicia")

        assert user.username == "alicia"
        clash_query = collections["users"].find_one.call_args[0][0]
        assert clash_query == {"username": "alicia", "_id": {"$ne": doc["_id"]}}

    async def test_update_username_taken(self):
        """Test renaming to another user's name is a conflict."""
        service, collections = make_service()
        collections["users"].find_one.return_value = user_doc(username="bob")

        with pytest.raises(ConflictError, match="Username already exists"):
            await service.update_user(str(ObjectId()), username="bob")

        collections["users"].find_one_and_update.assert_not_called()

    async def test_update_user_not_found(self):
        """Test updating an unknown user."""
        service, collections = make_service()
        collections["users"].find_one_and_update.return_value = None

        with pytest.raises(NotFoundError):
            await service.update_user(str(ObjectId()), greeting="Hello")

    async def test_delete_user_cascades(self):
        """Test deleting a user removes their data."""
        service, collections = make_service()
        user_id = str(ObjectId())
        collections["users"].delete_one.return_value = MagicMock(deleted_count=1)
        collections["time_entries"].delete_many.return_value = MagicMock(deleted_count=4)

        result = await service.delete_user(current_user_id=str(ObjectId()), user_id=user_id)

        assert result == {"deleted_count": 1}
        collections["time_entries"].delete_many.assert_called_once_with({"user_id": user_id})
        collections["legacy_tags"].delete_many.assert_called_once_with({"user_id": user_id})
        collections["activation_tokens"].delete_many.assert_called_once_with({"user_id": user_id})
        collections["api_tokens"].delete_many.assert_called_once_with({"user_id": user_id})

    async def test_delete_self(self):
        """Test admins cannot delete themselves."""
        service, collections = make_service()
        user_id = str(ObjectId())

        with pytest.raises(ConflictError, match="own user account"):
            await service.delete_user(current_user_id=user_id, user_id=user_id)

        collections["users"].delete_one.assert_not_called()

    async def test_delete_unknown_user(self):
        """Test deleting an unknown user."""
        service, collections = make_service()
        collections["users"].delete_one.return_value = MagicMock(deleted_count=0)

        with pytest.raises(NotFoundError):
            await service.delete_user(current_user_id=str(ObjectId()), user_id=str(ObjectId()))

        collections["time_entries"].delete_many.assert_not_called()


@pytest.mark.asyncio
class TestDefaultAdmin:
    """Tests for the default admin bootstrap."""

    async def test_creates_admin_when_missing(self):
        """Test an admin with a generated password is created."""
        service, collections = make_service()
        collections["users"].find_one.return_value = None
        collections["users"].insert_one.return_value = MagicMock(inserted_id=ObjectId())

        password = await service.ensure_default_admin("admin")

        assert password
        stored = collections["users"].insert_one.call_args[0][0]
        assert stored["username"] == "admin"
        assert stored["is_admin"] is True
        assert stored["hashed_password"].startswith("$2b$")

    async def test_keeps_existing_admin(self):
        """Test nothing happens when an admin exists."""
        service, collections = make_service()
        collections["users"].find_one.return_value = user_doc(is_admin=True)

        assert await service.ensure_default_admin("admin") is None
        collections["users"].insert_one.assert_not_called()
