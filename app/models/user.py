"""User model definitions."""
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class WeekDay(str, Enum):
    """Day a user's week starts on."""

    MONDAY = "MONDAY"
    TUESDAY = "TUESDAY"
    WEDNESDAY = "WEDNESDAY"
    THURSDAY = "THURSDAY"
    FRIDAY = "FRIDAY"
    SATURDAY = "SATURDAY"
    SUNDAY = "SUNDAY"

    @property
    def weekday(self) -> int:
        """Index compatible with ``date.weekday()`` (Monday is 0)."""
        return list(WeekDay).index(self)


class UserSettings(BaseModel):
    """Per-user preferences."""

    start_of_week: WeekDay = WeekDay.MONDAY


class UserBase(BaseModel):
    """Base user fields."""

    username: str = Field(min_length=1, max_length=255)
    greeting: str = Field(min_length=1, max_length=255)


class UserCreate(UserBase):
    """Admin request to create a user; the password is set on activation."""

    is_admin: bool = False


class UserUpdate(BaseModel):
    """Admin request to update a user."""

    username: Optional[str] = Field(default=None, min_length=1, max_length=255)
    greeting: Optional[str] = Field(default=None, min_length=1, max_length=255)


class ProfileUpdate(BaseModel):
    """User request to update their own profile."""

    greeting: str = Field(min_length=1, max_length=255)
    locale: str = Field(min_length=2, max_length=35)
    language_code: str = Field(min_length=2, max_length=8)


class PasswordChange(BaseModel):
    """User request to change their password."""

    current_password: str
    new_password: str = Field(min_length=8, max_length=72)


class User(UserBase):
    """User model without password (for API responses)."""

    id: str = Field(alias="_id", serialization_alias="id")
    is_admin: bool = False
    locale: str = "en-US"
    language_code: str = "en"
    is_activated: bool = True
    settings: UserSettings = UserSettings()
    created_at: datetime
    updated_at: datetime

    model_config = {"populate_by_name": True}


class UserInDB(User):
    """User model with hashed password (for database storage)."""

    hashed_password: Optional[str] = None


class UsersPage(BaseModel):
    """Paginated list of users."""

    users: list[User]
    total: int
    page: int
    size: int


class ActivationRequest(BaseModel):
    """Account activation with a one-time token."""

    token: str
    password: str = Field(min_length=8, max_length=72)


class ActivationToken(BaseModel):
    """Issued activation token."""

    token: str
    expires_at: datetime


class CreatedUser(BaseModel):
    """Response for a newly created user."""

    user: User
    activation: ActivationToken
