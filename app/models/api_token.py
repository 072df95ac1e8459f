"""API access token and token-authenticated entry API models."""
from pydantic import BaseModel, Field

from app.models.time_entry import TITLE_MAX_LENGTH


class ApiTokenStatus(BaseModel):
    """Whether the user has generated an API token."""

    exists: bool


class ApiToken(BaseModel):
    token: str


class ApiEntryStart(BaseModel):
    """Request model for starting an entry through the API."""

    title: str = Field(min_length=1, max_length=TITLE_MAX_LENGTH)


class ApiEntryTitle(BaseModel):
    title: str


class ApiMessage(BaseModel):
    message: str
