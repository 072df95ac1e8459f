"""Time entry model definitions."""
from datetime import datetime
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator

TITLE_MAX_LENGTH = 1000


def normalize_tags(tags: Optional[list[str]]) -> list[str]:
    """Drop blank and duplicate tags, keeping first-seen order. Case-sensitive."""
    result: list[str] = []
    for tag in tags or []:
        tag = tag.strip()
        if tag and tag not in result:
            result.append(tag)
    return result


class TimeEntryBase(BaseModel):
    """Base time entry fields."""

    title: str
    start_time: datetime
    end_time: Optional[datetime] = None
    tags: list[str] = []


class TimeEntryCreate(BaseModel):
    """Request model for starting a new entry."""

    title: str = Field(max_length=TITLE_MAX_LENGTH)
    start_time: Optional[datetime] = None
    tags: list[str] = []
    stop_active_entry: bool = False

    @field_validator("tags")
    @classmethod
    def _dedupe_tags(cls, value: list[str]) -> list[str]:
        return normalize_tags(value)


class TimeEntryUpdate(BaseModel):
    """Partial update; only supplied fields are applied."""

    title: Optional[str] = Field(default=None, max_length=TITLE_MAX_LENGTH)
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    tags: Optional[list[str]] = None

    @field_validator("tags")
    @classmethod
    def _dedupe_tags(cls, value: Optional[list[str]]) -> Optional[list[str]]:
        if value is None:
            return None
        return normalize_tags(value)


class TimeEntryStop(BaseModel):
    """Request model for stopping an entry."""

    end_time: Optional[datetime] = None


class TimeEntry(TimeEntryBase):
    """Full time entry model with database fields."""

    id: str = Field(alias="_id", serialization_alias="id")
    user_id: str
    created_at: datetime
    updated_at: datetime

    model_config = {"populate_by_name": True}

    @property
    def is_running(self) -> bool:
        return self.end_time is None


class IdleState(BaseModel):
    """No entry is running."""

    state: Literal["idle"] = "idle"


class RunningState(BaseModel):
    """An entry is running; duration is measured up to the request time."""

    state: Literal["running"] = "running"
    entry_id: str
    title: str
    tags: list[str] = []
    started_at: datetime
    duration_seconds: int


CurrentEntryState = Annotated[
    Union[IdleState, RunningState], Field(discriminator="state")
]


class TitleSuggestion(BaseModel):
    """Autocomplete suggestion built from the latest entry with a title."""

    title: str
    tags: list[str] = []
    last_used: datetime
