"""Tag statistics model definitions."""
from pydantic import BaseModel


class TagStat(BaseModel):
    """Usage count of a tag across a user's entries."""

    tag: str
    count: int
    is_legacy: bool = False
