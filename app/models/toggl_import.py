"""Toggl CSV import model definitions."""
from pydantic import BaseModel


class ImportResult(BaseModel):
    """Outcome of an import; duplicates are rows that already existed."""

    imported: int
    duplicates: int
