"""Tag usage index over a user's time entries."""
from collections import Counter
from typing import Iterable

from app.models.time_entry import TimeEntry


def count_tags(tag_lists: Iterable[Iterable[str]]) -> list[tuple[str, int]]:
    """
    Count, for every tag, how many of the given tag lists contain it.

    A tag repeated inside one list is counted once for that list.
    Tags are compared case-sensitively and returned in ascending order.

    Examples:
        >>> count_tags([["b", "a"], ["a", "a"], []])
        [('a', 2), ('b', 1)]
    """
    counter: Counter[str] = Counter()
    for tags in tag_lists:
        counter.update(set(tags))
    return sorted(counter.items())


def tag_counts(entries: Iterable[TimeEntry]) -> list[tuple[str, int]]:
    """Tag counts over entries: number of entries carrying each tag."""
    return count_tags(entry.tags for entry in entries)
