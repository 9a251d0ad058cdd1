"""Composable task filters.

Every filter returns a new list and leaves its input untouched. Blank criteria
pass all tasks through, so callers can forward optional arguments unchecked.
"""

from __future__ import annotations

from typing import Iterable, Sequence

from .models import Task


def split_csv(raw: str | None) -> list[str]:
    if not raw:
        return []
    return [item.strip() for item in raw.split(",") if item.strip()]


def _criteria(values: Iterable[str] | None) -> set[str]:
    if not values:
        return set()
    return {value.strip().lower() for value in values if value.strip()}


def filter_by_status(tasks: Sequence[Task], statuses: Iterable[str] | None) -> list[Task]:
    wanted = _criteria(statuses)
    if not wanted:
        return list(tasks)
    return [task for task in tasks if task.status.lower() in wanted]


def filter_by_tags(tasks: Sequence[Task], tags: Iterable[str] | None) -> list[Task]:
    wanted = _criteria(tags)
    if not wanted:
        return list(tasks)
    return [task for task in tasks if any(tag.lower() in wanted for tag in task.tags)]


def filter_by_text(tasks: Sequence[Task], text: str | None) -> list[Task]:
    needle = (text or "").lower()
    return [task for task in tasks if needle in task.text.lower()]


def apply_filters(
    tasks: Sequence[Task],
    *,
    statuses: Iterable[str] | None = None,
    tags: Iterable[str] | None = None,
    text: str | None = None,
) -> list[Task]:
    result = filter_by_status(tasks, statuses)
    result = filter_by_tags(result, tags)
    return filter_by_text(result, text)
