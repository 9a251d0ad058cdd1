"""Core task models and constants."""

from __future__ import annotations

from dataclasses import dataclass, field
import time
from typing import Any, Iterable

VALID_STATUSES = ("open", "pending", "done")
DEFAULT_STATUS = "open"

TASK_KEYS = ("id", "created", "text", "status", "tags")


def now_ms() -> int:
    return time.time_ns() // 1_000_000


class TaskError(Exception):
    """Base error for task operations."""


class TaskArgumentError(TaskError):
    """Raised when command arguments are missing or malformed."""


class TaskNotFoundError(TaskError):
    """Raised when a task cannot be located."""


class TaskConflictError(TaskError):
    """Raised for id collisions."""


class TaskStorageError(TaskError):
    """Raised when the database file cannot be read or written."""


class TaskDecodeError(TaskError):
    """Raised when persisted data is not a valid task database."""


@dataclass(slots=True)
class Task:
    id: int
    created: int
    text: str
    status: str = DEFAULT_STATUS
    tags: list[str] = field(default_factory=list)

    @classmethod
    def new(cls, task_id: int, text: str, tags: Iterable[str] | None = None) -> Task:
        return cls(id=task_id, created=now_ms(), text=text, tags=list(tags or []))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "created": self.created,
            "text": self.text,
            "status": self.status,
            "tags": list(self.tags),
        }

    @classmethod
    def from_dict(cls, data: Any) -> Task:
        if not isinstance(data, dict):
            raise TaskDecodeError(f"Task record must be an object, got {type(data).__name__}")
        missing = [key for key in ("id", "created", "text", "status") if key not in data]
        if missing:
            raise TaskDecodeError(f"Task record missing keys {missing}")

        task_id = data["id"]
        created = data["created"]
        if isinstance(task_id, bool) or not isinstance(task_id, int):
            raise TaskDecodeError(f"Task id must be an integer: {task_id!r}")
        if task_id <= 0:
            raise TaskDecodeError(f"Task id must be positive: {task_id}")
        if isinstance(created, bool) or not isinstance(created, int):
            raise TaskDecodeError(f"Task {task_id} has an invalid created timestamp: {created!r}")
        if not isinstance(data["text"], str) or not isinstance(data["status"], str):
            raise TaskDecodeError(f"Task {task_id} text and status must be strings")

        tags = data.get("tags") or []
        if not isinstance(tags, list) or not all(isinstance(tag, str) for tag in tags):
            raise TaskDecodeError(f"Task {task_id} tags must be a list of strings")
        return cls(
            id=task_id,
            created=created,
            text=data["text"],
            status=data["status"],
            tags=list(tags),
        )


@dataclass(slots=True)
class TaskStore:
    """In-memory task collection with a monotonic id cursor. Owns no I/O."""

    tasks: list[Task] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    id_gen: int = 0

    def __post_init__(self) -> None:
        self.id_gen = max([self.id_gen, *(task.id for task in self.tasks)])

    def generate_id(self) -> int:
        self.id_gen += 1
        return self.id_gen

    def find_by_id(self, task_id: int) -> Task | None:
        for task in self.tasks:
            if task.id == task_id:
                return task
        return None

    def get(self, task_id: int) -> Task:
        task = self.find_by_id(task_id)
        if task is None:
            raise TaskNotFoundError(f"Task not found: {task_id}")
        return task

    def add(self, task: Task) -> Task:
        if self.find_by_id(task.id) is not None:
            raise TaskConflictError(f"Task id already exists: {task.id}")
        self.tasks.append(task)
        self.id_gen = max(self.id_gen, task.id)
        self.remember_tags(task.tags)
        return task

    def remember_tags(self, tags: Iterable[str]) -> None:
        for tag in tags:
            if tag.strip() and tag not in self.tags:
                self.tags.append(tag)

    def recompute_ids(self) -> None:
        """Renumber tasks 1..N in current order. The id cursor never moves back."""
        for index, task in enumerate(self.tasks, start=1):
            task.id = index
        self.id_gen = max(self.id_gen, len(self.tasks))

    def sort_by_created(self) -> None:
        self.tasks.sort(key=lambda task: task.created)

    def to_dict(self) -> dict[str, Any]:
        return {
            "Tags": list(self.tags),
            "Tasks": [task.to_dict() for task in self.tasks],
        }

    @classmethod
    def from_dict(cls, payload: Any) -> TaskStore:
        if not isinstance(payload, dict):
            raise TaskDecodeError("Task database must be a JSON object")
        tags = payload.get("Tags") or []
        records = payload.get("Tasks") or []
        if not isinstance(tags, list) or not all(isinstance(tag, str) for tag in tags):
            raise TaskDecodeError("'Tags' must be a list of strings")
        if not isinstance(records, list):
            raise TaskDecodeError("'Tasks' must be a list")

        tasks = [Task.from_dict(record) for record in records]
        seen: set[int] = set()
        for task in tasks:
            if task.id in seen:
                raise TaskDecodeError(f"Duplicate task id found: {task.id}")
            seen.add(task.id)
        return cls(tasks=tasks, tags=list(tags))
