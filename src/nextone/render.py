"""Renderers for task lines, lists and JSON output."""

from __future__ import annotations

import datetime as dt
import json
from typing import IO, Iterable

from rich.console import Console
from rich.text import Text

from .models import Task, TaskStore


def _status_style(status: str) -> str:
    return {
        "open": "bright_blue",
        "pending": "bright_blue",
        "done": "bright_black",
    }.get(status, "")


def make_console(*, color: bool = True, file: IO[str] | None = None, stderr: bool = False) -> Console:
    return Console(
        file=file,
        stderr=stderr,
        no_color=not color,
        highlight=False,
        soft_wrap=True,
    )


def created_date(task: Task) -> str:
    return dt.datetime.fromtimestamp(task.created / 1000).strftime("%Y-%m-%d")


def render_task(task: Task) -> Text:
    line = Text()
    line.append(str(task.id))
    line.append(" ")
    line.append(task.status, style=_status_style(task.status))
    line.append(" ")
    line.append(task.text, style="bold")
    line.append("\n  (")
    line.append(", ".join(task.tags), style="bright_black")
    line.append(") ")
    line.append(created_date(task), style="dim")
    return line


def render_task_list(tasks: Iterable[Task]) -> Text:
    task_list = list(tasks)
    lines = [render_task(task) for task in task_list]
    lines.append(Text(f"{len(task_list)} tasks."))
    return Text("\n").join(lines)


def render_tag_counts(store: TaskStore) -> Text:
    counts: dict[str, int] = {tag: 0 for tag in store.tags}
    for task in store.tasks:
        for tag in dict.fromkeys(task.tags):
            if tag.strip():
                counts[tag] = counts.get(tag, 0) + 1
    if not counts:
        return Text("No tags found.")
    width = max(len(tag) for tag in counts)
    lines = []
    for tag, count in counts.items():
        line = Text(tag.ljust(width), style="bold")
        line.append(f"  {count}", style="dim" if count == 0 else "")
        lines.append(line)
    return Text("\n").join(lines)


def render_store_json(store: TaskStore) -> str:
    return json.dumps(store.to_dict(), indent=1, ensure_ascii=False)


def render_task_list_json(tasks: Iterable[Task]) -> str:
    return json.dumps([task.to_dict() for task in tasks], indent=2, ensure_ascii=False)
