"""Command registry, dispatch and the built-in command handlers."""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
from pathlib import Path
import shlex
from typing import Callable, Iterator

from rich.console import Console

from . import render, storage
from .filters import apply_filters, split_csv
from .models import Task, TaskArgumentError, TaskError, TaskStore

logger = logging.getLogger(__name__)

Prompt = Callable[..., str]
CommandHandler = Callable[["CommandContext", str], None]


@dataclass
class CommandContext:
    """Everything a handler may touch for the duration of one call."""

    console: Console
    store: TaskStore
    prompt: Prompt
    registry: CommandRegistry
    db_path: Path
    backup_suffix: str = storage.DEFAULT_BACKUP_SUFFIX

    def echo(self, message: str) -> None:
        self.console.print(message, markup=False, highlight=False, emoji=False)


@dataclass(frozen=True)
class Command:
    name: str
    description: str
    handler: CommandHandler


@dataclass
class CommandRegistry:
    """Ordered command table.

    A line resolves to the command whose name equals its first token
    (case-insensitive). With ``prefix`` enabled, a token that matches no name
    exactly falls back to the first registered command starting with it.
    """

    prefix: bool = False
    _commands: list[Command] = field(default_factory=list)

    def register(self, name: str, description: str, handler: CommandHandler) -> None:
        if self.get(name) is not None:
            raise ValueError(f"Command already registered: {name}")
        self._commands.append(Command(name=name, description=description, handler=handler))

    def __iter__(self) -> Iterator[Command]:
        return iter(self._commands)

    def __len__(self) -> int:
        return len(self._commands)

    @property
    def names(self) -> list[str]:
        return [command.name for command in self._commands]

    def get(self, name: str) -> Command | None:
        key = name.lower()
        for command in self._commands:
            if command.name.lower() == key:
                return command
        return None

    def resolve(self, token: str) -> Command | None:
        if not token:
            return None
        command = self.get(token)
        if command is not None or not self.prefix:
            return command
        key = token.lower()
        for candidate in self._commands:
            if candidate.name.lower().startswith(key):
                return candidate
        return None

    def complete(self, partial: str) -> list[str]:
        key = partial.lower()
        return [command.name for command in self._commands if command.name.lower().startswith(key)]

    def dispatch(self, ctx: CommandContext, line: str) -> bool:
        """Run ``line`` against ``ctx``. Returns False on unknown command or error."""
        token = line.strip().split(maxsplit=1)[0] if line.strip() else ""
        command = self.resolve(token)
        if command is None:
            ctx.echo(f"Unknown command: {token}. Type 'help' for a list of commands.")
            return False
        logger.debug("Dispatching %s: %r", command.name, line)
        try:
            command.handler(ctx, line)
        except TaskError as exc:
            ctx.echo(f"Error: {exc}")
            return False
        return True


def tokenize(line: str) -> list[str]:
    try:
        return [token.strip() for token in shlex.split(line)]
    except ValueError as exc:
        raise TaskArgumentError(f"Unable to parse command line: {exc}") from exc


def command_text(line: str) -> str:
    """Return the text following the command name, unquoted when the line parses."""
    try:
        return " ".join(tokenize(line)[1:]).strip()
    except TaskArgumentError:
        parts = line.strip().split(maxsplit=1)
        return parts[1].strip() if len(parts) > 1 else ""


def _parse_id(raw: str) -> int:
    try:
        return int(raw)
    except ValueError as exc:
        raise TaskArgumentError(f"Task id must be an integer: {raw}") from exc


def _id_arg(args: list[str], usage: str) -> int:
    if len(args) < 2:
        raise TaskArgumentError(f"You need to specify a task id. Usage: {usage}")
    return _parse_id(args[1])


def _id_and_tag_args(args: list[str], usage: str) -> tuple[int, str]:
    task_id = _id_arg(args, usage)
    if len(args) < 3 or not args[2]:
        raise TaskArgumentError(f"You need to specify a tag. Usage: {usage}")
    return task_id, args[2]


def help_cmd(ctx: CommandContext, line: str) -> None:
    args = tokenize(line)
    if len(args) > 1:
        command = ctx.registry.get(args[1])
        if command is None:
            raise TaskArgumentError(f"No such command: {args[1]}")
        commands = [command]
    else:
        commands = list(ctx.registry)
    for command in commands:
        ctx.echo(f"{command.name}:\n    {command.description}")


def show_cmd(ctx: CommandContext, line: str) -> None:
    task = ctx.store.get(_id_arg(tokenize(line), "show <id>"))
    ctx.console.print(render.render_task(task))


def list_cmd(ctx: CommandContext, line: str) -> None:
    args = tokenize(line)
    statuses = split_csv(args[1]) if len(args) > 1 else []
    tags = split_csv(args[2]) if len(args) > 2 else []
    text = " ".join(args[3:])
    tasks = apply_filters(ctx.store.tasks, statuses=statuses, tags=tags, text=text)
    ctx.console.print(render.render_task_list(tasks))


def add_cmd(ctx: CommandContext, line: str) -> None:
    try:
        text = command_text(line) or ctx.prompt("text: ").strip()
        tags = split_csv(ctx.prompt("tags: ", ctx.store.tags))
    except (EOFError, KeyboardInterrupt):
        ctx.echo("Canceled.")
        return
    if not text:
        raise TaskArgumentError("Task text is required.")
    task = ctx.store.add(Task.new(ctx.store.generate_id(), text, tags))
    ctx.echo(f"Task {task.id} created")


def addtag_cmd(ctx: CommandContext, line: str) -> None:
    task_id, tag = _id_and_tag_args(tokenize(line), "addtag <id> <tag>")
    task = ctx.store.get(task_id)
    task.tags.append(tag)
    ctx.store.remember_tags([tag])
    ctx.console.print(render.render_task(task))


def rmtag_cmd(ctx: CommandContext, line: str) -> None:
    task_id, tag = _id_and_tag_args(tokenize(line), "rmtag <id> <tag>")
    task = ctx.store.get(task_id)
    if tag in task.tags:
        task.tags.remove(tag)
    ctx.console.print(render.render_task(task))


def _status_cmd(status: str) -> CommandHandler:
    def handler(ctx: CommandContext, line: str) -> None:
        task = ctx.store.get(_id_arg(tokenize(line), f"{status} <id>"))
        task.status = status
        ctx.console.print(render.render_task(task))

    handler.__name__ = f"{status}_cmd"
    return handler


done_cmd = _status_cmd("done")
open_cmd = _status_cmd("open")
pending_cmd = _status_cmd("pending")


def json_cmd(ctx: CommandContext, line: str) -> None:
    ctx.echo(render.render_store_json(ctx.store))


def save_cmd(ctx: CommandContext, line: str) -> None:
    backup = storage.save_store(ctx.db_path, ctx.store, backup_suffix=ctx.backup_suffix)
    ctx.echo(f"Saved {len(ctx.store.tasks)} tasks to {ctx.db_path}")
    if backup is not None:
        ctx.echo(f"Backup: {backup}")


def recompute_ids_cmd(ctx: CommandContext, line: str) -> None:
    ctx.store.recompute_ids()
    ctx.echo(f"Recomputed ids for {len(ctx.store.tasks)} tasks.")


def tags_cmd(ctx: CommandContext, line: str) -> None:
    ctx.console.print(render.render_tag_counts(ctx.store))


def build_registry(*, prefix: bool = False) -> CommandRegistry:
    registry = CommandRegistry(prefix=prefix)
    registry.register("help", "help <cmd> show help of a command", help_cmd)
    registry.register("show", "Show specific task by id", show_cmd)
    registry.register(
        "list",
        "List tasks by status, tags and search text: list [status,...] [tag,...] [text]",
        list_cmd,
    )
    registry.register("addtag", "Add a tag to a task: addtag <id> <tag>", addtag_cmd)
    registry.register("rmtag", "Remove a tag from a task: rmtag <id> <tag>", rmtag_cmd)
    registry.register("add", "Add a task: add [text]", add_cmd)
    registry.register("json", "Print all tasks in json", json_cmd)
    registry.register("save", "Save the database", save_cmd)
    registry.register(
        "recomputeIds",
        "Recompute id for all tasks. Warning! this will change all ids.",
        recompute_ids_cmd,
    )
    registry.register("done", "Set task status to done", done_cmd)
    registry.register("open", "Set task status to open", open_cmd)
    registry.register("pending", "Set task status to pending", pending_cmd)
    registry.register("tags", "Show known tags and how many tasks use each", tags_cmd)
    return registry
