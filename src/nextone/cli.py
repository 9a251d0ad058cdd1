"""CLI entrypoint for nextone."""

from __future__ import annotations

import logging
from pathlib import Path
import shlex
import sys
from typing import Annotated, Sequence

import click
import typer

from . import filters, render, storage
from .commands import CommandContext, build_registry
from .logging_setup import setup_logging
from .models import TaskError, TaskStore
from .shell import Shell

logger = logging.getLogger(__name__)

DbOption = Annotated[
    Path | None,
    typer.Option("--db", help=f"Task database path (default: ${storage.DB_ENV_VAR} or ~/{storage.DB_FILE_NAME})"),
]
SaveOption = Annotated[
    bool,
    typer.Option("--save", help="Write the store back to the database afterwards"),
]


def _can_interact() -> bool:
    return sys.stdin.isatty() and sys.stdout.isatty()


def _warn_config(message: str) -> None:
    typer.echo(f"Warning: {message}", err=True)


def _settings(db: Path | None) -> storage.Settings:
    return storage.resolve_settings(db, warn=_warn_config)


def _run_and_handle(fn) -> None:
    try:
        fn()
    except TaskError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from exc


def _stdin_prompt(message: str, completions: Sequence[str] = ()) -> str:
    try:
        return typer.prompt(message.rstrip(": "), default="", show_default=False)
    except click.Abort as exc:
        raise EOFError(message) from exc


def _save(settings: storage.Settings, store: TaskStore) -> None:
    storage.save_store(settings.db_path, store, backup_suffix=settings.backup_suffix)
    typer.echo(f"Saved {len(store.tasks)} tasks to {settings.db_path}")


def _run_shell(db: Path | None) -> None:
    settings = _settings(db)
    store = storage.load_store(settings.db_path)
    shell = Shell(
        store,
        build_registry(prefix=settings.prefix_commands),
        console=render.make_console(color=settings.color),
        db_path=settings.db_path,
        history_path=settings.history_path,
        backup_suffix=settings.backup_suffix,
    )
    logger.info("Starting shell on %s (%d tasks)", settings.db_path, len(store.tasks))
    shell.run()


app = typer.Typer(help="Personal task tracker with an interactive shell")


@app.callback(invoke_without_command=True)
def root_callback(
    ctx: typer.Context,
    db: DbOption = None,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Enable debug logging")] = False,
) -> None:
    """Open the interactive shell when no command is provided."""
    setup_logging(logging.DEBUG if verbose else logging.WARNING)
    if ctx.invoked_subcommand is not None:
        return

    if not _can_interact():
        typer.echo(ctx.get_help())
        typer.echo("Error: the interactive shell requires a terminal.", err=True)
        raise typer.Exit(code=2)

    _run_and_handle(lambda: _run_shell(db))


@app.command("shell")
def shell_cmd(db: DbOption = None) -> None:
    """Start the interactive shell."""
    _run_and_handle(lambda: _run_shell(db))


@app.command("init")
def init_cmd(db: DbOption = None) -> None:
    """Create an empty task database."""

    def _inner() -> None:
        settings = _settings(db)
        if storage.init_store(settings.db_path):
            typer.echo(f"Created task database: {settings.db_path}")
        else:
            typer.echo(f"Using existing task database: {settings.db_path}")

    _run_and_handle(_inner)


@app.command("list")
def list_cmd(
    tags: Annotated[str, typer.Option("--tags", "-t", help="Comma-separated tags (any match)")] = "",
    status: Annotated[str, typer.Option("--status", "-s", help="Comma-separated statuses")] = "",
    find: Annotated[str, typer.Option("--find", "-f", help="Case-insensitive text search")] = "",
    recompute_ids: Annotated[
        bool,
        typer.Option("--recompute-ids", help="Renumber task ids 1..N before listing"),
    ] = False,
    as_json: Annotated[bool, typer.Option("--json")] = False,
    save: SaveOption = False,
    db: DbOption = None,
) -> None:
    """List tasks filtered by tags, status and text."""

    def _inner() -> None:
        settings = _settings(db)
        store = storage.load_store(settings.db_path)
        if recompute_ids:
            store.recompute_ids()

        tasks = filters.filter_by_tags(store.tasks, filters.split_csv(tags))
        tasks = filters.filter_by_status(tasks, filters.split_csv(status))
        tasks = filters.filter_by_text(tasks, find)

        if as_json:
            typer.echo(render.render_task_list_json(tasks))
        else:
            render.make_console(color=settings.color).print(render.render_task_list(tasks))
        if save:
            _save(settings, store)

    _run_and_handle(_inner)


@app.command("exec")
def exec_cmd(
    line: Annotated[list[str], typer.Argument(help="Shell command line, e.g. 'addtag 3 urgent'")],
    save: SaveOption = False,
    db: DbOption = None,
) -> None:
    """Run one shell command against the database."""

    def _inner() -> None:
        settings = _settings(db)
        store = storage.load_store(settings.db_path)
        registry = build_registry(prefix=settings.prefix_commands)
        ctx = CommandContext(
            console=render.make_console(color=settings.color),
            store=store,
            prompt=_stdin_prompt,
            registry=registry,
            db_path=settings.db_path,
            backup_suffix=settings.backup_suffix,
        )
        command_line = line[0] if len(line) == 1 else shlex.join(line)
        if not registry.dispatch(ctx, command_line):
            raise typer.Exit(code=1)
        if save:
            _save(settings, store)

    _run_and_handle(_inner)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
