"""Interactive line-editing shell."""

from __future__ import annotations

import logging
from pathlib import Path
import signal
import threading
from types import FrameType
from typing import Any, Callable, Iterable, Protocol, Sequence

from prompt_toolkit import PromptSession
from prompt_toolkit import prompt as toolkit_prompt
from prompt_toolkit.completion import Completer, Completion, WordCompleter
from prompt_toolkit.document import Document
from prompt_toolkit.history import InMemoryHistory
from rich.console import Console

from . import storage
from .commands import CommandContext, CommandRegistry, Prompt
from .models import TaskStore

logger = logging.getLogger(__name__)

PROMPT = "nextone> "
QUIT_COMMAND = "quit"


class LineReader(Protocol):
    def prompt(self, message: str) -> str: ...


class CommandCompleter(Completer):
    """Complete registered command names for the first word of the line."""

    def __init__(self, registry: CommandRegistry) -> None:
        self.registry = registry

    def get_completions(self, document: Document, complete_event):
        text = document.text_before_cursor.lstrip()
        if " " in text:
            return
        for name in self.registry.complete(text):
            yield Completion(name, start_position=-len(text))


class InterruptListener:
    """Run ``on_interrupt`` once and exit when SIGINT or SIGTERM arrives.

    Previous handlers are restored when the context exits.
    """

    def __init__(
        self,
        on_interrupt: Callable[[], None],
        signals: Iterable[signal.Signals] = (signal.SIGINT, signal.SIGTERM),
    ) -> None:
        self.on_interrupt = on_interrupt
        self.signals = tuple(signals)
        self._fired = threading.Event()
        self._previous: dict[signal.Signals, Any] = {}

    @property
    def fired(self) -> bool:
        return self._fired.is_set()

    def __enter__(self) -> InterruptListener:
        for signum in self.signals:
            self._previous[signum] = signal.signal(signum, self._handle)
        return self

    def __exit__(self, *exc_info: object) -> None:
        for signum, previous in self._previous.items():
            signal.signal(signum, previous)
        self._previous.clear()

    def _handle(self, signum: int, frame: FrameType | None) -> None:
        if self._fired.is_set():
            return
        self._fired.set()
        logger.info("Received signal %s, shutting down", signal.Signals(signum).name)
        self.on_interrupt()
        raise SystemExit(0)


class Shell:
    """Read-dispatch-print loop over one TaskStore owned for the whole session."""

    def __init__(
        self,
        store: TaskStore,
        registry: CommandRegistry,
        *,
        console: Console,
        db_path: Path,
        history_path: Path,
        backup_suffix: str = storage.DEFAULT_BACKUP_SUFFIX,
        session: LineReader | None = None,
        ask: Prompt | None = None,
        handle_signals: bool = True,
    ) -> None:
        self.store = store
        self.registry = registry
        self.console = console
        self.history_path = history_path
        self.history = InMemoryHistory()
        self.handle_signals = handle_signals
        self._session = session
        self._ask = ask
        self._closed = False
        self.context = CommandContext(
            console=console,
            store=store,
            prompt=self.ask,
            registry=registry,
            db_path=db_path,
            backup_suffix=backup_suffix,
        )

    @property
    def session(self) -> LineReader:
        if self._session is None:
            self._session = PromptSession(
                history=self.history,
                completer=CommandCompleter(self.registry),
                complete_while_typing=False,
            )
        return self._session

    def ask(self, message: str, completions: Sequence[str] = ()) -> str:
        """Secondary prompt used by handlers; answers stay out of the command history."""
        if self._ask is not None:
            return self._ask(message, completions)
        completer = WordCompleter(list(completions), ignore_case=True) if completions else None
        return toolkit_prompt(message, completer=completer)

    def load_history(self) -> None:
        try:
            lines = storage.read_history(self.history_path)
        except OSError as exc:
            logger.warning("Error reading history file %s: %s", self.history_path, exc)
            return
        for line in lines:
            self.history.append_string(line)
        logger.debug("Loaded %d history entries from %s", len(lines), self.history_path)

    def save_history(self) -> None:
        lines = self.history.get_strings()
        try:
            storage.write_history(self.history_path, lines)
        except OSError as exc:
            logger.error("Error writing history file %s: %s", self.history_path, exc)
            return
        logger.debug("Saved %d history entries to %s", len(lines), self.history_path)

    def close(self) -> None:
        """Flush history. Safe to call more than once; only the first call writes."""
        if self._closed:
            return
        self._closed = True
        self.save_history()

    def execute(self, line: str) -> bool:
        return self.registry.dispatch(self.context, line)

    def remember(self, line: str) -> None:
        """Append an accepted line to history unless it repeats the latest entry."""
        entries = self.history.get_strings()
        if line.strip() and (not entries or entries[-1] != line):
            self.history.append_string(line)

    def loop(self) -> None:
        while True:
            try:
                line = self.session.prompt(PROMPT)
            except (EOFError, KeyboardInterrupt):
                logger.info("Aborted")
                return
            except OSError as exc:
                logger.error("Error reading line: %s", exc)
                return

            command = line.strip()
            if command == QUIT_COMMAND:
                return
            self.remember(line)
            if not command:
                continue
            self.execute(line)

    def run(self) -> None:
        self.load_history()
        try:
            if self.handle_signals:
                with InterruptListener(self.close):
                    self.loop()
            else:
                self.loop()
        finally:
            self.close()
