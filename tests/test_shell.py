from __future__ import annotations

import io
from pathlib import Path
import signal

from prompt_toolkit.document import Document
import pytest

from nextone import render
from nextone.commands import build_registry
from nextone.models import Task, TaskStore
from nextone.shell import CommandCompleter, InterruptListener, Shell


class _FakeSession:
    def __init__(self, *lines: str | BaseException) -> None:
        self.lines = list(lines)
        self.messages: list[str] = []

    def prompt(self, message: str) -> str:
        self.messages.append(message)
        line = self.lines.pop(0)
        if isinstance(line, BaseException):
            raise line
        return line


def _store() -> TaskStore:
    return TaskStore(
        tasks=[
            Task(id=1, created=1_700_000_000_000, text="Buy milk", status="open", tags=["a"]),
            Task(id=2, created=1_700_000_001_000, text="Ship release", status="done", tags=["b"]),
        ],
        tags=["a", "b"],
    )


def _shell(tmp_path: Path, session: _FakeSession, *, answers: list[str] | None = None) -> Shell:
    pending = list(answers or [])
    return Shell(
        _store(),
        build_registry(),
        console=render.make_console(color=False, file=io.StringIO()),
        db_path=tmp_path / "db.task",
        history_path=tmp_path / ".nextone_history",
        session=session,
        ask=lambda message, completions=(): pending.pop(0),
        handle_signals=False,
    )


def _output(shell: Shell) -> str:
    return shell.console.file.getvalue()


def _history(tmp_path: Path) -> list[str]:
    return (tmp_path / ".nextone_history").read_text(encoding="utf-8").splitlines()


def test_run_dispatches_until_quit_and_flushes_history(tmp_path: Path) -> None:
    session = _FakeSession("done 1", "", "show 1", "quit", "show 2")
    shell = _shell(tmp_path, session)
    shell.run()

    assert shell.store.get(1).status == "done"
    assert session.lines == ["show 2"]
    assert session.messages == ["nextone> "] * 4
    assert "1 done Buy milk" in _output(shell)
    assert _history(tmp_path) == ["done 1", "show 1"]


def test_quit_does_not_save_store(tmp_path: Path) -> None:
    shell = _shell(tmp_path, _FakeSession("done 1", "quit"))
    shell.run()
    assert not (tmp_path / "db.task").exists()


def test_save_command_persists_store(tmp_path: Path) -> None:
    shell = _shell(tmp_path, _FakeSession("add Water plants", "save", "quit"), answers=["garden"])
    shell.run()
    saved = (tmp_path / "db.task").read_text(encoding="utf-8")
    assert "Water plants" in saved
    assert '"garden"' in saved


def test_history_is_loaded_and_appended(tmp_path: Path) -> None:
    (tmp_path / ".nextone_history").write_text("list\nhelp\n", encoding="utf-8")
    shell = _shell(tmp_path, _FakeSession("show 1", "show 1", "quit"))
    shell.run()
    assert _history(tmp_path) == ["list", "help", "show 1"]


def test_missing_history_file_is_not_an_error(tmp_path: Path) -> None:
    shell = _shell(tmp_path, _FakeSession("quit"))
    shell.load_history()
    assert shell.history.get_strings() == []


@pytest.mark.parametrize("abort", [EOFError(), KeyboardInterrupt()])
def test_prompt_abort_ends_session_and_flushes_history(tmp_path: Path, abort: BaseException) -> None:
    shell = _shell(tmp_path, _FakeSession("show 2", abort, "show 1"))
    shell.run()
    assert _history(tmp_path) == ["show 2"]
    assert shell.history.get_strings() == ["show 2"]


def test_read_error_ends_session(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    shell = _shell(tmp_path, _FakeSession(OSError("tty gone")))
    with caplog.at_level("ERROR", logger="nextone.shell"):
        shell.run()
    assert "Error reading line: tty gone" in caplog.text
    assert (tmp_path / ".nextone_history").exists()


def test_unknown_command_in_shell_keeps_store(tmp_path: Path) -> None:
    shell = _shell(tmp_path, _FakeSession("frobnicate", "quit"))
    before = [task.to_dict() for task in shell.store.tasks]
    shell.run()
    assert [task.to_dict() for task in shell.store.tasks] == before
    assert "Unknown command: frobnicate" in _output(shell)


def test_close_flushes_only_once(tmp_path: Path) -> None:
    shell = _shell(tmp_path, _FakeSession())
    shell.remember("list")
    shell.close()
    history = tmp_path / ".nextone_history"
    history.unlink()
    shell.close()
    assert not history.exists()


def test_completer_suggests_command_names(tmp_path: Path) -> None:
    completer = CommandCompleter(build_registry())

    def _complete(text: str) -> list[str]:
        document = Document(text, cursor_position=len(text))
        return [completion.text for completion in completer.get_completions(document, None)]

    assert _complete("ad") == ["addtag", "add"]
    assert _complete("RE") == ["recomputeIds"]
    assert _complete("show 1") == []


def test_interrupt_listener_flushes_once_and_exits() -> None:
    calls: list[str] = []
    previous = signal.getsignal(signal.SIGTERM)

    with pytest.raises(SystemExit) as excinfo:
        with InterruptListener(lambda: calls.append("flush"), signals=(signal.SIGTERM,)) as listener:
            signal.raise_signal(signal.SIGTERM)

    assert excinfo.value.code == 0
    assert calls == ["flush"]
    assert listener.fired is True
    assert signal.getsignal(signal.SIGTERM) == previous


def test_shell_interrupt_during_dispatch_saves_history(tmp_path: Path) -> None:
    session = _FakeSession("show 1", "quit")
    shell = _shell(tmp_path, session)
    shell.handle_signals = True

    def _interrupting_handler(ctx, line: str) -> None:
        signal.raise_signal(signal.SIGTERM)

    shell.registry.register("boom", "Raise SIGTERM", _interrupting_handler)
    session.lines.insert(1, "boom")

    with pytest.raises(SystemExit):
        shell.run()
    assert _history(tmp_path) == ["show 1", "boom"]
    assert session.lines == ["quit"]
