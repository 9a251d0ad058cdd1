"""Filesystem operations, history file IO and configuration for nextone."""

from __future__ import annotations

from dataclasses import dataclass
import json
import logging
import os
from pathlib import Path
import shutil
import tempfile
from typing import Any, Callable, Iterable, Mapping

import yaml

from .models import TaskDecodeError, TaskStorageError, TaskStore

logger = logging.getLogger(__name__)

DB_ENV_VAR = "NEXTONE_DB_PATH"
CONFIG_ENV_VAR = "NEXTONE_CONFIG"
DB_FILE_NAME = "db.task"
HISTORY_FILE_NAME = ".nextone_history"
CONFIG_FILE_NAME = ".nextone.yaml"
DEFAULT_BACKUP_SUFFIX = "_bak"
DEFAULT_COLOR = True
DEFAULT_PREFIX_COMMANDS = False
HISTORY_LIMIT = 1000

SETTINGS_KEYS = {"db_path", "backup_suffix", "history_file", "color", "prefix_commands"}


@dataclass(frozen=True, slots=True)
class Settings:
    db_path: Path
    history_path: Path
    backup_suffix: str = DEFAULT_BACKUP_SUFFIX
    color: bool = DEFAULT_COLOR
    prefix_commands: bool = DEFAULT_PREFIX_COMMANDS

    @property
    def backup_path(self) -> Path:
        return backup_path(self.db_path, self.backup_suffix)


def backup_path(db_path: Path, suffix: str = DEFAULT_BACKUP_SUFFIX) -> Path:
    return db_path.with_name(db_path.name + suffix)


def config_path(environ: Mapping[str, str] | None = None, home: Path | None = None) -> Path:
    env = os.environ if environ is None else environ
    override = env.get(CONFIG_ENV_VAR, "").strip()
    if override:
        return Path(override).expanduser()
    return (home or Path.home()) / CONFIG_FILE_NAME


def read_config(path: Path, warn: Callable[[str], None] | None = None) -> dict[str, Any]:
    if not path.exists():
        return {}
    try:
        payload = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError):
        if warn is not None:
            warn(f"Unable to parse config at {path}. Falling back to defaults.")
        return {}
    if not isinstance(payload, dict):
        if warn is not None:
            warn(f"Invalid config format at {path}. Falling back to defaults.")
        return {}
    return payload


def _config_settings(path: Path, warn: Callable[[str], None] | None) -> dict[str, Any]:
    data = read_config(path, warn=warn)
    for key in data.keys():
        if key != "settings" and warn is not None:
            warn(f"Unsupported config key '{key}' in {path}. Ignoring.")

    settings = data.get("settings", {})
    if not isinstance(settings, dict):
        if warn is not None:
            warn(f"Invalid settings section in {path}. Using defaults.")
        return {}

    valid: dict[str, Any] = {}
    for key, value in settings.items():
        if key not in SETTINGS_KEYS:
            if warn is not None:
                warn(f"Unsupported settings key '{key}' in {path}. Ignoring.")
            continue
        expected = bool if key in {"color", "prefix_commands"} else str
        if value is None:
            continue
        if not isinstance(value, expected) or (expected is str and not value.strip()):
            if warn is not None:
                warn(f"Invalid settings.{key} in {path}. Using default.")
            continue
        valid[key] = value
    return valid


def resolve_settings(
    db_path: Path | None = None,
    *,
    environ: Mapping[str, str] | None = None,
    home: Path | None = None,
    warn: Callable[[str], None] | None = None,
) -> Settings:
    """Resolve paths and options: explicit flag, then environment, then config, then defaults."""
    env = os.environ if environ is None else environ
    home = home or Path.home()
    config = _config_settings(config_path(env, home), warn)

    if db_path is not None:
        resolved_db = db_path.expanduser()
    elif env.get(DB_ENV_VAR, "").strip():
        resolved_db = Path(env[DB_ENV_VAR].strip()).expanduser()
    elif "db_path" in config:
        resolved_db = Path(config["db_path"]).expanduser()
    else:
        resolved_db = home / DB_FILE_NAME

    history = config.get("history_file")
    history_path = Path(history).expanduser() if history else home / HISTORY_FILE_NAME

    return Settings(
        db_path=resolved_db,
        history_path=history_path,
        backup_suffix=config.get("backup_suffix", DEFAULT_BACKUP_SUFFIX),
        color=config.get("color", DEFAULT_COLOR),
        prefix_commands=config.get("prefix_commands", DEFAULT_PREFIX_COMMANDS),
    )


def dumps_store(store: TaskStore) -> str:
    return json.dumps(store.to_dict(), indent=1, ensure_ascii=False) + "\n"


def loads_store(text: str) -> TaskStore:
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise TaskDecodeError(f"Malformed task database: {exc}") from exc
    store = TaskStore.from_dict(payload)
    store.sort_by_created()
    return store


def load_store(db_path: Path) -> TaskStore:
    try:
        text = db_path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise TaskStorageError(
            f"Task database not found: {db_path}. Run 'nextone init' to create one."
        ) from exc
    except (OSError, UnicodeDecodeError) as exc:
        raise TaskStorageError(f"Unable to read task database {db_path}: {exc}") from exc
    try:
        store = loads_store(text)
    except TaskDecodeError as exc:
        raise TaskDecodeError(f"{db_path}: {exc}") from exc
    logger.debug("Loaded %d tasks from %s", len(store.tasks), db_path)
    return store


def _write_temp(target: Path, text: str) -> Path:
    fd, name = tempfile.mkstemp(prefix=f".{target.name}.", suffix=".tmp", dir=target.parent)
    tmp = Path(name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(text)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise
    return tmp


def write_atomic(target: Path, text: str) -> None:
    target.parent.mkdir(parents=True, exist_ok=True)
    tmp = _write_temp(target, text)
    try:
        os.replace(tmp, target)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise


def save_store(db_path: Path, store: TaskStore, *, backup_suffix: str = DEFAULT_BACKUP_SUFFIX) -> Path | None:
    """Back up the current file and replace it with ``store``.

    The new document is fully written to a temporary file before the backup is
    taken, and the database is only touched by the final rename. Returns the
    backup path, or None when there was no previous file to back up.
    """
    text = dumps_store(store)
    try:
        db_path.parent.mkdir(parents=True, exist_ok=True)
        tmp = _write_temp(db_path, text)
    except OSError as exc:
        raise TaskStorageError(f"Unable to write task database {db_path}: {exc}") from exc

    backup: Path | None = None
    try:
        if db_path.exists():
            backup = backup_path(db_path, backup_suffix)
            shutil.copy2(db_path, backup)
        os.replace(tmp, db_path)
    except OSError as exc:
        tmp.unlink(missing_ok=True)
        raise TaskStorageError(f"Unable to save task database {db_path}: {exc}") from exc

    logger.debug("Saved %d tasks to %s (backup: %s)", len(store.tasks), db_path, backup)
    return backup


def init_store(db_path: Path) -> bool:
    if db_path.exists():
        return False
    try:
        write_atomic(db_path, dumps_store(TaskStore()))
    except OSError as exc:
        raise TaskStorageError(f"Unable to create task database {db_path}: {exc}") from exc
    return True


def read_history(path: Path) -> list[str]:
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return []
    return [line for line in text.splitlines() if line.strip()]


def write_history(path: Path, lines: Iterable[str], *, limit: int = HISTORY_LIMIT) -> None:
    entries = [line for line in lines if line.strip()]
    if limit > 0:
        entries = entries[-limit:]
    write_atomic(path, "".join(f"{line}\n" for line in entries))
