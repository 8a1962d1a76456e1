"""Whole-file JSON persistence helpers.

Every store serializes its complete table on each write. Writes go to a temp
file in the same directory and are renamed into place, so readers never see a
half-written table. Read-modify-write cycles hold an advisory lock on a
sibling ``.lock`` file so two processes cannot interleave their updates.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

try:
    import fcntl
except ImportError:  # Windows
    fcntl = None

from vfeedback.errors import PersistenceError

logger = logging.getLogger(__name__)

_thread_locks: dict[str, threading.RLock] = {}
_thread_locks_guard = threading.Lock()


def _thread_lock(path: Path) -> threading.RLock:
    key = str(path.resolve())
    with _thread_locks_guard:
        lock = _thread_locks.get(key)
        if lock is None:
            lock = _thread_locks[key] = threading.RLock()
        return lock


@contextmanager
def locked(path: Path) -> Iterator[None]:
    """Hold the in-process and cross-process lock for ``path``."""
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise PersistenceError(f"Failed to create {path.parent}: {e}") from e
    with _thread_lock(path):
        if fcntl is None:
            yield
            return
        lock_path = path.with_name(path.name + ".lock")
        try:
            fh = open(lock_path, "a+")
        except OSError as e:
            raise PersistenceError(f"Failed to lock {path}: {e}") from e
        with fh:
            fcntl.flock(fh.fileno(), fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(fh.fileno(), fcntl.LOCK_UN)


def read_json(path: Path) -> Any:
    """Return the parsed content of ``path``, or None if it does not exist."""
    if not path.exists():
        return None
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise PersistenceError(f"Failed to read {path}: {e}") from e


def write_json(path: Path, data: Any) -> None:
    """Serialize ``data`` to ``path`` atomically (pretty printed)."""
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(data, fh, indent=2, ensure_ascii=False)
                fh.write("\n")
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
    except OSError as e:
        raise PersistenceError(f"Failed to write {path}: {e}") from e
