"""Instance Registry: discovery table of running servers, keyed by pid.

A browser client reads it (through ``GET /servers``) to find the server that
owns a given project. Entries for dead processes are pruned on every access.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable
from pathlib import Path

from vfeedback.errors import PersistenceError
from vfeedback.models import ServerEntry
from vfeedback.store.files import locked, read_json, write_json

logger = logging.getLogger(__name__)


def pid_alive(pid: int) -> bool:
    """Signal-zero liveness check."""
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists but owned by someone else
        return True
    except OSError:
        return False
    return True


class InstanceRegistry:
    """Best-effort shared registry; I/O failures are logged, never raised."""

    def __init__(
        self,
        path: Path,
        *,
        pid: int | None = None,
        is_alive: Callable[[int], bool] = pid_alive,
    ) -> None:
        self.path = path
        self.pid = pid if pid is not None else os.getpid()
        self._is_alive = is_alive

    def _read(self) -> dict[str, ServerEntry]:
        try:
            data = read_json(self.path)
        except PersistenceError as e:
            logger.warning("%s", e)
            return {}
        if not isinstance(data, dict):
            return {}
        entries: dict[str, ServerEntry] = {}
        for key, raw in data.items():
            try:
                entries[str(key)] = ServerEntry.from_dict(raw)
            except (TypeError, ValueError, AttributeError):
                logger.warning("Dropping malformed registry entry %s", key)
        return entries

    def _prune(self, entries: dict[str, ServerEntry]) -> bool:
        """Drop dead pids in place. Returns True if anything was removed."""
        dead = [key for key in entries if not key.isdigit() or not self._is_alive(int(key))]
        for key in dead:
            logger.debug("Pruning stale server entry (pid=%s)", key)
            del entries[key]
        return bool(dead)

    def _write(self, entries: dict[str, ServerEntry]) -> None:
        write_json(self.path, {key: entry.to_dict() for key, entry in entries.items()})

    def list_live(self) -> list[ServerEntry]:
        """Live entries; the pruned table is written back when anything died."""
        try:
            with locked(self.path):
                entries = self._read()
                if self._prune(entries):
                    self._write(entries)
        except (PersistenceError, OSError) as e:
            logger.warning("Failed to prune server registry: %s", e)
            entries = self._read()
            self._prune(entries)
        return list(entries.values())

    def register(self, token: str, port: int, project_path: str | None = None) -> ServerEntry:
        project_path = project_path or os.getcwd()
        entry = ServerEntry(
            token=token,
            project_path=project_path,
            project_name=Path(project_path).name,
            port=port,
            pid=self.pid,
        )
        try:
            with locked(self.path):
                entries = self._read()
                self._prune(entries)
                entries[str(self.pid)] = entry
                self._write(entries)
            logger.info("Registered server for project: %s", entry.project_name)
        except (PersistenceError, OSError) as e:
            logger.error("Failed to register server: %s", e)
        return entry

    def unregister(self) -> None:
        try:
            with locked(self.path):
                entries = self._read()
                removed = entries.pop(str(self.pid), None) is not None
                if not self._prune(entries) and not removed:
                    return
                self._write(entries)
            logger.info("Unregistered server (pid=%d)", self.pid)
        except (PersistenceError, OSError) as e:
            logger.error("Failed to unregister server: %s", e)
