"""Tests for the instance registry."""

from __future__ import annotations

import json
import os
from pathlib import Path

import pytest

from vfeedback.models import ServerEntry
from vfeedback.registry import InstanceRegistry, pid_alive
from vfeedback.store.files import read_json


def _seed(path: Path, *pids: int) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        json.dumps(
            {
                str(pid): ServerEntry(
                    token="t" * 32,
                    project_path=f"/work/p{pid}",
                    project_name=f"p{pid}",
                    port=3847,
                    pid=pid,
                ).to_dict()
                for pid in pids
            }
        )
    )


@pytest.fixture
def registry_path(tmp_path: Path) -> Path:
    return tmp_path / "servers.json"


class TestPrune:
    def test_dead_entries_pruned_on_read(self, registry_path: Path):
        _seed(registry_path, 100, 200)
        registry = InstanceRegistry(registry_path, pid=1, is_alive=lambda pid: pid == 100)

        live = registry.list_live()

        assert [e.pid for e in live] == [100]
        assert set(read_json(registry_path)) == {"100"}

    def test_nothing_pruned_leaves_file_alone(self, registry_path: Path):
        _seed(registry_path, 100)
        before = registry_path.read_text()
        registry = InstanceRegistry(registry_path, pid=1, is_alive=lambda pid: True)
        assert len(registry.list_live()) == 1
        assert registry_path.read_text() == before

    def test_missing_file(self, registry_path: Path):
        registry = InstanceRegistry(registry_path, pid=1)
        assert registry.list_live() == []

    def test_corrupt_file(self, registry_path: Path):
        registry_path.write_text("[[[")
        registry = InstanceRegistry(registry_path, pid=1, is_alive=lambda pid: True)
        assert registry.list_live() == []


class TestRegister:
    def test_register_and_unregister(self, registry_path: Path, tmp_path: Path):
        registry = InstanceRegistry(registry_path, pid=4242, is_alive=lambda pid: True)
        entry = registry.register("a" * 32, 3847, str(tmp_path / "shop"))

        assert entry.project_name == "shop"
        data = read_json(registry_path)
        assert data["4242"]["token"] == "a" * 32
        assert data["4242"]["port"] == 3847

        registry.unregister()
        assert read_json(registry_path) == {}

    def test_register_prunes_dead(self, registry_path: Path):
        _seed(registry_path, 200)
        registry = InstanceRegistry(registry_path, pid=4242, is_alive=lambda pid: pid == 4242)
        registry.register("a" * 32, 3847, "/work/app")
        assert set(read_json(registry_path)) == {"4242"}

    def test_register_overwrites_own_entry(self, registry_path: Path):
        registry = InstanceRegistry(registry_path, pid=4242, is_alive=lambda pid: True)
        registry.register("a" * 32, 3847, "/work/one")
        registry.register("b" * 32, 3847, "/work/two")
        live = registry.list_live()
        assert len(live) == 1
        assert live[0].project_name == "two"

    def test_unregister_without_entry(self, registry_path: Path):
        registry = InstanceRegistry(registry_path, pid=4242)
        registry.unregister()
        assert not registry_path.exists()

    def test_write_failure_is_not_raised(self, tmp_path: Path):
        blocker = tmp_path / "file"
        blocker.write_text("")
        registry = InstanceRegistry(blocker / "servers.json", pid=4242)
        entry = registry.register("a" * 32, 3847, "/work/app")
        assert entry.pid == 4242


class TestPidAlive:
    def test_self_is_alive(self):
        assert pid_alive(os.getpid()) is True

    def test_nonpositive(self):
        assert pid_alive(0) is False
        assert pid_alive(-1) is False

    def test_permission_error_means_alive(self, monkeypatch):
        def deny(pid, sig):
            raise PermissionError

        monkeypatch.setattr("vfeedback.registry.os.kill", deny)
        assert pid_alive(1) is True

    def test_no_such_process(self, monkeypatch):
        def gone(pid, sig):
            raise ProcessLookupError

        monkeypatch.setattr("vfeedback.registry.os.kill", gone)
        assert pid_alive(99999) is False
