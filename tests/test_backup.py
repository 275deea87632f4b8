"""Tests for executable backup."""

from __future__ import annotations

import hashlib
import os

import pytest

from purger.core import backup
from purger.core.backup import backup_directory, backup_executables, find_executables
from purger.core.context import CancelToken
from purger.core.discovery import ProjectDiscovery
from purger.errors import BackupFailure, CleanCancelled
from purger.models.config import ScanConfig

pytestmark = pytest.mark.skipif(os.name == "nt", reason="executables are detected by extension on Windows")


def _exe(path, content=b"\x7fELF"):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)
    path.chmod(0o755)
    return path


@pytest.fixture
def built_project(make_project):
    project = make_project("tool", target={"debug/deps/libx.rlib": 10, "debug/notes.txt": 3})
    target = project / "target"
    _exe(target / "debug" / "tool")
    _exe(target / "release" / "tool", b"release")
    _exe(target / "x86_64-unknown-linux-gnu" / "release" / "tool", b"cross")
    # Nested deeper than a profile directory: not a shipped executable
    _exe(target / "debug" / "build" / "tool-1234" / "build-script-build")
    return ProjectDiscovery(ScanConfig(root=project)).scan_single(project)


class TestFindExecutables:
    def test_profile_and_triple_directories(self, built_project):
        found = find_executables(built_project.artifact_path)
        rel = sorted(p.relative_to(built_project.artifact_path).as_posix() for p in found)
        assert rel == ["debug/tool", "release/tool", "x86_64-unknown-linux-gnu/release/tool"]

    def test_empty_target(self, tmp_path):
        (tmp_path / "target").mkdir()
        assert find_executables(tmp_path / "target") == []


class TestBackupExecutables:
    def test_copies_preserving_profile_layout(self, tmp_path, built_project):
        base = tmp_path / "backups"

        copies = backup_executables(built_project, base)

        dest = backup_directory(built_project, base)
        assert len(copies) == 3
        assert (dest / "debug" / "tool").read_bytes() == b"\x7fELF"
        assert (dest / "release" / "tool").read_bytes() == b"release"
        assert (dest / "x86_64-unknown-linux-gnu" / "release" / "tool").read_bytes() == b"cross"
        assert len(built_project.executables) == 3
        # Originals untouched
        assert (built_project.artifact_path / "debug" / "tool").exists()

    def test_directory_name_is_name_and_path_hash(self, tmp_path, built_project):
        digest = hashlib.sha256(str(built_project.root_path).encode()).hexdigest()[:16]
        assert backup_directory(built_project, tmp_path).name == f"tool-{digest}"

    def test_default_base_is_inside_project(self, built_project):
        dest = backup_directory(built_project, None)
        assert dest.parent == built_project.root_path / "executables"

    def test_copy_failure_raises(self, tmp_path, built_project):
        blocker = tmp_path / "blocker"
        blocker.write_text("file, not a directory")
        with pytest.raises(BackupFailure):
            backup_executables(built_project, blocker)

    def test_cancellation_between_copies(self, tmp_path, built_project):
        token = CancelToken()
        token.cancel()
        with pytest.raises(CleanCancelled):
            backup_executables(built_project, tmp_path / "b", token)

    def test_nothing_to_back_up(self, tmp_path, make_project):
        project = make_project("lib", target={"debug/libfoo.rlib": 5})
        record = ProjectDiscovery(ScanConfig(root=project)).scan_single(project)
        assert backup_executables(record, tmp_path / "b") == []
        assert not (tmp_path / "b").exists()

    def test_is_executable_requires_exec_bit(self, tmp_path):
        plain = tmp_path / "plain"
        plain.write_text("x")
        assert not backup.is_executable(plain)
        assert backup.is_executable(_exe(tmp_path / "run"))
        assert not backup.is_executable(tmp_path)
