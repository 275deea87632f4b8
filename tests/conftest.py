"""Shared test fixtures."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from purger.core.context import RunContext
from purger.models.config import ScanConfig
from purger.settings import Settings


def write_manifest(
    directory: Path,
    name: str | None = None,
    *,
    members: list[str] | None = None,
    exclude: list[str] | None = None,
    workspace_pointer: str | None = None,
    raw: str | None = None,
) -> Path:
    """Write a Cargo.toml into *directory* (created if needed)."""
    directory.mkdir(parents=True, exist_ok=True)
    manifest = directory / "Cargo.toml"
    if raw is not None:
        manifest.write_text(raw)
        return manifest

    lines: list[str] = []
    if name is not None:
        lines += ["[package]", f'name = "{name}"', 'version = "0.1.0"']
        if workspace_pointer is not None:
            lines.append(f'workspace = "{workspace_pointer}"')
        lines.append("")
    if members is not None:
        quoted = ", ".join(f'"{m}"' for m in members)
        lines += ["[workspace]", f"members = [{quoted}]"]
        if exclude:
            lines.append("exclude = [" + ", ".join(f'"{e}"' for e in exclude) + "]")
    manifest.write_text("\n".join(lines) + "\n")
    return manifest


def fill_target(directory: Path, files: dict[str, int] | None = None) -> Path:
    """Create ``directory/target`` holding files of the given sizes."""
    target = directory / "target"
    target.mkdir(parents=True, exist_ok=True)
    for rel, size in (files or {"debug/build.log": 100}).items():
        path = target / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(b"x" * size)
    return target


@pytest.fixture
def make_project(tmp_path):
    """Factory: create a Cargo project under tmp_path, optionally with a target dir."""

    def _make(rel: str, name: str | None = None, *, target: dict[str, int] | None = None, **manifest_kw) -> Path:
        directory = tmp_path / rel
        write_manifest(directory, name or directory.name, **manifest_kw)
        if target is not None:
            fill_target(directory, target)
        return directory

    return _make


@pytest.fixture
def scan_config(tmp_path):
    """Factory for a ScanConfig rooted at tmp_path with a small worker pool."""

    def _config(**overrides) -> ScanConfig:
        overrides.setdefault("root", tmp_path)
        overrides.setdefault("workers", 4)
        return ScanConfig(**overrides)

    return _config


@pytest.fixture
def context():
    return RunContext()


@pytest.fixture(autouse=True)
def isolate_settings(tmp_path_factory, monkeypatch):
    """Point the settings file at a temp directory and drop the cached instance."""
    config_home = tmp_path_factory.mktemp("xdg_config")
    monkeypatch.setenv("XDG_CONFIG_HOME", str(config_home))
    Settings.reset_instance()
    yield config_home / "purger" / "settings.json"
    Settings.reset_instance()


@pytest.fixture
def requires_permission_bits():
    """Skip when permission bits are not enforced (root or Windows)."""
    if os.name == "nt" or (hasattr(os, "geteuid") and os.geteuid() == 0):
        pytest.skip("permission bits are not enforced for this user")
