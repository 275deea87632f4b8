"""Decides what a directory is: project root, plain directory, or ignored."""

from __future__ import annotations

import glob
import logging
import os
import tomllib
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from purger.core.ignore_rules import IgnoreRules
from purger.errors import ManifestUnreadable, PermissionDeniedError
from purger.models.config import ScanConfig
from purger.models.project import ARTIFACT_DIR_NAME, MANIFEST_NAME
from purger.utils import is_relative_to, resolve_path

log = logging.getLogger(__name__)


class ClassificationKind(Enum):
    NOT_A_PROJECT = "not_a_project"
    PROJECT_ROOT = "project_root"
    IGNORED = "ignored"


@dataclass(frozen=True, slots=True)
class Manifest:
    """The parts of a Cargo.toml the walker cares about."""

    path: Path
    name: str
    is_workspace: bool = False
    members: tuple[str, ...] = ()
    exclude: tuple[str, ...] = ()
    workspace_pointer: str | None = None
    error: str | None = None

    @property
    def parsed(self) -> bool:
        return self.error is None

    def member_dirs(self) -> frozenset[Path]:
        """Resolved directories declared by ``[workspace] members``.

        Glob patterns are expanded against the filesystem; only directories
        holding their own manifest count. ``exclude`` entries remove a
        directory and everything below it.
        """
        if not self.is_workspace:
            return frozenset()
        root = self.path.parent
        excluded = [resolve_path(root / e) for e in self.exclude]
        found: set[Path] = set()
        for pattern in self.members:
            for hit in glob.glob(os.path.join(glob.escape(str(root)), pattern)):
                candidate = resolve_path(Path(hit))
                if candidate == resolve_path(root):
                    continue
                if not os.path.isfile(candidate / MANIFEST_NAME):
                    continue
                if any(is_relative_to(candidate, e) for e in excluded):
                    continue
                found.add(candidate)
        return frozenset(found)

    def pointed_root(self) -> Path | None:
        """Workspace root named by ``package.workspace``, if any."""
        if self.workspace_pointer is None:
            return None
        return resolve_path(self.path.parent / self.workspace_pointer)


@dataclass(frozen=True, slots=True)
class Classification:
    kind: ClassificationKind
    path: Path
    manifest: Manifest | None = None
    reason: str = ""

    @property
    def is_project(self) -> bool:
        return self.kind is ClassificationKind.PROJECT_ROOT

    @property
    def workspace(self) -> bool:
        return self.manifest is not None and self.manifest.is_workspace


def read_manifest(manifest_path: Path, *, strict: bool = False) -> Manifest:
    """Parse a Cargo.toml.

    An unreadable or malformed manifest still describes a project: it is
    returned with ``error`` set, named after its directory and treated as
    a non-workspace root. With *strict* it raises instead.

    Raises:
        ManifestUnreadable: Only with *strict*, if the file cannot be parsed.
    """
    fallback = manifest_path.parent.name or "unknown"
    try:
        with manifest_path.open("rb") as f:
            data = tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError, UnicodeDecodeError) as e:
        if strict:
            raise ManifestUnreadable(f"{manifest_path}: {e}") from e
        log.debug("Failed to parse %s: %s", manifest_path, e)
        return Manifest(path=manifest_path, name=fallback, error=str(e))

    package = data.get("package")
    package = package if isinstance(package, dict) else {}
    name = package.get("name")
    if not isinstance(name, str) or not name:
        name = fallback

    pointer = package.get("workspace")
    pointer = pointer if isinstance(pointer, str) else None

    workspace = data.get("workspace")
    if not isinstance(workspace, dict):
        return Manifest(path=manifest_path, name=name, workspace_pointer=pointer)

    return Manifest(
        path=manifest_path,
        name=name,
        is_workspace=True,
        members=_str_list(workspace.get("members")),
        exclude=_str_list(workspace.get("exclude")),
        workspace_pointer=pointer,
    )


def _str_list(value: object) -> tuple[str, ...]:
    if not isinstance(value, list):
        return ()
    return tuple(v for v in value if isinstance(v, str))


class PathClassifier:
    """Classifies directories for the walker.

    The only I/O performed is a stat of the manifest and reading it.
    """

    def __init__(self, config: ScanConfig) -> None:
        self._skip_hidden = config.skip_hidden
        self._respect_rules = config.respect_ignore_rules
        self._ignore_paths = tuple(resolve_path(p) for p in config.ignore_paths)

    @property
    def respects_ignore_rules(self) -> bool:
        return self._respect_rules

    def ignore_reason(self, directory: Path, rules: IgnoreRules, *, is_root: bool = False) -> str | None:
        """Why *directory* should be skipped, or None to visit it."""
        if self._ignore_paths:
            resolved = resolve_path(directory)
            for ignored in self._ignore_paths:
                if is_relative_to(resolved, ignored):
                    return f"ignored path {ignored}"
        if is_root:
            return None
        if self._skip_hidden and directory.name.startswith("."):
            return "hidden"
        if self._respect_rules and rules.is_ignored(directory, is_dir=True):
            return "excluded by ignore rules"
        return None

    def classify(self, directory: Path, rules: IgnoreRules | None = None, *, is_root: bool = False) -> Classification:
        rules = rules or IgnoreRules()
        reason = self.ignore_reason(directory, rules, is_root=is_root)
        if reason is not None:
            return Classification(ClassificationKind.IGNORED, directory, reason=reason)

        manifest_path = directory / MANIFEST_NAME
        if not os.path.isfile(manifest_path):
            return Classification(ClassificationKind.NOT_A_PROJECT, directory)

        return Classification(
            ClassificationKind.PROJECT_ROOT,
            directory,
            manifest=read_manifest(manifest_path),
        )

    @staticmethod
    def list_subdirs(directory: Path, follow_symlinks: bool) -> list[Path]:
        """Immediate subdirectories of *directory*.

        Raises:
            PermissionDeniedError: If the directory cannot be listed.
        """
        subdirs: list[Path] = []
        try:
            with os.scandir(directory) as it:
                for entry in it:
                    try:
                        if entry.is_dir(follow_symlinks=follow_symlinks):
                            subdirs.append(Path(entry.path))
                    except OSError:
                        log.debug("Cannot stat %s", entry.path)
        except PermissionError as e:
            raise PermissionDeniedError(directory, e.strerror or "permission denied") from e
        except OSError as e:
            raise PermissionDeniedError(directory, str(e)) from e
        return subdirs

    @staticmethod
    def artifact_dir(directory: Path) -> Path | None:
        target = directory / ARTIFACT_DIR_NAME
        return target if target.is_dir() else None
