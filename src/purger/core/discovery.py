"""Parallel project discovery with workspace-aware deduplication."""

from __future__ import annotations

import logging
import queue
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator

from purger.core.classifier import ClassificationKind, Manifest, PathClassifier, read_manifest
from purger.core.context import RunContext
from purger.core.ignore_rules import IgnoreRules
from purger.errors import ConfigurationError, PermissionDeniedError
from purger.models.config import ScanConfig
from purger.models.project import ARTIFACT_DIR_NAME, MANIFEST_NAME, ProjectRecord
from purger.utils import path_mtime, resolve_path

log = logging.getLogger(__name__)

_DONE = object()


@dataclass
class DiscoveryStats:
    """Counters for one discovery run."""

    directories_visited: int = 0
    projects_found: int = 0
    members_folded: int = 0
    errors: list[PermissionDeniedError] = field(default_factory=list)
    cancelled: bool = False
    duration: float = 0.0


def build_record(
    directory: Path,
    manifest: Manifest,
    *,
    member_paths: tuple[Path, ...] = (),
    is_member: bool = False,
) -> ProjectRecord:
    """Create the record for a project root.

    A member whose workspace root lies outside the scan never owns an
    artifact directory: cargo builds it into the root's ``target/``.
    """
    artifact = None
    if not is_member:
        candidate = directory / ARTIFACT_DIR_NAME
        artifact = candidate if candidate.is_dir() else None
    last_modified = path_mtime(artifact) if artifact is not None else path_mtime(manifest.path)
    return ProjectRecord(
        root_path=directory,
        manifest_path=manifest.path,
        name=manifest.name,
        artifact_path=artifact,
        is_workspace_root=manifest.is_workspace,
        is_workspace_member=is_member,
        member_paths=member_paths,
        manifest_error=manifest.error,
        last_modified=last_modified,
    )


class _Walk:
    """State of a single walk. Not reusable."""

    def __init__(self, discovery: ProjectDiscovery, root: Path) -> None:
        self._discovery = discovery
        self._config = discovery.config
        self._context = discovery.context
        self._classifier = discovery.classifier
        self._stats = discovery.stats
        self._root = root
        self._out: queue.Queue = queue.Queue()
        self._lock = threading.Lock()
        self._pending = 0
        self._stop = threading.Event()
        self._visited: set[Path] = set()
        self._workspaces: dict[Path, frozenset[Path]] = {}
        self._deferred: list[tuple[Path, Manifest]] = []
        self._executor = ThreadPoolExecutor(
            max_workers=self._config.workers,
            thread_name_prefix="purger-walk",
        )

    # -- scheduling ----------------------------------------------------------

    def _should_stop(self) -> bool:
        return self._stop.is_set() or self._context.cancelled

    def _schedule(self, directory: Path, depth: int, rules: IgnoreRules, is_root: bool = False) -> bool:
        if self._should_stop():
            return False
        with self._lock:
            self._pending += 1
        try:
            self._executor.submit(self._run_unit, directory, depth, rules, is_root)
        except RuntimeError:
            # Executor already shut down by a closed iterator
            self._unit_finished()
            return False
        return True

    def _run_unit(self, directory: Path, depth: int, rules: IgnoreRules, is_root: bool) -> None:
        try:
            if not self._should_stop():
                self._visit(directory, depth, rules, is_root)
        except Exception:
            log.exception("Unexpected error while visiting %s", directory)
        finally:
            self._unit_finished()

    def _unit_finished(self) -> None:
        with self._lock:
            self._pending -= 1
            finished = self._pending == 0
        if finished:
            self._out.put(_DONE)

    # -- visiting ------------------------------------------------------------

    def _visit(self, directory: Path, depth: int, rules: IgnoreRules, is_root: bool) -> None:
        if self._config.follow_symlinks:
            real = resolve_path(directory)
            with self._lock:
                if real in self._visited:
                    return
                self._visited.add(real)

        with self._lock:
            self._stats.directories_visited += 1
            visited = self._stats.directories_visited
        if visited % 500 == 0:
            self._context.emit("discovery", "visited", path=directory, done=visited)

        classification = self._classifier.classify(directory, rules, is_root=is_root)
        if classification.kind is ClassificationKind.IGNORED:
            log.debug("Skipping %s (%s)", directory, classification.reason)
            return

        max_depth = self._config.max_depth
        if classification.is_project and (max_depth is None or depth + 1 <= max_depth):
            self._handle_project(directory, classification.manifest)

        if max_depth is not None and depth + 2 > max_depth:
            return

        try:
            subdirs = self._classifier.list_subdirs(directory, self._config.follow_symlinks)
        except PermissionDeniedError as e:
            log.warning("Skipping unreadable directory: %s", e)
            with self._lock:
                self._stats.errors.append(e)
            self._context.emit("error", "permission_denied", path=directory, message=str(e))
            return

        child_rules = rules.child(directory) if self._classifier.respects_ignore_rules else rules
        for subdir in subdirs:
            if classification.is_project and subdir.name == ARTIFACT_DIR_NAME:
                continue
            self._schedule(subdir, depth + 1, child_rules)

    def _handle_project(self, directory: Path, manifest: Manifest) -> None:
        resolved = resolve_path(directory)
        members = manifest.member_dirs() if manifest.is_workspace else frozenset()

        with self._lock:
            if manifest.is_workspace:
                self._workspaces[resolved] = members
            else:
                owner = self._claiming_workspace(resolved, manifest)
                if owner is not None:
                    self._stats.members_folded += 1
                    log.debug("Folding member %s into workspace %s", directory, owner)
                    return
                pointer = manifest.pointed_root()
                if pointer is not None and pointer != resolved:
                    # Its workspace root has not been visited (yet)
                    self._deferred.append((directory, manifest))
                    return

        record = build_record(directory, manifest, member_paths=tuple(sorted(members)))
        self._out.put(record)

    def _claiming_workspace(self, resolved: Path, manifest: Manifest) -> Path | None:
        for ws_root, members in self._workspaces.items():
            if resolved in members:
                return ws_root
        pointer = manifest.pointed_root()
        if pointer is not None and pointer in self._workspaces:
            return pointer
        return None

    # -- driving -------------------------------------------------------------

    def run(self) -> Iterator[ProjectRecord]:
        start = time.monotonic()
        scheduled = self._schedule(self._root, 0, IgnoreRules(), is_root=True)
        try:
            while scheduled:
                item = self._out.get()
                if item is _DONE:
                    break
                if self._context.cancelled:
                    continue
                yield from self._emit(item)

            if not self._context.cancelled:
                for record in self._resolve_deferred():
                    yield from self._emit(record)
        finally:
            self._stop.set()
            self._executor.shutdown(wait=True, cancel_futures=True)
            self._stats.cancelled = self._context.cancelled
            self._stats.duration = time.monotonic() - start
            log.info(
                "Discovery finished: %d projects in %d directories (%d members folded, %d errors)%s",
                self._stats.projects_found,
                self._stats.directories_visited,
                self._stats.members_folded,
                len(self._stats.errors),
                " [cancelled]" if self._stats.cancelled else "",
            )

    def _emit(self, record: ProjectRecord) -> Iterator[ProjectRecord]:
        self._stats.projects_found += 1
        self._context.emit(
            "discovery",
            "found",
            path=record.root_path,
            done=self._stats.projects_found,
            payload=record,
        )
        yield record

    def _resolve_deferred(self) -> Iterator[ProjectRecord]:
        for directory, manifest in self._deferred:
            if manifest.pointed_root() in self._workspaces:
                self._stats.members_folded += 1
                log.debug("Folding member %s into workspace %s", directory, manifest.pointed_root())
                continue
            log.debug("Workspace root of %s was not found; reporting it as a member", directory)
            yield build_record(directory, manifest, is_member=True)


class ProjectDiscovery:
    """Walks a tree on a worker pool and yields project records.

    Each directory visit is an independent unit. Records come out in
    completion order, not filesystem order. Every call to :meth:`discover`
    is a fresh run with fresh records.
    """

    def __init__(self, config: ScanConfig, context: RunContext | None = None) -> None:
        self.config = config
        self.context = context or RunContext()
        self.classifier = PathClassifier(config)
        self.stats = DiscoveryStats()

    def _check_root(self) -> Path:
        root = self.config.root
        if not root.exists():
            raise ConfigurationError(f"Path does not exist: {root}")
        if not root.is_dir():
            raise ConfigurationError(f"Path is not a directory: {root}")
        return resolve_path(root)

    def discover(self) -> Iterator[ProjectRecord]:
        """Start a walk and return its lazy record stream.

        Raises:
            ConfigurationError: Immediately, if the root is missing or not
                a directory.
        """
        root = self._check_root()
        log.info("Scanning %s", root)
        self.stats = DiscoveryStats()
        return _Walk(self, root).run()

    def scan_single(self, path: Path, *, strict: bool = False) -> ProjectRecord:
        """Build the record for one project directory without walking.

        Raises:
            ConfigurationError: If *path* holds no Cargo.toml.
            ManifestUnreadable: With *strict*, if the manifest cannot be parsed.
        """
        directory = resolve_path(path)
        manifest_path = directory / MANIFEST_NAME
        if not manifest_path.is_file():
            raise ConfigurationError(f"Not a Cargo project: {path}")
        manifest = read_manifest(manifest_path, strict=strict)
        members = tuple(sorted(manifest.member_dirs()))
        return build_record(directory, manifest, member_paths=members)


def discover(config: ScanConfig, context: RunContext | None = None) -> Iterator[ProjectRecord]:
    """Lazily yield the projects under ``config.root``."""
    return ProjectDiscovery(config, context).discover()


def discover_all(config: ScanConfig, context: RunContext | None = None) -> list[ProjectRecord]:
    """Run discovery to completion and return every record."""
    return list(discover(config, context))


def with_artifacts(records: list[ProjectRecord]) -> list[ProjectRecord]:
    """Only the records that own an artifact directory."""
    return [r for r in records if r.has_artifacts]


def sort_by_size(records: list[ProjectRecord]) -> list[ProjectRecord]:
    """Largest known size first; unknown sizes last."""
    return sorted(records, key=lambda r: r.size_bytes if r.size_bytes is not None else -1, reverse=True)
