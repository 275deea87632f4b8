"""Copy built executables out of an artifact directory before it is removed."""

from __future__ import annotations

import hashlib
import logging
import os
import shutil
from pathlib import Path

from purger.core.context import CancelToken
from purger.errors import BackupFailure
from purger.models.project import ProjectRecord

log = logging.getLogger(__name__)

PROFILE_DIRS = ("debug", "release")
DEFAULT_BACKUP_DIR_NAME = "executables"


def is_executable(path: Path) -> bool:
    """Regular file that can be run: ``.exe`` on Windows, any x bit elsewhere."""
    if os.name == "nt":
        return path.suffix.lower() == ".exe" and path.is_file()
    try:
        st = path.stat()
    except OSError:
        return False
    return path.is_file() and bool(st.st_mode & 0o111)


def find_executables(artifact_path: Path) -> list[Path]:
    """Executables directly inside the profile directories.

    Looks in ``target/{debug,release}`` and, for cross builds,
    ``target/<triple>/{debug,release}``. Unreadable directories are
    skipped.
    """
    profile_dirs = [artifact_path / p for p in PROFILE_DIRS]
    try:
        for child in sorted(artifact_path.iterdir()):
            if child.name.startswith(".") or child.name in PROFILE_DIRS or not child.is_dir():
                continue
            profile_dirs.extend(child / p for p in PROFILE_DIRS)
    except OSError as e:
        log.debug("Cannot list %s: %s", artifact_path, e)

    found: list[Path] = []
    for profile_dir in profile_dirs:
        if not profile_dir.is_dir():
            continue
        try:
            entries = sorted(profile_dir.iterdir())
        except OSError as e:
            log.debug("Cannot list %s: %s", profile_dir, e)
            continue
        found.extend(p for p in entries if is_executable(p))
    return found


def backup_directory(record: ProjectRecord, base: Path | None) -> Path:
    """``<base>/<name>-<hash of project path>``; base defaults to ``<project>/executables``."""
    base = base if base is not None else record.root_path / DEFAULT_BACKUP_DIR_NAME
    digest = hashlib.sha256(str(record.root_path).encode("utf-8", "surrogateescape")).hexdigest()[:16]
    return base / f"{record.name}-{digest}"


def backup_executables(
    record: ProjectRecord,
    base: Path | None = None,
    cancel: CancelToken | None = None,
) -> list[Path]:
    """Copy every executable of *record* into its backup directory.

    Files keep their path relative to the artifact directory so that a
    debug and a release binary of the same name do not collide. The
    discovered executables are stored on ``record.executables``.

    Returns:
        Paths of the copies.

    Raises:
        BackupFailure: If the backup directory cannot be created or any
            copy fails. The artifact directory is left untouched.
        CleanCancelled: If cancellation is observed between copies.
    """
    if record.artifact_path is None:
        return []

    executables = find_executables(record.artifact_path)
    record.executables[:] = executables
    if not executables:
        log.debug("No executables found in %s", record.artifact_path)
        return []

    target_dir = backup_directory(record, base)
    log.info("Backing up %d executables of %s to %s", len(executables), record.name, target_dir)

    copies: list[Path] = []
    for exe in executables:
        if cancel is not None:
            cancel.raise_if_cancelled()
        dest = target_dir / exe.relative_to(record.artifact_path)
        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(exe, dest)
        except OSError as e:
            raise BackupFailure(f"Failed to back up {exe} -> {dest}: {e}") from e
        log.debug("Backed up %s -> %s", exe, dest)
        copies.append(dest)
    return copies
