"""Strategy that deletes the artifact directory itself."""

from __future__ import annotations

import logging
import os
import shutil
import stat
import sys
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

from purger.core.process import run_command
from purger.errors import SizeComputationError, StrategyFailure
from purger.models.project import ProjectRecord, SizeValue
from purger.models.strategy import CleanStrategy, StrategyContext
from purger.utils import tree_size

log = logging.getLogger(__name__)

_IS_WINDOWS = os.name == "nt"


def native_delete_command(path: Path) -> list[str] | None:
    """The platform's own recursive delete for *path*, or None if there is none.

    Only Windows has one (``rmdir /S /Q`` through ``cmd``). A path with a
    double quote cannot be quoted for ``cmd`` and gets None as well.
    """
    if not _IS_WINDOWS:
        log.debug("No native delete on this platform, using portable delete")
        return None
    if '"' in str(path):
        log.debug("Cannot quote %s for cmd, skipping native delete", path)
        return None
    return ["cmd", "/C", f'rmdir /S /Q "{path}"']


def _make_writable(path: str) -> None:
    try:
        mode = os.lstat(path).st_mode
    except OSError:
        return
    if not stat.S_ISLNK(mode):
        os.chmod(path, stat.S_IMODE(mode) | stat.S_IWRITE | stat.S_IREAD | stat.S_IEXEC)


def _retry_writable(func, path, _exc) -> None:
    """rmtree error handler: clear read-only bits on the entry and its parent, then retry once."""
    _make_writable(os.path.dirname(path))
    _make_writable(path)
    func(path)


def _rmtree(path: Path) -> None:
    if sys.version_info >= (3, 12):
        shutil.rmtree(path, onexc=_retry_writable)
    else:
        shutil.rmtree(path, onerror=_retry_writable)


def _entry_size(path: Path) -> int:
    try:
        if path.is_dir() and not path.is_symlink():
            return tree_size(path)
        return path.lstat().st_size
    except (SizeComputationError, OSError):
        return 0


def children_size(artifact: Path) -> int:
    """Sum of per-entry sizes directly under *artifact*; unreadable entries count 0."""
    try:
        children = list(artifact.iterdir())
    except OSError:
        return 0
    return sum(_entry_size(child) for child in children)


def remove_entry(path: Path) -> None:
    """Remove one file, symlink or directory tree, clearing read-only bits if needed."""
    if path.is_dir() and not path.is_symlink():
        _rmtree(path)
        return
    try:
        path.unlink()
    except PermissionError:
        _make_writable(str(path.parent))
        _make_writable(str(path))
        path.unlink()


class DirectDeleteStrategy(CleanStrategy):
    """Removes ``target/`` directly, in parallel chunks."""

    id = "direct"
    name = "Direct delete"
    description = "Delete the target directory directly without running cargo"

    def estimate(self, record: ProjectRecord, size: SizeValue) -> int:
        if size.is_known and size.bytes is not None:
            return size.bytes
        # Removal then tracks each child, so count them the same way
        return children_size(record.artifact_path) if record.artifact_path else 0

    def remove(self, record: ProjectRecord, ctx: StrategyContext) -> int:
        artifact = record.artifact_path
        if artifact is None:
            return 0
        ctx.checkpoint()

        if ctx.config.fast_delete and native_delete_command(artifact) is not None:
            before = ctx.known_bytes if ctx.known_bytes is not None else children_size(artifact)
            if self._native_delete(artifact, ctx):
                return before

        tracked = self._delete_chunked(artifact, ctx, track_sizes=ctx.known_bytes is None)
        return ctx.known_bytes if ctx.known_bytes is not None else tracked

    def _native_delete(self, artifact: Path, ctx: StrategyContext) -> bool:
        """Try the platform delete; False means fall back to the portable one."""
        argv = native_delete_command(artifact)
        if argv is None:
            return False
        try:
            result = run_command(
                argv,
                deadline=ctx.deadline,
                timeout_seconds=ctx.config.timeout_seconds,
                cancel=ctx.run.cancel,
            )
        except StrategyFailure as e:
            log.warning("Native delete of %s failed (%s), falling back", artifact, e)
            return False
        if not result.ok or artifact.exists():
            log.warning(
                "Native delete of %s failed with code %d, falling back",
                artifact,
                result.returncode,
            )
            return False
        return True

    def _delete_chunked(self, artifact: Path, ctx: StrategyContext, *, track_sizes: bool) -> int:
        """Remove the children of *artifact* chunk by chunk, then *artifact* itself.

        Returns the bytes removed when *track_sizes* is set, else 0.
        """
        try:
            children = sorted(artifact.iterdir())
        except FileNotFoundError:
            return 0
        except OSError as e:
            raise StrategyFailure(f"Cannot list {artifact}: {e}") from e

        chunk_size = max(ctx.config.chunk_size, 1)
        workers = max(ctx.config.parallelism, 1)
        freed = 0

        def _unit(child: Path) -> tuple[int, str | None]:
            size = _entry_size(child) if track_sizes else 0
            try:
                remove_entry(child)
            except FileNotFoundError:
                return size, None
            except OSError as e:
                return 0, f"{child}: {e}"
            return size, None

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="purger-delete") as executor:
            for start in range(0, len(children), chunk_size):
                ctx.checkpoint()
                chunk = children[start:start + chunk_size]
                errors: list[str] = []
                for size, error in executor.map(_unit, chunk):
                    freed += size
                    if error is not None:
                        errors.append(error)
                if errors:
                    raise StrategyFailure(
                        f"Failed to remove {len(errors)} entries under {artifact}: {errors[0]}"
                    )

        ctx.checkpoint()
        try:
            artifact.rmdir()
        except FileNotFoundError:
            pass
        except PermissionError:
            _make_writable(str(artifact.parent))
            try:
                artifact.rmdir()
            except OSError as e:
                raise StrategyFailure(f"Cannot remove {artifact}: {e}") from e
        except OSError as e:
            raise StrategyFailure(f"Cannot remove {artifact}: {e}") from e

        log.debug("Removed %s (%d entries)", artifact, len(children))
        return freed
