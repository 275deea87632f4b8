"""Discovered project record and its lazily computed artifact size."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

ARTIFACT_DIR_NAME = "target"
MANIFEST_NAME = "Cargo.toml"


class SizeState(Enum):
    UNKNOWN = "unknown"
    COMPUTING = "computing"
    KNOWN = "known"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class SizeValue:
    """Snapshot of a size cell.

    ``bytes`` is only meaningful when ``state`` is ``KNOWN``; an unknown size
    is never reported as zero.
    """

    state: SizeState
    bytes: int | None = None
    error: str | None = None

    @property
    def is_known(self) -> bool:
        return self.state is SizeState.KNOWN

    @property
    def is_final(self) -> bool:
        return self.state in (SizeState.KNOWN, SizeState.ERROR)


_UNKNOWN = SizeValue(SizeState.UNKNOWN)
_COMPUTING = SizeValue(SizeState.COMPUTING)


class SizeCell:
    """Per-record size slot with a single-flight gate.

    The value moves ``UNKNOWN -> COMPUTING -> {KNOWN, ERROR}`` and never
    goes back. Exactly one caller wins :meth:`claim`; everybody else waits
    on :meth:`wait`.
    """

    __slots__ = ("_lock", "_done", "_value")

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._done = threading.Event()
        self._value = _UNKNOWN

    @property
    def value(self) -> SizeValue:
        return self._value

    def claim(self) -> bool:
        """Move to COMPUTING. Returns True if the caller must compute."""
        with self._lock:
            if self._value.state is not SizeState.UNKNOWN:
                return False
            self._value = _COMPUTING
            return True

    def resolve(self, size_bytes: int) -> None:
        self._finish(SizeValue(SizeState.KNOWN, bytes=size_bytes))

    def fail(self, error: str) -> None:
        self._finish(SizeValue(SizeState.ERROR, error=error))

    def wait(self, timeout: float | None = None) -> SizeValue:
        """Block until a final value is available (or *timeout* elapses)."""
        self._done.wait(timeout)
        return self._value

    def _finish(self, value: SizeValue) -> None:
        with self._lock:
            if self._value.is_final:
                return
            self._value = value
        self._done.set()

    def __repr__(self) -> str:
        return f"SizeCell({self._value.state.value}, {self._value.bytes})"


@dataclass(frozen=True, slots=True, eq=False)
class ProjectRecord:
    """A Cargo project found during one discovery run.

    Path and identity fields never change after creation. ``size`` is the
    only cell that moves, and ``executables`` is filled in by the backup
    step when one is requested.
    """

    root_path: Path
    manifest_path: Path
    name: str
    artifact_path: Path | None = None
    is_workspace_root: bool = False
    is_workspace_member: bool = False
    member_paths: tuple[Path, ...] = ()
    manifest_error: str | None = None
    last_modified: float | None = None
    size: SizeCell = field(default_factory=SizeCell, compare=False, repr=False)
    executables: list[Path] = field(default_factory=list, compare=False, repr=False)

    @property
    def has_artifacts(self) -> bool:
        return self.artifact_path is not None

    @property
    def size_bytes(self) -> int | None:
        """Known size in bytes, or None while unknown/computing/failed."""
        value = self.size.value
        return value.bytes if value.is_known else None

    def artifacts_exist(self) -> bool:
        return self.artifact_path is not None and self.artifact_path.is_dir()

    def relative_path(self, base: Path) -> Path:
        try:
            return self.root_path.relative_to(base)
        except ValueError:
            return self.root_path

    def key(self) -> tuple[Path, Path | None]:
        """Identity used for set comparisons across runs."""
        return (self.root_path, self.artifact_path)
