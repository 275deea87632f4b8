"""Shared utility functions."""

from __future__ import annotations

import logging
import os
import re
import stat
from pathlib import Path

from purger.errors import ConfigurationError, SizeComputationError

log = logging.getLogger(__name__)

# Symlink-heavy or pathological trees are not followed past this depth.
_MAX_SIZE_DEPTH = 256

_SIZE_UNITS = {
    "": 1,
    "B": 1,
    "K": 1000,
    "KB": 1000,
    "KIB": 1024,
    "M": 1000**2,
    "MB": 1000**2,
    "MIB": 1024**2,
    "G": 1000**3,
    "GB": 1000**3,
    "GIB": 1024**3,
    "T": 1000**4,
    "TB": 1000**4,
    "TIB": 1024**4,
}

_DURATION_UNITS = {"": 1, "s": 1, "m": 60, "h": 3600, "d": 86400}

_SIZE_RE = re.compile(r"^\s*(\d+(?:\.\d*)?|\.\d+)\s*([A-Za-z]*)\s*$")
_DURATION_RE = re.compile(r"^\s*(\d+(?:\.\d*)?)\s*([smhd]?)\s*$", re.IGNORECASE)


def xdg_config_home() -> Path:
    """Return XDG_CONFIG_HOME, defaulting to ~/.config."""
    return Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))


def parse_size(text: str) -> int:
    """Parse a size string such as '10MB', '1.5GiB' or '500k' into bytes.

    Decimal units (K, KB, M, MB, ...) are powers of 1000, binary units
    (KiB, MiB, ...) powers of 1024.

    Raises:
        ConfigurationError: If the string is not a valid size.
    """
    match = _SIZE_RE.match(text)
    if not match:
        raise ConfigurationError(f"Invalid size: {text!r}")
    number, unit = match.groups()
    multiplier = _SIZE_UNITS.get(unit.upper())
    if multiplier is None:
        raise ConfigurationError(f"Unsupported size unit {unit!r} in {text!r}")
    return int(float(number) * multiplier)


def parse_duration(text: str) -> float:
    """Parse a duration such as '30', '30s', '5m' or '1h' into seconds.

    Raises:
        ConfigurationError: If the string is not a valid duration.
    """
    match = _DURATION_RE.match(text)
    if not match:
        raise ConfigurationError(f"Invalid duration: {text!r}")
    number, unit = match.groups()
    return float(number) * _DURATION_UNITS[unit.lower()]


def tree_size(path: Path | str) -> int:
    """Total size of every file under *path*.

    Symlinks are never descended. A symlink to a regular file counts its
    target's size, and each target inode is counted once no matter how
    many links point at it.

    Raises:
        SizeComputationError: If *path* or one of its subdirectories
            cannot be listed.
    """
    total = 0
    seen_targets: set[tuple[int, int]] = set()
    stack: list[tuple[str, int]] = [(os.fspath(path), 0)]
    while stack:
        current, depth = stack.pop()
        try:
            with os.scandir(current) as it:
                entries = list(it)
        except OSError as e:
            raise SizeComputationError(f"Cannot read {current}: {e}") from e

        for entry in entries:
            try:
                if entry.is_symlink():
                    total += _symlink_target_size(entry.path, seen_targets)
                elif entry.is_dir(follow_symlinks=False):
                    if depth + 1 <= _MAX_SIZE_DEPTH:
                        stack.append((entry.path, depth + 1))
                    else:
                        log.debug("Size walk depth limit reached at %s", entry.path)
                elif entry.is_file(follow_symlinks=False):
                    total += entry.stat(follow_symlinks=False).st_size
            except FileNotFoundError:
                # Removed while we were walking
                continue
    return total


def _symlink_target_size(link: str, seen: set[tuple[int, int]]) -> int:
    try:
        st = os.stat(link)
    except OSError:
        return 0  # dangling
    if not stat.S_ISREG(st.st_mode):
        return 0
    key = (st.st_dev, st.st_ino)
    if key in seen:
        return 0
    seen.add(key)
    return st.st_size


def path_mtime(path: Path) -> float | None:
    """Modification time of *path*, or None if it cannot be read."""
    try:
        return path.stat().st_mtime
    except OSError:
        return None


def is_relative_to(path: Path, parent: Path) -> bool:
    """True if *path* equals *parent* or lies below it."""
    try:
        path.relative_to(parent)
    except ValueError:
        return False
    return True


def resolve_path(path: Path) -> Path:
    """Absolute, symlink-resolved form of *path*, falling back to absolute."""
    try:
        return path.resolve()
    except OSError:
        return path.absolute()


def bytes_to_human(size_bytes: int) -> str:
    """Convert byte count to a human-readable string."""
    if size_bytes < 0:
        return f"-{bytes_to_human(-size_bytes)}"
    if size_bytes == 0:
        return "0 B"

    units = ("B", "KB", "MB", "GB", "TB")
    value = float(size_bytes)
    for unit in units[:-1]:
        if abs(value) < 1024:
            return f"{value:.1f} {unit}" if unit != "B" else f"{int(value)} B"
        value /= 1024
    return f"{value:.1f} {units[-1]}"


def format_elapsed(seconds: float) -> str:
    """Format an elapsed time as a human-readable string."""
    if seconds < 1:
        return f"{seconds * 1000:.0f} ms"
    if seconds < 60:
        return f"{seconds:.1f}s"
    minutes = int(seconds) // 60
    secs = seconds - minutes * 60
    return f"{minutes}m {secs:.0f}s"
