"""Immutable scan and clean configuration."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

DEFAULT_MAX_DEPTH = 10
DEFAULT_CHUNK_SIZE = 64


def default_workers() -> int:
    """Worker count tied to hardware concurrency, capped at 8."""
    return max(1, min(os.cpu_count() or 4, 8))


class MissingAgePolicy(Enum):
    """What ``keep_days`` does with a project whose mtime cannot be read."""

    ELIGIBLE = "eligible"
    KEEP = "keep"


@dataclass(frozen=True)
class ScanConfig:
    root: Path
    max_depth: int | None = DEFAULT_MAX_DEPTH
    follow_symlinks: bool = False
    respect_ignore_rules: bool = True
    skip_hidden: bool = True
    ignore_paths: tuple[Path, ...] = ()
    keep_days: int | None = None
    keep_size_bytes: int | None = None
    missing_age_policy: MissingAgePolicy = MissingAgePolicy.ELIGIBLE
    workers: int = field(default_factory=default_workers)

    @property
    def has_retention_rules(self) -> bool:
        return (
            self.keep_days is not None
            or self.keep_size_bytes is not None
            or bool(self.ignore_paths)
        )


@dataclass(frozen=True)
class CleanConfig:
    strategy: str = "manager"
    dry_run: bool = False
    parallelism: int = field(default_factory=default_workers)
    timeout_seconds: float = 0
    keep_executable: bool = False
    executable_backup_dir: Path | None = None
    fast_delete: bool = False
    chunk_size: int = DEFAULT_CHUNK_SIZE

    @property
    def timeout(self) -> float | None:
        """Per-record budget in seconds, or None when unlimited."""
        return self.timeout_seconds if self.timeout_seconds > 0 else None
