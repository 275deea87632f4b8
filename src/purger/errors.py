"""Error taxonomy shared by discovery, sizing and cleaning."""

from __future__ import annotations

from pathlib import Path


class PurgerError(Exception):
    """Base class for all purger errors."""


class ConfigurationError(PurgerError):
    """Invalid root path or option value. Raised before any work starts."""


class ManifestUnreadable(PurgerError):
    """A Cargo.toml could not be read or parsed."""


class PermissionDeniedError(PurgerError):
    """A directory could not be listed during discovery."""

    def __init__(self, path: Path, reason: str = "permission denied") -> None:
        super().__init__(f"{path}: {reason}")
        self.path = path


class SizeComputationError(PurgerError):
    """Artifact size could not be computed."""


class BackupFailure(PurgerError):
    """Copying executables out of the artifact directory failed."""


class StrategyFailure(PurgerError):
    """A cleaning strategy failed (non-zero exit, spawn error, deletion error)."""

    def __init__(self, message: str, returncode: int | None = None, stderr: str = "") -> None:
        super().__init__(message)
        self.returncode = returncode
        self.stderr = stderr


class CleanTimeout(PurgerError):
    """A record exceeded its wall-clock budget."""

    def __init__(self, timeout: float) -> None:
        super().__init__(f"clean timed out after {timeout:g}s")
        self.timeout = timeout


class CleanCancelled(PurgerError):
    """Cancellation was observed while a record was being processed."""

    def __init__(self) -> None:
        super().__init__("clean cancelled")


class UnsafeArtifactDirectory(PurgerError):
    """Refusing to delete an artifact directory that is a symlink or escapes its project."""

    def __init__(self, path: Path, reason: str) -> None:
        super().__init__(f"refusing to delete unsafe artifact directory {path} ({reason})")
        self.path = path
        self.reason = reason
