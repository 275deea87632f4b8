"""JSON-backed user settings with built-in defaults."""

from __future__ import annotations

import copy
import json
import logging
from pathlib import Path
from typing import Any, Callable

from purger.errors import ConfigurationError
from purger.models.config import DEFAULT_MAX_DEPTH
from purger.utils import parse_duration, xdg_config_home

log = logging.getLogger(__name__)

_SETTINGS_DIR = "purger"
_SETTINGS_FILE = "settings.json"

DEFAULTS: dict[str, Any] = {
    "scan": {
        "max_depth": DEFAULT_MAX_DEPTH,
        "ignore": [],
    },
    "clean": {
        "strategy": "manager",
        "timeout": 30,
        "jobs": None,
        "executable_backup_dir": None,
        "keep_executable": False,
        "fast_delete": False,
    },
}


def _parse_bool(text: str) -> bool:
    lowered = text.strip().lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off"):
        return False
    raise ConfigurationError(f"Invalid boolean: {text!r}")


def _parse_optional_int(text: str) -> int | None:
    if text.strip().lower() in ("", "none", "null"):
        return None
    try:
        value = int(text)
    except ValueError:
        raise ConfigurationError(f"Invalid integer: {text!r}") from None
    if value < 0:
        raise ConfigurationError(f"Expected a non-negative integer, got {value}")
    return value


def _parse_optional_str(text: str) -> str | None:
    return None if text.strip().lower() in ("", "none", "null") else text


def _parse_list(text: str) -> list[str]:
    return [part.strip() for part in text.split(",") if part.strip()]


# Converters for `config set KEY VALUE`, where every value arrives as text
_PARSERS: dict[str, Callable[[str], Any]] = {
    "scan.max_depth": _parse_optional_int,
    "scan.ignore": _parse_list,
    "clean.strategy": str,
    "clean.timeout": parse_duration,
    "clean.jobs": _parse_optional_int,
    "clean.executable_backup_dir": _parse_optional_str,
    "clean.keep_executable": _parse_bool,
    "clean.fast_delete": _parse_bool,
}

KNOWN_KEYS = tuple(_PARSERS)


def parse_value(key: str, text: str) -> Any:
    """Convert command-line text to the stored type of *key*.

    Raises:
        ConfigurationError: If the key is unknown or the text is invalid.
    """
    parser = _PARSERS.get(key)
    if parser is None:
        raise ConfigurationError(f"Unknown setting '{key}' (known: {', '.join(KNOWN_KEYS)})")
    return parser(text)


def _lookup(data: dict[str, Any], parts: list[str]) -> tuple[bool, Any]:
    node: Any = data
    for part in parts:
        if not isinstance(node, dict) or part not in node:
            return False, None
        node = node[part]
    return True, node


def _merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class Settings:
    """Persistent settings backed by a JSON file.

    Uses dot-notation keys for nested access:
        settings.get("clean.strategy")  # reads data["clean"]["strategy"]
        settings.set("clean.timeout", 60)  # writes + saves

    Keys missing from the file fall back to :data:`DEFAULTS`.
    """

    _instance: Settings | None = None

    def __init__(self, path: Path | None = None) -> None:
        self._path = path or (xdg_config_home() / _SETTINGS_DIR / _SETTINGS_FILE)
        self._data: dict[str, Any] = {}
        self._load()

    @classmethod
    def instance(cls) -> Settings:
        """Return the singleton settings instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        cls._instance = None

    @property
    def path(self) -> Path:
        return self._path

    def get(self, key: str, default: Any = None) -> Any:
        """Get a value by dot-notation key, then from the defaults."""
        parts = key.split(".")
        found, value = _lookup(self._data, parts)
        if found:
            return value
        found, value = _lookup(DEFAULTS, parts)
        return copy.deepcopy(value) if found else default

    def set(self, key: str, value: Any) -> None:
        """Set a value by dot-notation key and persist to disk."""
        parts = key.split(".")
        node = self._data
        for part in parts[:-1]:
            if part not in node or not isinstance(node[part], dict):
                node[part] = {}
            node = node[part]
        node[parts[-1]] = value
        self._save()

    def as_dict(self) -> dict[str, Any]:
        """Effective settings: defaults overlaid with the file's values."""
        return _merge(DEFAULTS, self._data)

    def _load(self) -> None:
        """Load settings from disk, gracefully handling errors."""
        if not self._path.exists():
            return
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError, UnicodeDecodeError) as e:
            log.warning("Could not load settings from %s: %s", self._path, e)
            return
        if not isinstance(data, dict):
            log.warning("Ignoring settings file %s: top level is not an object", self._path)
            return
        self._data = data

    def _save(self) -> None:
        """Persist settings to disk."""
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_text(
                json.dumps(self._data, indent=2, ensure_ascii=False) + "\n",
                encoding="utf-8",
            )
        except OSError as e:
            log.warning("Could not save settings to %s: %s", self._path, e)
