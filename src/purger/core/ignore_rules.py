"""Gitignore-style exclusion rules for the directory walker.

Rules are read from ``.gitignore`` and ``.ignore`` files as the walk
descends. Each directory gets its own immutable :class:`IgnoreRules`
built from its parent's, so workers can share them without locking.
"""

from __future__ import annotations

import fnmatch
import logging
import re
from dataclasses import dataclass
from pathlib import Path

log = logging.getLogger(__name__)

IGNORE_FILES = (".gitignore", ".ignore")


def _translate_segment(segment: str) -> str:
    """Regex for one path segment; no wildcard ever matches ``/``."""
    out: list[str] = []
    i, n = 0, len(segment)
    while i < n:
        c = segment[i]
        i += 1
        if c == "*":
            if not out or out[-1] != "[^/]*":
                out.append("[^/]*")
        elif c == "?":
            out.append("[^/]")
        elif c == "\\" and i < n:
            out.append(re.escape(segment[i]))
            i += 1
        elif c == "[":
            j = i
            if j < n and segment[j] in "!^":
                j += 1
            if j < n and segment[j] == "]":
                j += 1
            while j < n and segment[j] != "]":
                j += 1
            if j >= n:
                out.append(re.escape(c))
                continue
            body = segment[i:j].replace("\\", "\\\\")
            i = j + 1
            if body[0] in "!^":
                body = "^/" + body[1:]
            out.append(f"[{body}]")
        else:
            out.append(re.escape(c))
    return "".join(out)


def translate(glob: str, *, floating: bool = False) -> re.Pattern[str]:
    """Compile a slash-containing glob into a regex over relative POSIX paths.

    ``*``, ``?`` and ``[...]`` stay within one segment; only a ``**``
    segment spans directories.
    """
    segments = glob.split("/")
    parts = ["(?:[^/]+/)*"] if floating else []
    for index, segment in enumerate(segments):
        last = index == len(segments) - 1
        if segment == "**":
            parts.append(".+" if last else "(?:[^/]+/)*")
            continue
        parts.append(_translate_segment(segment))
        if not last:
            parts.append("/")
    return re.compile("".join(parts) + r"\Z", re.DOTALL)


@dataclass(frozen=True, slots=True)
class IgnorePattern:
    """One line of an ignore file, bound to the directory that holds it."""

    base: Path
    glob: str
    negated: bool = False
    dir_only: bool = False
    anchored: bool = False
    regex: re.Pattern[str] | None = None

    @classmethod
    def parse(cls, line: str, base: Path) -> IgnorePattern | None:
        """Parse an ignore-file line. Returns None for blanks and comments."""
        line = line.rstrip("\n").rstrip("\r")
        if not line.strip() or line.startswith("#"):
            return None
        if line.startswith("\\#") or line.startswith("\\!"):
            line = line[1:]
            negated = False
        elif line.startswith("!"):
            line = line[1:]
            negated = True
        else:
            negated = False
        line = line.rstrip()
        if not line:
            return None

        dir_only = line.endswith("/")
        line = line.rstrip("/")
        if not line:
            return None

        floating = line.startswith("**/")
        if floating:
            line = line[3:]
        anchored = "/" in line or line.startswith("/")
        line = line.lstrip("/")
        if not line:
            return None

        regex = translate(line, floating=floating) if anchored else None
        return cls(base, line, negated, dir_only, anchored, regex)

    def matches(self, path: Path, is_dir: bool) -> bool:
        if self.dir_only and not is_dir:
            return False
        try:
            rel = path.relative_to(self.base)
        except ValueError:
            return False
        if self.regex is not None:
            return self.regex.match(rel.as_posix()) is not None
        # A slash-free glob only ever sees the last component
        return fnmatch.fnmatchcase(path.name, self.glob)


@dataclass(frozen=True, slots=True)
class IgnoreRules:
    """Ordered, immutable rule set. The last matching pattern wins."""

    patterns: tuple[IgnorePattern, ...] = ()

    def is_ignored(self, path: Path, is_dir: bool = True) -> bool:
        ignored = False
        for pattern in self.patterns:
            if pattern.matches(path, is_dir):
                ignored = not pattern.negated
        return ignored

    def child(self, directory: Path) -> IgnoreRules:
        """Rules for *directory*'s contents: ours plus its ignore files."""
        added: list[IgnorePattern] = []
        for filename in IGNORE_FILES:
            added.extend(load_ignore_file(directory / filename))
        if not added:
            return self
        return IgnoreRules(self.patterns + tuple(added))

    def __len__(self) -> int:
        return len(self.patterns)


def load_ignore_file(path: Path) -> list[IgnorePattern]:
    """Parse an ignore file; a missing or unreadable file yields no rules."""
    try:
        text = path.read_text(encoding="utf-8", errors="replace")
    except FileNotFoundError:
        return []
    except OSError as e:
        log.debug("Cannot read ignore file %s: %s", path, e)
        return []
    patterns = []
    for line in text.splitlines():
        pattern = IgnorePattern.parse(line, path.parent)
        if pattern is not None:
            patterns.append(pattern)
    return patterns
