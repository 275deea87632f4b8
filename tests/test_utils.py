"""Tests for shared helpers."""

from __future__ import annotations

from pathlib import Path

import pytest

from purger.errors import ConfigurationError
from purger.utils import (
    bytes_to_human,
    format_elapsed,
    is_relative_to,
    parse_duration,
    parse_size,
    path_mtime,
)


class TestParseSize:
    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            ("0", 0),
            ("512", 512),
            ("10B", 10),
            ("1K", 1000),
            ("1kb", 1000),
            ("1KiB", 1024),
            ("10MB", 10_000_000),
            ("1.5GiB", int(1.5 * 1024**3)),
            (" 2 mib ", 2 * 1024**2),
            ("1TB", 1000**4),
        ],
    )
    def test_valid(self, text, expected):
        assert parse_size(text) == expected

    @pytest.mark.parametrize("text", ["", "MB", "-1MB", "10 XB", "ten"])
    def test_invalid(self, text):
        with pytest.raises(ConfigurationError):
            parse_size(text)


class TestParseDuration:
    @pytest.mark.parametrize(
        ("text", "expected"),
        [("30", 30.0), ("30s", 30.0), ("1.5m", 90.0), ("2H", 7200.0), ("1d", 86400.0)],
    )
    def test_valid(self, text, expected):
        assert parse_duration(text) == expected

    @pytest.mark.parametrize("text", ["", "m", "-5", "5w"])
    def test_invalid(self, text):
        with pytest.raises(ConfigurationError):
            parse_duration(text)


class TestFormatting:
    @pytest.mark.parametrize(
        ("size", "expected"),
        [(0, "0 B"), (512, "512 B"), (1536, "1.5 KB"), (5 * 1024**3, "5.0 GB"), (-2048, "-2.0 KB")],
    )
    def test_bytes_to_human(self, size, expected):
        assert bytes_to_human(size) == expected

    @pytest.mark.parametrize(
        ("seconds", "expected"),
        [(0.25, "250 ms"), (3.21, "3.2s"), (125, "2m 5s")],
    )
    def test_format_elapsed(self, seconds, expected):
        assert format_elapsed(seconds) == expected


class TestPaths:
    def test_is_relative_to(self):
        assert is_relative_to(Path("/a/b/c"), Path("/a/b"))
        assert is_relative_to(Path("/a/b"), Path("/a/b"))
        assert not is_relative_to(Path("/a/bc"), Path("/a/b"))

    def test_path_mtime(self, tmp_path):
        assert path_mtime(tmp_path) is not None
        assert path_mtime(tmp_path / "missing") is None
