"""
Tests for campaign_engine/utils.py -- JSON I/O and text helpers.
"""

import json

from campaign_engine.utils import (
    safe_read_json,
    safe_write_json,
    strip_code_fences,
    truncate,
)


class TestJsonIO:
    """Tests for safe_read_json / safe_write_json."""

    def test_round_trip(self, tmp_path):
        """Written data reads back unchanged, creating parent dirs."""
        path = tmp_path / "nested" / "report.json"
        safe_write_json(path, {"findings": [1, 2]})
        assert safe_read_json(path) == {"findings": [1, 2]}

    def test_missing_file_returns_default(self, tmp_path):
        """A missing file yields the default."""
        assert safe_read_json(tmp_path / "nope.json", default=[]) == []

    def test_corrupt_file_returns_default(self, tmp_path):
        """Malformed JSON yields the default."""
        path = tmp_path / "bad.json"
        path.write_text("{not json", encoding="utf-8")
        assert safe_read_json(path) is None

    def test_undecodable_file_returns_default(self, tmp_path):
        """Bytes that are not UTF-8 are treated like a corrupt file."""
        path = tmp_path / "latin.json"
        path.write_bytes(b'{"name": "\xe9"}')
        assert safe_read_json(path, default={}) == {}

    def test_no_temp_files_left(self, tmp_path):
        """The atomic write leaves only the target file behind."""
        safe_write_json(tmp_path / "out.json", {"a": 1})
        assert [p.name for p in tmp_path.iterdir()] == ["out.json"]

    def test_unicode_preserved(self, tmp_path):
        """Non-ASCII text is written as-is, not escaped."""
        path = tmp_path / "u.json"
        safe_write_json(path, {"name": "R'lyeh é"})
        assert "é" in path.read_text(encoding="utf-8")
        assert json.loads(path.read_text(encoding="utf-8"))["name"] == "R'lyeh é"


class TestTruncate:
    """Tests for truncate."""

    def test_short_text_untouched(self):
        """Text under the limit is returned as-is."""
        assert truncate("short", 10) == "short"

    def test_exact_length_untouched(self):
        """Text exactly at the limit is not cut."""
        assert truncate("a" * 100, 100) == "a" * 100

    def test_long_text_cut(self):
        """Text over the limit is cut and gets the suffix."""
        assert truncate("a" * 120, 100) == "a" * 100 + "..."


class TestStripCodeFences:
    """Tests for strip_code_fences."""

    def test_json_fence(self):
        """A ```json fence is removed."""
        assert strip_code_fences('```json\n{"findings": []}\n```') == '{"findings": []}'

    def test_bare_fence(self):
        """A fence without a language tag is removed."""
        assert strip_code_fences("```\n[]\n```") == "[]"

    def test_no_fence(self):
        """Unfenced text is only trimmed."""
        assert strip_code_fences('  {"findings": []}  ') == '{"findings": []}'
