"""Tests for sync/integrity.py."""

import hashlib
from unittest.mock import patch

from docsync.sync.integrity import MAX_FILE_SIZE, validate_file_integrity


class TestValidateFileIntegrity:
    def test_clean_markdown(self, tmp_path):
        path = tmp_path / "design.md"
        path.write_text("# Design\n")

        result = validate_file_integrity(path)

        assert result.is_valid
        assert not result.has_findings
        assert result.checksum == hashlib.sha256(b"# Design\n").hexdigest()

    def test_markdown_without_headers_warns(self, tmp_path):
        path = tmp_path / "notes.md"
        path.write_text("just text\n")

        result = validate_file_integrity(path)

        assert result.is_valid
        assert result.warnings == ["Markdown file has no headers"]
        assert result.has_findings

    def test_empty_file_warns(self, tmp_path):
        path = tmp_path / "empty.txt"
        path.write_bytes(b"")

        result = validate_file_integrity(path)

        assert result.warnings == ["File is empty"]

    def test_invalid_json_is_an_error(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("{nope")

        result = validate_file_integrity(path)

        assert not result.is_valid
        assert result.errors == ["Invalid JSON format"]

    def test_valid_json(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text('{"a": 1}')

        assert validate_file_integrity(path).is_valid

    def test_large_file_warns(self, tmp_path):
        path = tmp_path / "big.txt"
        path.write_text("x")

        with patch("docsync.sync.integrity.MAX_FILE_SIZE", 0):
            result = validate_file_integrity(path)

        assert result.warnings[0].startswith("File is large")
        assert MAX_FILE_SIZE == 10 * 1024 * 1024

    def test_unreadable_file_is_an_error(self, tmp_path):
        result = validate_file_integrity(tmp_path / "missing.md")

        assert not result.is_valid
        assert result.errors[0].startswith("File integrity check failed")
        assert result.checksum is None
