"""Tests for file_handler module: encoding-aware reads, atomic writes, stat helpers."""

import os
from datetime import timezone
from unittest.mock import patch

import pytest

from docsync.file_handler import (
    directory_exists,
    file_exists,
    file_mtime,
    read_file_async,
    read_file_with_encoding,
    read_text,
    temp_path_for,
    write_file_atomic,
    write_file_atomic_async,
)

# =============================================================================
# Existence / Stat
# =============================================================================


class TestExistence:
    def test_file_exists(self, tmp_path):
        f = tmp_path / "a.md"
        f.write_text("x")

        assert file_exists(f)
        assert not file_exists(tmp_path)
        assert not file_exists(tmp_path / "missing.md")

    def test_directory_exists(self, tmp_path):
        assert directory_exists(tmp_path)
        assert not directory_exists(tmp_path / "nope")

    def test_file_mtime_is_aware_utc(self, tmp_path):
        f = tmp_path / "a.md"
        f.write_text("x")
        os.utime(f, (1_700_000_000, 1_700_000_000))

        mtime = file_mtime(f)

        assert mtime.tzinfo is timezone.utc
        assert mtime.timestamp() == 1_700_000_000

    def test_file_mtime_missing_raises(self, tmp_path):
        with pytest.raises(OSError):
            file_mtime(tmp_path / "missing.md")


# =============================================================================
# read_file_with_encoding
# =============================================================================


class TestReadFileWithEncoding:
    """Tests for read_file_with_encoding(path)."""

    def test_utf8_file(self, tmp_path):
        f = tmp_path / "utf8.md"
        f.write_text("# Café résumé\n", encoding="utf-8")

        content, encoding = read_file_with_encoding(f)

        assert content == "# Café résumé\n"
        assert encoding == "utf-8"

    def test_ascii_reported_as_utf8(self, tmp_path):
        f = tmp_path / "ascii.md"
        f.write_bytes(b"# Tasks\n- [ ] one\n")

        _, encoding = read_file_with_encoding(f)

        assert encoding == "utf-8"

    def test_empty_file(self, tmp_path):
        f = tmp_path / "empty.md"
        f.write_bytes(b"")

        assert read_file_with_encoding(f) == ("", "utf-8")

    def test_read_text(self, tmp_path):
        f = tmp_path / "design.md"
        f.write_text("# Design\n")

        assert read_text(f) == "# Design\n"

    def test_missing_file_raises(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            read_text(tmp_path / "missing.md")


# =============================================================================
# write_file_atomic
# =============================================================================


class TestWriteFileAtomic:
    """Tests for write_file_atomic(path, content)."""

    def test_writes_and_returns_byte_count(self, tmp_path):
        f = tmp_path / "tasks.md"

        written = write_file_atomic(f, "- [ ] ünïcode\n")

        assert f.read_text(encoding="utf-8") == "- [ ] ünïcode\n"
        assert written == len("- [ ] ünïcode\n".encode("utf-8"))

    def test_replaces_existing_content(self, tmp_path):
        f = tmp_path / "tasks.md"
        f.write_text("old")

        write_file_atomic(f, "new")

        assert f.read_text() == "new"

    def test_bytes_content(self, tmp_path):
        f = tmp_path / "blob.bin"

        assert write_file_atomic(f, b"\x00\x01") == 2
        assert f.read_bytes() == b"\x00\x01"

    def test_creates_parent_directories(self, tmp_path):
        f = tmp_path / "a" / "b" / "c.md"

        write_file_atomic(f, "x")

        assert f.read_text() == "x"

    def test_no_temp_file_left_behind(self, tmp_path):
        write_file_atomic(tmp_path / "design.md", "# Design\n")

        assert [p.name for p in tmp_path.iterdir()] == ["design.md"]

    def test_failed_rename_cleans_up(self, tmp_path):
        f = tmp_path / "design.md"
        f.write_text("original")

        with patch(
            "docsync.file_handler.os.replace",
            side_effect=OSError("rename failed"),
        ):
            with pytest.raises(OSError, match="rename failed"):
                write_file_atomic(f, "replacement")

        assert f.read_text() == "original"
        assert [p.name for p in tmp_path.iterdir()] == ["design.md"]

    def test_temp_path_naming(self, tmp_path):
        target = tmp_path / "tasks.md"

        tmp = temp_path_for(target)

        assert tmp.parent == tmp_path
        prefix, stamp = tmp.name.rsplit(".", 1)
        assert prefix == "tasks.md.tmp"
        assert stamp.isdigit()


# =============================================================================
# Async wrappers
# =============================================================================


class TestAsyncWrappers:
    async def test_write_then_read(self, tmp_path):
        f = tmp_path / "requirements.md"

        written = await write_file_atomic_async(f, "# Requirements\n")

        assert written == len("# Requirements\n")
        assert await read_file_async(f) == "# Requirements\n"
