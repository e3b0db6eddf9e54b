"""File handler module: encoding-aware reads, atomic writes, stat helpers.

Provides the file I/O infrastructure shared by the backup store, the
conflict registry and the sync bridge.  All sync functions are plain
blocking calls; async wrappers compose them via run_sync().
"""

import logging
import os
import time
from datetime import datetime, timezone
from pathlib import Path

from charset_normalizer import from_bytes

from docsync.core.async_utils import run_sync

logger = logging.getLogger(__name__)

# =============================================================================
# Existence / Stat
# =============================================================================


def file_exists(path: Path) -> bool:
    """Return True if *path* exists and is a regular file."""
    try:
        return path.is_file()
    except OSError:
        return False


def directory_exists(path: Path) -> bool:
    """Return True if *path* exists and is a directory."""
    try:
        return path.is_dir()
    except OSError:
        return False


def file_mtime(path: Path) -> datetime:
    """Return the modification time of *path* as an aware UTC datetime.

    Raises:
        OSError: If the file cannot be stat'ed.
    """
    return datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc)


# =============================================================================
# File Read/Write
# =============================================================================


def read_file_with_encoding(path: Path) -> tuple[str, str]:
    """Read a file with automatic encoding detection.

    Reads raw bytes first, then uses charset-normalizer to detect encoding.
    Defaults to UTF-8 for empty files or when detection fails.

    Args:
        path: Path to the file to read.

    Returns:
        Tuple of (content_string, detected_encoding).
    """
    raw = path.read_bytes()
    if not raw:
        return ("", "utf-8")

    result = from_bytes(raw).best()
    if result is None:
        encoding = "utf-8"
        content = raw.decode(encoding, errors="replace")
    else:
        encoding = result.encoding
        # ascii is a strict subset of utf-8
        if encoding == "ascii":
            encoding = "utf-8"
        content = str(result)
    return (content, encoding)


def read_text(path: Path) -> str:
    """Read *path* and return only its decoded content."""
    content, _ = read_file_with_encoding(path)
    return content


def temp_path_for(target: Path) -> Path:
    """Return the temporary sibling used while atomically writing *target*."""
    stamp = int(time.time() * 1000)
    return target.with_name(f"{target.name}.tmp.{stamp}")


def write_file_atomic(
    path: Path, content: str | bytes, encoding: str = "utf-8"
) -> int:
    """Write content to *path* without ever exposing a partial file.

    The full content goes to ``<target>.tmp.<epoch-ms>`` first and is then
    renamed over the target with ``os.replace()``.  If anything fails, the
    temp file is removed and the original error propagates; the target is
    left untouched.

    Args:
        path: Path to the output file.
        content: Text (encoded with *encoding*) or raw bytes.
        encoding: Encoding to use for text content (default: utf-8).

    Returns:
        Number of bytes written.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    data = (
        content if isinstance(content, bytes) else content.encode(encoding)
    )
    tmp_path = temp_path_for(path)
    try:
        with open(tmp_path, "wb") as fh:
            fh.write(data)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp_path, path)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise
    logger.debug("Atomically wrote %d bytes to %s", len(data), path)
    return len(data)


# =============================================================================
# Async Wrappers
# =============================================================================


async def read_file_async(path: Path) -> str:
    """Async wrapper: read and decode a file."""
    return await run_sync(read_text, path)


async def write_file_atomic_async(
    path: Path, content: str, encoding: str = "utf-8"
) -> int:
    """Async wrapper: atomically write a file."""
    return await run_sync(write_file_atomic, path, content, encoding)
