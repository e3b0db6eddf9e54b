"""Lightweight integrity checks for changed project documents."""

from __future__ import annotations

import json
import logging
from pathlib import Path

from pydantic import BaseModel

from .backup import checksum_bytes

logger = logging.getLogger(__name__)

MAX_FILE_SIZE = 10 * 1024 * 1024


class IntegrityResult(BaseModel):
    is_valid: bool
    errors: list[str] = []
    warnings: list[str] = []
    checksum: str | None = None

    model_config = {"frozen": True}

    @property
    def has_findings(self) -> bool:
        return not self.is_valid or bool(self.warnings)


def validate_file_integrity(path: Path) -> IntegrityResult:
    """Checksum *path* and run basic structural checks.

    Large and empty files produce warnings, markdown without headers a
    warning, and unparseable JSON an error.  An unreadable file is reported
    as an error rather than raised.
    """
    try:
        data = path.read_bytes()
    except OSError as exc:
        return IntegrityResult(
            is_valid=False,
            errors=[f"File integrity check failed: {exc}"],
        )

    errors: list[str] = []
    warnings: list[str] = []

    if len(data) > MAX_FILE_SIZE:
        warnings.append(
            f"File is large ({round(len(data) / 1024 / 1024)}MB)"
        )
    if not data:
        warnings.append("File is empty")

    text = data.decode("utf-8", errors="replace")
    suffix = path.suffix.lower()
    if suffix == ".md" and "#" not in text:
        warnings.append("Markdown file has no headers")
    if suffix == ".json":
        try:
            json.loads(text)
        except json.JSONDecodeError:
            errors.append("Invalid JSON format")

    return IntegrityResult(
        is_valid=not errors,
        errors=errors,
        warnings=warnings,
        checksum=checksum_bytes(data),
    )
