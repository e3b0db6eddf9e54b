"""Unified configuration schema for docsync.

Defines Pydantic models for the unified config structure with dedicated
sections for backups, sync behaviour and logging.  Includes an adapter that
flattens the YAML sections into fallbacks for the runtime ``Config``
dataclass.

Usage:
    from docsync.config_schema import build_config, to_config_fallbacks

    raw = load_hierarchical_config()
    unified = build_config(raw)
    config = load_config(yaml_fallbacks=to_config_fallbacks(unified))
"""

from __future__ import annotations

import logging
from typing import Literal

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Section models
# ---------------------------------------------------------------------------


class BackupConfig(BaseModel):
    """Backup store settings.

    ``directory`` is optional: when unset every project keeps its backups in
    its own ``<document_dir>/backups``.  When set, each project gets its own
    subdirectory below it.
    """

    directory: str | None = Field(
        default=None, description="Root of the per-project backup directories"
    )
    max_backups: int = Field(
        default=10,
        ge=1,
        le=1000,
        description="Backups kept per original file name (1-1000)",
    )

    model_config = {"frozen": True}


class SyncConfig(BaseModel):
    """Watcher and bridge settings."""

    document_dir: str = Field(
        default=".ai-project",
        description="Per-project document directory name",
    )
    debounce_ms: int = Field(
        default=300,
        ge=0,
        le=60000,
        description="Quiet period per path before a change is delivered",
    )
    integrity_check: bool = Field(
        default=True,
        description="Publish integrity warnings for changed files",
    )
    persist_progress: bool = Field(
        default=False,
        description="Write recomputed progress back to progress.json",
    )
    merge_algorithm: Literal["lockstep", "diff3"] = Field(
        default="lockstep",
        description="Algorithm used by merge resolutions",
    )

    model_config = {"frozen": True}


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        file: Optional log file path.
    """

    level: str = Field(default="INFO", description="Log level")
    file: str | None = Field(default=None, description="Log file path")

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Top-level unified config
# ---------------------------------------------------------------------------


class UnifiedConfig(BaseModel):
    """Top-level unified configuration.

    Aggregates all config sections. Every section has sensible defaults,
    so ``UnifiedConfig()`` (zero-config) is always valid.
    """

    backup: BackupConfig = Field(default_factory=BackupConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Factory function
# ---------------------------------------------------------------------------


def build_config(raw_data: dict) -> UnifiedConfig:
    """Construct a ``UnifiedConfig`` from the raw dict returned by
    ``load_hierarchical_config()``.

    Handles missing sections gracefully, anything absent gets defaults.

    Args:
        raw_data: Merged configuration dictionary.

    Returns:
        Validated ``UnifiedConfig`` instance.
    """
    if not raw_data:
        return UnifiedConfig()

    return UnifiedConfig(**raw_data)


# ---------------------------------------------------------------------------
# Adapter: UnifiedConfig -> Config fallbacks
# ---------------------------------------------------------------------------


def to_config_fallbacks(unified: UnifiedConfig) -> dict:
    """Flatten a ``UnifiedConfig`` into ``load_config()`` fallback values.

    Keys match the ``Config`` dataclass fields.  Unset optional values are
    left out so that defaults still apply.

    Args:
        unified: The unified config produced by ``build_config()``.

    Returns:
        Dict of fallback values.
    """
    fallbacks = {
        "backup_dir": unified.backup.directory,
        "max_backups": unified.backup.max_backups,
        "document_dir": unified.sync.document_dir,
        "debounce_ms": unified.sync.debounce_ms,
        "integrity_check": unified.sync.integrity_check,
        "persist_progress": unified.sync.persist_progress,
        "merge_algorithm": unified.sync.merge_algorithm,
    }
    return {k: v for k, v in fallbacks.items() if v is not None}
