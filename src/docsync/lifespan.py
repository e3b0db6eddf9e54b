"""Lifespan management for the docsync services."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from dotenv import load_dotenv

from .config import load_config
from .config_loader import discover_config_files, load_hierarchical_config
from .config_schema import build_config, to_config_fallbacks
from .sync.backup import ProjectBackups
from .sync.bridge import SyncBridge
from .sync.events import EventBus
from .sync.registry import ConflictRegistry
from .sync.watcher import (
    ChangeWatcherAdapter,
    PollingWatchSource,
    WatchSource,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def service_lifespan(
    project_path: str | None = None,
    config_overrides: dict[str, Any] | None = None,
    source: WatchSource | None = None,
) -> AsyncIterator[dict[str, Any]]:
    """
    Build the sync services, yield them, and stop all sync on exit.

    On startup:
    - Load .env file (so values are available for env var lookups and YAML interpolation)
    - Load YAML config file if present (as fallback values)
    - Merge all sources via load_config(): overrides > env vars > .env > YAML > defaults
    - Wire EventBus, ProjectBackups, ConflictRegistry, ChangeWatcherAdapter, SyncBridge
    - Start syncing *project_path* when given

    On shutdown:
    - Stop every active project watch

    Args:
        project_path: Project to synchronize immediately.
        config_overrides: Explicit values keyed by ``Config`` field name.
        source: Watch source; defaults to ``PollingWatchSource``.

    Yields:
        Dict with 'config', 'bus', 'backups', 'registry', 'watcher'
        and 'bridge' keys.

    Raises:
        RuntimeError: If configuration is invalid.
    """
    logger.info("docsync starting...")

    try:
        # 1. Load .env early (before YAML, so ${VAR} interpolation can use .env values)
        load_dotenv()

        # 2. Load YAML config if present as fallbacks
        yaml_fallbacks: dict[str, Any] | None = None
        sources = []
        config_files = discover_config_files()
        if config_files:
            unified = build_config(load_hierarchical_config())
            yaml_fallbacks = to_config_fallbacks(unified)
            sources.append(f"config file: {config_files[0]}")

        # 3. Single call to load_config with all sources merged
        overrides = config_overrides or {}
        config = load_config(
            overrides=overrides,
            debug=bool(overrides.get("debug", False)),
            yaml_fallbacks=yaml_fallbacks,
        )

        if overrides:
            sources.append("overrides")
        sources.append("environment variables")
        logger.info("Configuration loaded from: %s", ", ".join(sources))
    except ValueError as e:
        logger.error("Configuration error: %s", e)
        raise RuntimeError(f"Configuration error: {e}") from e

    logger.info(
        "Backups in %s (keeping %d per file)",
        config.backup_root or f"<project>/{config.document_dir}/backups",
        config.max_backups,
    )

    bus = EventBus()
    backups = ProjectBackups(
        document_dir=config.document_dir,
        max_backups=config.max_backups,
        bus=bus,
        backup_root=config.backup_root,
    )
    registry = ConflictRegistry(
        backups,
        bus=bus,
        document_dir=config.document_dir,
        merge_algorithm=config.merge_algorithm,
    )
    watcher = ChangeWatcherAdapter(
        source or PollingWatchSource(),
        document_dir=config.document_dir,
        debounce_ms=config.debounce_ms,
    )
    bridge = SyncBridge(
        watcher,
        registry,
        bus=bus,
        integrity_check=config.integrity_check,
        persist_progress=config.persist_progress,
    )

    try:
        if project_path is not None:
            await bridge.start_sync_for_project(project_path)
        yield {
            "config": config,
            "bus": bus,
            "backups": backups,
            "registry": registry,
            "watcher": watcher,
            "bridge": bridge,
        }
    finally:
        logger.info("docsync shutting down")
        await bridge.stop_all_sync()
