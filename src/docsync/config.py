"""Runtime configuration for the docsync engine.

Reads engine settings from explicit overrides, environment variables,
.env files, and YAML config file fallbacks.

Precedence (highest to lowest):
    Overrides > Environment variables > .env file > YAML config > Built-in defaults

Environment variables:
    DOCSYNC_BACKUP_DIR: Root for per-project backup directories (optional, default: <project>/<document_dir>/backups)
    DOCSYNC_MAX_BACKUPS: Backups kept per file (optional, default: 10)
    DOCSYNC_DEBOUNCE_MS: Watcher debounce in milliseconds (optional, default: 300)
    DOCSYNC_INTEGRITY_CHECK: Publish integrity warnings (optional, default: true)
    DOCSYNC_PERSIST_PROGRESS: Write progress.json on task changes (optional, default: false)
    DOCSYNC_MERGE_ALGORITHM: lockstep or diff3 (optional, default: lockstep)
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

MERGE_ALGORITHMS = ("lockstep", "diff3")


@dataclass
class Config:
    backup_dir: str | None = None
    max_backups: int = 10
    document_dir: str = ".ai-project"
    debounce_ms: int = 300
    integrity_check: bool = True
    persist_progress: bool = False
    merge_algorithm: str = "lockstep"
    debug: bool = False

    @property
    def backup_root(self) -> Path | None:
        """Shared root holding one backup directory per project, if set."""
        if self.backup_dir:
            return Path(self.backup_dir).expanduser()
        return None


def validate_config(config: Config) -> None:
    """Validate configuration values and raise ValueError if invalid.

    Args:
        config: Config instance to validate.

    Raises:
        ValueError: If a value is out of range or unknown.
    """
    config.document_dir = config.document_dir.strip()
    if not config.document_dir:
        raise ValueError("Document directory name cannot be empty.")
    if "/" in config.document_dir or "\\" in config.document_dir:
        raise ValueError(
            f"Invalid document directory '{config.document_dir}': must be a single directory name"
        )

    if not (1 <= config.max_backups <= 1000):
        raise ValueError(
            f"Invalid max_backups {config.max_backups}: must be a number between 1 and 1000"
        )

    if not (0 <= config.debounce_ms <= 60000):
        raise ValueError(
            f"Invalid debounce_ms {config.debounce_ms}: must be a number between 0 and 60000"
        )

    if config.merge_algorithm not in MERGE_ALGORITHMS:
        raise ValueError(
            f"Invalid merge algorithm '{config.merge_algorithm}': must be one of {', '.join(MERGE_ALGORITHMS)}"
        )

    if config.merge_algorithm == "diff3":
        logger.info("Using diff3 merge algorithm for merge resolutions")


def _get_bool_env(key: str) -> bool | None:
    """Return True/False from env var, or None if unset."""
    val = os.getenv(key)
    if val is None:
        return None
    return val.lower() in ("true", "1", "yes", "on")


def _get_int_env(key: str, low: int, high: int) -> int | None:
    """Return an int from env var in ``[low, high]``, or None if unset."""
    raw = os.getenv(key)
    if raw is None:
        return None
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(
            f"Invalid {key} '{raw}': must be a number between {low} and {high}"
        ) from None
    if not (low <= value <= high):
        raise ValueError(
            f"Invalid {key} '{raw}': must be a number between {low} and {high}"
        )
    return value


def load_config(
    overrides: dict | None = None,
    debug: bool = False,
    yaml_fallbacks: dict | None = None,
) -> Config:
    """Load configuration with unified precedence.

    Resolution order for each field (highest to lowest):
        override > env var / .env > yaml_fallbacks > built-in default

    The caller is responsible for calling ``load_dotenv()`` before this
    function so that .env values are available via ``os.getenv()``.

    Args:
        overrides: Explicit values keyed by ``Config`` field name.
        debug: Enable debug logging.
        yaml_fallbacks: Flattened values from the YAML config file (see
            ``to_config_fallbacks``).  Used when neither an override nor
            an env var is set.

    Returns:
        Validated Config instance.

    Raises:
        ValueError: If an env var or resulting value is invalid.
    """
    ov = overrides or {}
    fb = yaml_fallbacks or {}
    defaults = Config()

    def pick(field: str, env_value):
        if ov.get(field) is not None:
            return ov[field]
        if env_value is not None:
            return env_value
        if fb.get(field) is not None:
            return fb[field]
        return getattr(defaults, field)

    config = Config(
        backup_dir=pick("backup_dir", os.getenv("DOCSYNC_BACKUP_DIR")),
        max_backups=int(
            pick(
                "max_backups", _get_int_env("DOCSYNC_MAX_BACKUPS", 1, 1000)
            )
        ),
        document_dir=pick("document_dir", None),
        debounce_ms=int(
            pick(
                "debounce_ms",
                _get_int_env("DOCSYNC_DEBOUNCE_MS", 0, 60000),
            )
        ),
        integrity_check=bool(
            pick("integrity_check", _get_bool_env("DOCSYNC_INTEGRITY_CHECK"))
        ),
        persist_progress=bool(
            pick(
                "persist_progress", _get_bool_env("DOCSYNC_PERSIST_PROGRESS")
            )
        ),
        merge_algorithm=str(
            pick("merge_algorithm", os.getenv("DOCSYNC_MERGE_ALGORITHM"))
        )
        .strip()
        .lower(),
        debug=debug or bool(_get_bool_env("DOCSYNC_DEBUG")),
    )

    validate_config(config)

    return config
