"""YAML configuration files for docsync.

Config files are looked up in a fixed order (``DOCSYNC_CONFIG``, then
``.docsync/config.yml`` or ``.yaml`` in the working directory, then
``~/.config/docsync/config.yml``).  Each file may pull in others with
``!include`` and refer to the environment with ``${VAR}`` or
``${VAR:-default}``.

Files are merged per section: a key set in ``sync:`` of the project file
overrides the same key of the global file and leaves the rest of the global
``sync:`` section in place.  Top-level keys other than the known sections
are logged and dropped.
"""

import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

SECTIONS = ("backup", "sync", "logging")

_ENV_REF = re.compile(r"\$\{([^}:]+?)(?::-(.*?))?\}")


def interpolate_env_vars(value: str) -> str:
    """Substitute ``${VAR}`` and ``${VAR:-default}`` references in *value*.

    Unset variables become the empty string unless a default is given; an
    empty variable also falls back to the default.
    """

    def _lookup(match: re.Match) -> str:
        name, default = match.group(1), match.group(2)
        return os.environ.get(name) or default or ""

    return _ENV_REF.sub(_lookup, value)


def _interpolate_recursive(node: Any) -> Any:
    if isinstance(node, str):
        return interpolate_env_vars(node)
    if isinstance(node, dict):
        return {key: _interpolate_recursive(val) for key, val in node.items()}
    if isinstance(node, list):
        return [_interpolate_recursive(item) for item in node]
    return node


class ConfigLoader(yaml.SafeLoader):
    """Safe YAML loader that understands ``!include <path>``.

    Relative include paths are resolved against the including file.  The
    chain of files being loaded travels with the loader so that a file
    including itself, directly or not, is reported instead of recursing.
    """

    def __init__(self, stream, chain: tuple[Path, ...] = ()) -> None:
        super().__init__(stream)
        self.chain = chain

    def include(self, node: yaml.ScalarNode) -> Any:
        current = self.chain[-1]
        target = (current.parent / self.construct_scalar(node)).resolve()
        if target in self.chain:
            cycle = " -> ".join(str(p) for p in (*self.chain, target))
            raise ValueError(f"Circular include detected: {cycle}")
        if not target.is_file():
            raise FileNotFoundError(
                f"Include file not found: {target} "
                f"(referenced from {current})"
            )
        return _load_yaml_with_includes(target, self.chain)


ConfigLoader.add_constructor("!include", ConfigLoader.include)


def _load_yaml_with_includes(
    path: Path, chain: tuple[Path, ...] = ()
) -> Any:
    """Parse one YAML file, following its ``!include`` directives."""
    path = Path(path).resolve()
    with open(path, encoding="utf-8") as fh:
        loader = ConfigLoader(fh, (*chain, path))
        try:
            return loader.get_single_data()
        finally:
            loader.dispose()


def discover_config_files() -> list[Path]:
    """Return the config files that exist, highest precedence first."""
    candidates = []
    explicit = os.environ.get("DOCSYNC_CONFIG")
    if explicit:
        candidates.append(Path(explicit).expanduser().resolve())
    project_dir = Path.cwd() / ".docsync"
    candidates += [project_dir / "config.yml", project_dir / "config.yaml"]
    candidates.append(Path.home() / ".config" / "docsync" / "config.yml")
    return [path for path in candidates if path.is_file()]


def _merge_sections(
    merged: dict[str, Any], data: dict[str, Any], source: Path
) -> None:
    for name, section in data.items():
        if name not in SECTIONS:
            logger.warning(
                "Ignoring unknown config section '%s' in %s", name, source
            )
            continue
        if isinstance(section, dict) and isinstance(merged.get(name), dict):
            merged[name] = {**merged[name], **section}
        else:
            merged[name] = section


def load_hierarchical_config() -> dict[str, Any]:
    """Merge every discovered config file into one dict of sections.

    Lower-precedence files are applied first.  A file whose root is not a
    mapping is skipped with a warning; a file that fails to parse raises.
    Environment references are expanded after merging.

    Returns:
        ``{}`` when no config file exists.
    """
    paths = discover_config_files()
    if not paths:
        logger.debug("No config files found, using defaults")
        return {}

    merged: dict[str, Any] = {}
    for path in reversed(paths):
        logger.debug("Loading config: %s", path)
        data = _load_yaml_with_includes(path)
        if isinstance(data, dict):
            _merge_sections(merged, data, path)
        elif data is not None:
            logger.warning(
                "Config file %s has a %s root, skipping",
                path,
                type(data).__name__,
            )
    return _interpolate_recursive(merged)
