"""Tests for docsync.config: env-var config loading and validation.

NOT to be confused with test_config_loader.py (hierarchical YAML config)
or test_config_schema.py (Pydantic models). This tests the runtime
settings path: validate_config() and load_config().
"""

import logging
from pathlib import Path

import pytest

from docsync.config import Config, load_config, validate_config

_ENV_VARS = (
    "DOCSYNC_BACKUP_DIR",
    "DOCSYNC_MAX_BACKUPS",
    "DOCSYNC_DEBOUNCE_MS",
    "DOCSYNC_INTEGRITY_CHECK",
    "DOCSYNC_PERSIST_PROGRESS",
    "DOCSYNC_MERGE_ALGORITHM",
    "DOCSYNC_DEBUG",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in _ENV_VARS:
        monkeypatch.delenv(key, raising=False)


# -------------------------------------------------------------------------
# validate_config()
# -------------------------------------------------------------------------


class TestValidateConfig:
    """Tests for validate_config() range and name checks."""

    def test_defaults_are_valid(self):
        validate_config(Config())  # should not raise

    def test_document_dir_whitespace_stripped(self):
        config = Config(document_dir="  .docs  ")
        validate_config(config)
        assert config.document_dir == ".docs"

    def test_empty_document_dir(self):
        with pytest.raises(ValueError, match="cannot be empty"):
            validate_config(Config(document_dir="   "))

    @pytest.mark.parametrize("name", ["a/b", "a\\b"])
    def test_nested_document_dir(self, name):
        with pytest.raises(ValueError, match="single directory name"):
            validate_config(Config(document_dir=name))

    @pytest.mark.parametrize("value", [0, 1001])
    def test_max_backups_out_of_range(self, value):
        with pytest.raises(
            ValueError, match="must be a number between 1 and 1000"
        ):
            validate_config(Config(max_backups=value))

    @pytest.mark.parametrize("value", [1, 1000])
    def test_max_backups_bounds_valid(self, value):
        validate_config(Config(max_backups=value))

    def test_debounce_out_of_range(self):
        with pytest.raises(ValueError, match="debounce_ms"):
            validate_config(Config(debounce_ms=-1))

    def test_unknown_merge_algorithm(self):
        with pytest.raises(ValueError, match="lockstep, diff3"):
            validate_config(Config(merge_algorithm="octopus"))

    def test_diff3_logs_info(self, caplog):
        with caplog.at_level(logging.INFO, logger="docsync.config"):
            validate_config(Config(merge_algorithm="diff3"))
        assert "diff3" in caplog.text


# -------------------------------------------------------------------------
# Config.backup_root
# -------------------------------------------------------------------------


class TestBackupRoot:
    def test_explicit_root_expanded(self, monkeypatch):
        monkeypatch.setenv("HOME", "/home/tester")
        config = Config(backup_dir="~/backups")

        assert config.backup_root == Path("/home/tester/backups")
        assert Config().backup_root is None


# -------------------------------------------------------------------------
# load_config()
# -------------------------------------------------------------------------


class TestLoadConfig:
    """Tests for load_config() with env vars, overrides and fallbacks."""

    def test_defaults(self):
        config = load_config()

        assert config == Config()

    def test_load_from_env_vars(self, monkeypatch):
        monkeypatch.setenv("DOCSYNC_BACKUP_DIR", "/tmp/bk")
        monkeypatch.setenv("DOCSYNC_MAX_BACKUPS", "25")
        monkeypatch.setenv("DOCSYNC_DEBOUNCE_MS", "0")
        monkeypatch.setenv("DOCSYNC_INTEGRITY_CHECK", "false")
        monkeypatch.setenv("DOCSYNC_PERSIST_PROGRESS", "yes")
        monkeypatch.setenv("DOCSYNC_MERGE_ALGORITHM", " DIFF3 ")

        config = load_config()

        assert config.backup_dir == "/tmp/bk"
        assert config.max_backups == 25
        assert config.debounce_ms == 0
        assert config.integrity_check is False
        assert config.persist_progress is True
        assert config.merge_algorithm == "diff3"

    def test_overrides_beat_env(self, monkeypatch):
        monkeypatch.setenv("DOCSYNC_MAX_BACKUPS", "25")

        config = load_config(overrides={"max_backups": 3})

        assert config.max_backups == 3

    def test_env_beats_yaml_fallback(self, monkeypatch):
        monkeypatch.setenv("DOCSYNC_DEBOUNCE_MS", "50")

        config = load_config(
            yaml_fallbacks={"debounce_ms": 900, "max_backups": 7}
        )

        assert config.debounce_ms == 50
        assert config.max_backups == 7

    def test_none_override_ignored(self):
        config = load_config(
            overrides={"document_dir": None},
            yaml_fallbacks={"document_dir": ".docs"},
        )

        assert config.document_dir == ".docs"

    @pytest.mark.parametrize("value", ["true", "1", "yes", "on", "TRUE"])
    def test_debug_truthy_values(self, monkeypatch, value):
        monkeypatch.setenv("DOCSYNC_DEBUG", value)
        assert load_config().debug is True

    def test_debug_argument(self):
        assert load_config(debug=True).debug is True

    @pytest.mark.parametrize("value", ["abc", "0", "1001", "-5"])
    def test_invalid_max_backups_env(self, monkeypatch, value):
        monkeypatch.setenv("DOCSYNC_MAX_BACKUPS", value)

        with pytest.raises(
            ValueError,
            match=f"Invalid DOCSYNC_MAX_BACKUPS '{value}': must be a "
            "number between 1 and 1000",
        ):
            load_config()

    def test_invalid_debounce_env(self, monkeypatch):
        monkeypatch.setenv("DOCSYNC_DEBOUNCE_MS", "soon")

        with pytest.raises(ValueError, match="between 0 and 60000"):
            load_config()

    def test_invalid_override_rejected(self):
        with pytest.raises(ValueError, match="Invalid max_backups 0"):
            load_config(overrides={"max_backups": 0})
