"""Tests for moodring.config module."""

import logging
from pathlib import Path

import pytest
import yaml

from moodring.config import (
    DEFAULTS,
    MoodringConfig,
    configure_logging,
    load_config,
    save_config_value,
)


@pytest.fixture(autouse=True)
def fake_home(tmp_path, monkeypatch):
    """Keep default paths inside the test's temp directory."""
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.delenv("MOODRING_CONFIG", raising=False)
    return tmp_path


def test_load_config_no_file(tmp_path):
    """When config file doesn't exist, return defaults without error."""
    config = load_config(config_path=tmp_path / "nonexistent.yaml")
    assert isinstance(config, MoodringConfig)
    assert config.port == 8788
    assert config.stale_seconds == 1800.0
    assert config.linger_seconds == 15.0
    assert config.slot_freshness_seconds == 120.0
    assert config.log_file is None


def test_load_config_defaults_paths(tmp_path):
    """Default paths should be expanded (no ~ remaining)."""
    config = load_config(config_path=tmp_path / "nonexistent.yaml")
    assert "~" not in str(config.db_path)
    assert config.db_path == tmp_path / ".local/share/moodring/moodring.db"


def test_load_config_partial_override(tmp_path):
    """A partial config file merges with defaults correctly."""
    config_file = tmp_path / "config.yaml"
    config_file.write_text("port: 9999\nlinger_seconds: 30\n")

    config = load_config(config_path=config_file)
    assert config.port == 9999
    assert config.linger_seconds == 30.0
    # Other defaults still apply
    assert config.db_path == Path(DEFAULTS["db_path"]).expanduser()


def test_load_config_custom_paths(tmp_path):
    """Custom paths from config are expanded."""
    config_file = tmp_path / "config.yaml"
    config_file.write_text("db_path: ~/my-data/ring.db\nlog_file: ~/logs/moodring.log\n")

    config = load_config(config_path=config_file)
    assert config.db_path == tmp_path / "my-data/ring.db"
    assert config.log_file == tmp_path / "logs/moodring.log"


def test_load_config_unknown_keys_ignored(tmp_path):
    """Unknown keys in the YAML file are silently ignored."""
    config_file = tmp_path / "config.yaml"
    config_file.write_text("unknown_key: some_value\nport: 1234\n")

    config = load_config(config_path=config_file)
    assert config.port == 1234
    assert not hasattr(config, "unknown_key")


def test_load_config_creates_db_parent_dir(tmp_path):
    """load_config should create parent directories for db_path."""
    config_file = tmp_path / "config.yaml"
    db_dir = tmp_path / "deep" / "nested" / "dir"
    config_file.write_text(f"db_path: {db_dir}/moodring.db\n")

    config = load_config(config_path=config_file)
    assert config.db_path.parent.exists()
    assert config.db_path.parent == db_dir


def test_load_config_empty_yaml(tmp_path):
    """An empty YAML file should return defaults."""
    config_file = tmp_path / "config.yaml"
    config_file.write_text("")

    config = load_config(config_path=config_file)
    assert config.port == 8788


def test_load_config_bad_log_level_falls_back(tmp_path):
    config_file = tmp_path / "config.yaml"
    config_file.write_text("log_level: chatty\n")
    assert load_config(config_path=config_file).log_level == "WARNING"

    config_file.write_text("log_level: debug\n")
    assert load_config(config_path=config_file).log_level == "DEBUG"


def test_env_var_overrides_config_path(tmp_path, monkeypatch):
    config_file = tmp_path / "elsewhere.yaml"
    config_file.write_text("port: 4321\n")
    monkeypatch.setenv("MOODRING_CONFIG", str(config_file))
    assert load_config().port == 4321


def test_save_config_value_preserves_other_keys(tmp_path):
    config_file = tmp_path / "config.yaml"
    config_file.write_text("port: 9000\n")

    save_config_value("stale_seconds", 600, config_path=config_file)
    data = yaml.safe_load(config_file.read_text())
    assert data == {"port": 9000, "stale_seconds": 600}
    assert load_config(config_path=config_file).stale_seconds == 600.0


def test_save_config_value_rejects_unknown_key(tmp_path):
    with pytest.raises(KeyError):
        save_config_value("colour", "blue", config_path=tmp_path / "config.yaml")


def test_configure_logging_to_file(tmp_path):
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    config = load_config(config_path=tmp_path / "nonexistent.yaml")
    config.log_file = tmp_path / "logs" / "moodring.log"
    config.log_level = "INFO"
    try:
        configure_logging(config)
        logging.getLogger("moodring.test").info("hello %s", "there")
        for handler in root.handlers:
            handler.flush()
        assert "hello there" in config.log_file.read_text()
    finally:
        for handler in root.handlers:
            handler.close()
        root.handlers[:] = saved_handlers
        root.setLevel(saved_level)
