"""Configuration loader — reads optional YAML config and merges with defaults."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

import yaml

CONFIG_PATH = Path("~/.config/moodring/config.yaml")
CONFIG_ENV = "MOODRING_CONFIG"

DEFAULTS = {
    "db_path": "~/.local/share/moodring/moodring.db",
    "port": 8788,
    "log_level": "WARNING",
    "log_file": None,
    "stale_seconds": 1800,
    "linger_seconds": 15,
    "slot_freshness_seconds": 120,
    "milestone_window_seconds": 8,
    "tick_seconds": 0.25,
}


@dataclass
class MoodringConfig:
    db_path: Path
    port: int
    log_level: str
    log_file: Path | None
    stale_seconds: float
    linger_seconds: float
    slot_freshness_seconds: float
    milestone_window_seconds: float
    tick_seconds: float


def _resolve_config_path(config_path: Path | None) -> Path:
    if config_path is None:
        env_path = os.environ.get(CONFIG_ENV)
        config_path = Path(env_path) if env_path else CONFIG_PATH
    return Path(config_path).expanduser()


def _read_yaml(config_path: Path) -> dict:
    if not config_path.is_file():
        return {}
    with open(config_path) as f:
        loaded = yaml.safe_load(f)
    return loaded if isinstance(loaded, dict) else {}


def save_config_value(key: str, value: object, config_path: Path | None = None) -> None:
    """Update a single key in the config file, preserving other settings."""
    if key not in DEFAULTS:
        raise KeyError(key)
    config_path = _resolve_config_path(config_path)
    config_path.parent.mkdir(parents=True, exist_ok=True)

    existing = _read_yaml(config_path)
    existing[key] = value
    with open(config_path, "w") as f:
        yaml.dump(existing, f, default_flow_style=False)


def load_config(config_path: Path | None = None) -> MoodringConfig:
    """Load config from ~/.config/moodring/config.yaml, merged with defaults.

    MOODRING_CONFIG overrides the location. Expand ~ in paths and create the
    parent directory of db_path. A missing file yields the defaults.
    """
    config_path = _resolve_config_path(config_path)

    merged = dict(DEFAULTS)
    user_config = _read_yaml(config_path)
    for key in DEFAULTS:
        if key in user_config:
            merged[key] = user_config[key]

    db_path = Path(merged["db_path"]).expanduser()
    db_path.parent.mkdir(parents=True, exist_ok=True)
    log_file = Path(merged["log_file"]).expanduser() if merged["log_file"] else None

    level = str(merged["log_level"]).upper()
    if not isinstance(logging.getLevelName(level), int):
        level = DEFAULTS["log_level"]

    return MoodringConfig(
        db_path=db_path,
        port=int(merged["port"]),
        log_level=level,
        log_file=log_file,
        stale_seconds=float(merged["stale_seconds"]),
        linger_seconds=float(merged["linger_seconds"]),
        slot_freshness_seconds=float(merged["slot_freshness_seconds"]),
        milestone_window_seconds=float(merged["milestone_window_seconds"]),
        tick_seconds=float(merged["tick_seconds"]),
    )


def default_config() -> MoodringConfig:
    """The built-in defaults with no file, no log file and no directories created."""
    return MoodringConfig(
        db_path=Path(DEFAULTS["db_path"]).expanduser(),
        port=DEFAULTS["port"],
        log_level=DEFAULTS["log_level"],
        log_file=None,
        stale_seconds=float(DEFAULTS["stale_seconds"]),
        linger_seconds=float(DEFAULTS["linger_seconds"]),
        slot_freshness_seconds=float(DEFAULTS["slot_freshness_seconds"]),
        milestone_window_seconds=float(DEFAULTS["milestone_window_seconds"]),
        tick_seconds=float(DEFAULTS["tick_seconds"]),
    )


def configure_logging(config: MoodringConfig) -> None:
    """Install the root handler once, to the log file when one is configured."""
    handler: logging.Handler
    if config.log_file is not None:
        config.log_file.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(config.log_file)
    else:
        handler = logging.StreamHandler()
    handler.setFormatter(
        logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
    )
    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(config.log_level)
