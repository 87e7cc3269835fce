"""
Configuration management and loading.

Resolves where transcripts are read from and where reports are written,
from environment variables and an optional YAML file.
"""

import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Mapping, Optional, Union

import yaml

DATA_DIR_ENV = "CLAUDE_USAGE_DATA_DIR"
SOURCE_DIR_ENV = "CLAUDE_USAGE_SOURCE_DIR"

ALLOWED_KEYS = {'data_root', 'source_dir', 'account_file'}


@dataclass(frozen=True)
class TrackerConfig:
    """Locations used by a sync run."""
    data_root: Path
    source_dir: Path
    account_file: Path

    @property
    def events_path(self) -> Path:
        return self.data_root / "events.tsv"

    @property
    def live_events_path(self) -> Path:
        return self.data_root / "live-events.tsv"

    @property
    def projects_path(self) -> Path:
        return self.data_root / "projects.json"

    @property
    def account_path(self) -> Path:
        return self.data_root / "account.json"

    @property
    def status_path(self) -> Path:
        return self.data_root / "sync-status.json"


def default_config(
    env: Optional[Mapping[str, str]] = None,
    home: Optional[Path] = None,
) -> TrackerConfig:
    """Build the default configuration.

    ``CLAUDE_USAGE_DATA_DIR`` and ``CLAUDE_USAGE_SOURCE_DIR`` override the
    data root and the transcript directory.
    """
    env = os.environ if env is None else env
    home = Path.home() if home is None else home

    data_root = env.get(DATA_DIR_ENV) or str(home / "dev" / ".claude-usage")
    source_dir = env.get(SOURCE_DIR_ENV) or str(home / ".claude" / "projects")

    return TrackerConfig(
        data_root=Path(data_root),
        source_dir=Path(source_dir),
        account_file=home / ".claude.json",
    )


def load_config(
    path: Union[str, Path],
    env: Optional[Mapping[str, str]] = None,
    home: Optional[Path] = None,
) -> TrackerConfig:
    """Load configuration from a YAML file on top of the defaults.

    Args:
        path: Path to YAML configuration file
        env: Environment used for defaults (``os.environ`` if omitted)
        home: Home directory used for defaults and ``~`` expansion

    Returns:
        Validated TrackerConfig

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    config = default_config(env=env, home=home)
    if raw_config is None:
        return config

    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a mapping")

    unknown_keys = set(raw_config.keys()) - ALLOWED_KEYS
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    home = Path.home() if home is None else home
    overrides = {}
    for key, value in raw_config.items():
        if not isinstance(value, str) or not value.strip():
            raise ValueError(f"'{key}' must be a non-empty string")
        overrides[key] = _expand(value, home)

    return replace(config, **overrides)


def with_overrides(
    config: TrackerConfig,
    data_root: Optional[Union[str, Path]] = None,
    source_dir: Optional[Union[str, Path]] = None,
) -> TrackerConfig:
    """Apply command-line overrides to a configuration."""
    overrides = {}
    if data_root is not None:
        overrides['data_root'] = Path(data_root)
    if source_dir is not None:
        overrides['source_dir'] = Path(source_dir)
    return replace(config, **overrides) if overrides else config


def _expand(value: str, home: Path) -> Path:
    if value == "~":
        return home
    if value.startswith("~/"):
        return home / value[2:]
    return Path(value)
