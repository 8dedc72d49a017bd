"""User configuration: built-in YAML defaults overlaid with the user's config.yaml."""

from __future__ import annotations

import logging
import os
from importlib import resources
from pathlib import Path
from typing import Dict, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from ..errors import ConfigError
from ..io.paths import AppPaths

logger = logging.getLogger(__name__)

ENV_CONFIG_FILE = "SAVEKEEPER_CONFIG"


def _expand(v: Optional[Path]) -> Optional[Path]:
    return Path(v).expanduser() if v is not None else None


class GameConfig(BaseModel):
    """Per-game overrides keyed by game name."""

    savefile_path: Optional[Path] = Field(default=None, description="Save slot the game itself reads")
    root: Optional[Path] = Field(default=None, description="Storage root outside the library")

    @field_validator("savefile_path", "root")
    @classmethod
    def expand_user(cls, v: Optional[Path]) -> Optional[Path]:
        return _expand(v)


class SyncConfig(BaseModel):
    debounce_ms: int = Field(50, ge=0)
    rename_pair_timeout_ms: int = Field(100, ge=0)
    suppression_timeout_ms: int = Field(2000, gt=0)
    storm_threshold: int = Field(64, ge=1)
    channel_capacity: int = Field(1024, ge=1)

    @property
    def debounce(self) -> float:
        return self.debounce_ms / 1000.0

    @property
    def rename_pair_timeout(self) -> float:
        return self.rename_pair_timeout_ms / 1000.0

    @property
    def suppression_timeout(self) -> float:
        return self.suppression_timeout_ms / 1000.0


class AppConfig(BaseModel):
    data_dir: Optional[Path] = Field(default=None, description="Overrides the platform data directory")
    hide_extensions: bool = False
    viewport_height: int = Field(20, ge=1)
    games: Dict[str, GameConfig] = Field(default_factory=dict)
    sync: SyncConfig = Field(default_factory=SyncConfig)

    @field_validator("data_dir")
    @classmethod
    def expand_user(cls, v: Optional[Path]) -> Optional[Path]:
        return _expand(v)

    @field_validator("games", mode="before")
    @classmethod
    def none_is_empty(cls, v):
        # `games:` with no entries parses as None
        return v or {}

    def paths(self) -> AppPaths:
        return AppPaths(data_dir=self.data_dir)


def _load_yaml(path: Path) -> dict:
    try:
        with path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Cannot read config {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"Config {path} must be a mapping, got {type(data).__name__}")
    return data


def _deep_merge(base: dict, overlay: dict) -> dict:
    merged = dict(base)
    for k, v in (overlay or {}).items():
        if isinstance(v, dict) and isinstance(base.get(k), dict):
            merged[k] = _deep_merge(base[k], v)
        else:
            merged[k] = v
    return merged


def default_config_path() -> Path:
    override = os.getenv(ENV_CONFIG_FILE)
    if override:
        return Path(override).expanduser()
    return AppPaths().config_file


def load_config(path: Optional[Path] = None) -> AppConfig:
    """Load configuration from packaged defaults and an optional user file.

    ``path`` defaults to ``$SAVEKEEPER_CONFIG`` or ``<config_dir>/config.yaml``. A
    missing file is not an error; an unreadable or invalid one raises ``ConfigError``.
    """
    with resources.files("savekeeper.config").joinpath("default_config.yaml").open("r", encoding="utf-8") as f:
        defaults = yaml.safe_load(f) or {}

    explicit = path is not None
    path = Path(path) if explicit else default_config_path()
    user_data: dict = {}
    if path.exists():
        user_data = _load_yaml(path)
        logger.info("Loaded user config from %s", path)
    elif explicit:
        logger.warning("Config file not found: %s", path)
    else:
        logger.debug("No user config at %s, using defaults", path)

    merged = _deep_merge(defaults, user_data)
    try:
        config = AppConfig.model_validate(merged)
    except ValidationError as e:
        raise ConfigError(f"Invalid config {path}: {e}") from e
    logger.debug("Config merged: %s", config)
    return config


__all__ = ["AppConfig", "GameConfig", "SyncConfig", "load_config", "default_config_path"]
