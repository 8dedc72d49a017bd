from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

from platformdirs import PlatformDirs

LOGGER = logging.getLogger("savekeeper.io.paths")
LOGGER.addHandler(logging.NullHandler())

APP_NAME = "savekeeper"

# Environment variable overrides (useful for tests and power users)
ENV_CONFIG_DIR = "SAVEKEEPER_CONFIG_DIR"
ENV_DATA_DIR = "SAVEKEEPER_DATA_DIR"

LIBRARY_DIR_NAME = "games"
STATE_FILE_NAME = "state.json"
CONFIG_FILE_NAME = "config.yaml"


class AppPaths:
    """Resolve platform-appropriate directories for savekeeper.

    Provides:
    - config_dir: user configuration (config.yaml)
    - data_dir: persisted state and, by default, the game library
    - library_root: the directory whose immediate children are games

    Uses platformdirs for cross-platform correctness and supports environment
    variable overrides for tests and portable installs. An explicit ``data_dir``
    (from the config file) wins over both.
    """

    def __init__(self, app_name: str = APP_NAME, data_dir: Optional[Path] = None) -> None:
        self._dirs = PlatformDirs(appname=app_name, appauthor=False)
        self._config_dir = self._compute_dir(ENV_CONFIG_DIR, Path(self._dirs.user_config_dir))
        if data_dir is not None:
            self._data_dir = Path(data_dir).expanduser().resolve()
        else:
            self._data_dir = self._compute_dir(ENV_DATA_DIR, Path(self._dirs.user_data_dir))

    @staticmethod
    def _compute_dir(env_var: str, default: Path) -> Path:
        override = os.getenv(env_var)
        if override:
            return Path(override).expanduser().resolve()
        return Path(default).expanduser().resolve()

    @property
    def config_dir(self) -> Path:
        return self._config_dir

    @property
    def config_file(self) -> Path:
        return self._config_dir / CONFIG_FILE_NAME

    @property
    def data_dir(self) -> Path:
        return self._data_dir

    @property
    def library_root(self) -> Path:
        return self._data_dir / LIBRARY_DIR_NAME

    @property
    def state_file(self) -> Path:
        return self._data_dir / STATE_FILE_NAME

    def ensure_dirs(self) -> None:
        """Create the data directory and library root if they don't exist."""
        for d in (self.data_dir, self.library_root):
            d.mkdir(parents=True, exist_ok=True)
        LOGGER.debug("Data directory ready at %s", self.data_dir)


def is_within(path: Path, root: Path) -> bool:
    """Lexical containment check; neither path is resolved against the filesystem."""
    try:
        Path(path).relative_to(root)
    except ValueError:
        return False
    return True


def is_hidden(path: Path) -> bool:
    return Path(path).name.startswith(".")
