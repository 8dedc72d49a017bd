"""savekeeper: organize game save files into games, profiles and saves.

The library directory is the source of truth; an in-memory entity tree mirrors it
and is kept in sync with external changes by a filesystem watcher.
"""

from importlib.metadata import PackageNotFoundError, version

__all__ = ["__version__"]

try:
    __version__ = version("savekeeper")
except PackageNotFoundError:  # pragma: no cover - during tests without packaging
    __version__ = "0.0.0"
