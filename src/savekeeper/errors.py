from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional


class SaveKeeperError(Exception):
    """Base error for savekeeper domain exceptions."""


class Conflict(SaveKeeperError):
    """Raised when a name collides with an existing sibling."""


class NotFound(SaveKeeperError):
    """Raised when an entity reference is stale or a name does not resolve."""


class OutsideWatchRoot(SaveKeeperError):
    """Raised when a path is not lexically contained in any watch root."""

    def __init__(self, path: Path, message: Optional[str] = None) -> None:
        self.path = Path(path)
        super().__init__(message or f"Path is outside every watch root: {path}")


class IoFailure(SaveKeeperError):
    """Raised (or collected) when a filesystem operation fails for a path."""

    def __init__(self, path: Path, cause: Optional[BaseException] = None) -> None:
        self.path = Path(path)
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"I/O failure on {path}{detail}")


class EmptyProfile(SaveKeeperError):
    """Raised when a random load is requested for a profile without saves."""


class Cancelled(SaveKeeperError):
    """Raised when a background operation is aborted mid-flight."""


class InvalidSource(SaveKeeperError):
    """Raised when an import source cannot be read."""


class InvalidName(SaveKeeperError):
    """Raised when a requested entity name is empty or not a plain file name."""


class NotConfigured(SaveKeeperError):
    """Raised when a game has no save slot path configured."""


class InvalidTransition(SaveKeeperError):
    """Raised when the selection state machine is asked for a disallowed transition."""


class ConfigError(SaveKeeperError):
    """Raised when the configuration file is unreadable or invalid."""


class StateError(SaveKeeperError):
    """Raised when the persisted state cannot be written."""


@dataclass
class DeleteResult:
    """Aggregate outcome of a (possibly cascading) delete.

    ``removed`` lists every path that was removed from disk; ``failures`` maps the
    paths that could not be removed to their error. The affected entities of failed
    paths (and their ancestors) stay in the tree.
    """

    removed: List[Path] = field(default_factory=list)
    failures: Dict[Path, IoFailure] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failures

    def fail(self, path: Path, cause: BaseException) -> None:
        self.failures[Path(path)] = IoFailure(path, cause)
