from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional


class RawKind(str, Enum):
    CREATE = "create"
    REMOVE = "remove"
    MODIFY = "modify"
    RENAME_FROM = "rename_from"
    RENAME_TO = "rename_to"
    MOVE = "move"


@dataclass(frozen=True)
class RawEvent:
    """A filesystem notification as delivered by the watcher.

    ``MOVE`` events carry both paths; ``RENAME_FROM``/``RENAME_TO`` halves carry an
    optional ``cookie`` that links the two sides of one rename.
    """

    kind: RawKind
    path: Path
    dest_path: Optional[Path] = None
    is_directory: bool = False
    cookie: Optional[int] = None

    @classmethod
    def create(cls, path, is_directory: bool = False) -> "RawEvent":
        return cls(RawKind.CREATE, Path(path), is_directory=is_directory)

    @classmethod
    def remove(cls, path, is_directory: bool = False) -> "RawEvent":
        return cls(RawKind.REMOVE, Path(path), is_directory=is_directory)

    @classmethod
    def modify(cls, path) -> "RawEvent":
        return cls(RawKind.MODIFY, Path(path))

    @classmethod
    def move(cls, src, dest, is_directory: bool = False) -> "RawEvent":
        return cls(RawKind.MOVE, Path(src), Path(dest), is_directory=is_directory)


class NodeKind(str, Enum):
    """What a path denotes relative to its watch root."""

    GAME = "game"
    PROFILE = "profile"
    SAVE = "save"
    UNRELATED = "unrelated"


class Op(str, Enum):
    CREATED = "created"
    REMOVED = "removed"
    MODIFIED = "modified"
    MOVED = "moved"


@dataclass(frozen=True)
class ClassifiedEvent:
    """A debounced event mapped onto the entity hierarchy.

    For ``MOVED`` events ``node`` describes the source and ``dest_node`` the
    destination; both sit under the same watch root.
    """

    op: Op
    node: NodeKind
    path: Path
    dest_path: Optional[Path] = None
    dest_node: Optional[NodeKind] = None

    def __str__(self) -> str:
        if self.dest_path is not None:
            return f"{self.op.value} {self.node.value} {self.path} -> {self.dest_path}"
        return f"{self.op.value} {self.node.value} {self.path}"
