from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from fractions import Fraction
from pathlib import Path
from typing import Dict, Optional


class EntityKind(str, Enum):
    GAME = "game"
    PROFILE = "profile"
    SAVE = "save"


@dataclass(frozen=True)
class EntityRef:
    """Stable identity of a tree entity.

    The uid survives renames and moves; it is never reused within a process.
    """

    kind: EntityKind
    uid: int

    def __str__(self) -> str:
        return f"{self.kind.value}#{self.uid}"


def _epoch() -> datetime:
    return datetime.fromtimestamp(0, tz=timezone.utc)


@dataclass
class SaveEntry:
    uid: int
    name: str
    path: Path
    profile_uid: int
    modified: datetime = field(default_factory=_epoch)
    size: int = 0
    # Manual order key; None means "filesystem order, after every keyed entry"
    order_key: Optional[Fraction] = None
    fs_seq: int = 0

    @property
    def ref(self) -> EntityRef:
        return EntityRef(EntityKind.SAVE, self.uid)

    def sort_key(self) -> tuple:
        if self.order_key is None:
            return (1, Fraction(0), self.fs_seq)
        return (0, self.order_key, self.fs_seq)


@dataclass
class Profile:
    uid: int
    name: str
    path: Path
    game_uid: int
    saves: Dict[int, SaveEntry] = field(default_factory=dict)
    active_save_uid: Optional[int] = None

    @property
    def ref(self) -> EntityRef:
        return EntityRef(EntityKind.PROFILE, self.uid)


@dataclass
class Game:
    uid: int
    name: str
    root: Path
    savefile_path: Optional[Path] = None
    preset: bool = False
    profiles: Dict[int, Profile] = field(default_factory=dict)
    active_profile_uid: Optional[int] = None

    @property
    def ref(self) -> EntityRef:
        return EntityRef(EntityKind.GAME, self.uid)


class ChangeKind(str, Enum):
    INSERTED = "inserted"
    REMOVED = "removed"
    RENAMED = "renamed"
    MOVED = "moved"
    REORDERED = "reordered"
    UPDATED = "updated"


@dataclass(frozen=True)
class TreeChange:
    kind: ChangeKind
    ref: EntityRef
    parent: Optional[EntityRef] = None
