"""In-memory model of games, profiles and save entries."""

from .entity_tree import EntityTree
from .models import ChangeKind, EntityKind, EntityRef, Game, Profile, SaveEntry, TreeChange

__all__ = [
    "ChangeKind",
    "EntityKind",
    "EntityRef",
    "EntityTree",
    "Game",
    "Profile",
    "SaveEntry",
    "TreeChange",
]
