"""Persisted application state: orderings, active markers and game settings."""

from .models import SCHEMA_VERSION, AppState, GameState, ProfileState
from .snapshot import apply_state, seed_tree, snapshot_state
from .store import StateStore, atomic_write_bytes

__all__ = [
    "SCHEMA_VERSION",
    "AppState",
    "GameState",
    "ProfileState",
    "StateStore",
    "apply_state",
    "atomic_write_bytes",
    "seed_tree",
    "snapshot_state",
]
