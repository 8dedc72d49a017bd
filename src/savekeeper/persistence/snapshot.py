from __future__ import annotations

import logging
from pathlib import Path

from ..errors import Conflict
from ..tree import EntityTree
from .models import AppState, GameState, ProfileState

logger = logging.getLogger(__name__)


def snapshot_state(tree: EntityTree, library_root: Path) -> AppState:
    """Capture the parts of the tree that cannot be rediscovered from disk."""
    state = AppState()
    active = tree.active_game
    state.active_game = active.name if active is not None else None
    for game in tree.games():
        gs = GameState(
            root=game.root if game.root.parent != library_root else None,
            savefile_path=game.savefile_path,
            preset=game.preset,
        )
        active_profile = tree.active_profile(game.ref)
        gs.active_profile = active_profile.name if active_profile is not None else None
        for profile in tree.profiles(game.ref):
            ps = ProfileState(order=tree.manual_order(profile.ref))
            active_save = tree.active_save(profile.ref)
            ps.active_save = active_save.name if active_save is not None else None
            if ps.order or ps.active_save:
                gs.profiles[profile.name] = ps
        state.games[game.name] = gs
    return state


def seed_tree(tree: EntityTree, state: AppState, library_root: Path) -> None:
    """Insert the persisted games before the first scan.

    Games stored in the library whose directory is gone are skipped; custom-root
    games are kept even when their root is missing so their settings survive.
    """
    for name, gs in state.games.items():
        root = gs.root or (library_root / name)
        if gs.root is None and not root.is_dir():
            logger.info("Forgetting game %s: %s no longer exists", name, root)
            continue
        if tree.find_game(name) is not None:
            continue
        try:
            tree.insert_game(name, root, savefile_path=gs.savefile_path, preset=gs.preset)
        except Conflict as exc:
            logger.warning("Skipping persisted game %s: %s", name, exc)


def apply_state(tree: EntityTree, state: AppState) -> None:
    """Restore orderings and active markers once the scan has populated the tree."""
    for name, gs in state.games.items():
        game = tree.find_game(name)
        if game is None:
            continue
        for pname, ps in gs.profiles.items():
            profile = tree.find_profile(game.ref, pname)
            if profile is None:
                continue
            if ps.order:
                tree.apply_manual_order(profile.ref, ps.order)
            if ps.active_save:
                save = tree.find_save(profile.ref, ps.active_save)
                if save is not None:
                    tree.set_active_save(profile.ref, save.ref)
        if gs.active_profile:
            profile = tree.find_profile(game.ref, gs.active_profile)
            if profile is not None:
                tree.set_active_profile(game.ref, profile.ref)
    if state.active_game:
        game = tree.find_game(state.active_game)
        if game is not None:
            tree.set_active_game(game.ref)
