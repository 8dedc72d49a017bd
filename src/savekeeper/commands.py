from __future__ import annotations

import itertools
import logging
import os
import random
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Union

from .errors import (
    Cancelled,
    Conflict,
    DeleteResult,
    EmptyProfile,
    InvalidName,
    InvalidSource,
    IoFailure,
    NotConfigured,
    NotFound,
    StateError,
)
from .io.fileops import FileOps, readable_file
from .io.paths import is_within
from .presets import Preset, candidate_savefiles, get_preset
from .selection import Selection
from .sync.events import Op
from .sync.reconciler import Reconciler
from .sync.suppression import WRITE_OPS, Suppression
from .tree import EntityKind, EntityRef, EntityTree, Game, SaveEntry

logger = logging.getLogger(__name__)

DUP_SUFFIX = " (dup)"


@dataclass
class CopyTask:
    """A background import: the entry is already in the tree, the copy is not done."""

    id: int
    source: Path
    dest: Path
    ref: EntityRef
    cancel: threading.Event = field(default_factory=threading.Event)
    suppressions: List[Suppression] = field(default_factory=list)


def validate_name(name: str) -> str:
    """Reject names that are empty, hidden, or not a single path component."""
    name = (name or "").strip()
    if not name or name in (".", ".."):
        raise InvalidName("Name must not be empty")
    if "/" in name or os.sep in name or (os.altsep and os.altsep in name):
        raise InvalidName(f"Name {name!r} must not contain a path separator")
    if name.startswith("."):
        raise InvalidName(f"Name {name!r} must not start with a dot")
    return name


class CommandExecutor:
    """Perform user commands against disk and tree without racing the watcher.

    Every command validates first (nothing is touched on failure), registers the
    notifications its own side effect will cause, performs the filesystem change,
    updates the tree synchronously, persists state and finally moves the selection
    onto any entity it created.
    """

    def __init__(
        self,
        tree: EntityTree,
        reconciler: Reconciler,
        *,
        fileops: Optional[FileOps] = None,
        rng: Optional[random.Random] = None,
        selection: Optional[Selection] = None,
        persist: Optional[Callable[[], None]] = None,
    ) -> None:
        self.tree = tree
        self.reconciler = reconciler
        self.fileops = fileops or reconciler.fileops
        self.rng = rng or random.Random()
        self.selection = selection
        self._persist_cb = persist
        self._task_ids = itertools.count(1)
        self.tasks: Dict[int, CopyTask] = {}

    @property
    def suppression(self):
        return self.reconciler.suppression

    @property
    def library_root(self) -> Path:
        return self.reconciler.library_root

    # ------------------------------------------------------------------ helpers

    def _persist(self) -> None:
        if self._persist_cb is None:
            return
        try:
            self._persist_cb()
        except StateError as exc:
            logger.error("Could not persist state: %s", exc)

    def _select(self, ref: EntityRef) -> None:
        if self.selection is not None:
            self.selection.select(ref)

    def _check_watched(self, path: Path) -> None:
        # raises OutsideWatchRoot
        self.reconciler.roots.resolve(path)

    def _require_slot(self, game: Game) -> Path:
        if game.savefile_path is None:
            raise NotConfigured(f"Game {game.name!r} has no save file path")
        return game.savefile_path

    def _fs(self, entries: List[Suppression], action: Callable[[], None]) -> None:
        """Run a filesystem side effect, dropping its suppressions if it fails."""
        try:
            action()
        except (IoFailure, Cancelled):
            self.suppression.discard(entries)
            raise

    # ------------------------------------------------------------------ creation

    def create_game(
        self,
        name: str,
        savefile_path: Optional[Path] = None,
        preset: Optional[Union[Preset, str]] = None,
        root: Optional[Path] = None,
    ) -> EntityRef:
        name = validate_name(name)
        if isinstance(preset, str):
            preset = get_preset(preset)
        if self.tree.find_game(name) is not None:
            raise Conflict(f"A game named {name!r} already exists")
        if savefile_path is None and preset is not None:
            found = candidate_savefiles(preset)
            if found:
                savefile_path = found[0]
                logger.info("Using %s save file %s", preset.name, savefile_path)
            else:
                logger.warning("No %s save file found; set one later", preset.name)

        if root is None:
            root = self.library_root / name
            if root.exists():
                raise Conflict(f"{root} already exists")
            entries = [self.suppression.register(root, {Op.CREATED})]
            self._fs(entries, lambda: self.fileops.make_dir(root))
        else:
            root = Path(root)
            if self.tree.find_by_path(root) is not None:
                raise Conflict(f"{root} is already a game root")
            try:
                root.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                raise IoFailure(root, exc) from exc

        ref = self.tree.insert_game(name, root, savefile_path=savefile_path, preset=preset is not None)
        self.reconciler.track_game(self.tree.game(ref))
        logger.info("Created game %s", name)
        self._persist()
        self._select(ref)
        return ref

    def create_profile(self, game: EntityRef, name: str) -> EntityRef:
        name = validate_name(name)
        g = self.tree.game(game)
        if self.tree.find_profile(game, name) is not None:
            raise Conflict(f"A profile named {name!r} already exists in {g.name!r}")
        path = g.root / name
        self._check_watched(path)
        if path.exists():
            raise Conflict(f"{path} already exists")
        entries = [self.suppression.register(path, {Op.CREATED})]
        self._fs(entries, lambda: self.fileops.make_dir(path))
        ref = self.tree.insert_profile(game, name)
        logger.info("Created profile %s/%s", g.name, name)
        if self.selection is not None and self.tree.active_game_uid != g.uid:
            # the profiles pane only lists the active game
            self.tree.set_active_game(game)
        self._persist()
        self._select(ref)
        return ref

    # ------------------------------------------------------------------ import

    def _free_name(self, profile: EntityRef, name: str, auto_rename: bool) -> str:
        p = self.tree.profile(profile)

        def taken(n: str) -> bool:
            return self.tree.find_save(profile, n) is not None or (p.path / n).exists()

        if not taken(name):
            return name
        if not auto_rename:
            raise Conflict(f"A save named {name!r} already exists in {p.name!r}")
        while taken(name):
            name += DUP_SUFFIX
        return name

    def _prepare_import(self, profile: EntityRef, source: Optional[Path], name: Optional[str], auto_rename: bool):
        p = self.tree.profile(profile)
        game = self.tree.game_of(profile)
        source = Path(source) if source is not None else self._require_slot(game)
        if not readable_file(source):
            raise InvalidSource(f"Cannot read {source}")
        name = validate_name(name or source.name)
        self._check_watched(p.path / name)
        name = self._free_name(profile, name, auto_rename)
        return source, name, p.path / name

    def import_save(
        self,
        profile: EntityRef,
        source: Optional[Path] = None,
        name: Optional[str] = None,
        auto_rename: bool = False,
    ) -> EntityRef:
        """Copy ``source`` (default: the game's save slot) into ``profile``."""
        source, name, dest = self._prepare_import(profile, source, name, auto_rename)
        entries = [self.suppression.register(dest, WRITE_OPS)]
        self._fs(entries, lambda: self.fileops.copy_file(source, dest))
        info = self.fileops.stat(dest)
        ref = self.tree.insert_save(
            profile,
            name,
            modified=info.modified if info else None,
            size=info.size if info else 0,
        )
        logger.info("Imported %s as %s", source, dest)
        self._persist()
        self._select(ref)
        return ref

    def begin_import(
        self,
        profile: EntityRef,
        source: Optional[Path] = None,
        name: Optional[str] = None,
        auto_rename: bool = False,
    ) -> CopyTask:
        """Insert the entry now and hand back the copy for a worker to perform.

        ``finish_import`` must be called with the copy's outcome.
        """
        source, name, dest = self._prepare_import(profile, source, name, auto_rename)
        info = self.fileops.stat(source)
        entries = [self.suppression.register(dest, WRITE_OPS)]
        ref = self.tree.insert_save(
            profile,
            name,
            modified=info.modified if info else None,
            size=info.size if info else 0,
        )
        task = CopyTask(next(self._task_ids), source, dest, ref, suppressions=entries)
        self.tasks[task.id] = task
        self._select(ref)
        return task

    def run_copy(self, task: CopyTask) -> None:
        """Worker side of a background import."""
        self.fileops.copy_file(task.source, task.dest, task.cancel)

    def finish_import(self, task: CopyTask, error: Optional[BaseException] = None) -> Optional[EntityRef]:
        """Commit or roll back a background import; returns the entry if it was kept."""
        self.tasks.pop(task.id, None)
        if error is None and task.cancel.is_set():
            error = Cancelled(f"Copy to {task.dest} cancelled")
        if error is not None:
            self.suppression.discard(task.suppressions)
            if self.tree.exists(task.ref):
                self.tree.remove_save(task.ref)
            if isinstance(error, Cancelled):
                logger.info("Import of %s cancelled", task.source)
            else:
                logger.error("Import of %s failed: %s", task.source, error)
            return None
        if not self.tree.exists(task.ref):
            logger.debug("Imported entry %s was removed meanwhile", task.ref)
            return None
        info = self.fileops.stat(task.dest)
        if info is not None:
            self.tree.update_save(task.ref, modified=info.modified, size=info.size)
        self._persist()
        return task.ref

    def cancel_copies(self, path: Path) -> int:
        cancelled = 0
        for task in self.tasks.values():
            if is_within(task.dest, path) and not task.cancel.is_set():
                task.cancel.set()
                cancelled += 1
        if cancelled:
            logger.info("Cancelled %d copies under %s", cancelled, path)
        return cancelled

    # ------------------------------------------------------------------ delete

    def delete(self, ref: EntityRef) -> DeleteResult:
        """Delete an entity and its files; failures are collected per path."""
        self.tree.get(ref)
        path = self.tree.path_of(ref)
        self.cancel_copies(path)
        result = DeleteResult()
        entries = [self.suppression.register(p, {Op.REMOVED}) for p in self._subtree_paths(ref)]

        if ref.kind is EntityKind.SAVE:
            try:
                self.fileops.remove_file(path)
            except IoFailure as exc:
                result.failures[path] = exc
            else:
                result.removed.append(path)
        else:
            self.fileops.remove_tree(path, result)

        if result.failures:
            failed = [p for p in result.failures]
            self.suppression.discard(
                e for e in entries if any(is_within(f, e.path) or is_within(e.path, f) for f in failed)
            )
            for p, exc in result.failures.items():
                logger.warning("Could not delete %s: %s", p, exc.cause or exc)

        self._prune(ref, set(result.removed))
        self._persist()
        return result

    def _subtree_paths(self, ref: EntityRef) -> List[Path]:
        if ref.kind is EntityKind.SAVE:
            return [self.tree.save(ref).path]
        if ref.kind is EntityKind.PROFILE:
            p = self.tree.profile(ref)
            return [s.path for s in p.saves.values()] + [p.path]
        g = self.tree.game(ref)
        paths: List[Path] = []
        for p in g.profiles.values():
            paths.extend(s.path for s in p.saves.values())
            paths.append(p.path)
        paths.append(g.root)
        return paths

    def _prune(self, ref: EntityRef, removed: set) -> None:
        """Drop from the tree every entity in ``ref``'s subtree whose path is gone."""
        if ref.kind is EntityKind.SAVE:
            if self.tree.save(ref).path in removed:
                self.tree.remove_save(ref)
            return
        if ref.kind is EntityKind.PROFILE:
            p = self.tree.profile(ref)
            if p.path in removed:
                self.tree.remove_profile(ref)
                return
            for s in list(p.saves.values()):
                if s.path in removed:
                    self.tree.remove_save(s.ref)
            return
        g = self.tree.game(ref)
        if g.root in removed:
            root = g.root
            self.tree.remove_game(ref)
            self.reconciler.drop_root(root)
            return
        for p in list(g.profiles.values()):
            self._prune(p.ref, removed)

    # ------------------------------------------------------------------ move / rename

    def move(self, entry: EntityRef, destination: EntityRef, relative_to: Optional[EntityRef] = None) -> EntityRef:
        """Move a save into ``destination``, optionally directly after ``relative_to``.

        Within the same profile this is a pure reorder.
        """
        save = self.tree.save(entry)
        dest = self.tree.profile(destination)
        if relative_to is not None:
            anchor = self.tree.save(relative_to)
            if anchor.profile_uid != dest.uid:
                raise NotFound(f"{relative_to} is not in {dest.name!r}")

        if save.profile_uid == dest.uid:
            if relative_to is not None and relative_to != entry:
                self.tree.place_after(entry, relative_to)
                self._persist()
            self._select(entry)
            return entry

        new_path = dest.path / save.name
        self._check_watched(new_path)
        if self.tree.find_save(destination, save.name) is not None or new_path.exists():
            raise Conflict(f"A save named {save.name!r} already exists in {dest.name!r}")
        old_path = save.path
        entries = [self.suppression.register_move(old_path, new_path)]
        self._fs(entries, lambda: self.fileops.rename(old_path, new_path))
        self.tree.move_save(entry, destination)
        if relative_to is not None:
            self.tree.place_after(entry, relative_to)
        logger.info("Moved %s to %s", old_path, new_path)
        self._persist()
        self._select(entry)
        return entry

    def rename(self, ref: EntityRef, new_name: str) -> EntityRef:
        new_name = validate_name(new_name)
        entity = self.tree.get(ref)
        if entity.name == new_name:
            return ref
        if ref.kind is EntityKind.GAME:
            return self._rename_game(ref, new_name)

        old_path = self.tree.path_of(ref)
        new_path = old_path.with_name(new_name)
        parent = self.tree.parent_of(ref)
        assert parent is not None
        sibling = (
            self.tree.find_save(parent, new_name)
            if ref.kind is EntityKind.SAVE
            else self.tree.find_profile(parent, new_name)
        )
        if sibling is not None or new_path.exists():
            raise Conflict(f"{new_name!r} already exists")
        entries = [self.suppression.register_move(old_path, new_path)]
        self._fs(entries, lambda: self.fileops.rename(old_path, new_path))
        if ref.kind is EntityKind.SAVE:
            self.tree.rename_save(ref, new_name)
        else:
            self.tree.rename_profile(ref, new_name)
        logger.info("Renamed %s to %s", old_path, new_name)
        self._persist()
        return ref

    def _rename_game(self, ref: EntityRef, new_name: str) -> EntityRef:
        game = self.tree.game(ref)
        if self.tree.find_game(new_name) is not None:
            raise Conflict(f"A game named {new_name!r} already exists")
        old_root = game.root
        if old_root.parent != self.library_root:
            # Custom roots keep their directory
            self.tree.rename_game(ref, new_name)
            self._persist()
            return ref
        new_root = self.library_root / new_name
        if new_root.exists():
            raise Conflict(f"{new_root} already exists")
        entries = [self.suppression.register_move(old_root, new_root)]
        self._fs(entries, lambda: self.fileops.rename(old_root, new_root))
        self.tree.rename_game(ref, new_name, new_root=new_root)
        self.reconciler.drop_root(old_root)
        self.reconciler.track_game(self.tree.game(ref))
        logger.info("Renamed game %s to %s", old_root.name, new_name)
        self._persist()
        return ref

    # ------------------------------------------------------------------ load / replace / mark

    def load(self, entry: EntityRef) -> EntityRef:
        """Copy the save onto its game's save slot and mark it active."""
        save = self.tree.save(entry)
        game = self.tree.game_of(entry)
        slot = self._require_slot(game)
        entries: List[Suppression] = []
        if self._watched(slot):
            entries.append(self.suppression.register(slot, WRITE_OPS))
        self._fs(entries, lambda: self.fileops.copy_file(save.path, slot))
        self.tree.set_active_save(self._profile_ref(save), entry)
        logger.info("Loaded %s into %s", save.path, slot)
        self._persist()
        return entry

    def load_random(self, profile: EntityRef) -> EntityRef:
        saves = self.tree.saves(profile)
        if not saves:
            raise EmptyProfile(f"Profile {self.tree.profile(profile).name!r} has no saves")
        choice = self.rng.choice(saves)
        return self.load(choice.ref)

    def load_active(self, profile: EntityRef) -> EntityRef:
        active = self.tree.active_save(profile)
        if active is None:
            raise NotFound(f"Profile {self.tree.profile(profile).name!r} has no active save")
        return self.load(active.ref)

    def replace(self, entry: EntityRef) -> EntityRef:
        """Overwrite a save with the current content of the game's save slot."""
        save = self.tree.save(entry)
        slot = self._require_slot(self.tree.game_of(entry))
        if not readable_file(slot):
            raise InvalidSource(f"Cannot read {slot}")
        entries = [self.suppression.register(save.path, WRITE_OPS)]
        self._fs(entries, lambda: self.fileops.copy_file(slot, save.path))
        info = self.fileops.stat(save.path)
        if info is not None:
            self.tree.update_save(entry, modified=info.modified, size=info.size)
        logger.info("Replaced %s with %s", save.path, slot)
        self._persist()
        return entry

    def mark(self, entry: EntityRef) -> EntityRef:
        save = self.tree.save(entry)
        self.tree.set_active_save(self._profile_ref(save), entry)
        self._persist()
        return entry

    @staticmethod
    def _profile_ref(save: SaveEntry) -> EntityRef:
        return EntityRef(EntityKind.PROFILE, save.profile_uid)

    def _watched(self, path: Path) -> bool:
        return any(is_within(path, root.path) for root in self.reconciler.roots)

    # ------------------------------------------------------------------ active markers

    def set_active_game(self, game: Optional[EntityRef]) -> None:
        self.tree.set_active_game(game)
        self._persist()

    def set_active_profile(self, game: EntityRef, profile: Optional[EntityRef]) -> None:
        self.tree.set_active_profile(game, profile)
        self._persist()

    def set_savefile_path(self, game: EntityRef, path: Optional[Path]) -> None:
        self.tree.set_savefile_path(game, Path(path).expanduser() if path is not None else None)
        self._persist()
