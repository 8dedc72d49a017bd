from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, List, Optional, Set

from ..errors import Conflict, IoFailure, OutsideWatchRoot
from ..io.fileops import DirEntryInfo, FileOps
from ..tree import EntityKind, EntityRef, EntityTree, Game
from .classify import Classifier, RootKind, WatchRoots
from .debounce import Debouncer, RenamePairer
from .events import ClassifiedEvent, NodeKind, Op, RawEvent
from .suppression import SuppressionTable

logger = logging.getLogger(__name__)

RootCallback = Callable[[Path, RootKind], None]


class Reconciler:
    """Merge filesystem notifications into the entity tree.

    Raw events go through rename pairing and debouncing (``push``); ``process``
    drains whatever is ready, classifies it, drops what our own commands caused
    (suppression table) and applies the rest idempotently. Every apply step reads
    the current disk state, so replaying an event, or receiving it late, converges
    on what is actually on disk.

    Errors here are logged and never raised: a bad event must not stop the loop.
    """

    def __init__(
        self,
        tree: EntityTree,
        library_root: Path,
        *,
        fileops: Optional[FileOps] = None,
        suppression: Optional[SuppressionTable] = None,
        debounce: float = 0.05,
        rename_pair_timeout: float = 0.1,
        storm_threshold: int = 64,
    ) -> None:
        self.tree = tree
        self.library_root = Path(library_root)
        self.fileops = fileops or FileOps()
        self.suppression = suppression or SuppressionTable()
        self.pairer = RenamePairer(rename_pair_timeout)
        self.debouncer = Debouncer(debounce)
        self.storm_threshold = storm_threshold
        self.roots = WatchRoots()
        self.roots.add(self.library_root, RootKind.LIBRARY)
        self.classifier = Classifier(self.roots)
        self._on_root_added: List[RootCallback] = []
        self._on_root_removed: List[RootCallback] = []
        self.rescans = 0

    # ------------------------------------------------------------------ watch roots

    def on_root_added(self, callback: RootCallback) -> None:
        self._on_root_added.append(callback)

    def on_root_removed(self, callback: RootCallback) -> None:
        self._on_root_removed.append(callback)

    def add_root(self, path: Path, kind: RootKind = RootKind.GAME) -> None:
        path = Path(path)
        if path in self.roots:
            return
        self.roots.add(path, kind)
        logger.debug("Watching %s root %s", kind.value, path)
        for cb in list(self._on_root_added):
            try:
                cb(path, kind)
            except Exception:
                logger.exception("Root-added callback failed for %s", path)

    def drop_root(self, path: Path) -> None:
        root = self.roots.remove(path)
        if root is None:
            return
        logger.debug("No longer watching %s", path)
        for cb in list(self._on_root_removed):
            try:
                cb(root.path, root.kind)
            except Exception:
                logger.exception("Root-removed callback failed for %s", path)

    def track_game(self, game: Game) -> None:
        self.add_root(game.root, RootKind.GAME)

    # ------------------------------------------------------------------ event intake

    def push(self, event: RawEvent, now: float) -> None:
        for ev in self.pairer.push(event, now):
            self.debouncer.push(ev, now)

    def next_deadline(self) -> Optional[float]:
        deadlines = [d for d in (self.pairer.next_deadline(), self.debouncer.next_deadline()) if d is not None]
        return min(deadlines, default=None)

    @property
    def pending(self) -> int:
        return len(self.pairer) + len(self.debouncer)

    def process(self, now: float, overflowed: bool = False) -> int:
        """Apply every event whose debounce window has elapsed; return how many were drained."""
        for ev in self.pairer.expire(now):
            self.debouncer.push(ev, now)
        batch = self.debouncer.drain(now)
        if overflowed or len(batch) > self.storm_threshold:
            logger.info(
                "Event storm (%d events%s), rescanning watch roots",
                len(batch),
                ", channel overflowed" if overflowed else "",
            )
            self.rescan()
            return len(batch)
        for raw in batch:
            self.handle(raw)
        return len(batch)

    def flush(self) -> None:
        """Apply everything still pending regardless of deadlines."""
        for ev in self.pairer.flush():
            self.debouncer.push(ev, 0.0)
        for raw in self.debouncer.flush():
            self.handle(raw)

    def handle(self, raw: RawEvent) -> None:
        try:
            classified = self.classifier.classify(raw)
        except OutsideWatchRoot as exc:
            logger.warning("Dropping event %s: %s", raw.kind.value, exc)
            return
        for event in classified:
            if self.suppression.consume(event):
                logger.debug("Suppressed self-caused event: %s", event)
                continue
            logger.debug("Applying %s", event)
            try:
                self.apply(event)
            except IoFailure as exc:
                logger.warning("Could not reconcile %s: %s", event, exc)
            except Exception:
                logger.exception("Unexpected failure reconciling %s", event)

    # ------------------------------------------------------------------ apply

    def apply(self, event: ClassifiedEvent) -> None:
        if event.op is Op.REMOVED:
            self.remove_path(event.path)
        elif event.op is Op.MOVED:
            self._apply_move(event)
        else:
            self.upsert(event.path, event.node)

    def remove_path(self, path: Path) -> None:
        ref = self.tree.find_by_path(path)
        if ref is None:
            return
        if ref.kind is EntityKind.GAME:
            game = self.tree.game(ref)
            root = game.root
            self.tree.remove_game(ref)
            self.drop_root(root)
            logger.info("Game %s disappeared from disk", game.name)
        else:
            self.tree.remove(ref)

    def upsert(self, path: Path, node: NodeKind) -> Optional[EntityRef]:
        """Make the tree reflect whatever is at ``path`` on disk now."""
        info = self.fileops.stat(path)
        if info is None:
            self.remove_path(path)
            return None
        if node is NodeKind.SAVE:
            return self._upsert_save(info)
        if node is NodeKind.PROFILE:
            return self._upsert_profile(info)
        if node is NodeKind.GAME:
            return self._upsert_game(info)
        return None

    def _upsert_game(self, info: DirEntryInfo) -> Optional[EntityRef]:
        if not info.is_dir:
            return None
        ref = self.tree.find_by_path(info.path)
        if ref is not None:
            return ref
        try:
            ref = self.tree.insert_game(info.name, info.path)
        except Conflict as exc:
            logger.warning("Ignoring game directory %s: %s", info.path, exc)
            return None
        logger.info("Discovered game %s", info.name)
        game = self.tree.game(ref)
        self.track_game(game)
        self.scan_game(game)
        return ref

    def _parent_game(self, path: Path) -> Optional[EntityRef]:
        ref = self.tree.find_by_path(path)
        if ref is not None:
            return ref if ref.kind is EntityKind.GAME else None
        if path.parent != self.library_root:
            return None
        info = self.fileops.stat(path)
        return self._upsert_game(info) if info is not None else None

    def _upsert_profile(self, info: DirEntryInfo) -> Optional[EntityRef]:
        if not info.is_dir:
            return None
        ref = self.tree.find_by_path(info.path)
        if ref is not None:
            return ref
        game = self._parent_game(info.path.parent)
        if game is None:
            return None
        # creating the game scans it, which may have found this profile already
        ref = self.tree.find_by_path(info.path)
        if ref is not None:
            return ref
        ref = self.tree.insert_profile(game, info.name)
        self.scan_profile(ref)
        return ref

    def _upsert_save(self, info: DirEntryInfo) -> Optional[EntityRef]:
        if info.is_dir:
            return None
        ref = self.tree.find_by_path(info.path)
        if ref is not None:
            return self.tree.update_save(ref, modified=info.modified, size=info.size)
        parent = self.fileops.stat(info.path.parent)
        if parent is None:
            return None
        profile = self._upsert_profile(parent)
        if profile is None:
            return None
        ref = self.tree.find_by_path(info.path)
        if ref is not None:
            return self.tree.update_save(ref, modified=info.modified, size=info.size)
        return self.tree.insert_save(profile, info.name, modified=info.modified, size=info.size)

    def _apply_move(self, event: ClassifiedEvent) -> None:
        assert event.dest_path is not None and event.dest_node is not None
        src_ref = self.tree.find_by_path(event.path)
        dest_ref = self.tree.find_by_path(event.dest_path)
        if src_ref is None or dest_ref is not None:
            # Already applied, or we never knew the source: converge on disk state
            if src_ref is not None and src_ref != dest_ref:
                self.remove_path(event.path)
            self.upsert(event.dest_path, event.dest_node)
            return
        if src_ref.kind is EntityKind.GAME:
            self._move_game(src_ref, event.dest_path)
        elif src_ref.kind is EntityKind.PROFILE:
            self._move_profile(src_ref, event.dest_path)
        else:
            self._move_save(src_ref, event.dest_path)

    def _move_game(self, ref: EntityRef, dest: Path) -> None:
        old_root = self.tree.game(ref).root
        try:
            self.tree.rename_game(ref, dest.name, new_root=dest)
        except Conflict as exc:
            logger.warning("Game rename to %s conflicts (%s); rescanning it as new", dest, exc)
            self.remove_path(old_root)
            self.upsert(dest, NodeKind.GAME)
            return
        self.drop_root(old_root)
        self.track_game(self.tree.game(ref))

    def _move_profile(self, ref: EntityRef, dest: Path) -> None:
        profile = self.tree.profile(ref)
        if profile.path.parent == dest.parent:
            self.tree.rename_profile(ref, dest.name)
            return
        # Across games a profile loses its identity
        self.remove_path(profile.path)
        self.upsert(dest, NodeKind.PROFILE)

    def _move_save(self, ref: EntityRef, dest: Path) -> None:
        save = self.tree.save(ref)
        if save.path.parent == dest.parent:
            self.tree.rename_save(ref, dest.name)
        else:
            parent = self.fileops.stat(dest.parent)
            profile = self._upsert_profile(parent) if parent is not None else None
            if profile is None:
                self.remove_path(save.path)
                return
            # scanning a newly found profile already picked the file up
            scanned = self.tree.find_by_path(dest)
            if scanned is not None and scanned != ref:
                self.tree.remove_save(scanned)
            self.tree.move_save(ref, profile, new_name=dest.name)
        info = self.fileops.stat(dest)
        if info is None:
            # moved on again; a later event for the new path settles it
            logger.debug("Moved save %s is gone already", dest)
        elif not info.is_dir:
            self.tree.update_save(ref, modified=info.modified, size=info.size)

    # ------------------------------------------------------------------ scanning

    def rescan(self) -> None:
        """Bring the whole tree in line with the watch roots.

        Directories that cannot be listed keep their last-known subtree.
        """
        self.rescans += 1
        try:
            entries = self.fileops.list_dir(self.library_root)
        except IoFailure as exc:
            logger.warning("Cannot list library %s, keeping last known games: %s", self.library_root, exc)
            entries = None
        if entries is not None:
            seen: Set[Path] = set()
            for info in entries:
                if info.is_dir:
                    seen.add(info.path)
                    self._upsert_game(info)
            for game in self.tree.games():
                if game.root.parent == self.library_root and game.root not in seen:
                    self.remove_path(game.root)
        for game in self.tree.games():
            self.track_game(game)
            self.scan_game(game)

    def scan_game(self, game: Game) -> None:
        try:
            entries = self.fileops.list_dir(game.root)
        except IoFailure as exc:
            logger.warning("Cannot list game %s at %s, keeping last known profiles: %s", game.name, game.root, exc)
            return
        seen: Set[str] = set()
        for info in entries:
            if not info.is_dir:
                continue
            seen.add(info.name)
            ref = self.tree.find_by_path(info.path)
            if ref is None:
                ref = self.tree.insert_profile(game.ref, info.name)
            self.scan_profile(ref)
        for profile in self.tree.profiles(game.ref):
            if profile.name not in seen:
                self.tree.remove_profile(profile.ref)

    def scan_profile(self, ref: EntityRef) -> None:
        profile = self.tree.profile(ref)
        try:
            entries = self.fileops.list_dir(profile.path)
        except IoFailure as exc:
            logger.warning("Cannot list profile %s, keeping last known saves: %s", profile.path, exc)
            return
        seen: Set[str] = set()
        for info in entries:
            if info.is_dir:
                continue
            seen.add(info.name)
            existing = self.tree.find_by_path(info.path)
            if existing is None:
                self.tree.insert_save(ref, info.name, modified=info.modified, size=info.size)
            else:
                self.tree.update_save(existing, modified=info.modified, size=info.size)
        for save in self.tree.saves(ref):
            if save.name not in seen:
                self.tree.remove_save(save.ref)
