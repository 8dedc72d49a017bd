from __future__ import annotations

import itertools
import logging
from datetime import datetime
from fractions import Fraction
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Union

from ..errors import Conflict, NotFound
from .models import ChangeKind, EntityKind, EntityRef, Game, Profile, SaveEntry, TreeChange

logger = logging.getLogger(__name__)

Entity = Union[Game, Profile, SaveEntry]
Listener = Callable[[TreeChange], None]


class EntityTree:
    """Authoritative in-memory hierarchy of games, profiles and save entries.

    Children are owned by their parent (``Game.profiles``, ``Profile.saves``);
    back-references are uids resolved through the tree's index. Every mutator returns
    the affected entity's ``EntityRef`` and notifies subscribers afterwards.

    The tree is not thread-safe: it is mutated only from the event-loop thread.
    """

    def __init__(self) -> None:
        self._games: Dict[int, Game] = {}
        self._index: Dict[int, Entity] = {}
        self._paths: Dict[Path, int] = {}
        self._uids = itertools.count(1)
        self._fs_seq = itertools.count(1)
        self._listeners: List[Listener] = []
        self.active_game_uid: Optional[int] = None

    # ------------------------------------------------------------------ observers

    def subscribe(self, callback: Listener) -> None:
        self._listeners.append(callback)

    def unsubscribe(self, callback: Listener) -> None:
        if callback in self._listeners:
            self._listeners.remove(callback)

    def _notify(self, kind: ChangeKind, ref: EntityRef, parent: Optional[EntityRef] = None) -> None:
        change = TreeChange(kind, ref, parent)
        for cb in list(self._listeners):
            try:
                cb(change)
            except Exception:  # listeners are external
                logger.exception("Tree listener failed for %s", change)

    # ------------------------------------------------------------------ lookups

    def exists(self, ref: EntityRef) -> bool:
        entity = self._index.get(ref.uid)
        return entity is not None and entity.ref.kind is ref.kind

    def lookup(self, ref: Optional[EntityRef]) -> Optional[Entity]:
        if ref is None or not self.exists(ref):
            return None
        return self._index[ref.uid]

    def get(self, ref: EntityRef) -> Entity:
        entity = self.lookup(ref)
        if entity is None:
            raise NotFound(f"No such {ref.kind.value}: {ref}")
        return entity

    def game(self, ref: EntityRef) -> Game:
        return self._typed(ref, EntityKind.GAME)  # type: ignore[return-value]

    def profile(self, ref: EntityRef) -> Profile:
        return self._typed(ref, EntityKind.PROFILE)  # type: ignore[return-value]

    def save(self, ref: EntityRef) -> SaveEntry:
        return self._typed(ref, EntityKind.SAVE)  # type: ignore[return-value]

    def _typed(self, ref: EntityRef, kind: EntityKind) -> Entity:
        if ref.kind is not kind:
            raise NotFound(f"{ref} is not a {kind.value}")
        return self.get(ref)

    def parent_of(self, ref: EntityRef) -> Optional[EntityRef]:
        entity = self.get(ref)
        if isinstance(entity, SaveEntry):
            return EntityRef(EntityKind.PROFILE, entity.profile_uid)
        if isinstance(entity, Profile):
            return EntityRef(EntityKind.GAME, entity.game_uid)
        return None

    def game_of(self, ref: EntityRef) -> Game:
        entity = self.get(ref)
        if isinstance(entity, SaveEntry):
            entity = self._index[entity.profile_uid]
        if isinstance(entity, Profile):
            entity = self._index[entity.game_uid]
        return entity  # type: ignore[return-value]

    def path_of(self, ref: EntityRef) -> Path:
        entity = self.get(ref)
        return entity.root if isinstance(entity, Game) else entity.path

    def find_by_path(self, path: Path) -> Optional[EntityRef]:
        uid = self._paths.get(Path(path))
        if uid is None:
            return None
        return self._index[uid].ref

    def find_game(self, name: str) -> Optional[Game]:
        for g in self._games.values():
            if g.name == name:
                return g
        return None

    def find_profile(self, game: EntityRef, name: str) -> Optional[Profile]:
        for p in self.game(game).profiles.values():
            if p.name == name:
                return p
        return None

    def find_save(self, profile: EntityRef, name: str) -> Optional[SaveEntry]:
        for s in self.profile(profile).saves.values():
            if s.name == name:
                return s
        return None

    def games(self) -> List[Game]:
        return sorted(self._games.values(), key=lambda g: (g.name.casefold(), g.uid))

    def profiles(self, game: EntityRef) -> List[Profile]:
        return sorted(self.game(game).profiles.values(), key=lambda p: (p.name.casefold(), p.uid))

    def saves(self, profile: EntityRef) -> List[SaveEntry]:
        return sorted(self.profile(profile).saves.values(), key=SaveEntry.sort_key)

    def iter_saves(self) -> Iterable[SaveEntry]:
        for g in self.games():
            for p in self.profiles(g.ref):
                yield from self.saves(p.ref)

    # ------------------------------------------------------------------ active markers

    @property
    def active_game(self) -> Optional[Game]:
        if self.active_game_uid is None:
            return None
        return self._games.get(self.active_game_uid)

    def set_active_game(self, game: Optional[EntityRef]) -> None:
        self.active_game_uid = self.game(game).uid if game is not None else None
        if game is not None:
            self._notify(ChangeKind.UPDATED, game)

    def active_profile(self, game: EntityRef) -> Optional[Profile]:
        g = self.game(game)
        if g.active_profile_uid is None:
            return None
        return g.profiles.get(g.active_profile_uid)

    def set_active_profile(self, game: EntityRef, profile: Optional[EntityRef]) -> None:
        g = self.game(game)
        if profile is None:
            g.active_profile_uid = None
        else:
            p = self.profile(profile)
            if p.game_uid != g.uid:
                raise NotFound(f"{profile} does not belong to {game}")
            g.active_profile_uid = p.uid
        self._notify(ChangeKind.UPDATED, game)

    def active_save(self, profile: EntityRef) -> Optional[SaveEntry]:
        p = self.profile(profile)
        if p.active_save_uid is None:
            return None
        return p.saves.get(p.active_save_uid)

    def set_active_save(self, profile: EntityRef, save: Optional[EntityRef]) -> None:
        p = self.profile(profile)
        if save is None:
            p.active_save_uid = None
        else:
            s = self.save(save)
            if s.profile_uid != p.uid:
                raise NotFound(f"{save} does not belong to {profile}")
            p.active_save_uid = s.uid
        self._notify(ChangeKind.UPDATED, profile)

    # ------------------------------------------------------------------ inserts

    def insert_game(
        self,
        name: str,
        root: Path,
        savefile_path: Optional[Path] = None,
        preset: bool = False,
    ) -> EntityRef:
        root = Path(root)
        if self.find_game(name) is not None:
            raise Conflict(f"A game named {name!r} already exists")
        self._check_path_free(root)
        game = Game(uid=next(self._uids), name=name, root=root, savefile_path=savefile_path, preset=preset)
        self._games[game.uid] = game
        self._index[game.uid] = game
        self._paths[root] = game.uid
        logger.debug("Inserted game %s at %s", name, root)
        self._notify(ChangeKind.INSERTED, game.ref)
        return game.ref

    def insert_profile(self, game: EntityRef, name: str) -> EntityRef:
        g = self.game(game)
        if self.find_profile(game, name) is not None:
            raise Conflict(f"A profile named {name!r} already exists in {g.name!r}")
        path = g.root / name
        self._check_path_free(path)
        profile = Profile(uid=next(self._uids), name=name, path=path, game_uid=g.uid)
        g.profiles[profile.uid] = profile
        self._index[profile.uid] = profile
        self._paths[path] = profile.uid
        logger.debug("Inserted profile %s/%s", g.name, name)
        self._notify(ChangeKind.INSERTED, profile.ref, game)
        return profile.ref

    def insert_save(
        self,
        profile: EntityRef,
        name: str,
        modified: Optional[datetime] = None,
        size: int = 0,
    ) -> EntityRef:
        p = self.profile(profile)
        if self.find_save(profile, name) is not None:
            raise Conflict(f"A save named {name!r} already exists in {p.name!r}")
        path = p.path / name
        self._check_path_free(path)
        entry = SaveEntry(
            uid=next(self._uids),
            name=name,
            path=path,
            profile_uid=p.uid,
            size=size,
            fs_seq=next(self._fs_seq),
        )
        if modified is not None:
            entry.modified = modified
        p.saves[entry.uid] = entry
        self._index[entry.uid] = entry
        self._paths[path] = entry.uid
        self._notify(ChangeKind.INSERTED, entry.ref, profile)
        return entry.ref

    def _check_path_free(self, path: Path) -> None:
        if path in self._paths:
            raise Conflict(f"Path already tracked: {path}")

    # ------------------------------------------------------------------ removals

    def remove_game(self, game: EntityRef) -> EntityRef:
        g = self.game(game)
        for p in list(g.profiles.values()):
            self._drop_profile(p)
        del self._games[g.uid]
        self._forget(g.uid, g.root)
        if self.active_game_uid == g.uid:
            self.active_game_uid = None
        self._notify(ChangeKind.REMOVED, game)
        return game

    def remove_profile(self, profile: EntityRef) -> EntityRef:
        p = self.profile(profile)
        g = self._games[p.game_uid]
        self._drop_profile(p)
        del g.profiles[p.uid]
        if g.active_profile_uid == p.uid:
            g.active_profile_uid = None
        self._notify(ChangeKind.REMOVED, profile, g.ref)
        return profile

    def remove_save(self, save: EntityRef) -> EntityRef:
        s = self.save(save)
        p: Profile = self._index[s.profile_uid]  # type: ignore[assignment]
        del p.saves[s.uid]
        self._forget(s.uid, s.path)
        if p.active_save_uid == s.uid:
            p.active_save_uid = None
        self._notify(ChangeKind.REMOVED, save, p.ref)
        return save

    def remove(self, ref: EntityRef) -> EntityRef:
        if ref.kind is EntityKind.GAME:
            return self.remove_game(ref)
        if ref.kind is EntityKind.PROFILE:
            return self.remove_profile(ref)
        return self.remove_save(ref)

    def _drop_profile(self, p: Profile) -> None:
        for s in p.saves.values():
            self._forget(s.uid, s.path)
        self._forget(p.uid, p.path)

    def _forget(self, uid: int, path: Path) -> None:
        self._index.pop(uid, None)
        if self._paths.get(path) == uid:
            del self._paths[path]

    # ------------------------------------------------------------------ renames and moves

    def rename_game(self, game: EntityRef, new_name: str, new_root: Optional[Path] = None) -> EntityRef:
        g = self.game(game)
        other = self.find_game(new_name)
        if other is not None and other.uid != g.uid:
            raise Conflict(f"A game named {new_name!r} already exists")
        g.name = new_name
        if new_root is not None and Path(new_root) != g.root:
            self._relocate(g, Path(new_root))
        self._notify(ChangeKind.RENAMED, game)
        return game

    def relocate_game(self, game: EntityRef, new_root: Path) -> EntityRef:
        g = self.game(game)
        self._relocate(g, Path(new_root))
        self._notify(ChangeKind.MOVED, game)
        return game

    def _relocate(self, g: Game, new_root: Path) -> None:
        self._check_path_free(new_root)
        self._forget_path(g.root, g.uid)
        g.root = new_root
        self._paths[new_root] = g.uid
        for p in g.profiles.values():
            self._repath_profile(p, new_root / p.name)

    def rename_profile(self, profile: EntityRef, new_name: str) -> EntityRef:
        p = self.profile(profile)
        other = self.find_profile(EntityRef(EntityKind.GAME, p.game_uid), new_name)
        if other is not None and other.uid != p.uid:
            raise Conflict(f"A profile named {new_name!r} already exists")
        new_path = p.path.with_name(new_name)
        if new_path != p.path:
            self._check_path_free(new_path)
        p.name = new_name
        self._repath_profile(p, new_path)
        self._notify(ChangeKind.RENAMED, profile)
        return profile

    def _repath_profile(self, p: Profile, new_path: Path) -> None:
        self._forget_path(p.path, p.uid)
        p.path = new_path
        self._paths[new_path] = p.uid
        for s in p.saves.values():
            self._forget_path(s.path, s.uid)
            s.path = new_path / s.name
            self._paths[s.path] = s.uid

    def _forget_path(self, path: Path, uid: int) -> None:
        if self._paths.get(path) == uid:
            del self._paths[path]

    def rename_save(self, save: EntityRef, new_name: str) -> EntityRef:
        s = self.save(save)
        profile = EntityRef(EntityKind.PROFILE, s.profile_uid)
        other = self.find_save(profile, new_name)
        if other is not None and other.uid != s.uid:
            raise Conflict(f"A save named {new_name!r} already exists")
        new_path = s.path.with_name(new_name)
        if new_path != s.path:
            self._check_path_free(new_path)
        self._forget_path(s.path, s.uid)
        s.name = new_name
        s.path = new_path
        self._paths[new_path] = s.uid
        self._notify(ChangeKind.RENAMED, save, profile)
        return save

    def move_save(self, save: EntityRef, destination: EntityRef, new_name: Optional[str] = None) -> EntityRef:
        """Move a save into another profile keeping its identity.

        The moved entry loses its manual order key and lands at the end of the
        destination's filesystem order.
        """
        s = self.save(save)
        dest = self.profile(destination)
        name = new_name or s.name
        if dest.uid == s.profile_uid and name == s.name:
            return save
        other = self.find_save(destination, name)
        if other is not None and other.uid != s.uid:
            raise Conflict(f"A save named {name!r} already exists in {dest.name!r}")
        new_path = dest.path / name
        self._check_path_free(new_path)
        src: Profile = self._index[s.profile_uid]  # type: ignore[assignment]
        del src.saves[s.uid]
        if src.active_save_uid == s.uid:
            src.active_save_uid = None
        self._forget_path(s.path, s.uid)
        s.name = name
        s.path = new_path
        s.profile_uid = dest.uid
        s.order_key = None
        s.fs_seq = next(self._fs_seq)
        dest.saves[s.uid] = s
        self._paths[new_path] = s.uid
        self._notify(ChangeKind.MOVED, save, destination)
        return save

    def update_save(self, save: EntityRef, modified: Optional[datetime] = None, size: Optional[int] = None) -> EntityRef:
        s = self.save(save)
        changed = False
        if modified is not None and modified != s.modified:
            s.modified = modified
            changed = True
        if size is not None and size != s.size:
            s.size = size
            changed = True
        if changed:
            self._notify(ChangeKind.UPDATED, save, EntityRef(EntityKind.PROFILE, s.profile_uid))
        return save

    def set_savefile_path(self, game: EntityRef, path: Optional[Path]) -> EntityRef:
        self.game(game).savefile_path = Path(path) if path is not None else None
        self._notify(ChangeKind.UPDATED, game)
        return game

    # ------------------------------------------------------------------ ordering

    def reorder_save(self, profile: EntityRef, entry: EntityRef, target_position: int) -> EntityRef:
        """Place ``entry`` at ``target_position`` of the profile's current order.

        The position is counted among the other entries (the entry itself excluded).
        Only the moved entry gets a new key, except that unkeyed entries in front of
        the insertion point receive keys once so the order stays total.
        """
        p = self.profile(profile)
        e = self.save(entry)
        if e.profile_uid != p.uid:
            raise NotFound(f"{entry} does not belong to {profile}")
        others = [s for s in self.saves(profile) if s.uid != e.uid]
        pos = max(0, min(target_position, len(others)))
        left = others[pos - 1] if pos > 0 else None
        right = others[pos] if pos < len(others) else None

        if left is not None and left.order_key is None:
            self._materialize_keys(others[:pos])

        if left is None:
            if right is not None and right.order_key is not None:
                e.order_key = right.order_key - 1
            else:
                e.order_key = Fraction(0)
        elif right is None or right.order_key is None:
            e.order_key = left.order_key + 1  # type: ignore[operator]
        else:
            e.order_key = (left.order_key + right.order_key) / 2  # type: ignore[operator]

        self._notify(ChangeKind.REORDERED, entry, profile)
        return entry

    def place_after(self, entry: EntityRef, anchor: EntityRef) -> EntityRef:
        """Reorder ``entry`` to sit immediately after ``anchor`` (same profile)."""
        e = self.save(entry)
        a = self.save(anchor)
        if a.profile_uid != e.profile_uid:
            raise NotFound(f"{anchor} is not a sibling of {entry}")
        profile = EntityRef(EntityKind.PROFILE, e.profile_uid)
        others = [s.uid for s in self.saves(profile) if s.uid != e.uid]
        return self.reorder_save(profile, entry, others.index(a.uid) + 1)

    def apply_manual_order(self, profile: EntityRef, names: List[str]) -> None:
        """Key the named saves 1..n in the given order (used when seeding from state)."""
        p = self.profile(profile)
        by_name = {s.name: s for s in p.saves.values()}
        for s in p.saves.values():
            s.order_key = None
        key = 1
        for name in names:
            s = by_name.get(name)
            if s is None:
                continue
            s.order_key = Fraction(key)
            key += 1
        self._notify(ChangeKind.REORDERED, profile)

    def manual_order(self, profile: EntityRef) -> List[str]:
        return [s.name for s in self.saves(profile) if s.order_key is not None]

    @staticmethod
    def _materialize_keys(prefix: List[SaveEntry]) -> None:
        keyed = [s.order_key for s in prefix if s.order_key is not None]
        next_key = (int(max(keyed)) + 1) if keyed else 1
        for s in prefix:
            if s.order_key is None:
                s.order_key = Fraction(next_key)
                next_key += 1
